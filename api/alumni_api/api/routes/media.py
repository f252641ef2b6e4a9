import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status

from alumni_api.core.security import get_human_principal
from alumni_api.schemas.media import (
    MediaSubmissionCreateRequest,
    MediaSubmissionOut,
    PublishedMediumListOut,
)
from alumni_api.services.listing import ListingJoiner
from alumni_api.services.providers import get_listing_joiner
from alumni_api.services.repository import (
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    get_repository,
)

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("", response_model=MediaSubmissionOut, status_code=status.HTTP_201_CREATED)
async def submit_media(
    payload: MediaSubmissionCreateRequest,
    principal=Depends(get_human_principal),
    repository: Any = Depends(get_repository),
) -> MediaSubmissionOut:
    try:
        principal.require_scopes({"media:write"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        submission = await repository.create_media_submission(uploader_id=principal.actor_id, locator=payload.locator)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    logger.info("media submitted id=%s uploader_id=%s", submission.id, submission.uploader_id)
    return MediaSubmissionOut(**submission.to_dict())


@router.get("/published", response_model=list[PublishedMediumListOut])
async def list_published_media(
    repository: Any = Depends(get_repository),
    joiner: ListingJoiner = Depends(get_listing_joiner),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> list[PublishedMediumListOut]:
    try:
        published = await repository.list_published_media(limit=limit, offset=offset)
        rows = await joiner.join_listing(
            [item.to_dict() for item in published],
            "contributed_by",
            author_field="contributor",
        )
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return [PublishedMediumListOut(**row) for row in rows]
