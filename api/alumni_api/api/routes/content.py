from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status

from alumni_api.schemas.content import JobListOut, StoryListOut
from alumni_api.services.listing import ListingJoiner
from alumni_api.services.providers import get_listing_joiner
from alumni_api.services.repository import RepositoryUnavailableError, get_repository

router = APIRouter()


@router.get("/jobs", response_model=list[JobListOut])
async def list_jobs(
    repository: Any = Depends(get_repository),
    joiner: ListingJoiner = Depends(get_listing_joiner),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> list[JobListOut]:
    # Jobs store the poster's identity-provider subject id, not the member id.
    try:
        rows = await repository.list_content(kind="jobs", limit=limit, offset=offset)
        joined = await joiner.join_listing(rows, "posted_by", author_field="poster")
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return [JobListOut(**row) for row in joined]


@router.get("/stories", response_model=list[StoryListOut])
async def list_stories(
    repository: Any = Depends(get_repository),
    joiner: ListingJoiner = Depends(get_listing_joiner),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> list[StoryListOut]:
    try:
        rows = await repository.list_content(kind="stories", limit=limit, offset=offset)
        joined = await joiner.join_listing(rows, "author_id", author_field="author")
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return [StoryListOut(**row) for row in joined]
