from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status

from alumni_api.core.security import get_human_principal
from alumni_api.schemas.members import MemberDirectoryOut, MemberOut, MemberProfilePatchRequest
from alumni_api.services.listing import AuthorCache, get_author_cache
from alumni_api.services.repository import (
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryValidationError,
    get_repository,
)

router = APIRouter()


@router.get("", response_model=list[MemberDirectoryOut])
async def list_directory(
    repository: Any = Depends(get_repository),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> list[MemberDirectoryOut]:
    try:
        members = await repository.list_members(approval_state="approved", limit=limit, offset=offset)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return [MemberDirectoryOut(**member.to_dict()) for member in members]


@router.get("/{member_id}", response_model=MemberDirectoryOut)
async def get_member_profile(
    member_id: str,
    repository: Any = Depends(get_repository),
) -> MemberDirectoryOut:
    try:
        member = await repository.get_member(member_id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    # Pending and rejected members are indistinguishable from unknown ids.
    if member is None or not member.is_approved:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="member not found")
    return MemberDirectoryOut(**member.to_dict())


@router.patch("/me", response_model=MemberOut)
async def patch_own_profile(
    payload: MemberProfilePatchRequest,
    principal=Depends(get_human_principal),
    repository: Any = Depends(get_repository),
    author_cache: AuthorCache = Depends(get_author_cache),
) -> MemberOut:
    try:
        principal.require_scopes({"directory:read"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        member = await repository.update_member_fields(member_id=principal.actor_id, fields=payload.to_fields())
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    author_cache.invalidate([member.id])
    return MemberOut(**member.to_dict())
