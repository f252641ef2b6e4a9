from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status

from alumni_api.core.security import get_human_principal
from alumni_api.schemas.admin import BulkResultOut, DashboardStatsOut, MemberCountsOut, ModerationLogEntryOut
from alumni_api.schemas.media import (
    BulkMediaRequest,
    MediaApproveRequest,
    MediaQueueItemOut,
    MediaRejectRequest,
    MediaTransitionOut,
    ModerationState,
)
from alumni_api.schemas.members import (
    AdminMemberPatchRequest,
    ApprovalState,
    BulkMemberRequest,
    MemberOut,
    MemberTransitionRequest,
)
from alumni_api.services.approval import ApprovalStateMachine, MediaTransitionResult
from alumni_api.services.bulk import BulkActionCoordinator
from alumni_api.services.ledger import ModerationLedger
from alumni_api.services.listing import ListingJoiner
from alumni_api.services.providers import (
    get_bulk_coordinator,
    get_ledger,
    get_listing_joiner,
    get_state_machine,
)
from alumni_api.services.records import ModerationLogEntry
from alumni_api.services.repository import (
    RepositoryConflictError,
    RepositoryForbiddenError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryValidationError,
    get_repository,
)

router = APIRouter()


@router.get("/dashboard/stats", response_model=DashboardStatsOut)
async def dashboard_stats(
    principal=Depends(get_human_principal),
    repository: Any = Depends(get_repository),
    ledger: ModerationLedger = Depends(get_ledger),
    joiner: ListingJoiner = Depends(get_listing_joiner),
) -> DashboardStatsOut:
    try:
        principal.require_scopes({"moderation:read"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        member_counts = await repository.count_members_by_state()
        media_counts = await repository.count_media_by_state()
        recent = await _with_actors(joiner, await ledger.list_entries(page=1, page_size=10))
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return DashboardStatsOut(
        members=MemberCountsOut(
            total=sum(member_counts.values()),
            pending=member_counts.get("pending", 0),
            approved=member_counts.get("approved", 0),
            rejected=member_counts.get("rejected", 0),
        ),
        pending_media=media_counts.get("pending", 0),
        recent_activity=recent,
    )


@router.get("/logs", response_model=list[ModerationLogEntryOut])
async def list_moderation_log(
    principal=Depends(get_human_principal),
    ledger: ModerationLedger = Depends(get_ledger),
    joiner: ListingJoiner = Depends(get_listing_joiner),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=200),
) -> list[ModerationLogEntryOut]:
    try:
        principal.require_scopes({"moderation:read"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        entries = await _with_actors(joiner, await ledger.list_entries(page=page, page_size=page_size))
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return entries


@router.get("/members", response_model=list[MemberOut])
async def list_members(
    principal=Depends(get_human_principal),
    repository: Any = Depends(get_repository),
    approval_state: ApprovalState | None = Query(default=None, alias="state"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> list[MemberOut]:
    try:
        principal.require_scopes({"moderation:read"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        members = await repository.list_members(approval_state=approval_state, limit=limit, offset=offset)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return [MemberOut(**member.to_dict()) for member in members]


@router.patch("/members/{member_id}", response_model=MemberOut)
async def patch_member(
    member_id: str,
    payload: AdminMemberPatchRequest,
    principal=Depends(get_human_principal),
    state_machine: ApprovalStateMachine = Depends(get_state_machine),
) -> MemberOut:
    try:
        principal.require_scopes({"admin:write"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        member = await state_machine.update_member(principal.member, member_id, payload.to_fields())
    except RepositoryForbiddenError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    return MemberOut(**member.to_dict())


@router.post("/members/bulk-approve", response_model=BulkResultOut)
async def bulk_approve_members(
    payload: BulkMemberRequest,
    principal=Depends(get_human_principal),
    coordinator: BulkActionCoordinator = Depends(get_bulk_coordinator),
) -> BulkResultOut:
    return await _bulk_members(principal, coordinator, payload, action="approve")


@router.post("/members/bulk-reject", response_model=BulkResultOut)
async def bulk_reject_members(
    payload: BulkMemberRequest,
    principal=Depends(get_human_principal),
    coordinator: BulkActionCoordinator = Depends(get_bulk_coordinator),
) -> BulkResultOut:
    return await _bulk_members(principal, coordinator, payload, action="reject")


@router.post("/members/{member_id}/approve", response_model=MemberOut)
async def approve_member(
    member_id: str,
    principal=Depends(get_human_principal),
    state_machine: ApprovalStateMachine = Depends(get_state_machine),
) -> MemberOut:
    return await _transition_member(principal, state_machine, member_id, action="approve", reason=None)


@router.post("/members/{member_id}/reject", response_model=MemberOut)
async def reject_member(
    member_id: str,
    payload: MemberTransitionRequest,
    principal=Depends(get_human_principal),
    state_machine: ApprovalStateMachine = Depends(get_state_machine),
) -> MemberOut:
    return await _transition_member(principal, state_machine, member_id, action="reject", reason=payload.reason)


@router.get("/media", response_model=list[MediaQueueItemOut])
async def list_media_queue(
    principal=Depends(get_human_principal),
    repository: Any = Depends(get_repository),
    joiner: ListingJoiner = Depends(get_listing_joiner),
    moderation_state: ModerationState | None = Query(default="pending", alias="state"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> list[MediaQueueItemOut]:
    try:
        principal.require_scopes({"moderation:read"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        submissions = await repository.list_media_submissions(
            moderation_state=moderation_state,
            limit=limit,
            offset=offset,
        )
        rows = await joiner.join_listing(
            [submission.to_dict() for submission in submissions],
            "uploader_id",
            author_field="uploader",
        )
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return [MediaQueueItemOut(**row) for row in rows]


@router.post("/media/bulk-approve", response_model=BulkResultOut)
async def bulk_approve_media(
    payload: BulkMediaRequest,
    principal=Depends(get_human_principal),
    coordinator: BulkActionCoordinator = Depends(get_bulk_coordinator),
) -> BulkResultOut:
    return await _bulk_media(principal, coordinator, payload, action="approve")


@router.post("/media/bulk-reject", response_model=BulkResultOut)
async def bulk_reject_media(
    payload: BulkMediaRequest,
    principal=Depends(get_human_principal),
    coordinator: BulkActionCoordinator = Depends(get_bulk_coordinator),
) -> BulkResultOut:
    return await _bulk_media(principal, coordinator, payload, action="reject")


@router.post("/media/{media_id}/approve", response_model=MediaTransitionOut)
async def approve_media(
    media_id: str,
    payload: MediaApproveRequest,
    principal=Depends(get_human_principal),
    state_machine: ApprovalStateMachine = Depends(get_state_machine),
) -> MediaTransitionOut:
    try:
        principal.require_scopes({"moderation:write"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        result = await state_machine.transition_media(
            principal.member,
            media_id,
            "approve",
            payload.notes,
            title=payload.title,
            category=payload.category,
            year=payload.year,
        )
    except RepositoryForbiddenError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    return _media_transition_out(result)


@router.post("/media/{media_id}/reject", response_model=MediaTransitionOut)
async def reject_media(
    media_id: str,
    payload: MediaRejectRequest,
    principal=Depends(get_human_principal),
    state_machine: ApprovalStateMachine = Depends(get_state_machine),
) -> MediaTransitionOut:
    try:
        principal.require_scopes({"moderation:write"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        result = await state_machine.transition_media(principal.member, media_id, "reject", payload.notes)
    except RepositoryForbiddenError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    return _media_transition_out(result)


async def _transition_member(
    principal: Any,
    state_machine: ApprovalStateMachine,
    member_id: str,
    *,
    action: str,
    reason: str | None,
) -> MemberOut:
    try:
        principal.require_scopes({"moderation:write"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        member = await state_machine.transition_member(principal.member, member_id, action, reason)
    except RepositoryForbiddenError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    return MemberOut(**member.to_dict())


async def _bulk_members(
    principal: Any,
    coordinator: BulkActionCoordinator,
    payload: BulkMemberRequest,
    *,
    action: str,
) -> BulkResultOut:
    try:
        principal.require_scopes({"moderation:write"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        result = await coordinator.bulk_transition_members(principal.member, payload.member_ids, action, payload.reason)
    except RepositoryForbiddenError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    return BulkResultOut(modified_count=result.modified_count)


async def _bulk_media(
    principal: Any,
    coordinator: BulkActionCoordinator,
    payload: BulkMediaRequest,
    *,
    action: str,
) -> BulkResultOut:
    try:
        principal.require_scopes({"moderation:write"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        result = await coordinator.bulk_transition_media(principal.member, payload.media_ids, action, payload.notes)
    except RepositoryForbiddenError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return BulkResultOut(
        modified_count=result.modified_count,
        published_count=result.published_count,
        failed_ids=result.failed_ids,
    )


def _media_transition_out(result: MediaTransitionResult) -> MediaTransitionOut:
    published = result.published_medium.to_dict() if result.published_medium else None
    return MediaTransitionOut(submission=result.submission.to_dict(), published_medium=published)


async def _with_actors(joiner: ListingJoiner, entries: list[ModerationLogEntry]) -> list[ModerationLogEntryOut]:
    # Entries whose actor no longer resolves are kept with ``actor`` unset.
    rows = await joiner.join_listing(
        [entry.to_dict() for entry in entries],
        "actor_id",
        author_field="actor",
        drop_unmatched=False,
    )
    return [ModerationLogEntryOut(**row) for row in rows]
