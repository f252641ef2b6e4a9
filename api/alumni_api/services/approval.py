from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal, NoReturn

from alumni_api.services import ledger as actions
from alumni_api.services.ledger import ModerationLedger
from alumni_api.services.listing import AuthorCache
from alumni_api.services.notifier import MEMBER_APPROVED, MEMBER_REJECTED, Notifier
from alumni_api.services.records import (
    MEMBER_ADMIN_FIELDS,
    MediaSubmissionRecord,
    MemberRecord,
    PublishedMediumRecord,
)
from alumni_api.services.repository import (
    RepositoryError,
    RepositoryForbiddenError,
    RepositoryNotFoundError,
    RepositoryValidationError,
)

logger = logging.getLogger(__name__)

TransitionAction = Literal["approve", "reject"]
TRANSITION_ACTIONS = {"approve", "reject"}


class NoOpTransitionError(RepositoryNotFoundError):
    """Raised when a single target exists but is no longer pending."""


@dataclass(slots=True)
class MediaTransitionResult:
    submission: MediaSubmissionRecord
    published_medium: PublishedMediumRecord | None = None


def require_admin(actor: MemberRecord) -> None:
    if not actor.is_admin:
        raise RepositoryForbiddenError("approved admin role required")


def require_approved(member: MemberRecord) -> None:
    """Access gate: a resolved identity is not yet an admitted member."""
    if not member.is_approved:
        raise RepositoryForbiddenError(f"membership is {member.approval_state}")


def validate_action(action: str) -> None:
    if action not in TRANSITION_ACTIONS:
        raise RepositoryValidationError("action must be one of: approve, reject")


class ApprovalStateMachine:
    """pending -> approved | rejected for members and media submissions.

    Only pending targets ever move; the store enforces this with conditional
    updates, so repeating a transition is a no-op rather than an error.
    """

    def __init__(
        self,
        repository: Any,
        ledger: ModerationLedger,
        *,
        notifier: Notifier | None = None,
        author_cache: AuthorCache | None = None,
        published_title: str = "Untitled Memory",
        published_category: str = "user_upload",
    ) -> None:
        self.repository = repository
        self.ledger = ledger
        self.notifier = notifier
        self.author_cache = author_cache
        self.published_title = published_title
        self.published_category = published_category

    async def apply_member_transition(
        self,
        actor: MemberRecord,
        member_ids: list[str],
        action: str,
        reason: str | None = None,
    ) -> list[str]:
        """Move every pending member in ``member_ids``; returns the ids that moved.

        Writes no ledger entry; callers record one per call.
        """
        require_admin(actor)
        validate_action(action)
        if action == "approve":
            transitioned = await self.repository.approve_pending_members(member_ids=member_ids, actor_id=actor.id)
        else:
            transitioned = await self.repository.reject_pending_members(
                member_ids=member_ids,
                actor_id=actor.id,
                reason=reason,
            )
        if transitioned:
            logger.info(
                "members transitioned action=%s count=%s actor_id=%s",
                action,
                len(transitioned),
                actor.id,
            )
            await self._notify_members(transitioned, action=action, reason=reason)
        return transitioned

    async def transition_member(
        self,
        actor: MemberRecord,
        member_id: str,
        action: str,
        reason: str | None = None,
    ) -> MemberRecord:
        transitioned = await self.apply_member_transition(actor, [member_id], action, reason)
        if not transitioned:
            existing = await self.repository.get_member(member_id)
            if existing is None:
                raise RepositoryNotFoundError("member not found")
            raise NoOpTransitionError(f"member is {existing.approval_state}, not pending")

        if self.author_cache:
            self.author_cache.invalidate(transitioned)
        await self.ledger.record(
            actor=actor,
            action_kind=actions.APPROVE_MEMBER if action == "approve" else actions.REJECT_MEMBER,
            target_kind="member",
            target_id=member_id,
            details={"reason": reason} if action == "reject" else {},
        )
        member = await self.repository.get_member(member_id)
        if member is None:
            raise RepositoryNotFoundError("member not found")
        return member

    async def approve_media_item(
        self,
        actor: MemberRecord,
        media_id: str,
        notes: str | None = None,
        *,
        title: str | None = None,
        category: str | None = None,
        year: int | None = None,
    ) -> MediaTransitionResult | None:
        """Approve one submission and spawn its published medium atomically.

        Returns ``None`` if the submission is absent or no longer pending.
        """
        require_admin(actor)
        result = await self.repository.approve_media_submission(
            media_id=media_id,
            actor_id=actor.id,
            notes=notes,
            title=title or self.published_title,
            category=category or self.published_category,
            year=year or datetime.now(timezone.utc).year,
        )
        if result is None:
            return None
        submission, published = result
        logger.info(
            "media approved id=%s published_id=%s contributor=%s actor_id=%s",
            submission.id,
            published.id,
            published.contributed_by,
            actor.id,
        )
        return MediaTransitionResult(submission=submission, published_medium=published)

    async def reject_media_items(
        self,
        actor: MemberRecord,
        media_ids: list[str],
        notes: str | None = None,
    ) -> list[str]:
        require_admin(actor)
        transitioned = await self.repository.reject_pending_media(media_ids=media_ids, actor_id=actor.id, notes=notes)
        if transitioned:
            logger.info("media rejected count=%s actor_id=%s", len(transitioned), actor.id)
        return transitioned

    async def transition_media(
        self,
        actor: MemberRecord,
        media_id: str,
        action: str,
        notes: str | None = None,
        *,
        title: str | None = None,
        category: str | None = None,
        year: int | None = None,
    ) -> MediaTransitionResult:
        validate_action(action)
        if action == "approve":
            result = await self.approve_media_item(actor, media_id, notes, title=title, category=category, year=year)
            if result is None:
                await self._raise_media_not_pending(media_id)
            published_id = result.published_medium.id if result.published_medium else None
            await self.ledger.record(
                actor=actor,
                action_kind=actions.APPROVE_MEDIA,
                target_kind="media",
                target_id=media_id,
                details={"notes": notes, "published_medium_id": published_id},
            )
            return result

        transitioned = await self.reject_media_items(actor, [media_id], notes)
        if not transitioned:
            await self._raise_media_not_pending(media_id)
        await self.ledger.record(
            actor=actor,
            action_kind=actions.REJECT_MEDIA,
            target_kind="media",
            target_id=media_id,
            details={"notes": notes},
        )
        submission = await self.repository.get_media_submission(media_id)
        if submission is None:
            raise RepositoryNotFoundError("media submission not found")
        return MediaTransitionResult(submission=submission)

    async def update_member(self, actor: MemberRecord, member_id: str, fields: dict[str, Any]) -> MemberRecord:
        """Admin edit of the allow-listed member columns."""
        require_admin(actor)
        unknown = set(fields) - set(MEMBER_ADMIN_FIELDS)
        if unknown:
            raise RepositoryValidationError(f"fields not editable: {sorted(unknown)}")
        member = await self.repository.update_member_fields(member_id=member_id, fields=fields)
        if self.author_cache:
            self.author_cache.invalidate([member_id])
        await self.ledger.record(
            actor=actor,
            action_kind=actions.UPDATE_MEMBER,
            target_kind="member",
            target_id=member_id,
            details={"fields": sorted(fields)},
        )
        return member

    async def _raise_media_not_pending(self, media_id: str) -> NoReturn:
        existing = await self.repository.get_media_submission(media_id)
        if existing is None:
            raise RepositoryNotFoundError("media submission not found")
        raise NoOpTransitionError(f"media submission is {existing.moderation_state}, not pending")

    async def _notify_members(self, member_ids: list[str], *, action: str, reason: str | None) -> None:
        if self.notifier is None:
            return
        try:
            members = await self.repository.get_members_by_keys(member_ids)
        except RepositoryError:
            logger.exception("could not load members for notification ids=%s", member_ids)
            return
        event = MEMBER_APPROVED if action == "approve" else MEMBER_REJECTED
        for member in members:
            self.notifier.notify(member, event, reason)
