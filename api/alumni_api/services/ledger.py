from __future__ import annotations

import logging
from typing import Any

from alumni_api.services.records import MemberRecord, ModerationLogEntry
from alumni_api.services.repository import RepositoryValidationError

logger = logging.getLogger(__name__)

TARGET_KINDS = {"member", "media"}

APPROVE_MEMBER = "approve_member"
REJECT_MEMBER = "reject_member"
BULK_APPROVE_MEMBERS = "bulk_approve_members"
BULK_REJECT_MEMBERS = "bulk_reject_members"
APPROVE_MEDIA = "approve_media"
REJECT_MEDIA = "reject_media"
BULK_APPROVE_MEDIA = "bulk_approve_media"
BULK_REJECT_MEDIA = "bulk_reject_media"
UPDATE_MEMBER = "update_member"


class ModerationLedger:
    """Append-only audit trail of administrative transitions.

    No update or delete path is exposed.
    """

    def __init__(self, repository: Any, *, max_page_size: int = 100) -> None:
        self.repository = repository
        self.max_page_size = max(1, max_page_size)

    async def write(
        self,
        *,
        actor: MemberRecord,
        action_kind: str,
        target_kind: str,
        target_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> ModerationLogEntry:
        if target_kind not in TARGET_KINDS:
            raise RepositoryValidationError(f"target_kind must be one of: {', '.join(sorted(TARGET_KINDS))}")
        return await self.repository.insert_moderation_log(
            actor_id=actor.id,
            action_kind=action_kind,
            target_kind=target_kind,
            target_id=target_id,
            details=details or {},
        )

    async def record(
        self,
        *,
        actor: MemberRecord,
        action_kind: str,
        target_kind: str,
        target_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> ModerationLogEntry | None:
        """Write an entry for a transition that has already been applied.

        A failure here must not undo the transition. Any error, including a
        driver timeout the repository did not translate, is reported on this
        module's logger and swallowed.
        """
        try:
            return await self.write(
                actor=actor,
                action_kind=action_kind,
                target_kind=target_kind,
                target_id=target_id,
                details=details,
            )
        except Exception:
            logger.exception(
                "moderation ledger write failed action=%s target_kind=%s target_id=%s actor_id=%s details=%s",
                action_kind,
                target_kind,
                target_id,
                actor.id,
                details,
            )
            return None

    async def list_entries(self, *, page: int = 1, page_size: int = 50) -> list[ModerationLogEntry]:
        if page < 1:
            raise RepositoryValidationError("page must be >= 1")
        page_size = min(max(1, page_size), self.max_page_size)
        return await self.repository.list_moderation_log(limit=page_size, offset=(page - 1) * page_size)
