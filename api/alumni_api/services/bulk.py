from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from alumni_api.services import ledger as actions
from alumni_api.services.approval import ApprovalStateMachine, require_admin, validate_action
from alumni_api.services.ledger import ModerationLedger
from alumni_api.services.listing import AuthorCache
from alumni_api.services.records import MemberRecord
from alumni_api.services.repository import (
    RepositoryUnavailableError,
    RepositoryValidationError,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BulkResult:
    modified_count: int
    target_ids: list[str]
    transitioned_ids: list[str] = field(default_factory=list)
    published_count: int | None = None
    failed_ids: list[str] = field(default_factory=list)


class BulkActionCoordinator:
    """Applies one moderation action to many targets.

    Each target transitions at most once (conditional on ``pending``), so a
    repeated or concurrent duplicate batch modifies nothing the second time.
    Every call writes exactly one ledger entry summarising the batch.
    """

    def __init__(
        self,
        state_machine: ApprovalStateMachine,
        ledger: ModerationLedger,
        *,
        author_cache: AuthorCache | None = None,
        max_targets: int = 200,
    ) -> None:
        self.state_machine = state_machine
        self.ledger = ledger
        self.author_cache = author_cache
        self.max_targets = max(1, max_targets)

    async def apply_bulk(
        self,
        actor: MemberRecord,
        target_kind: str,
        target_ids: list[str],
        action: str,
        reason: str | None = None,
    ) -> BulkResult:
        if target_kind == "member":
            return await self.bulk_transition_members(actor, target_ids, action, reason)
        if target_kind == "media":
            return await self.bulk_transition_media(actor, target_ids, action, reason)
        raise RepositoryValidationError("target_kind must be one of: media, member")

    async def bulk_transition_members(
        self,
        actor: MemberRecord,
        member_ids: list[str],
        action: str,
        reason: str | None = None,
    ) -> BulkResult:
        targets = self._prepare(actor, member_ids, action)
        transitioned = await self.state_machine.apply_member_transition(actor, targets, action, reason)
        if self.author_cache:
            self.author_cache.invalidate(transitioned)

        details: dict[str, Any] = {"count": len(transitioned), "target_ids": targets}
        if action == "reject":
            details["reason"] = reason
        await self.ledger.record(
            actor=actor,
            action_kind=actions.BULK_APPROVE_MEMBERS if action == "approve" else actions.BULK_REJECT_MEMBERS,
            target_kind="member",
            details=details,
        )
        return BulkResult(modified_count=len(transitioned), target_ids=targets, transitioned_ids=transitioned)

    async def bulk_transition_media(
        self,
        actor: MemberRecord,
        media_ids: list[str],
        action: str,
        notes: str | None = None,
    ) -> BulkResult:
        targets = self._prepare(actor, media_ids, action)
        if action == "reject":
            transitioned = await self.state_machine.reject_media_items(actor, targets, notes)
            await self.ledger.record(
                actor=actor,
                action_kind=actions.BULK_REJECT_MEDIA,
                target_kind="media",
                details={"count": len(transitioned), "target_ids": targets, "notes": notes},
            )
            return BulkResult(
                modified_count=len(transitioned),
                target_ids=targets,
                transitioned_ids=transitioned,
                published_count=0,
            )

        approved: list[str] = []
        published_ids: list[str] = []
        failed: list[str] = []
        halted: Exception | None = None
        for media_id in targets:
            try:
                result = await self.state_machine.approve_media_item(actor, media_id, notes)
            except (RepositoryUnavailableError, TimeoutError) as exc:
                logger.error("bulk media approval halted at id=%s: %s", media_id, exc)
                halted = exc
                failed.append(media_id)
                break
            except Exception:
                logger.exception("bulk media approval failed for id=%s; continuing", media_id)
                failed.append(media_id)
                continue
            if result is None:
                continue
            approved.append(media_id)
            if result.published_medium is not None:
                published_ids.append(result.published_medium.id)

        details: dict[str, Any] = {
            "count": len(approved),
            "target_ids": targets,
            "published_ids": published_ids,
            "notes": notes,
        }
        if failed:
            details["failed_ids"] = failed
        await self.ledger.record(
            actor=actor,
            action_kind=actions.BULK_APPROVE_MEDIA,
            target_kind="media",
            details=details,
        )
        if halted is not None:
            raise halted
        return BulkResult(
            modified_count=len(approved),
            target_ids=targets,
            transitioned_ids=approved,
            published_count=len(published_ids),
            failed_ids=failed,
        )

    def _prepare(self, actor: MemberRecord, target_ids: list[str], action: str) -> list[str]:
        require_admin(actor)
        validate_action(action)
        targets = list(dict.fromkeys(target.strip() for target in target_ids if target and target.strip()))
        if not targets:
            raise RepositoryValidationError("at least one target id is required")
        if len(targets) > self.max_targets:
            raise RepositoryValidationError(f"at most {self.max_targets} targets per batch")
        return targets
