from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from itertools import count
from typing import Any
from uuid import UUID, uuid4

from alumni_api.services.records import (
    MEMBER_ADMIN_FIELDS,
    MEMBER_ROLES,
    MediaSubmissionRecord,
    MemberRecord,
    ModerationLogEntry,
    PublishedMediumRecord,
)
from alumni_api.services.repository import (
    CONTENT_KINDS,
    RepositoryNotFoundError,
    RepositoryUniqueViolationError,
    RepositoryValidationError,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _uuid_key(value: Any) -> str | None:
    """Canonical text of a UUID id, matching how Postgres casts it."""
    if not isinstance(value, str):
        return None
    try:
        return str(UUID(value.strip()))
    except ValueError:
        return None


class InMemoryStore:
    """Single-process store for local development and tests.

    Methods never await internally, so every call is atomic with respect to
    other coroutines on the same event loop. Conditional writes mirror the
    ``where state = 'pending'`` updates of the Postgres repository.
    """

    def __init__(self) -> None:
        self.members: dict[str, MemberRecord] = {}
        self.media: dict[str, MediaSubmissionRecord] = {}
        self.published: dict[str, PublishedMediumRecord] = {}
        self.moderation_log: list[ModerationLogEntry] = []
        self.content: dict[str, list[dict[str, Any]]] = {kind: [] for kind in CONTENT_KINDS}
        self._log_ids = count(1)

    async def close(self) -> None:
        return None

    async def get_member(self, member_id: str) -> MemberRecord | None:
        member = self.members.get(_uuid_key(member_id))
        return replace(member) if member else None

    async def get_member_by_subject(self, subject_id: str) -> MemberRecord | None:
        for member in self.members.values():
            if member.external_subject_id == subject_id:
                return replace(member)
        return None

    async def get_member_by_email(self, email: str) -> MemberRecord | None:
        for member in self.members.values():
            if member.email == email:
                return replace(member)
        return None

    async def get_members_by_keys(self, keys: list[str]) -> list[MemberRecord]:
        wanted = set(keys)
        return [
            replace(member)
            for member in self.members.values()
            if member.id in wanted or (member.external_subject_id and member.external_subject_id in wanted)
        ]

    async def create_member(
        self,
        *,
        email: str,
        display_name: str,
        external_subject_id: str | None,
        role: str,
        avatar_url: str | None = None,
    ) -> MemberRecord:
        if role not in MEMBER_ROLES:
            raise RepositoryValidationError("invalid member role")
        for member in self.members.values():
            if member.email == email:
                raise RepositoryUniqueViolationError("member already exists: members_email_key")
            if external_subject_id and member.external_subject_id == external_subject_id:
                raise RepositoryUniqueViolationError("member already exists: members_external_subject_id_key")

        now = _now()
        member = MemberRecord(
            id=str(uuid4()),
            email=email,
            display_name=display_name,
            role=role,
            external_subject_id=external_subject_id,
            avatar_url=avatar_url,
            created_at=now,
            updated_at=now,
        )
        self.members[member.id] = member
        return replace(member)

    async def link_member_subject(self, *, member_id: str, subject_id: str) -> MemberRecord | None:
        member = self.members.get(_uuid_key(member_id))
        if member is None or member.external_subject_id is not None:
            return None
        if any(other.external_subject_id == subject_id for other in self.members.values()):
            raise RepositoryUniqueViolationError("external subject id already linked")
        member.external_subject_id = subject_id
        member.updated_at = _now()
        return replace(member)

    async def update_member_fields(self, *, member_id: str, fields: dict[str, Any]) -> MemberRecord:
        unknown = set(fields) - set(MEMBER_ADMIN_FIELDS)
        if unknown:
            raise RepositoryValidationError(f"fields not editable: {sorted(unknown)}")
        if "role" in fields and fields["role"] not in MEMBER_ROLES:
            raise RepositoryValidationError("invalid member field value")
        member = self.members.get(_uuid_key(member_id))
        if member is None:
            raise RepositoryNotFoundError("member not found")
        for column, value in fields.items():
            setattr(member, column, value)
        if fields:
            member.updated_at = _now()
        return replace(member)

    async def list_members(
        self,
        *,
        approval_state: str | None,
        limit: int,
        offset: int,
    ) -> list[MemberRecord]:
        rows = [
            member
            for member in self.members.values()
            if approval_state is None or member.approval_state == approval_state
        ]
        rows.sort(key=lambda member: member.created_at or _now(), reverse=True)
        return [replace(member) for member in rows[offset : offset + limit]]

    async def count_members_by_state(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for member in self.members.values():
            counts[member.approval_state] = counts.get(member.approval_state, 0) + 1
        return counts

    async def approve_pending_members(self, *, member_ids: list[str], actor_id: str) -> list[str]:
        now = _now()
        transitioned: list[str] = []
        for member_id in dict.fromkeys(filter(None, map(_uuid_key, member_ids))):
            member = self.members.get(member_id)
            if member is None or member.approval_state != "pending":
                continue
            member.approval_state = "approved"
            member.approved_by = actor_id
            member.approved_at = now
            member.rejection_reason = None
            member.updated_at = now
            transitioned.append(member_id)
        return transitioned

    async def reject_pending_members(
        self,
        *,
        member_ids: list[str],
        actor_id: str,
        reason: str | None,
    ) -> list[str]:
        now = _now()
        transitioned: list[str] = []
        for member_id in dict.fromkeys(filter(None, map(_uuid_key, member_ids))):
            member = self.members.get(member_id)
            if member is None or member.approval_state != "pending":
                continue
            member.approval_state = "rejected"
            member.rejection_reason = reason
            member.approved_by = actor_id
            member.approved_at = now
            member.updated_at = now
            transitioned.append(member_id)
        return transitioned

    async def create_media_submission(self, *, uploader_id: str, locator: str) -> MediaSubmissionRecord:
        uploader_id = _uuid_key(uploader_id) or uploader_id
        if uploader_id not in self.members:
            raise RepositoryNotFoundError("uploader not found")
        now = _now()
        submission = MediaSubmissionRecord(
            id=str(uuid4()),
            uploader_id=uploader_id,
            locator=locator,
            created_at=now,
            updated_at=now,
        )
        self.media[submission.id] = submission
        return replace(submission)

    async def get_media_submission(self, media_id: str) -> MediaSubmissionRecord | None:
        submission = self.media.get(_uuid_key(media_id))
        return replace(submission) if submission else None

    async def list_media_submissions(
        self,
        *,
        moderation_state: str | None,
        limit: int,
        offset: int,
    ) -> list[MediaSubmissionRecord]:
        rows = [
            submission
            for submission in self.media.values()
            if moderation_state is None or submission.moderation_state == moderation_state
        ]
        rows.sort(key=lambda submission: submission.created_at or _now(), reverse=True)
        return [replace(submission) for submission in rows[offset : offset + limit]]

    async def count_media_by_state(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for submission in self.media.values():
            counts[submission.moderation_state] = counts.get(submission.moderation_state, 0) + 1
        return counts

    async def approve_media_submission(
        self,
        *,
        media_id: str,
        actor_id: str,
        notes: str | None,
        title: str,
        category: str,
        year: int,
    ) -> tuple[MediaSubmissionRecord, PublishedMediumRecord] | None:
        submission = self.media.get(_uuid_key(media_id))
        if submission is None or submission.moderation_state != "pending":
            return None

        now = _now()
        published = PublishedMediumRecord(
            id=str(uuid4()),
            title=title,
            locator=submission.locator,
            year=year,
            category=category,
            contributed_by=submission.uploader_id,
            submission_id=submission.id,
            created_at=now,
        )
        submission.moderation_state = "approved"
        submission.moderator_id = actor_id
        submission.moderated_at = now
        if notes is not None:
            submission.moderation_notes = notes
        submission.updated_at = now
        self.published[published.id] = published
        return replace(submission), replace(published)

    async def reject_pending_media(
        self,
        *,
        media_ids: list[str],
        actor_id: str,
        notes: str | None,
    ) -> list[str]:
        now = _now()
        transitioned: list[str] = []
        for media_id in dict.fromkeys(filter(None, map(_uuid_key, media_ids))):
            submission = self.media.get(media_id)
            if submission is None or submission.moderation_state != "pending":
                continue
            submission.moderation_state = "rejected"
            submission.moderation_notes = notes
            submission.moderator_id = actor_id
            submission.moderated_at = now
            submission.updated_at = now
            transitioned.append(media_id)
        return transitioned

    async def list_published_media(self, *, limit: int, offset: int) -> list[PublishedMediumRecord]:
        rows = sorted(self.published.values(), key=lambda item: item.created_at or _now(), reverse=True)
        return [replace(item) for item in rows[offset : offset + limit]]

    async def insert_moderation_log(
        self,
        *,
        actor_id: str,
        action_kind: str,
        target_kind: str,
        target_id: str | None,
        details: dict[str, Any],
    ) -> ModerationLogEntry:
        entry = ModerationLogEntry(
            id=next(self._log_ids),
            actor_id=actor_id,
            action_kind=action_kind,
            target_kind=target_kind,
            target_id=target_id,
            details=dict(details),
            created_at=_now(),
        )
        self.moderation_log.append(entry)
        return replace(entry, details=dict(entry.details))

    async def list_moderation_log(self, *, limit: int, offset: int) -> list[ModerationLogEntry]:
        rows = sorted(self.moderation_log, key=lambda entry: (entry.created_at, entry.id), reverse=True)
        return [replace(entry, details=dict(entry.details)) for entry in rows[offset : offset + limit]]

    def add_content(self, kind: str, row: dict[str, Any]) -> dict[str, Any]:
        if kind not in CONTENT_KINDS:
            raise RepositoryValidationError(f"unknown content kind: {kind}")
        stored = {"id": str(uuid4()), "created_at": _now(), **row}
        self.content[kind].append(stored)
        return stored

    async def list_content(self, *, kind: str, limit: int, offset: int) -> list[dict[str, Any]]:
        if kind not in CONTENT_KINDS:
            raise RepositoryValidationError(f"unknown content kind: {kind}")
        rows = list(reversed(self.content[kind]))
        return [dict(row) for row in rows[offset : offset + limit]]
