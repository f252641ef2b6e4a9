from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any
from uuid import UUID

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from alumni_api.core.config import get_settings
from alumni_api.services.records import (
    MEMBER_ADMIN_FIELDS,
    MediaSubmissionRecord,
    MemberRecord,
    ModerationLogEntry,
    PublishedMediumRecord,
)


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""


class RepositoryConflictError(RepositoryError):
    """Raised when an operation violates state transition rules."""


class RepositoryUniqueViolationError(RepositoryConflictError):
    """Raised when a write collides with a uniqueness constraint."""


class RepositoryForbiddenError(RepositoryError):
    """Raised when an operation is not permitted for the actor."""


class RepositoryValidationError(RepositoryError):
    """Raised when payload validation fails before persistence."""


class RepositoryQueryError(RepositoryError):
    """Raised when the database rejects a statement for a reason not mapped elsewhere."""


CONTENT_KINDS = {"jobs", "stories"}

_MEMBER_COLUMNS = """
  id::text as id,
  external_subject_id,
  email,
  display_name,
  role::text as role,
  approval_state::text as approval_state,
  rejection_reason,
  approved_by::text as approved_by,
  approved_at,
  batch_year,
  department,
  company,
  job_title,
  location,
  country,
  bio,
  avatar_url,
  linkedin_url,
  roll_number,
  is_mentor,
  skills,
  created_at,
  updated_at
"""

_MEDIA_COLUMNS = """
  id::text as id,
  uploader_id::text as uploader_id,
  locator,
  moderation_state::text as moderation_state,
  moderation_notes,
  moderator_id::text as moderator_id,
  moderated_at,
  created_at,
  updated_at
"""

_PUBLISHED_COLUMNS = """
  id::text as id,
  title,
  locator,
  year,
  category,
  contributed_by::text as contributed_by,
  submission_id::text as submission_id,
  created_at
"""

_LOG_COLUMNS = """
  id,
  actor_id::text as actor_id,
  action_kind,
  target_kind,
  target_id::text as target_id,
  details,
  created_at
"""

_CONTENT_QUERIES = {
    "jobs": """
        select
          id::text as id,
          title,
          company,
          location,
          job_type,
          apply_url,
          posted_by,
          expires_at,
          created_at
        from jobs
        where expires_at is null or expires_at > now()
        order by created_at desc
        limit $1 offset $2
    """,
    "stories": """
        select
          id::text as id,
          title,
          excerpt,
          cover_image_url,
          author_id,
          is_featured,
          published_at,
          created_at
        from stories
        order by published_at desc
        limit $1 offset $2
    """,
}


class PostgresRepository:
    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int,
        max_pool_size: int,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def get_member(self, member_id: str) -> MemberRecord | None:
        member_uuid = self._coerce_uuid(member_id)
        if member_uuid is None:
            return None
        async with self._acquire() as conn:
            row = await conn.fetchrow(
                f"select {_MEMBER_COLUMNS} from members where id = $1::uuid",
                member_uuid,
            )
        return self._member_row_to_record(row) if row else None

    async def get_member_by_subject(self, subject_id: str) -> MemberRecord | None:
        async with self._acquire() as conn:
            row = await conn.fetchrow(
                f"select {_MEMBER_COLUMNS} from members where external_subject_id = $1",
                subject_id,
            )
        return self._member_row_to_record(row) if row else None

    async def get_member_by_email(self, email: str) -> MemberRecord | None:
        async with self._acquire() as conn:
            row = await conn.fetchrow(
                f"select {_MEMBER_COLUMNS} from members where email = $1",
                email,
            )
        return self._member_row_to_record(row) if row else None

    async def get_members_by_keys(self, keys: list[str]) -> list[MemberRecord]:
        if not keys:
            return []
        async with self._acquire() as conn:
            rows = await conn.fetch(
                f"""
                select {_MEMBER_COLUMNS}
                from members
                where id::text = any($1::text[])
                   or external_subject_id = any($1::text[])
                """,
                keys,
            )
        return [self._member_row_to_record(row) for row in rows]

    async def create_member(
        self,
        *,
        email: str,
        display_name: str,
        external_subject_id: str | None,
        role: str,
        avatar_url: str | None = None,
    ) -> MemberRecord:
        try:
            async with self._acquire(passthrough=(pg_exc.UniqueViolationError, pg_exc.InvalidTextRepresentationError)) as conn:
                row = await conn.fetchrow(
                    f"""
                    insert into members (email, display_name, external_subject_id, role, avatar_url)
                    values ($1, $2, $3, $4::member_role, $5)
                    returning {_MEMBER_COLUMNS}
                    """,
                    email,
                    display_name,
                    external_subject_id,
                    role,
                    avatar_url,
                )
        except pg_exc.UniqueViolationError as exc:
            raise RepositoryUniqueViolationError(f"member already exists: {exc.constraint_name}") from exc
        except pg_exc.InvalidTextRepresentationError as exc:
            raise RepositoryValidationError("invalid member role") from exc
        return self._member_row_to_record(row)

    async def link_member_subject(self, *, member_id: str, subject_id: str) -> MemberRecord | None:
        """Set the external subject id only if the record has none yet."""
        try:
            async with self._acquire(passthrough=(pg_exc.UniqueViolationError,)) as conn:
                row = await conn.fetchrow(
                    f"""
                    update members
                    set external_subject_id = $2, updated_at = now()
                    where id = $1::uuid
                      and external_subject_id is null
                    returning {_MEMBER_COLUMNS}
                    """,
                    member_id,
                    subject_id,
                )
        except pg_exc.UniqueViolationError as exc:
            raise RepositoryUniqueViolationError("external subject id already linked") from exc
        return self._member_row_to_record(row) if row else None

    async def update_member_fields(self, *, member_id: str, fields: dict[str, Any]) -> MemberRecord:
        unknown = set(fields) - set(MEMBER_ADMIN_FIELDS)
        if unknown:
            raise RepositoryValidationError(f"fields not editable: {sorted(unknown)}")
        member_uuid = self._coerce_uuid(member_id)
        if member_uuid is None:
            raise RepositoryNotFoundError("member not found")
        if not fields:
            member = await self.get_member(member_uuid)
            if member is None:
                raise RepositoryNotFoundError("member not found")
            return member

        assignments: list[str] = []
        values: list[Any] = [member_uuid]
        for column, value in fields.items():
            values.append(value)
            cast = "::member_role" if column == "role" else ""
            assignments.append(f"{column} = ${len(values)}{cast}")

        try:
            async with self._acquire(passthrough=(pg_exc.InvalidTextRepresentationError, asyncpg.DataError)) as conn:
                row = await conn.fetchrow(
                    f"""
                    update members
                    set {", ".join(assignments)}, updated_at = now()
                    where id = $1::uuid
                    returning {_MEMBER_COLUMNS}
                    """,
                    *values,
                )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryValidationError("invalid member field value") from exc
        if not row:
            raise RepositoryNotFoundError("member not found")
        return self._member_row_to_record(row)

    async def list_members(
        self,
        *,
        approval_state: str | None,
        limit: int,
        offset: int,
    ) -> list[MemberRecord]:
        async with self._acquire() as conn:
            rows = await conn.fetch(
                f"""
                select {_MEMBER_COLUMNS}
                from members
                where ($1::approval_state is null or approval_state = $1::approval_state)
                order by created_at desc, id
                limit $2 offset $3
                """,
                approval_state,
                limit,
                offset,
            )
        return [self._member_row_to_record(row) for row in rows]

    async def count_members_by_state(self) -> dict[str, int]:
        async with self._acquire() as conn:
            rows = await conn.fetch(
                """
                select approval_state::text as state, count(*)::int as count
                from members
                group by approval_state
                """
            )
        return {row["state"]: row["count"] for row in rows}

    async def approve_pending_members(self, *, member_ids: list[str], actor_id: str) -> list[str]:
        ids = self._coerce_uuid_list(member_ids)
        if not ids:
            return []
        async with self._acquire() as conn:
            rows = await conn.fetch(
                """
                update members
                set
                  approval_state = 'approved',
                  approved_by = $2::uuid,
                  approved_at = now(),
                  rejection_reason = null,
                  updated_at = now()
                where id = any($1::uuid[])
                  and approval_state = 'pending'
                returning id::text as id
                """,
                ids,
                actor_id,
            )
        return [row["id"] for row in rows]

    async def reject_pending_members(
        self,
        *,
        member_ids: list[str],
        actor_id: str,
        reason: str | None,
    ) -> list[str]:
        ids = self._coerce_uuid_list(member_ids)
        if not ids:
            return []
        async with self._acquire() as conn:
            rows = await conn.fetch(
                """
                update members
                set
                  approval_state = 'rejected',
                  rejection_reason = $3,
                  approved_by = $2::uuid,
                  approved_at = now(),
                  updated_at = now()
                where id = any($1::uuid[])
                  and approval_state = 'pending'
                returning id::text as id
                """,
                ids,
                actor_id,
                reason,
            )
        return [row["id"] for row in rows]

    async def create_media_submission(self, *, uploader_id: str, locator: str) -> MediaSubmissionRecord:
        try:
            async with self._acquire(passthrough=(pg_exc.ForeignKeyViolationError,)) as conn:
                row = await conn.fetchrow(
                    f"""
                    insert into media_submissions (uploader_id, locator)
                    values ($1::uuid, $2)
                    returning {_MEDIA_COLUMNS}
                    """,
                    uploader_id,
                    locator,
                )
        except pg_exc.ForeignKeyViolationError as exc:
            raise RepositoryNotFoundError("uploader not found") from exc
        return self._media_row_to_record(row)

    async def get_media_submission(self, media_id: str) -> MediaSubmissionRecord | None:
        media_uuid = self._coerce_uuid(media_id)
        if media_uuid is None:
            return None
        async with self._acquire() as conn:
            row = await conn.fetchrow(
                f"select {_MEDIA_COLUMNS} from media_submissions where id = $1::uuid",
                media_uuid,
            )
        return self._media_row_to_record(row) if row else None

    async def list_media_submissions(
        self,
        *,
        moderation_state: str | None,
        limit: int,
        offset: int,
    ) -> list[MediaSubmissionRecord]:
        async with self._acquire() as conn:
            rows = await conn.fetch(
                f"""
                select {_MEDIA_COLUMNS}
                from media_submissions
                where ($1::moderation_state is null or moderation_state = $1::moderation_state)
                order by created_at desc, id
                limit $2 offset $3
                """,
                moderation_state,
                limit,
                offset,
            )
        return [self._media_row_to_record(row) for row in rows]

    async def count_media_by_state(self) -> dict[str, int]:
        async with self._acquire() as conn:
            rows = await conn.fetch(
                """
                select moderation_state::text as state, count(*)::int as count
                from media_submissions
                group by moderation_state
                """
            )
        return {row["state"]: row["count"] for row in rows}

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
        """Approve one pending submission and publish it in a single transaction.

        Returns ``None`` when the submission is absent or no longer pending.
        """
        media_uuid = self._coerce_uuid(media_id)
        if media_uuid is None:
            return None
        async with self._acquire() as conn:
            async with conn.transaction():
                submission_row = await conn.fetchrow(
                    f"""
                    update media_submissions
                    set
                      moderation_state = 'approved',
                      moderator_id = $2::uuid,
                      moderated_at = now(),
                      moderation_notes = coalesce($3, moderation_notes),
                      updated_at = now()
                    where id = $1::uuid
                      and moderation_state = 'pending'
                    returning {_MEDIA_COLUMNS}
                    """,
                    media_uuid,
                    actor_id,
                    notes,
                )
                if not submission_row:
                    return None

                published_row = await conn.fetchrow(
                    f"""
                    insert into published_media (title, locator, year, category, contributed_by, submission_id)
                    values ($1, $2, $3, $4, $5::uuid, $6::uuid)
                    returning {_PUBLISHED_COLUMNS}
                    """,
                    title,
                    submission_row["locator"],
                    year,
                    category,
                    submission_row["uploader_id"],
                    submission_row["id"],
                )
        return self._media_row_to_record(submission_row), self._published_row_to_record(published_row)

    async def reject_pending_media(
        self,
        *,
        media_ids: list[str],
        actor_id: str,
        notes: str | None,
    ) -> list[str]:
        ids = self._coerce_uuid_list(media_ids)
        if not ids:
            return []
        async with self._acquire() as conn:
            rows = await conn.fetch(
                """
                update media_submissions
                set
                  moderation_state = 'rejected',
                  moderation_notes = $3,
                  moderator_id = $2::uuid,
                  moderated_at = now(),
                  updated_at = now()
                where id = any($1::uuid[])
                  and moderation_state = 'pending'
                returning id::text as id
                """,
                ids,
                actor_id,
                notes,
            )
        return [row["id"] for row in rows]

    async def list_published_media(self, *, limit: int, offset: int) -> list[PublishedMediumRecord]:
        async with self._acquire() as conn:
            rows = await conn.fetch(
                f"""
                select {_PUBLISHED_COLUMNS}
                from published_media
                order by created_at desc, id
                limit $1 offset $2
                """,
                limit,
                offset,
            )
        return [self._published_row_to_record(row) for row in rows]

    async def insert_moderation_log(
        self,
        *,
        actor_id: str,
        action_kind: str,
        target_kind: str,
        target_id: str | None,
        details: dict[str, Any],
    ) -> ModerationLogEntry:
        async with self._acquire() as conn:
            row = await conn.fetchrow(
                f"""
                insert into moderation_log (actor_id, action_kind, target_kind, target_id, details)
                values ($1::uuid, $2, $3, $4::uuid, $5::jsonb)
                returning {_LOG_COLUMNS}
                """,
                actor_id,
                action_kind,
                target_kind,
                target_id,
                json.dumps(details, default=str),
            )
        return self._log_row_to_entry(row)

    async def list_moderation_log(self, *, limit: int, offset: int) -> list[ModerationLogEntry]:
        async with self._acquire() as conn:
            rows = await conn.fetch(
                f"""
                select {_LOG_COLUMNS}
                from moderation_log
                order by created_at desc, id desc
                limit $1 offset $2
                """,
                limit,
                offset,
            )
        return [self._log_row_to_entry(row) for row in rows]

    async def list_content(self, *, kind: str, limit: int, offset: int) -> list[dict[str, Any]]:
        query = _CONTENT_QUERIES.get(kind)
        if query is None:
            raise RepositoryValidationError(f"unknown content kind: {kind}")
        async with self._acquire() as conn:
            rows = await conn.fetch(query, limit, offset)
        return [dict(row) for row in rows]

    @asynccontextmanager
    async def _acquire(
        self,
        *,
        passthrough: tuple[type[Exception], ...] = (),
    ) -> AsyncIterator[asyncpg.Connection]:
        """Yield a pooled connection, translating driver failures into repository errors.

        Exception types in ``passthrough`` are re-raised untouched for the caller
        to map with a more specific message.
        """
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                yield conn
        except passthrough:
            raise
        except (OSError, asyncio.TimeoutError, asyncpg.InterfaceError, pg_exc.PostgresConnectionError) as exc:
            raise RepositoryUnavailableError("database unavailable") from exc
        except asyncpg.PostgresError as exc:
            sqlstate = getattr(exc, "sqlstate", None)
            raise RepositoryQueryError(f"database rejected statement sqlstate={sqlstate}") from exc

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("AN_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @staticmethod
    def _member_row_to_record(row: asyncpg.Record) -> MemberRecord:
        return MemberRecord(
            id=row["id"],
            external_subject_id=row["external_subject_id"],
            email=row["email"],
            display_name=row["display_name"],
            role=row["role"],
            approval_state=row["approval_state"],
            rejection_reason=row["rejection_reason"],
            approved_by=row["approved_by"],
            approved_at=row["approved_at"],
            batch_year=row["batch_year"],
            department=row["department"],
            company=row["company"],
            job_title=row["job_title"],
            location=row["location"],
            country=row["country"],
            bio=row["bio"],
            avatar_url=row["avatar_url"],
            linkedin_url=row["linkedin_url"],
            roll_number=row["roll_number"],
            is_mentor=bool(row["is_mentor"]),
            skills=list(row["skills"] or []),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _media_row_to_record(row: asyncpg.Record) -> MediaSubmissionRecord:
        return MediaSubmissionRecord(
            id=row["id"],
            uploader_id=row["uploader_id"],
            locator=row["locator"],
            moderation_state=row["moderation_state"],
            moderation_notes=row["moderation_notes"],
            moderator_id=row["moderator_id"],
            moderated_at=row["moderated_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _published_row_to_record(row: asyncpg.Record) -> PublishedMediumRecord:
        return PublishedMediumRecord(
            id=row["id"],
            title=row["title"],
            locator=row["locator"],
            year=int(row["year"]),
            category=row["category"],
            contributed_by=row["contributed_by"],
            submission_id=row["submission_id"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _log_row_to_entry(row: asyncpg.Record) -> ModerationLogEntry:
        details = row["details"]
        if isinstance(details, str):
            try:
                details = json.loads(details)
            except json.JSONDecodeError:
                details = {}
        if not isinstance(details, dict):
            details = {}
        return ModerationLogEntry(
            id=int(row["id"]),
            actor_id=row["actor_id"],
            action_kind=row["action_kind"],
            target_kind=row["target_kind"],
            target_id=row["target_id"],
            details=details,
            created_at=row["created_at"],
        )

    @staticmethod
    def _coerce_uuid(value: Any) -> str | None:
        if not isinstance(value, str):
            return None
        try:
            return str(UUID(value.strip()))
        except ValueError:
            return None

    @classmethod
    def _coerce_uuid_list(cls, values: list[str]) -> list[str]:
        items: list[str] = []
        for value in values:
            coerced = cls._coerce_uuid(value)
            if coerced and coerced not in items:
                items.append(coerced)
        return items


@lru_cache
def get_repository() -> Any:
    settings = get_settings()
    if settings.store_backend == "memory":
        from alumni_api.services.store import InMemoryStore

        return InMemoryStore()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )
