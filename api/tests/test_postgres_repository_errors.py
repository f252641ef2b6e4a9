from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Coroutine
from contextlib import asynccontextmanager
from typing import Any, TypeVar
from uuid import uuid4

import asyncpg  # type: ignore[import-untyped]
import pytest
from asyncpg import exceptions as pg_exc

from alumni_api.services.ledger import ModerationLedger
from alumni_api.services.records import MemberRecord
from alumni_api.services.repository import (
    PostgresRepository,
    RepositoryNotFoundError,
    RepositoryQueryError,
    RepositoryUnavailableError,
    RepositoryUniqueViolationError,
    RepositoryValidationError,
)

T = TypeVar("T")


class FailingConnection:
    """Connection double whose every statement raises ``error``."""

    def __init__(self, error: BaseException) -> None:
        self.error = error

    async def fetchrow(self, *args: Any, **kwargs: Any) -> Any:
        raise self.error

    async def fetch(self, *args: Any, **kwargs: Any) -> Any:
        raise self.error

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        yield


class SingleConnectionPool:
    def __init__(self, conn: FailingConnection) -> None:
        self.conn = conn

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[FailingConnection]:
        yield self.conn

    async def close(self) -> None:
        return None


def _repository(error: BaseException) -> PostgresRepository:
    repository = PostgresRepository(database_url="postgresql://localhost/alumni", min_pool_size=1, max_pool_size=1)
    repository._pool = SingleConnectionPool(FailingConnection(error))
    return repository


def test_constraint_failure_on_publish_becomes_query_error() -> None:
    cause = pg_exc.CheckViolationError('new row for relation "published_media" violates check constraint')
    repository = _repository(cause)

    with pytest.raises(RepositoryQueryError) as exc_info:
        _run(
            repository.approve_media_submission(
                media_id=str(uuid4()),
                actor_id=str(uuid4()),
                notes=None,
                title="Untitled Memory",
                category="user_upload",
                year=2026,
            )
        )

    assert exc_info.value.__cause__ is cause
    assert "23514" in str(exc_info.value)


def test_command_timeout_becomes_unavailable() -> None:
    repository = _repository(asyncio.TimeoutError())

    with pytest.raises(RepositoryUnavailableError):
        _run(repository.get_member(str(uuid4())))


def test_unmapped_unique_violation_is_still_a_repository_error() -> None:
    repository = _repository(pg_exc.UniqueViolationError("published_media_submission_id_key"))

    with pytest.raises(RepositoryQueryError):
        _run(repository.list_published_media(limit=10, offset=0))


def test_method_specific_mappings_take_precedence() -> None:
    with pytest.raises(RepositoryUniqueViolationError):
        _run(
            _repository(pg_exc.UniqueViolationError("members_email_key")).create_member(
                email="dup@x.edu",
                display_name="Dup",
                external_subject_id="s1",
                role="student",
            )
        )
    with pytest.raises(RepositoryValidationError):
        _run(
            _repository(asyncpg.DataError("value too long")).update_member_fields(
                member_id=str(uuid4()),
                fields={"company": "x" * 500},
            )
        )
    with pytest.raises(RepositoryNotFoundError):
        _run(
            _repository(pg_exc.ForeignKeyViolationError("media_submissions_uploader_id_fkey")).create_media_submission(
                uploader_id=str(uuid4()),
                locator="https://cdn.example.edu/p.jpg",
            )
        )


def test_ledger_record_swallows_timeout_from_postgres(
    admin: MemberRecord,
    caplog: pytest.LogCaptureFixture,
) -> None:
    ledger = ModerationLedger(_repository(asyncio.TimeoutError()))

    with caplog.at_level(logging.ERROR, logger="alumni_api.services.ledger"):
        entry = _run(ledger.record(actor=admin, action_kind="approve_member", target_kind="member"))

    assert entry is None
    assert any("moderation ledger write failed" in record.getMessage() for record in caplog.records)


def _run(coro: Coroutine[Any, Any, T]) -> T:
    return asyncio.run(coro)
