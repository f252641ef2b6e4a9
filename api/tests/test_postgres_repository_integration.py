from __future__ import annotations

import asyncio
import os
from collections.abc import Coroutine
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, TypeVar

import asyncpg  # type: ignore[import-untyped]
import pytest

from alumni_api.services.approval import ApprovalStateMachine
from alumni_api.services.bulk import BulkActionCoordinator
from alumni_api.services.identity import IdentityResolver
from alumni_api.services.ledger import ModerationLedger
from alumni_api.services.listing import ListingJoiner
from alumni_api.services.records import IdentityAssertion, MemberRecord
from alumni_api.services.repository import PostgresRepository, RepositoryUniqueViolationError

T = TypeVar("T")

SCHEMA_PATH = Path(__file__).resolve().parents[2] / "db" / "schema.sql"


@pytest.fixture(scope="session")
def database_url() -> str:
    url = os.getenv("AN_DATABASE_URL") or os.getenv("DATABASE_URL")
    if not url:
        pytest.skip("integration tests require AN_DATABASE_URL or DATABASE_URL")
    _run(_apply_schema(url))
    return url


@pytest.fixture(autouse=True)
def reset_tables(database_url: str) -> None:
    _run(_truncate_tables(database_url))


def test_identity_resolution_is_idempotent_against_postgres(database_url: str) -> None:
    async def _scenario() -> tuple[MemberRecord, MemberRecord, int]:
        repository = _repository(database_url)
        try:
            resolver = IdentityResolver(repository)
            first = await resolver.resolve(_assertion("g-1", "a@x.edu"))
            second = await resolver.resolve(_assertion("g-1", "A@x.edu"))
        finally:
            await repository.close()
        total = await _fetchval(database_url, "select count(*) from members")
        return first, second, total

    first, second, total = _run(_scenario())

    assert first.id == second.id
    assert first.approval_state == "pending"
    assert total == 1


def test_concurrent_first_logins_create_one_row(database_url: str) -> None:
    async def _scenario() -> tuple[list[MemberRecord], int]:
        repository = _repository(database_url, max_pool_size=4)
        try:
            resolver = IdentityResolver(repository)
            results = await asyncio.gather(
                *(resolver.resolve(_assertion("race-sub", "race@x.edu")) for _ in range(4))
            )
        finally:
            await repository.close()
        return results, await _fetchval(database_url, "select count(*) from members")

    results, total = _run(_scenario())

    assert len({member.id for member in results}) == 1
    assert total == 1


def test_duplicate_email_maps_to_unique_violation(database_url: str) -> None:
    async def _scenario() -> None:
        repository = _repository(database_url)
        try:
            await repository.create_member(email="dup@x.edu", display_name="Dup", external_subject_id="s1", role="student")
            await repository.create_member(email="dup@x.edu", display_name="Dup", external_subject_id="s2", role="student")
        finally:
            await repository.close()

    with pytest.raises(RepositoryUniqueViolationError):
        _run(_scenario())


def test_bulk_member_and_media_moderation_against_postgres(database_url: str) -> None:
    async def _scenario() -> dict[str, Any]:
        repository = _repository(database_url)
        try:
            admin = await _seed_admin(repository, database_url)
            m1 = await repository.create_member(email="m1@x.edu", display_name="M1", external_subject_id="m1", role="student")
            m2 = await repository.create_member(email="m2@x.edu", display_name="M2", external_subject_id="m2", role="student")
            await repository.approve_pending_members(member_ids=[m2.id], actor_id=admin.id)

            ledger = ModerationLedger(repository)
            machine = ApprovalStateMachine(repository, ledger)
            coordinator = BulkActionCoordinator(machine, ledger)

            members = await coordinator.bulk_transition_members(admin, [m1.id, m2.id], "approve")
            p1 = await repository.create_media_submission(uploader_id=m1.id, locator="https://cdn/p1.jpg")
            p2 = await repository.create_media_submission(uploader_id=m1.id, locator="https://cdn/p2.jpg")
            media = await coordinator.bulk_transition_media(admin, [p1.id, p2.id], "approve")
            repeat = await coordinator.bulk_transition_media(admin, [p1.id, p2.id], "approve")

            log = await ledger.list_entries(page=1, page_size=10)
            published = await repository.list_published_media(limit=10, offset=0)
            m1_row = await repository.get_member(m1.id)
        finally:
            await repository.close()
        return {
            "members": members,
            "media": media,
            "repeat": repeat,
            "log": log,
            "published": published,
            "m1": m1_row,
            "m1_id": m1.id,
        }

    result = _run(_scenario())

    assert result["members"].modified_count == 1
    assert result["m1"].approval_state == "approved"
    assert result["m1"].approved_by is not None
    assert result["m1"].approved_at is not None
    assert result["media"].modified_count == 2
    assert result["media"].published_count == 2
    assert result["repeat"].modified_count == 0
    assert len(result["published"]) == 2
    assert all(item.contributed_by == result["m1_id"] for item in result["published"])
    assert [entry.action_kind for entry in result["log"]] == [
        "bulk_approve_media",
        "bulk_approve_media",
        "bulk_approve_members",
    ]
    assert [entry.details["count"] for entry in result["log"]] == [0, 2, 1]


def test_moderation_log_rejects_updates(database_url: str) -> None:
    async def _scenario() -> None:
        repository = _repository(database_url)
        try:
            admin = await _seed_admin(repository, database_url)
            await ModerationLedger(repository).write(actor=admin, action_kind="update_member", target_kind="member")
        finally:
            await repository.close()
        conn = await asyncpg.connect(database_url)
        try:
            await conn.execute("update moderation_log set action_kind = 'tampered'")
        finally:
            await conn.close()

    with pytest.raises(asyncpg.exceptions.RaiseError):
        _run(_scenario())


def test_listing_join_resolves_both_key_kinds(database_url: str) -> None:
    async def _scenario() -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
        repository = _repository(database_url)
        try:
            poster = await repository.create_member(
                email="poster@x.edu",
                display_name="Poster",
                external_subject_id="poster-uid",
                role="alumni",
            )
            conn = await asyncpg.connect(database_url)
            try:
                await conn.execute(
                    "insert into jobs (title, company, posted_by) values ('Engineer', 'Acme', $1), ('Ghost', 'Gone', 'nobody')",
                    "poster-uid",
                )
                await conn.execute(
                    "insert into stories (title, author_id) values ('Story', $1)",
                    poster.id,
                )
            finally:
                await conn.close()
            joiner = ListingJoiner(repository)
            jobs = await joiner.join_listing(
                await repository.list_content(kind="jobs", limit=10, offset=0),
                "posted_by",
                author_field="poster",
            )
            stories = await joiner.join_listing(
                await repository.list_content(kind="stories", limit=10, offset=0),
                "author_id",
            )
        finally:
            await repository.close()
        return jobs, stories

    jobs, stories = _run(_scenario())

    assert [row["title"] for row in jobs] == ["Engineer"]
    assert jobs[0]["poster"]["display_name"] == "Poster"
    assert stories[0]["author"]["display_name"] == "Poster"


def _repository(database_url: str, *, max_pool_size: int = 2) -> PostgresRepository:
    return PostgresRepository(database_url=database_url, min_pool_size=1, max_pool_size=max_pool_size)


def _assertion(subject_id: str, email: str) -> IdentityAssertion:
    return IdentityAssertion(subject_id=subject_id, email=email, display_name="", issued_at=datetime.now(timezone.utc))


async def _seed_admin(repository: PostgresRepository, database_url: str) -> MemberRecord:
    admin = await repository.create_member(
        email="admin@x.edu",
        display_name="Admin",
        external_subject_id="admin-sub",
        role="admin",
    )
    conn = await asyncpg.connect(database_url)
    try:
        await conn.execute(
            """
            update members
            set approval_state = 'approved', approved_by = id, approved_at = now()
            where id = $1::uuid
            """,
            admin.id,
        )
    finally:
        await conn.close()
    refreshed = await repository.get_member(admin.id)
    assert refreshed is not None
    return refreshed


def _run(coro: Coroutine[Any, Any, T]) -> T:
    return asyncio.run(coro)


async def _apply_schema(database_url: str) -> None:
    conn = await asyncpg.connect(database_url)
    try:
        await conn.execute(SCHEMA_PATH.read_text(encoding="utf-8"))
    finally:
        await conn.close()


async def _truncate_tables(database_url: str) -> None:
    conn = await asyncpg.connect(database_url)
    try:
        await conn.execute(
            """
            truncate table
              moderation_log,
              published_media,
              media_submissions,
              jobs,
              stories,
              members
            restart identity cascade
            """
        )
    finally:
        await conn.close()


async def _fetchval(database_url: str, query: str, *args: Any) -> Any:
    conn = await asyncpg.connect(database_url)
    try:
        return await conn.fetchval(query, *args)
    finally:
        await conn.close()
