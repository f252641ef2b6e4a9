from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine
from datetime import datetime, timezone
from typing import Any, TypeVar

import pytest

from alumni_api.services.identity import IdentityConflictError, IdentityResolver
from alumni_api.services.records import IdentityAssertion, MemberRecord
from alumni_api.services.repository import RepositoryValidationError
from alumni_api.services.store import InMemoryStore

T = TypeVar("T")


class CountingStore(InMemoryStore):
    def __init__(self) -> None:
        super().__init__()
        self.creates = 0
        self.links = 0

    async def create_member(self, **kwargs: Any) -> MemberRecord:
        self.creates += 1
        return await super().create_member(**kwargs)

    async def link_member_subject(self, *, member_id: str, subject_id: str) -> MemberRecord | None:
        self.links += 1
        return await super().link_member_subject(member_id=member_id, subject_id=subject_id)


class InterleavingStore(CountingStore):
    """Yields to the loop after each email lookup so first logins race."""

    async def get_member_by_email(self, email: str) -> MemberRecord | None:
        member = await super().get_member_by_email(email)
        await asyncio.sleep(0)
        return member


def _assertion(subject_id: str = "g-1", email: str = "a@x.edu", display_name: str = "A") -> IdentityAssertion:
    return IdentityAssertion(
        subject_id=subject_id,
        email=email,
        display_name=display_name,
        issued_at=datetime.now(timezone.utc),
    )


def test_first_resolution_creates_pending_member_with_default_role() -> None:
    store = CountingStore()
    resolver = IdentityResolver(store, default_role="student")

    member = _run(resolver.resolve(_assertion(email="  A@X.edu ")))

    assert member.approval_state == "pending"
    assert member.role == "student"
    assert member.email == "a@x.edu"
    assert member.external_subject_id == "g-1"
    assert member.display_name == "A"
    assert store.creates == 1


def test_repeated_resolution_returns_same_record_without_further_writes() -> None:
    store = CountingStore()
    resolver = IdentityResolver(store)

    first = _run(resolver.resolve(_assertion()))
    second = _run(resolver.resolve(_assertion()))
    third = _run(resolver.resolve(_assertion()))

    assert first.id == second.id == third.id
    assert len(store.members) == 1
    assert store.creates == 1
    assert store.links == 0
    assert third.approval_state == "pending"


def test_default_role_applies_only_at_creation() -> None:
    store = CountingStore()
    first = _run(IdentityResolver(store, default_role="student").resolve(_assertion()))
    store.members[first.id].role = "alumni"

    again = _run(IdentityResolver(store, default_role="guest").resolve(_assertion()))

    assert again.id == first.id
    assert again.role == "alumni"
    assert again.approval_state == "pending"


def test_existing_email_record_gets_subject_linked_once(make_member: Callable[..., MemberRecord]) -> None:
    store = CountingStore()
    existing = make_member(store, email="priya@example.edu", approval_state="approved", role="alumni")
    resolver = IdentityResolver(store)

    linked = _run(resolver.resolve(_assertion(subject_id="firebase-uid-7", email="Priya@Example.edu")))
    again = _run(resolver.resolve(_assertion(subject_id="firebase-uid-7", email="priya@example.edu")))

    assert linked.id == existing.id == again.id
    assert linked.external_subject_id == "firebase-uid-7"
    assert linked.approval_state == "approved"
    assert store.links == 1
    assert store.creates == 0


def test_email_bound_to_different_subject_raises_conflict(make_member: Callable[..., MemberRecord]) -> None:
    store = CountingStore()
    make_member(store, email="taken@example.edu", subject_id="original-sub")
    resolver = IdentityResolver(store)

    with pytest.raises(IdentityConflictError):
        _run(resolver.resolve(_assertion(subject_id="other-sub", email="taken@example.edu")))

    assert store.links == 0
    assert len(store.members) == 1


def test_missing_email_is_rejected() -> None:
    resolver = IdentityResolver(InMemoryStore())

    with pytest.raises(RepositoryValidationError):
        _run(resolver.resolve(_assertion(email="   ")))


def test_display_name_falls_back_to_email_local_part() -> None:
    member = _run(IdentityResolver(InMemoryStore()).resolve(_assertion(display_name="", email="kiran@example.edu")))

    assert member.display_name == "kiran"


def test_concurrent_first_logins_produce_one_member() -> None:
    store = InterleavingStore()
    resolver = IdentityResolver(store)

    async def _race() -> list[MemberRecord]:
        return await asyncio.gather(
            resolver.resolve(_assertion(subject_id="new-sub", email="fresh@example.edu")),
            resolver.resolve(_assertion(subject_id="new-sub", email="fresh@example.edu")),
        )

    first, second = _run(_race())

    assert first.id == second.id
    assert len(store.members) == 1
    # Both writers attempted creation; the loser retried instead of raising.
    assert store.creates == 2


def test_concurrent_logins_linking_existing_email_settle_on_one_subject(
    make_member: Callable[..., MemberRecord],
) -> None:
    store = InterleavingStore()
    existing = make_member(store, email="legacy@example.edu")
    resolver = IdentityResolver(store)

    async def _race() -> list[MemberRecord]:
        return await asyncio.gather(
            resolver.resolve(_assertion(subject_id="legacy-sub", email="legacy@example.edu")),
            resolver.resolve(_assertion(subject_id="legacy-sub", email="legacy@example.edu")),
        )

    first, second = _run(_race())

    assert first.id == second.id == existing.id
    assert store.members[existing.id].external_subject_id == "legacy-sub"
    assert store.creates == 0


def _run(coro: Coroutine[Any, Any, T]) -> T:
    return asyncio.run(coro)
