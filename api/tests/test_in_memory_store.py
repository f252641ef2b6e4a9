from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine
from typing import Any, TypeVar

import pytest

from alumni_api.services.records import MediaSubmissionRecord, MemberRecord
from alumni_api.services.repository import RepositoryNotFoundError
from alumni_api.services.store import InMemoryStore

T = TypeVar("T")


def test_member_ids_resolve_regardless_of_case_and_padding(
    store: InMemoryStore,
    admin: MemberRecord,
    make_member: Callable[..., MemberRecord],
) -> None:
    pending = make_member(store, email="p@example.edu")
    messy = f"  {pending.id.upper()} "

    found = _run(store.get_member(messy))
    transitioned = _run(store.approve_pending_members(member_ids=[messy, pending.id], actor_id=admin.id))
    updated = _run(store.update_member_fields(member_id=messy, fields={"company": "Acme"}))

    assert found is not None and found.id == pending.id
    assert transitioned == [pending.id]
    assert updated.company == "Acme"


def test_non_uuid_member_ids_miss_like_postgres(store: InMemoryStore) -> None:
    assert _run(store.get_member("not-a-uuid")) is None
    assert _run(store.approve_pending_members(member_ids=["not-a-uuid"], actor_id="x")) == []
    with pytest.raises(RepositoryNotFoundError):
        _run(store.update_member_fields(member_id="not-a-uuid", fields={}))


def test_media_ids_resolve_regardless_of_case(
    store: InMemoryStore,
    admin: MemberRecord,
    make_member: Callable[..., MemberRecord],
    make_submission: Callable[..., MediaSubmissionRecord],
) -> None:
    uploader = make_member(store, email="u@example.edu", approval_state="approved")
    submission = make_submission(store, uploader_id=uploader.id)

    found = _run(store.get_media_submission(submission.id.upper()))
    approved = _run(
        store.approve_media_submission(
            media_id=f" {submission.id.upper()}",
            actor_id=admin.id,
            notes=None,
            title="Untitled Memory",
            category="user_upload",
            year=2026,
        )
    )

    assert found is not None and found.id == submission.id
    assert approved is not None
    assert approved[1].submission_id == submission.id
    assert store.media[submission.id].moderation_state == "approved"


def _run(coro: Coroutine[Any, Any, T]) -> T:
    return asyncio.run(coro)
