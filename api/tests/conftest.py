from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

import pytest

from alumni_api.services.records import MediaSubmissionRecord, MemberRecord
from alumni_api.services.store import InMemoryStore


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def make_member() -> Callable[..., MemberRecord]:
    def _make(
        target: InMemoryStore,
        *,
        email: str,
        role: str = "student",
        approval_state: str = "pending",
        subject_id: str | None = None,
        display_name: str | None = None,
        **fields: Any,
    ) -> MemberRecord:
        now = datetime.now(timezone.utc)
        member = MemberRecord(
            id=str(uuid4()),
            email=email,
            display_name=display_name or email.split("@", 1)[0],
            role=role,
            approval_state=approval_state,
            external_subject_id=subject_id,
            created_at=now,
            updated_at=now,
            **fields,
        )
        if approval_state == "approved":
            member.approved_by = member.id
            member.approved_at = now
        target.members[member.id] = member
        return member

    return _make


@pytest.fixture
def make_submission() -> Callable[..., MediaSubmissionRecord]:
    def _make(target: InMemoryStore, *, uploader_id: str, locator: str | None = None) -> MediaSubmissionRecord:
        now = datetime.now(timezone.utc)
        submission = MediaSubmissionRecord(
            id=str(uuid4()),
            uploader_id=uploader_id,
            locator=locator or f"https://cdn.example.edu/uploads/{uuid4().hex}.jpg",
            created_at=now,
            updated_at=now,
        )
        target.media[submission.id] = submission
        return submission

    return _make


@pytest.fixture
def admin(store: InMemoryStore, make_member: Callable[..., MemberRecord]) -> MemberRecord:
    return make_member(store, email="admin@example.edu", role="admin", approval_state="approved", subject_id="admin-sub")
