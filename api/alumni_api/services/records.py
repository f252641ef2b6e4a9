from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

MEMBER_ROLES = ("guest", "student", "alumni", "admin")
APPROVAL_STATES = ("pending", "approved", "rejected")
MODERATION_STATES = ("pending", "approved", "rejected")

# Profile columns a member may edit on their own record.
MEMBER_PROFILE_FIELDS = (
    "display_name",
    "batch_year",
    "department",
    "company",
    "job_title",
    "location",
    "country",
    "bio",
    "avatar_url",
    "linkedin_url",
    "roll_number",
    "is_mentor",
    "skills",
)
# Admins may additionally change the role. Approval columns are only ever
# written by the state machine.
MEMBER_ADMIN_FIELDS = MEMBER_PROFILE_FIELDS + ("role",)


def normalize_email(value: str) -> str:
    return value.strip().lower()


@dataclass(slots=True)
class IdentityAssertion:
    """Verified claim from the identity provider. Never persisted."""

    subject_id: str
    email: str
    display_name: str
    issued_at: datetime
    avatar_url: str | None = None


@dataclass(slots=True)
class MemberRecord:
    id: str
    email: str
    display_name: str
    role: str = "student"
    approval_state: str = "pending"
    external_subject_id: str | None = None
    rejection_reason: str | None = None
    approved_by: str | None = None
    approved_at: datetime | None = None
    batch_year: int | None = None
    department: str | None = None
    company: str | None = None
    job_title: str | None = None
    location: str | None = None
    country: str | None = None
    bio: str | None = None
    avatar_url: str | None = None
    linkedin_url: str | None = None
    roll_number: str | None = None
    is_mentor: bool = False
    skills: list[str] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_approved(self) -> bool:
        return self.approval_state == "approved"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin" and self.is_approved

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class MediaSubmissionRecord:
    id: str
    uploader_id: str
    locator: str
    moderation_state: str = "pending"
    moderation_notes: str | None = None
    moderator_id: str | None = None
    moderated_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class PublishedMediumRecord:
    id: str
    title: str
    locator: str
    year: int
    category: str
    contributed_by: str
    submission_id: str | None = None
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class ModerationLogEntry:
    id: int
    actor_id: str
    action_kind: str
    target_kind: str
    target_id: str | None
    details: dict[str, Any]
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
