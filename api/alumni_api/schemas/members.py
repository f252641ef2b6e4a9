from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, HttpUrl

MemberRole = Literal["guest", "student", "alumni", "admin"]
ApprovalState = Literal["pending", "approved", "rejected"]


class MemberOut(BaseModel):
    id: str
    external_subject_id: str | None = None
    email: str
    display_name: str
    role: MemberRole
    approval_state: ApprovalState
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
    skills: list[str] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


class MemberDirectoryOut(BaseModel):
    id: str
    display_name: str
    role: MemberRole
    batch_year: int | None = None
    department: str | None = None
    company: str | None = None
    job_title: str | None = None
    location: str | None = None
    country: str | None = None
    bio: str | None = None
    avatar_url: str | None = None
    linkedin_url: str | None = None
    is_mentor: bool = False
    skills: list[str] = Field(default_factory=list)


class MemberProfilePatchRequest(BaseModel):
    """Fields a member may change on their own record. Unknown keys are rejected."""

    model_config = ConfigDict(extra="forbid")

    display_name: str | None = Field(default=None, min_length=1, max_length=200)
    batch_year: int | None = Field(default=None, ge=1900, le=2100)
    department: str | None = Field(default=None, max_length=200)
    company: str | None = Field(default=None, max_length=200)
    job_title: str | None = Field(default=None, max_length=200)
    location: str | None = Field(default=None, max_length=200)
    country: str | None = Field(default=None, max_length=100)
    bio: str | None = Field(default=None, max_length=4000)
    avatar_url: HttpUrl | None = None
    linkedin_url: HttpUrl | None = None
    roll_number: str | None = Field(default=None, max_length=64)
    is_mentor: bool | None = None
    skills: list[str] | None = Field(default=None, max_length=50)

    def to_fields(self) -> dict[str, object]:
        fields = self.model_dump(exclude_unset=True, mode="json")
        if fields.get("display_name") is None:
            fields.pop("display_name", None)
        if "is_mentor" in fields and fields["is_mentor"] is None:
            fields.pop("is_mentor")
        if "skills" in fields and fields["skills"] is None:
            fields["skills"] = []
        return fields


class AdminMemberPatchRequest(MemberProfilePatchRequest):
    role: MemberRole | None = None

    def to_fields(self) -> dict[str, object]:
        fields = super().to_fields()
        if "role" in fields and fields["role"] is None:
            fields.pop("role")
        return fields


class MemberTransitionRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=2000)


class BulkMemberRequest(BaseModel):
    member_ids: list[str] = Field(min_length=1)
    reason: str | None = Field(default=None, max_length=2000)
