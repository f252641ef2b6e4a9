from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from alumni_api.schemas.content import AuthorOut

TargetKind = Literal["member", "media"]


class ModerationLogEntryOut(BaseModel):
    id: int
    actor_id: str
    action_kind: str
    target_kind: TargetKind
    target_id: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    actor: AuthorOut | None = None


class BulkResultOut(BaseModel):
    modified_count: int
    published_count: int | None = None
    failed_ids: list[str] = Field(default_factory=list)


class MemberCountsOut(BaseModel):
    total: int
    pending: int
    approved: int
    rejected: int


class DashboardStatsOut(BaseModel):
    members: MemberCountsOut
    pending_media: int
    recent_activity: list[ModerationLogEntryOut] = Field(default_factory=list)
