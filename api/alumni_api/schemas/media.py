from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from alumni_api.schemas.content import AuthorOut

ModerationState = Literal["pending", "approved", "rejected"]


class MediaSubmissionCreateRequest(BaseModel):
    locator: str = Field(min_length=1, max_length=2048)


class MediaSubmissionOut(BaseModel):
    id: str
    uploader_id: str
    locator: str
    moderation_state: ModerationState
    moderation_notes: str | None = None
    moderator_id: str | None = None
    moderated_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class MediaQueueItemOut(MediaSubmissionOut):
    uploader: AuthorOut


class PublishedMediumOut(BaseModel):
    id: str
    title: str
    locator: str
    year: int
    category: str
    contributed_by: str
    submission_id: str | None = None
    created_at: datetime | None = None


class PublishedMediumListOut(PublishedMediumOut):
    contributor: AuthorOut


class MediaApproveRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=2000)
    title: str | None = Field(default=None, min_length=1, max_length=200)
    category: str | None = Field(default=None, min_length=1, max_length=64)
    year: int | None = Field(default=None, ge=1900, le=2100)


class MediaRejectRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=2000)


class MediaTransitionOut(BaseModel):
    submission: MediaSubmissionOut
    published_medium: PublishedMediumOut | None = None


class BulkMediaRequest(BaseModel):
    media_ids: list[str] = Field(min_length=1)
    notes: str | None = Field(default=None, max_length=2000)
