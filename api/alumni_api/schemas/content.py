from datetime import datetime

from pydantic import BaseModel, ConfigDict


class AuthorOut(BaseModel):
    id: str
    display_name: str
    role: str
    batch_year: int | None = None
    company: str | None = None
    avatar_url: str | None = None


class JobListOut(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    title: str
    company: str
    location: str | None = None
    job_type: str | None = None
    apply_url: str | None = None
    expires_at: datetime | None = None
    created_at: datetime | None = None
    poster: AuthorOut


class StoryListOut(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    title: str
    excerpt: str | None = None
    cover_image_url: str | None = None
    is_featured: bool = False
    published_at: datetime | None = None
    created_at: datetime | None = None
    author: AuthorOut
