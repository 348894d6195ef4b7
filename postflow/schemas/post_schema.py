# postflow/schemas/post_schema.py
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Literal, Any
import uuid
from datetime import datetime

from postflow.clock import to_naive_utc

MediaType = Literal["image", "video", "carousel", "infographic"]

SUPPORTED_PLATFORMS = ("twitter", "linkedin", "instagram", "facebook")
PLATFORM_ALIASES = {"x": "twitter"}


def normalize_platforms(values: List[str]) -> List[str]:
    """Lowercase, resolve aliases, drop duplicates keeping first-seen order."""
    seen: List[str] = []
    for raw in values:
        name = PLATFORM_ALIASES.get(raw.strip().lower(), raw.strip().lower())
        if name and name not in seen:
            seen.append(name)
    return seen


def format_hashtags(hashtags: List[str]) -> str:
    return " ".join(t if t.startswith("#") else f"#{t}" for t in (h.strip() for h in hashtags) if t)


class MediaContent(BaseModel):
    type: MediaType = "image"
    image_url: str = ""  # http(s) url, /uploads/ url or data: uri
    caption: str = ""
    description: str = ""
    hashtags: List[str] = Field(default_factory=list)
    preview_urls: Optional[List[str]] = None
    video_brief: Optional[str] = None

    def full_text(self) -> str:
        """Caption followed by a blank line and the hashtags."""
        tags = format_hashtags(self.hashtags)
        if not tags:
            return self.caption
        if not self.caption:
            return tags
        return f"{self.caption}\n\n{tags}"


class ScheduleCreate(BaseModel):
    content: MediaContent
    platforms: List[str]
    scheduled_time: datetime

    @field_validator("platforms")
    @classmethod
    def _platforms(cls, v: List[str]) -> List[str]:
        platforms = normalize_platforms(v)
        if not platforms:
            raise ValueError("at least one platform is required")
        unknown = [p for p in platforms if p not in SUPPORTED_PLATFORMS]
        if unknown:
            raise ValueError(f"unsupported platform(s): {', '.join(unknown)}")
        return platforms

    @field_validator("scheduled_time")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return to_naive_utc(v)


class ScheduleUpdate(BaseModel):
    scheduled_time: Optional[datetime] = None
    caption: Optional[str] = None
    title: Optional[str] = None

    @field_validator("scheduled_time")
    @classmethod
    def _utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(v) if v is not None else None


class ScheduledPostRead(BaseModel):
    id: uuid.UUID
    brand_id: str
    content: MediaContent
    platforms: List[str]
    scheduled_time: datetime
    status: str
    error: Optional[str] = None
    external_job_id: Optional[str] = None
    attempts: int = 0
    delivered_platforms: List[str] = Field(default_factory=list)
    last_error: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class SubmitResult(BaseModel):
    success: bool
    job_id: Optional[str] = None
    scheduled_date: Optional[str] = None
    scheduled_time: Optional[datetime] = None  # naive UTC, as sent
    error: Optional[str] = None
    raw: dict = Field(default_factory=dict)


class ScheduleOutcome(BaseModel):
    success: bool
    delivery: Optional[Literal["external", "direct"]] = None
    post: Optional[ScheduledPostRead] = None
    error: Optional[str] = None
    provider_error: Optional[str] = None  # set when the provider was tried and we fell back


class ProviderJob(BaseModel):
    job_id: str
    scheduled_date: Optional[str] = None
    post_type: Optional[str] = None
    profile_username: Optional[str] = None
    title: Optional[str] = None
    preview_url: Optional[str] = None

    model_config = {"extra": "allow"}


class CancelResult(BaseModel):
    id: uuid.UUID
    status: str
    detail: Optional[Any] = None
