"""Feedback Pydantic schemas."""
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool, field_validator


class FeedbackType(str, Enum):
    BUG_REPORT = "Bug Report"
    FEATURE_REQUEST = "Feature Request"
    QUESTION = "Question"


class FeedbackStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    TO_NOTIFY = "to_notify"
    NOTIFIED = "notified"
    RESOLVED = "resolved"
    CLOSED = "closed"
    BACK_BURNER = "back_burner"


class FeedbackPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ExternalSource(str, Enum):
    APP = "app"
    MANUAL = "manual"
    GITHUB = "github"
    FEATUREBASE = "featurebase"


class FeedbackCreate(BaseModel):
    """Submission from the macOS app (or the dashboard's create form)."""
    model_config = ConfigDict(populate_by_name=True)

    type: FeedbackType
    email: Optional[str] = None
    description: str = Field(..., min_length=1)
    external_source: ExternalSource = Field(ExternalSource.APP, alias="externalSource")
    external_id: Optional[str] = Field(None, alias="externalId")
    external_url: Optional[str] = Field(None, alias="externalUrl")
    diagnostics: Optional[dict[str, Any]] = None
    include_screenshot: bool = Field(False, alias="includeScreenshot")
    screenshot_data: Optional[str] = Field(None, alias="screenshotData")

    @field_validator("description")
    @classmethod
    def description_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Description cannot be empty")
        return v

    @field_validator("email", "external_id", "external_url")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class ManualFeedbackCreate(BaseModel):
    """Issue created by hand in the dashboard."""
    model_config = ConfigDict(populate_by_name=True)

    type: FeedbackType = FeedbackType.BUG_REPORT
    email: Optional[str] = None
    description: str = Field(..., min_length=1)
    status: FeedbackStatus = FeedbackStatus.OPEN
    priority: FeedbackPriority = FeedbackPriority.MEDIUM
    tags: list[str] = Field(default_factory=list)
    screenshot_data: Optional[str] = Field(None, alias="screenshotData")

    @field_validator("description")
    @classmethod
    def description_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Description cannot be empty")
        return v.strip()


class FeedbackUpdate(BaseModel):
    """Admin PATCH body; only the fields that were sent are applied."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    status: Optional[FeedbackStatus] = None
    priority: Optional[FeedbackPriority] = None
    notes: Optional[str] = None
    tags: Optional[list[str]] = None
    is_read: Optional[StrictBool] = Field(None, alias="isRead")


class NoteCreate(BaseModel):
    author: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)

    @field_validator("author", "content")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Author and content are required")
        return v.strip()
