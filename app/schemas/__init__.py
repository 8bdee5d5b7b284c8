"""Pydantic schemas."""
from app.schemas.feedback import (
    FeedbackCreate,
    FeedbackPriority,
    FeedbackStatus,
    FeedbackType,
    FeedbackUpdate,
    ManualFeedbackCreate,
    NoteCreate,
)
from app.schemas.download import DownloadTrack

__all__ = [
    "FeedbackCreate",
    "FeedbackPriority",
    "FeedbackStatus",
    "FeedbackType",
    "FeedbackUpdate",
    "ManualFeedbackCreate",
    "NoteCreate",
    "DownloadTrack",
]
