"""Database models."""
# Import Feedback first as the diagnostics tables reference it
from app.models.feedback import Feedback, FeedbackNote, MigrationState
from app.models.diagnostics import (
    FeedbackPerformance,
    FeedbackProcess,
    FeedbackAccessibility,
    FeedbackDisplay,
    FeedbackSetting,
    FeedbackCrashReport,
    FeedbackLogEntry,
)
from app.models.download import DownloadEvent

__all__ = [
    "Feedback",
    "FeedbackNote",
    "MigrationState",
    "FeedbackPerformance",
    "FeedbackProcess",
    "FeedbackAccessibility",
    "FeedbackDisplay",
    "FeedbackSetting",
    "FeedbackCrashReport",
    "FeedbackLogEntry",
    "DownloadEvent",
]
