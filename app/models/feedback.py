"""Feedback, note and migration marker models."""
from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, Boolean, DateTime, Integer, Float, Text, LargeBinary,
    ForeignKey, Index
)
from sqlalchemy.orm import relationship
from app.db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


FEEDBACK_TYPES = ("Bug Report", "Feature Request", "Question")
FEEDBACK_STATUSES = (
    "open", "in_progress", "to_notify", "notified", "resolved", "closed", "back_burner"
)
FEEDBACK_PRIORITIES = ("low", "medium", "high", "critical")
EXTERNAL_SOURCES = ("app", "manual", "github", "featurebase")


class Feedback(Base):
    """User-submitted report, or an item imported from an external tracker."""

    __tablename__ = "feedback"

    id = Column(Integer, primary_key=True, autoincrement=True)
    type = Column(String, nullable=False, index=True)  # Bug Report, Feature Request, Question
    email = Column(String, nullable=True)
    description = Column(Text, nullable=False)

    # Triage
    status = Column(String, nullable=False, default="open", index=True)
    priority = Column(String, nullable=False, default="medium", index=True)
    notes = Column(Text, nullable=False, default="")
    tags = Column(Text, nullable=False, default="[]")  # JSON array
    is_read = Column(Boolean, nullable=False, default=False)

    # Client environment
    app_version = Column(String, nullable=True)
    build_number = Column(String, nullable=True)
    macos_version = Column(String, nullable=True)
    device_model = Column(String, nullable=True)
    total_disk_space = Column(String, nullable=True)
    free_disk_space = Column(String, nullable=True)
    session_count = Column(Integer, nullable=True)
    frame_count = Column(Integer, nullable=True)
    segment_count = Column(Integer, nullable=True)
    database_size_mb = Column(Float, nullable=True)
    diagnostics_timestamp = Column(String, nullable=True)
    display_count = Column(Integer, nullable=False, default=0)

    # Legacy diagnostics JSON (superseded by the feedback_* tables)
    recent_errors = Column(Text, nullable=True)
    recent_logs = Column(Text, nullable=True)
    settings_snapshot = Column(Text, nullable=True)
    display_info = Column(Text, nullable=True)
    process_info = Column(Text, nullable=True)
    accessibility_info = Column(Text, nullable=True)
    performance_info = Column(Text, nullable=True)
    emergency_crash_reports = Column(Text, nullable=True)

    # Screenshot
    has_screenshot = Column(Boolean, nullable=False, default=False)
    screenshot_data = Column(LargeBinary, nullable=True)

    # External tracker linkage
    external_source = Column(String, nullable=False, default="app")  # app, manual, github, featurebase
    external_id = Column(String, nullable=True)
    external_url = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    # Relationships
    feedback_notes = relationship(
        "FeedbackNote", back_populates="feedback", cascade="all, delete-orphan"
    )
    performance = relationship(
        "FeedbackPerformance", uselist=False, cascade="all, delete-orphan"
    )
    process = relationship(
        "FeedbackProcess", uselist=False, cascade="all, delete-orphan"
    )
    accessibility = relationship(
        "FeedbackAccessibility", uselist=False, cascade="all, delete-orphan"
    )
    displays = relationship("FeedbackDisplay", cascade="all, delete-orphan")
    settings_entries = relationship("FeedbackSetting", cascade="all, delete-orphan")
    crash_reports = relationship("FeedbackCrashReport", cascade="all, delete-orphan")
    log_entries = relationship("FeedbackLogEntry", cascade="all, delete-orphan")

    __table_args__ = (
        Index(
            "uq_feedback_external_source_id",
            "external_source",
            "external_id",
            unique=True,
            sqlite_where=external_id.isnot(None),
            postgresql_where=external_id.isnot(None),
        ),
    )


class FeedbackNote(Base):
    """Internal comment on a feedback item."""

    __tablename__ = "feedback_notes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    feedback_id = Column(
        Integer,
        ForeignKey("feedback.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    author = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    feedback = relationship("Feedback", back_populates="feedback_notes")


class MigrationState(Base):
    """Key/value markers for one-time data migrations."""

    __tablename__ = "migration_state"

    key = Column(String, primary_key=True)
    value = Column(String, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
