"""Normalized diagnostics tables, one category per table."""
from sqlalchemy import (
    Column, String, Boolean, DateTime, Integer, Float, Text,
    ForeignKey, UniqueConstraint
)
from app.db import Base
from app.models.feedback import utcnow


def _feedback_fk(primary_key: bool = False) -> Column:
    return Column(
        Integer,
        ForeignKey("feedback.id", ondelete="CASCADE"),
        primary_key=primary_key,
        nullable=False,
        index=not primary_key
    )


class FeedbackPerformance(Base):
    """Performance snapshot (one row per feedback)."""

    __tablename__ = "feedback_performance"

    feedback_id = _feedback_fk(primary_key=True)
    cpu_usage_percent = Column(Float, nullable=False, default=0)
    memory_used_gb = Column(Float, nullable=False, default=0)
    memory_total_gb = Column(Float, nullable=False, default=0)
    memory_pressure = Column(String, nullable=False, default="unknown", index=True)
    swap_used_gb = Column(Float, nullable=False, default=0)
    thermal_state = Column(String, nullable=False, default="unknown")
    processor_count = Column(Integer, nullable=False, default=0)
    is_low_power_mode_enabled = Column(Boolean, nullable=False, default=False)
    power_source = Column(String, nullable=False, default="unknown")
    battery_level = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class FeedbackProcess(Base):
    """Running-process snapshot (one row per feedback)."""

    __tablename__ = "feedback_process"

    feedback_id = _feedback_fk(primary_key=True)
    total_running = Column(Integer, nullable=False, default=0)
    event_monitoring_apps = Column(Integer, nullable=False, default=0)
    window_management_apps = Column(Integer, nullable=False, default=0)
    security_apps = Column(Integer, nullable=False, default=0)
    has_jamf = Column(Boolean, nullable=False, default=False, index=True)
    has_kandji = Column(Boolean, nullable=False, default=False, index=True)
    axui_server_cpu = Column(Float, nullable=False, default=0)
    window_server_cpu = Column(Float, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class FeedbackAccessibility(Base):
    """Accessibility flags (one row per feedback)."""

    __tablename__ = "feedback_accessibility"

    feedback_id = _feedback_fk(primary_key=True)
    voice_over_enabled = Column(Boolean, nullable=False, default=False)
    switch_control_enabled = Column(Boolean, nullable=False, default=False)
    reduce_motion_enabled = Column(Boolean, nullable=False, default=False)
    increase_contrast_enabled = Column(Boolean, nullable=False, default=False)
    reduce_transparency_enabled = Column(Boolean, nullable=False, default=False)
    differentiate_without_color_enabled = Column(Boolean, nullable=False, default=False)
    display_has_inverted_colors = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class FeedbackDisplay(Base):
    """One attached display."""

    __tablename__ = "feedback_displays"

    id = Column(Integer, primary_key=True, autoincrement=True)
    feedback_id = _feedback_fk()
    row_index = Column(Integer, nullable=False)
    display_index = Column(Integer, nullable=False, default=0, index=True)
    resolution = Column(String, nullable=False, default="")
    backing_scale_factor = Column(String, nullable=False, default="")
    color_space = Column(String, nullable=False, default="")
    refresh_rate = Column(String, nullable=False, default="")
    is_retina = Column(Boolean, nullable=False, default=False)
    frame = Column(String, nullable=False, default="")
    is_main_display = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint('feedback_id', 'row_index', name='uq_feedback_display_row'),
    )


class FeedbackSetting(Base):
    """One app setting key/value pair."""

    __tablename__ = "feedback_settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    feedback_id = _feedback_fk()
    setting_key = Column(String, nullable=False, index=True)
    setting_value = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint('feedback_id', 'setting_key', name='uq_feedback_setting_key'),
    )


class FeedbackCrashReport(Base):
    """Emergency crash report text."""

    __tablename__ = "feedback_crash_reports"

    id = Column(Integer, primary_key=True, autoincrement=True)
    feedback_id = _feedback_fk()
    report_index = Column(Integer, nullable=False)
    report_text = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint('feedback_id', 'report_index', name='uq_feedback_crash_report'),
    )


class FeedbackLogEntry(Base):
    """Recent log or error line."""

    __tablename__ = "feedback_log_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    feedback_id = _feedback_fk()
    level = Column(String, nullable=False, index=True)  # log, error
    entry_index = Column(Integer, nullable=False)
    message = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint('feedback_id', 'level', 'entry_index', name='uq_feedback_log_entry'),
    )
