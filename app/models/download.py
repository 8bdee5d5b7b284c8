"""Download telemetry model."""
from sqlalchemy import Column, String, DateTime, Integer, Text
from app.db import Base
from app.models.feedback import utcnow


class DownloadEvent(Base):
    """One tracked download attempt."""

    __tablename__ = "downloads"

    id = Column(Integer, primary_key=True, autoincrement=True)
    version = Column(String, nullable=True)
    source = Column(String, nullable=True, index=True)
    os = Column(String, nullable=True)
    os_version = Column(String, nullable=True)
    browser = Column(String, nullable=True)
    browser_version = Column(String, nullable=True)
    architecture = Column(String, nullable=True)
    platform = Column(String, nullable=True)
    language = Column(String, nullable=True)
    screen_resolution = Column(String, nullable=True)
    timezone = Column(String, nullable=True)
    referrer = Column(Text, nullable=True)
    user_agent = Column(Text, nullable=True)
    ip = Column(String, nullable=True)
    country = Column(String, nullable=True)
    city = Column(String, nullable=True)
    region = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
