"""Download tracking Pydantic schemas."""
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class DownloadTrack(BaseModel):
    """Browser telemetry sent when a download starts."""
    model_config = ConfigDict(populate_by_name=True)

    version: str = Field(..., min_length=1)
    source: Optional[str] = None
    os: Optional[str] = None
    os_version: Optional[str] = Field(None, alias="osVersion")
    browser: Optional[str] = None
    browser_version: Optional[str] = Field(None, alias="browserVersion")
    architecture: Optional[str] = None
    platform: Optional[str] = None
    language: Optional[str] = None
    screen_resolution: Optional[str] = Field(None, alias="screenResolution")
    timezone: Optional[str] = None
    referrer: Optional[str] = None
