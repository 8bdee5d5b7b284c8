"""Pytest configuration and fixtures."""
import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("BEARER_TOKEN", "test-bearer-token")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("RUN_STARTUP_MIGRATIONS", "false")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db import Base, get_db
from app.main import app
from app.middleware.rate_limit import download_dedup, rate_limiter

# Use in-memory SQLite for tests
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

TEST_BEARER_TOKEN = os.environ["BEARER_TOKEN"]


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database session for each test."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        with engine.begin() as conn:
            conn.execute(text("DROP TABLE IF EXISTS alembic_version"))


@pytest.fixture(scope="function")
def client(db_session):
    """Create a test client with overridden database dependency."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    rate_limiter.reset()
    download_dedup.reset()
    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {TEST_BEARER_TOKEN}"}


@pytest.fixture
def sample_diagnostics():
    """Diagnostics payload as sent by the macOS app."""
    return {
        "appVersion": "1.4.2",
        "buildNumber": "142",
        "macOSVersion": "14.5",
        "deviceModel": "MacBookPro18,3",
        "totalDiskSpace": "994 GB",
        "freeDiskSpace": "212 GB",
        "databaseStats": {
            "sessionCount": 12,
            "frameCount": 48000,
            "segmentCount": 310,
            "databaseSizeMB": 512.5,
        },
        "recentErrors": ["OCR timeout", "  ", "Capture stalled"],
        "recentLogs": ["started capture", "segment flushed"],
        "timestamp": "2026-01-05T10:00:00Z",
        "settingsSnapshot": {"captureInterval": 2, "ocrEnabled": True, "theme": "dark"},
        "displayInfo": {
            "count": 1,
            "mainDisplayIndex": 1,
            "displays": [
                {"index": 0, "resolution": "3024x1964", "backingScaleFactor": 2,
                 "colorSpace": "P3", "refreshRate": "120", "isRetina": True, "frame": "0,0"},
                {"index": 1, "resolution": "2560x1440", "backingScaleFactor": "1",
                 "colorSpace": "sRGB", "refreshRate": 60, "isRetina": "false", "frame": "3024,0"},
            ],
        },
        "processInfo": {
            "totalRunning": 412,
            "eventMonitoringApps": 2,
            "windowManagementApps": 1,
            "securityApps": "3",
            "hasJamf": 1,
            "hasKandji": "true",
            "axuiServerCPU": 1.5,
            "windowServerCPU": "12.25",
        },
        "accessibilityInfo": {"voiceOverEnabled": True, "reduceMotionEnabled": "1"},
        "performanceInfo": {
            "cpuUsagePercent": 23.4,
            "memoryUsedGB": 11.2,
            "memoryTotalGB": 16,
            "memoryPressure": "normal",
            "swapUsedGB": 0.5,
            "thermalState": "nominal",
            "processorCount": 10.9,
            "isLowPowerModeEnabled": False,
            "powerSource": "battery",
            "batteryLevel": 87.6,
        },
        "emergencyCrashReports": ["EXC_BAD_ACCESS in Capture"],
    }
