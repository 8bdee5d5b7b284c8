"""
Tests for download tracking, stats and analytics.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from sqlalchemy.exc import SQLAlchemyError

from app.models import DownloadEvent
from app.services.downloads import get_download_analytics, record_download

DOWNLOAD = {
    "version": "1.4.2",
    "source": "website",
    "os": "macOS",
    "osVersion": "14.5",
    "browser": "Safari",
    "architecture": "arm64",
    "screenResolution": "3024x1964",
}


class TestTrackDownload:
    """POST /api/downloads/track (public)."""

    def test_track_download(self, client, db_session):
        response = client.post(
            "/api/downloads/track",
            json=DOWNLOAD,
            headers={
                "X-Forwarded-For": "203.0.113.9, 10.0.0.1",
                "User-Agent": "Mozilla/5.0 (Macintosh)",
                "cf-ipcountry": "US",
                "cf-ipcity": "San%20Francisco",
            },
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Download tracked successfully"}

        event = db_session.query(DownloadEvent).one()
        assert event.version == "1.4.2"
        assert event.os_version == "14.5"
        assert event.screen_resolution == "3024x1964"
        assert event.ip == "203.0.113.9"
        assert event.user_agent == "Mozilla/5.0 (Macintosh)"
        assert event.country == "US"
        assert event.city == "San Francisco"
        assert event.region is None
        assert event.browser_version is None

    def test_duplicate_within_window_is_not_stored(self, client, db_session):
        first = client.post("/api/downloads/track", json=DOWNLOAD)
        second = client.post("/api/downloads/track", json=DOWNLOAD)
        other_version = client.post("/api/downloads/track", json={**DOWNLOAD, "version": "1.4.3"})

        assert first.json()["success"] is True
        assert second.json() == {"success": True, "deduplicated": True}
        assert other_version.json()["message"] == "Download tracked successfully"
        assert db_session.query(DownloadEvent).count() == 2

    def test_retry_after_failed_insert_is_stored(self, client, db_session):
        with patch(
            "app.routers.downloads.record_download",
            side_effect=SQLAlchemyError("database is locked"),
        ):
            failed = client.post("/api/downloads/track", json=DOWNLOAD)

        retry = client.post("/api/downloads/track", json=DOWNLOAD)

        assert failed.status_code == 500
        assert failed.json() == {"success": False, "error": "Failed to track download"}
        assert retry.json() == {"success": True, "message": "Download tracked successfully"}
        assert db_session.query(DownloadEvent).count() == 1

    def test_version_is_required(self, client):
        response = client.post("/api/downloads/track", json={"source": "website"})

        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_invalid_json(self, client):
        response = client.post(
            "/api/downloads/track",
            content="nope",
            headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 400

    def test_rate_limit(self, client):
        headers = {"X-Forwarded-For": "198.51.100.7"}
        for i in range(40):
            response = client.post(
                "/api/downloads/track", json={**DOWNLOAD, "version": f"1.0.{i}"}, headers=headers
            )
            assert response.status_code == 200

        response = client.post("/api/downloads/track", json=DOWNLOAD, headers=headers)

        assert response.status_code == 429
        data = response.json()
        assert data["success"] is False
        assert data["retryAfter"] > 0
        assert int(response.headers["Retry-After"]) == data["retryAfter"]

        other_client = client.post(
            "/api/downloads/track", json=DOWNLOAD, headers={"X-Forwarded-For": "198.51.100.8"}
        )
        assert other_client.status_code == 200

    def test_rate_limit_can_be_disabled(self, client):
        headers = {"X-Forwarded-For": "198.51.100.9"}
        with patch("app.middleware.rate_limit.settings") as mock_settings:
            mock_settings.RATE_LIMIT_ENABLED = False
            for i in range(45):
                response = client.post(
                    "/api/downloads/track", json={**DOWNLOAD, "version": f"2.0.{i}"}, headers=headers
                )
                assert response.status_code == 200


class TestDownloadStats:

    def test_requires_auth(self, client):
        assert client.get("/api/downloads/track").status_code == 401
        assert client.get("/api/analytics").status_code == 401

    def test_stats_shape(self, client, auth_headers):
        client.post(
            "/api/downloads/track", json=DOWNLOAD, headers={"User-Agent": "Secret/1.0"}
        )

        response = client.get("/api/downloads/track", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["totalDownloads"] == 1
        assert data["byOs"] == [{"os": "macOS", "count": 1}]
        assert data["bySource"] == [{"source": "website", "count": 1}]
        assert len(data["hourlyDownloads"]) == 48
        assert len(data["dailyDownloads"]) == 30
        assert data["hourlyDownloads"][-1]["count"] == 1
        assert data["dailyDownloads"][-1]["count"] == 1
        assert data["recent"][0]["version"] == "1.4.2"
        assert data["recent"][0]["user_agent"] is None

    def test_analytics_without_cloudflare(self, client, auth_headers):
        with patch("app.services.cloudflare_r2.settings") as mock_settings:
            mock_settings.CLOUDFLARE_ANALYTICS_API_TOKEN = None
            mock_settings.CLOUDFLARE_ACCOUNT_ID = None
            response = client.get("/api/analytics", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["totalDownloads"] == 0
        assert data["r2VersionHistory"] is None
        assert "not configured" in data["r2VersionHistoryError"]
        assert len(data["dailyDownloads"]) == 30


class TestDownloadAnalytics:
    """Bucket arithmetic against a fixed clock."""

    def add_event(self, db, created_at, **fields):
        event = record_download(db, {"version": "1.0", **fields}, ip="127.0.0.1", user_agent=None)
        event.created_at = created_at
        db.commit()

    def test_buckets(self, db_session):
        now = datetime(2026, 1, 10, 12, 30, tzinfo=timezone.utc)
        self.add_event(db_session, now - timedelta(hours=1), os="macOS", source="website")
        self.add_event(db_session, now - timedelta(hours=3), os="macOS", source="github")
        self.add_event(db_session, now - timedelta(days=2), os="macOS", source="website")
        self.add_event(db_session, now - timedelta(days=40), os="  ", source=None)

        data = get_download_analytics(db_session, now=now)

        assert data["totalDownloads"] == 4
        assert data["byOs"] == [{"os": "macOS", "count": 3}, {"os": "unknown", "count": 1}]
        assert data["bySource"][0] == {"source": "website", "count": 2}

        hourly = data["hourlyDownloads"]
        assert hourly[-1] == {"bucket_start": "2026-01-10 12:00:00", "count": 0}
        assert hourly[-2] == {"bucket_start": "2026-01-10 11:00:00", "count": 1}
        assert hourly[-4]["count"] == 1
        assert hourly[0]["bucket_start"] == "2026-01-08 13:00:00"
        assert sum(bucket["count"] for bucket in hourly) == 2

        daily = data["dailyDownloads"]
        assert daily[-1] == {"bucket_start": "2026-01-10", "count": 2}
        assert daily[-3] == {"bucket_start": "2026-01-08", "count": 1}
        assert daily[0]["bucket_start"] == "2025-12-12"
        assert sum(bucket["count"] for bucket in daily) == 3

        assert len(data["recent"]) == 4
        assert data["recent"][0]["created_at"] == "2026-01-10T11:30:00Z"

    def test_recent_is_capped(self, db_session):
        now = datetime(2026, 1, 10, 12, 30, tzinfo=timezone.utc)
        for minutes in range(12):
            self.add_event(db_session, now - timedelta(minutes=minutes))

        data = get_download_analytics(db_session, now=now)

        assert len(data["recent"]) == 10
        assert data["totalDownloads"] == 12
