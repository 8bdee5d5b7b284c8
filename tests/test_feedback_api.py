"""
Tests for the feedback API: intake, triage, notes, screenshots and sync.
"""
import base64
from unittest.mock import AsyncMock, patch

import pytest

from app.models import Feedback, FeedbackNote, FeedbackPerformance, FeedbackLogEntry
from app.routers.feedback import error_response
from app.services.sync import GitHubSyncError

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


def submit(client, **fields):
    body = {"type": "Bug Report", "description": "crash on launch"}
    body.update(fields)
    response = client.post("/api/feedback", json=body)
    assert response.status_code == 200, response.text
    return int(response.json()["id"])


class TestSubmitFeedback:
    """POST /api/feedback (public)."""

    def test_minimal_submission_applies_defaults(self, client, auth_headers):
        response = client.post(
            "/api/feedback",
            json={"type": "Bug Report", "description": "crash on launch"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["message"] == "Feedback submitted successfully"
        assert isinstance(data["id"], str)

        item = client.get(f"/api/feedback/{data['id']}", headers=auth_headers).json()["feedback"]
        assert item["databaseStats"]["sessionCount"] == 0
        assert item["displayCount"] == 0
        assert item["status"] == "open"
        assert item["priority"] == "medium"
        assert item["isRead"] is False
        assert item["externalSource"] == "app"
        assert item["hasScreenshot"] is False
        assert item["performanceInfo"]["thermalState"] == "unknown"

    def test_full_diagnostics(self, client, auth_headers, db_session, sample_diagnostics):
        feedback_id = submit(
            client,
            email="alice@example.com",
            diagnostics=sample_diagnostics,
        )

        item = client.get(f"/api/feedback/{feedback_id}", headers=auth_headers).json()["feedback"]

        assert item["appVersion"] == "1.4.2"
        assert item["macOSVersion"] == "14.5"
        assert item["databaseStats"] == {
            "sessionCount": 12,
            "frameCount": 48000,
            "segmentCount": 310,
            "databaseSizeMB": 512.5,
        }
        assert item["displayCount"] == 2
        assert item["displayInfo"]["count"] == 2
        assert item["displayInfo"]["mainDisplayIndex"] == 1
        assert item["processInfo"]["securityApps"] == 3
        assert item["processInfo"]["hasKandji"] is True
        assert item["accessibilityInfo"]["voiceOverEnabled"] is True
        assert item["performanceInfo"]["batteryLevel"] == 87
        assert item["settingsSnapshot"]["ocrEnabled"] == "true"
        assert item["recentErrors"] == ["OCR timeout", "Capture stalled"]
        assert item["recentLogs"] == ["started capture", "segment flushed"]
        assert item["emergencyCrashReports"] == ["EXC_BAD_ACCESS in Capture"]
        assert item["diagnosticsTimestamp"] == "2026-01-05T10:00:00Z"

        assert db_session.query(FeedbackPerformance).filter_by(feedback_id=feedback_id).count() == 1
        assert db_session.query(FeedbackLogEntry).filter_by(feedback_id=feedback_id).count() == 4

    @pytest.mark.parametrize("body", [
        {"description": "no type"},
        {"type": "Bug", "description": "bad type"},
        {"type": "Question"},
        {"type": "Question", "description": "   "},
    ])
    def test_invalid_submission(self, client, body):
        response = client.post("/api/feedback", json=body)

        assert response.status_code == 400
        assert response.json()["success"] is False
        assert response.json()["error"]

    def test_non_object_body(self, client):
        assert client.post("/api/feedback", json=["a"]).status_code == 400
        response = client.post(
            "/api/feedback",
            content="{not json",
            headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid JSON body"

    def test_duplicate_external_id_conflicts(self, client):
        submit(client, externalSource="github", externalId="42")

        response = client.post("/api/feedback", json={
            "type": "Bug Report",
            "description": "again",
            "externalSource": "github",
            "externalId": "42",
        })

        assert response.status_code == 409

    def test_screenshot_round_trip(self, client, auth_headers):
        encoded = base64.b64encode(PNG_BYTES).decode()
        feedback_id = submit(
            client,
            includeScreenshot=True,
            screenshotData=f"data:image/png;base64,{encoded}",
        )

        response = client.get(f"/api/feedback/{feedback_id}/screenshot", headers=auth_headers)

        assert response.status_code == 200
        assert response.headers["content-type"] == "image/png"
        assert "immutable" in response.headers["cache-control"]
        assert response.content == PNG_BYTES

    def test_missing_screenshot(self, client, auth_headers):
        feedback_id = submit(client)

        response = client.get(f"/api/feedback/{feedback_id}/screenshot", headers=auth_headers)

        assert response.status_code == 404
        assert response.json()["error"] == "No screenshot available for this feedback item"

    def test_invalid_screenshot_data(self, client):
        response = client.post("/api/feedback", json={
            "type": "Bug Report",
            "description": "with bad screenshot",
            "includeScreenshot": True,
            "screenshotData": "!!!not-base64!!!",
        })

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid screenshot data"


class TestAuth:

    def test_missing_token(self, client):
        response = client.get("/api/feedback")

        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "Missing bearer token"}

    def test_wrong_token(self, client):
        response = client.get("/api/feedback", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401
        assert response.json()["error"] == "Invalid bearer token"

    def test_unconfigured_token(self, client, auth_headers):
        with patch("app.dependencies.settings") as mock_settings:
            mock_settings.bearer_token = None
            response = client.get("/api/feedback", headers=auth_headers)

        assert response.status_code == 500
        assert response.json()["success"] is False


class TestManualFeedback:

    def test_create_manual(self, client, auth_headers):
        response = client.post(
            "/api/feedback/manual",
            json={"description": "Internal bug", "priority": "high", "tags": ["qa", " "]},
            headers=auth_headers,
        )

        assert response.status_code == 200
        item = response.json()["feedback"]
        assert item["type"] == "Bug Report"
        assert item["externalSource"] == "manual"
        assert item["appVersion"] == "internal-dashboard"
        assert item["buildNumber"] == "manual-entry"
        assert item["priority"] == "high"
        assert item["tags"] == ["qa"]
        assert item["email"] is None

    def test_manual_conflict_is_returned(self, client, auth_headers):
        conflict = error_response(409, "Feedback with this external id already exists")
        with patch("app.routers.feedback.save_new_feedback", return_value=conflict):
            response = client.post(
                "/api/feedback/manual", json={"description": "Internal bug"}, headers=auth_headers
            )

        assert response.status_code == 409
        assert response.json()["success"] is False

    def test_manual_requires_auth(self, client):
        response = client.post("/api/feedback/manual", json={"description": "x"})
        assert response.status_code == 401

    def test_manual_rejects_bad_status(self, client, auth_headers):
        response = client.post(
            "/api/feedback/manual",
            json={"description": "x", "status": "done"},
            headers=auth_headers,
        )
        assert response.status_code == 400


class TestListFeedback:

    def test_list_order_and_pagination(self, client, auth_headers):
        first = submit(client, description="first")
        second = submit(client, description="second")
        third = submit(client, description="third")

        response = client.get("/api/feedback?limit=2", headers=auth_headers)

        data = response.json()
        assert data["total"] == 3
        assert data["count"] == 2
        assert data["hasMore"] is True
        assert [item["id"] for item in data["feedback"]] == [third, second]

        page_two = client.get("/api/feedback?limit=2&offset=2", headers=auth_headers).json()
        assert [item["id"] for item in page_two["feedback"]] == [first]
        assert page_two["hasMore"] is False

    def test_updated_item_moves_to_top(self, client, auth_headers):
        first = submit(client, description="first")
        submit(client, description="second")

        client.patch(f"/api/feedback/{first}", json={"status": "in_progress"}, headers=auth_headers)

        data = client.get("/api/feedback", headers=auth_headers).json()
        assert data["feedback"][0]["id"] == first

    def test_limit_is_clamped(self, client, auth_headers):
        submit(client)

        assert client.get("/api/feedback?limit=0", headers=auth_headers).json()["limit"] == 1
        assert client.get("/api/feedback?limit=5000", headers=auth_headers).json()["limit"] == 200
        assert client.get("/api/feedback?offset=-5", headers=auth_headers).json()["offset"] == 0

    def test_filters(self, client, auth_headers):
        submit(client, type="Question", description="How do I export?")
        submit(client, type="Bug Report", description="Timeline crash", email="bob@example.com")

        questions = client.get("/api/feedback?type=Question", headers=auth_headers).json()
        assert [item["type"] for item in questions["feedback"]] == ["Question"]

        everything = client.get("/api/feedback?type=all&status=all", headers=auth_headers).json()
        assert everything["total"] == 2

        by_text = client.get("/api/feedback?search=TIMELINE", headers=auth_headers).json()
        assert by_text["total"] == 1

        by_email = client.get("/api/feedback?search=bob@", headers=auth_headers).json()
        assert by_email["feedback"][0]["email"] == "bob@example.com"

        resolved = client.get("/api/feedback?status=resolved", headers=auth_headers).json()
        assert resolved["total"] == 0

    def test_summaries_omit_diagnostics(self, client, auth_headers, sample_diagnostics):
        submit(client, diagnostics=sample_diagnostics)

        item = client.get("/api/feedback", headers=auth_headers).json()["feedback"][0]

        assert "processInfo" not in item
        assert item["appVersion"] == "1.4.2"


class TestGetFeedback:

    def test_not_found(self, client, auth_headers):
        response = client.get("/api/feedback/9999", headers=auth_headers)

        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Feedback item not found"}

    def test_recent_logs_can_be_excluded(self, client, auth_headers, sample_diagnostics):
        feedback_id = submit(client, diagnostics=sample_diagnostics)

        item = client.get(
            f"/api/feedback/{feedback_id}?includeRecentLogs=false", headers=auth_headers
        ).json()["feedback"]

        assert item["recentLogs"] == []
        assert item["recentErrors"] == ["OCR timeout", "Capture stalled"]


class TestUpdateFeedback:

    def test_update_triage_fields(self, client, auth_headers):
        feedback_id = submit(client)

        response = client.patch(
            f"/api/feedback/{feedback_id}",
            json={"status": "to_notify", "priority": "critical", "notes": "Ping user", "tags": ["ocr"]},
            headers=auth_headers,
        )

        assert response.status_code == 200
        item = response.json()["feedback"]
        assert item["status"] == "to_notify"
        assert item["priority"] == "critical"
        assert item["notes"] == "Ping user"
        assert item["tags"] == ["ocr"]

    def test_read_toggle_keeps_updated_at(self, client, auth_headers):
        feedback_id = submit(client)
        before = client.get(f"/api/feedback/{feedback_id}", headers=auth_headers).json()["feedback"]

        response = client.patch(
            f"/api/feedback/{feedback_id}", json={"isRead": True}, headers=auth_headers
        )

        after = response.json()["feedback"]
        assert after["isRead"] is True
        assert after["updatedAt"] == before["updatedAt"]

    def test_status_change_bumps_updated_at(self, client, auth_headers):
        feedback_id = submit(client)
        before = client.get(f"/api/feedback/{feedback_id}", headers=auth_headers).json()["feedback"]

        after = client.patch(
            f"/api/feedback/{feedback_id}", json={"status": "resolved"}, headers=auth_headers
        ).json()["feedback"]

        assert after["updatedAt"] != before["updatedAt"]

    def test_diagnostics_survive_status_update(self, client, auth_headers, sample_diagnostics):
        feedback_id = submit(client, diagnostics=sample_diagnostics)

        item = client.patch(
            f"/api/feedback/{feedback_id}", json={"status": "closed"}, headers=auth_headers
        ).json()["feedback"]

        assert item["displayCount"] == 2
        assert item["processInfo"]["securityApps"] == 3

    @pytest.mark.parametrize("body", [
        {"status": "bogus"},
        {"priority": "p0"},
        {"isRead": "yes"},
        {"tags": "not-a-list"},
    ])
    def test_invalid_values(self, client, auth_headers, body):
        feedback_id = submit(client)

        response = client.patch(f"/api/feedback/{feedback_id}", json=body, headers=auth_headers)

        assert response.status_code == 400

    def test_empty_update(self, client, auth_headers):
        feedback_id = submit(client)

        response = client.patch(f"/api/feedback/{feedback_id}", json={}, headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["error"] == "No valid fields to update"

    def test_update_missing_item(self, client, auth_headers):
        response = client.patch("/api/feedback/9999", json={"status": "open"}, headers=auth_headers)
        assert response.status_code == 404


class TestDeleteFeedback:

    def test_delete_cascades(self, client, auth_headers, db_session, sample_diagnostics):
        feedback_id = submit(client, diagnostics=sample_diagnostics)
        client.post(
            f"/api/feedback/{feedback_id}/notes",
            json={"author": "Sam", "content": "Looking"},
            headers=auth_headers,
        )

        response = client.delete(f"/api/feedback/{feedback_id}", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert client.get(f"/api/feedback/{feedback_id}", headers=auth_headers).status_code == 404
        assert db_session.query(Feedback).count() == 0
        assert db_session.query(FeedbackNote).count() == 0
        assert db_session.query(FeedbackPerformance).count() == 0
        assert db_session.query(FeedbackLogEntry).count() == 0

    def test_delete_missing(self, client, auth_headers):
        assert client.delete("/api/feedback/9999", headers=auth_headers).status_code == 404


class TestNotes:

    def test_add_list_delete(self, client, auth_headers):
        feedback_id = submit(client)
        before = client.get(f"/api/feedback/{feedback_id}", headers=auth_headers).json()["feedback"]

        response = client.post(
            f"/api/feedback/{feedback_id}/notes",
            json={"author": " Sam ", "content": "Called the user"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        note = response.json()["note"]
        assert note["author"] == "Sam"
        assert note["feedbackId"] == feedback_id
        assert note["createdAt"].endswith("Z")

        after = client.get(f"/api/feedback/{feedback_id}", headers=auth_headers).json()["feedback"]
        assert after["updatedAt"] != before["updatedAt"]

        notes = client.get(f"/api/feedback/{feedback_id}/notes", headers=auth_headers).json()["notes"]
        assert [n["content"] for n in notes] == ["Called the user"]

        deleted = client.delete(
            f"/api/feedback/{feedback_id}/notes/{note['id']}", headers=auth_headers
        )
        assert deleted.status_code == 200
        again = client.delete(
            f"/api/feedback/{feedback_id}/notes/{note['id']}", headers=auth_headers
        )
        assert again.status_code == 404

    def test_blank_note_rejected(self, client, auth_headers):
        feedback_id = submit(client)

        response = client.post(
            f"/api/feedback/{feedback_id}/notes",
            json={"author": "Sam", "content": "  "},
            headers=auth_headers,
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Author and content are required"

    def test_note_on_missing_feedback(self, client, auth_headers):
        response = client.post(
            "/api/feedback/9999/notes",
            json={"author": "Sam", "content": "Hello"},
            headers=auth_headers,
        )
        assert response.status_code == 404


class TestSyncRoute:

    def test_sync_success(self, client, auth_headers):
        result = {
            "success": True,
            "startedAt": "2026-01-05T10:00:00Z",
            "durationMs": 12,
            "github": {"fetched": 1, "inserted": 1, "updated": 0, "reopened": 0,
                       "resolved": 0, "skipped": False},
            "featurebase": {"fetched": 0, "inserted": 0, "updated": 0, "reopened": 0,
                            "resolved": 0, "skipped": True, "skipReason": "none in review"},
        }
        with patch("app.routers.feedback_sync.run_sync", new=AsyncMock(return_value=result)):
            get_response = client.get("/api/feedback/sync", headers=auth_headers)
            post_response = client.post("/api/feedback/sync", headers=auth_headers)

        assert get_response.status_code == 200
        assert get_response.json() == result
        assert post_response.status_code == 200

    def test_sync_github_failure(self, client, auth_headers):
        error = GitHubSyncError("GitHub sync failed (401): Bad credentials")
        with patch("app.routers.feedback_sync.run_sync", new=AsyncMock(side_effect=error)):
            response = client.post("/api/feedback/sync", headers=auth_headers)

        assert response.status_code == 500
        assert response.json() == {
            "success": False,
            "error": "Feedback sync failed",
            "details": "GitHub sync failed (401): Bad credentials",
        }

    def test_sync_requires_auth(self, client):
        assert client.post("/api/feedback/sync").status_code == 401
