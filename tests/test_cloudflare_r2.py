"""
Tests for the Cloudflare R2 version history client.
"""
import json
from datetime import date
from functools import cmp_to_key
from unittest.mock import patch

import httpx
import pytest

from app.services.cloudflare_r2 import (
    build_date_range,
    build_history,
    clamp_history_days,
    compare_versions,
    extract_version,
    fetch_r2_version_history,
    to_count,
)


@pytest.fixture
def r2_settings():
    with patch("app.services.cloudflare_r2.settings") as mock_settings:
        mock_settings.CLOUDFLARE_ANALYTICS_API_TOKEN = "cf-token"
        mock_settings.CLOUDFLARE_ACCOUNT_ID = "account-1"
        mock_settings.CLOUDFLARE_R2_ANALYTICS_BUCKET = "retrace"
        mock_settings.CLOUDFLARE_R2_ANALYTICS_DAYS = 3
        mock_settings.CLOUDFLARE_ANALYTICS_TIMEOUT = 5.0
        yield mock_settings


def graphql_response(groups):
    return {"data": {"viewer": {"accounts": [{"r2OperationsAdaptiveGroups": groups}]}}}


def group(day, object_name, requests, response_bytes=0):
    return {
        "dimensions": {"date": day, "objectName": object_name},
        "sum": {"requests": requests, "responseBytes": response_bytes},
    }


class TestHelpers:

    @pytest.mark.parametrize("raw,expected", [
        ("abc", 30), (None, 30), (0, 1), (-4, 1), (99, 30), (7.9, 7), ("14", 14),
    ])
    def test_clamp_history_days(self, raw, expected):
        assert clamp_history_days(raw) == expected

    def test_to_count(self):
        assert to_count("12") == 12
        assert to_count(-3) == 0
        assert to_count(None) == 0
        assert to_count(float("inf")) == 0

    @pytest.mark.parametrize("object_name,expected", [
        ("releases/Retrace-v1.2.3.dmg", "1.2.3"),
        ("Retrace-1.10.dmg", "1.10"),
        ("retrace_v2.0.1-beta.dmg", "2.0.1"),
        ("Retrace.dmg", "Retrace"),
    ])
    def test_extract_version(self, object_name, expected):
        assert extract_version(object_name) == expected

    def test_compare_versions_newest_first(self):
        versions = ["1.2.0", "1.10.0", "1.9", "Retrace"]
        assert sorted(versions, key=cmp_to_key(compare_versions)) == [
            "1.10.0", "1.9", "1.2.0", "Retrace"
        ]

    def test_build_date_range(self):
        start, end, dates = build_date_range(3, today=date(2026, 1, 2))

        assert dates == ["2025-12-31", "2026-01-01", "2026-01-02"]
        assert start.isoformat() == "2025-12-31T00:00:00+00:00"
        assert end.date() == date(2026, 1, 2)

    def test_build_history(self):
        start, end, dates = build_date_range(2, today=date(2026, 1, 2))
        groups = [
            group("2026-01-01", "Retrace-v1.2.0.dmg", 4, 400),
            group("2026-01-02", "Retrace-v1.2.0.dmg", 1, 100),
            group("2026-01-02", "Retrace-v1.3.0.dmg", 10, 1000),
            group("2026-01-02", None, 99),
            "junk",
        ]

        history = build_history(groups, "retrace", start, end, dates)

        assert history["bucket"] == "retrace"
        assert history["source"] == "cloudflare_r2"
        assert history["rangeStart"] == "2026-01-01"
        assert history["rangeEnd"] == "2026-01-02"
        assert [v["version"] for v in history["versions"]] == ["1.3.0", "1.2.0"]
        older = history["versions"][1]
        assert older["totalRequests"] == 5
        assert older["totalResponseBytes"] == 500
        assert older["daily"] == [
            {"date": "2026-01-01", "requests": 4, "responseBytes": 400},
            {"date": "2026-01-02", "requests": 1, "responseBytes": 100},
        ]
        assert history["dailyTotals"] == [
            {"date": "2026-01-01", "requests": 4, "responseBytes": 400},
            {"date": "2026-01-02", "requests": 11, "responseBytes": 1100},
        ]


class TestFetchHistory:

    @pytest.mark.asyncio
    async def test_not_configured(self):
        with patch("app.services.cloudflare_r2.settings") as mock_settings:
            mock_settings.CLOUDFLARE_ANALYTICS_API_TOKEN = "  "
            mock_settings.CLOUDFLARE_ACCOUNT_ID = "account-1"
            result = await fetch_r2_version_history()

        assert result.history is None
        assert result.error.startswith("Cloudflare analytics is not configured")

    @pytest.mark.asyncio
    async def test_success(self, r2_settings):
        requests = []
        _, _, dates = build_date_range(3)

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=graphql_response([
                group(dates[-1], "Retrace-v1.2.0.dmg", 3, 300),
            ]))

        result = await fetch_r2_version_history(transport=httpx.MockTransport(handler))

        assert result.error is None
        assert result.history["versions"][0]["totalRequests"] == 3
        assert len(result.history["dailyTotals"]) == 3
        assert requests[0].headers["Authorization"] == "Bearer cf-token"
        assert json.loads(requests[0].content)["variables"]["accountTag"] == "account-1"

    @pytest.mark.asyncio
    async def test_graphql_errors(self, r2_settings):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, json={"errors": [{"message": "not authorized"}]})
        )

        result = await fetch_r2_version_history(transport=transport)

        assert result.history is None
        assert result.error == "not authorized"

    @pytest.mark.asyncio
    async def test_http_error_status(self, r2_settings):
        transport = httpx.MockTransport(lambda request: httpx.Response(502, text="bad gateway"))

        result = await fetch_r2_version_history(transport=transport)

        assert result.error == "Cloudflare analytics request failed (502)."

    @pytest.mark.asyncio
    async def test_timeout(self, r2_settings):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        result = await fetch_r2_version_history(transport=httpx.MockTransport(handler))

        assert result.error == "Cloudflare analytics request timed out."

    @pytest.mark.asyncio
    async def test_empty_accounts(self, r2_settings):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, json={"data": {"viewer": {"accounts": []}}})
        )

        result = await fetch_r2_version_history(transport=transport)

        assert result.error is None
        assert result.history["versions"] == []
        assert all(total["requests"] == 0 for total in result.history["dailyTotals"])
