"""Per-version download history from Cloudflare R2 analytics (GraphQL)."""
import logging
import math
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from functools import cmp_to_key
from typing import Any, Optional

import httpx

from app.settings import settings

logger = logging.getLogger(__name__)

CLOUDFLARE_GRAPHQL_ENDPOINT = "https://api.cloudflare.com/client/v4/graphql"
DEFAULT_HISTORY_DAYS = 30
MAX_HISTORY_DAYS = 30
METRIC_LABEL = "GetObject status=200 requests"

VERSION_IN_NAME = re.compile(r"(?:^|[-_])v?(\d+\.\d+(?:\.\d+)?)", re.IGNORECASE)

R2_VERSION_QUERY = """
query GetR2VersionProgression(
  $accountTag: string!
  $bucketName: string!
  $start: Time!
  $end: Time!
) {
  viewer {
    accounts(filter: { accountTag: $accountTag }) {
      r2OperationsAdaptiveGroups(
        limit: 5000
        filter: {
          bucketName: $bucketName
          actionType: "GetObject"
          responseStatusCode: 200
          objectName_like: "%.dmg"
          datetime_geq: $start
          datetime_leq: $end
        }
        orderBy: [date_ASC, objectName_ASC]
      ) {
        dimensions {
          date
          objectName
        }
        sum {
          requests
          responseBytes
        }
      }
    }
  }
}
"""


@dataclass
class R2HistoryResult:
    history: Optional[dict] = None
    error: Optional[str] = None


def to_count(value: Any) -> int:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(parsed):
        return 0
    return max(0, math.trunc(parsed))


def _non_empty(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def clamp_history_days(raw_days: Any) -> int:
    try:
        parsed = float(raw_days)
    except (TypeError, ValueError):
        return DEFAULT_HISTORY_DAYS
    if not math.isfinite(parsed):
        return DEFAULT_HISTORY_DAYS
    return max(1, min(MAX_HISTORY_DAYS, math.trunc(parsed)))


def build_date_range(history_days: int, today: Optional[date] = None) -> tuple[datetime, datetime, list[str]]:
    """UTC start/end instants and the list of ISO dates they cover."""
    today = today or datetime.now(timezone.utc).date()
    start_day = today - timedelta(days=history_days - 1)
    start = datetime.combine(start_day, time.min, tzinfo=timezone.utc)
    end = datetime.combine(today, time(23, 59, 59, 999000), tzinfo=timezone.utc)
    dates = [(start_day + timedelta(days=offset)).isoformat() for offset in range(history_days)]
    return start, end, dates


def extract_version(object_name: str) -> str:
    """``releases/Retrace-v1.2.3.dmg`` -> ``1.2.3``; falls back to the file stem."""
    file_name = object_name.split("/")[-1] or object_name
    match = VERSION_IN_NAME.search(file_name)
    if match:
        return match.group(1)
    return re.sub(r"\.dmg$", "", file_name, flags=re.IGNORECASE)


def _version_part(part: str) -> float:
    try:
        value = float(part)
    except ValueError:
        return 0
    return value if math.isfinite(value) else 0


def compare_versions(a: str, b: str) -> int:
    """Newest semantic version first, then by name."""
    a_parts = [_version_part(p) for p in a.split(".")]
    b_parts = [_version_part(p) for p in b.split(".")]
    for index in range(max(len(a_parts), len(b_parts))):
        a_value = a_parts[index] if index < len(a_parts) else 0
        b_value = b_parts[index] if index < len(b_parts) else 0
        if a_value != b_value:
            return -1 if a_value > b_value else 1
    return (a > b) - (a < b)


def _iso(value: datetime) -> str:
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_history(groups: list, bucket: str, start: datetime, end: datetime, dates: list[str]) -> dict:
    """Fold GraphQL rows into per-object daily series plus daily totals."""
    daily_totals = {d: {"requests": 0, "responseBytes": 0} for d in dates}
    versions: dict[str, dict] = {}

    for row in groups:
        row = row if isinstance(row, dict) else {}
        dimensions = row.get("dimensions") or {}
        sums = row.get("sum") or {}
        object_name = _non_empty(dimensions.get("objectName"))
        day = _non_empty(dimensions.get("date"))
        if not object_name or not day:
            continue

        requests = to_count(sums.get("requests"))
        response_bytes = to_count(sums.get("responseBytes"))

        total = daily_totals.setdefault(day, {"requests": 0, "responseBytes": 0})
        total["requests"] += requests
        total["responseBytes"] += response_bytes

        entry = versions.setdefault(object_name, {
            "objectName": object_name,
            "version": extract_version(object_name),
            "totalRequests": 0,
            "totalResponseBytes": 0,
            "daily": {},
        })
        entry["totalRequests"] += requests
        entry["totalResponseBytes"] += response_bytes
        point = entry["daily"].setdefault(day, {"requests": 0, "responseBytes": 0})
        point["requests"] += requests
        point["responseBytes"] += response_bytes

    def order(left: dict, right: dict) -> int:
        result = compare_versions(left["version"], right["version"])
        if result:
            return result
        return right["totalRequests"] - left["totalRequests"]

    version_rows = []
    for entry in sorted(versions.values(), key=cmp_to_key(order)):
        version_rows.append({
            "objectName": entry["objectName"],
            "version": entry["version"],
            "totalRequests": entry["totalRequests"],
            "totalResponseBytes": entry["totalResponseBytes"],
            "daily": [
                {"date": d, **entry["daily"].get(d, {"requests": 0, "responseBytes": 0})}
                for d in dates
            ],
        })

    return {
        "bucket": bucket,
        "source": "cloudflare_r2",
        "metric": METRIC_LABEL,
        "rangeStart": start.date().isoformat(),
        "rangeEnd": end.date().isoformat(),
        "versions": version_rows,
        "dailyTotals": [{"date": d, **daily_totals[d]} for d in dates],
    }


async def fetch_r2_version_history(
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> R2HistoryResult:
    """
    Query R2 GetObject counts for ``.dmg`` objects over the configured window.

    Configuration problems, HTTP failures, GraphQL errors and timeouts are
    reported through ``R2HistoryResult.error``.
    """
    api_token = _non_empty(settings.CLOUDFLARE_ANALYTICS_API_TOKEN)
    account_id = _non_empty(settings.CLOUDFLARE_ACCOUNT_ID)
    bucket = _non_empty(settings.CLOUDFLARE_R2_ANALYTICS_BUCKET) or "retrace"

    if not api_token or not account_id:
        return R2HistoryResult(error=(
            "Cloudflare analytics is not configured "
            "(missing CLOUDFLARE_ANALYTICS_API_TOKEN/CLOUDFLARE_ACCOUNT_ID)."
        ))

    start, end, dates = build_date_range(clamp_history_days(settings.CLOUDFLARE_R2_ANALYTICS_DAYS))

    try:
        async with httpx.AsyncClient(
            timeout=settings.CLOUDFLARE_ANALYTICS_TIMEOUT, transport=transport
        ) as client:
            response = await client.post(
                CLOUDFLARE_GRAPHQL_ENDPOINT,
                headers={"Authorization": f"Bearer {api_token}"},
                json={
                    "query": R2_VERSION_QUERY,
                    "variables": {
                        "accountTag": account_id,
                        "bucketName": bucket,
                        "start": _iso(start),
                        "end": _iso(end),
                    },
                },
            )
    except httpx.TimeoutException:
        logger.warning("Cloudflare analytics request timed out")
        return R2HistoryResult(error="Cloudflare analytics request timed out.")
    except httpx.HTTPError as e:
        logger.warning(f"Cloudflare analytics request failed: {e}")
        return R2HistoryResult(error=f"Cloudflare analytics request failed: {e}")

    if not response.is_success:
        return R2HistoryResult(error=f"Cloudflare analytics request failed ({response.status_code}).")

    try:
        payload = response.json()
    except ValueError:
        return R2HistoryResult(error="Cloudflare analytics returned invalid JSON.")

    errors = payload.get("errors") if isinstance(payload, dict) else None
    if isinstance(errors, list) and errors:
        first = errors[0] if isinstance(errors[0], dict) else {}
        message = str(first.get("message") or "").strip()
        return R2HistoryResult(error=message or "Cloudflare analytics query failed.")

    data = payload.get("data") if isinstance(payload, dict) else None
    accounts = ((data or {}).get("viewer") or {}).get("accounts") or []
    groups = (accounts[0] or {}).get("r2OperationsAdaptiveGroups") if accounts else None
    if not isinstance(groups, list):
        groups = []

    return R2HistoryResult(history=build_history(groups, bucket, start, end, dates))
