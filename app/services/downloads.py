"""Download telemetry storage and aggregation."""
import logging
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models import DownloadEvent
from app.services.diagnostics import format_timestamp

logger = logging.getLogger(__name__)

HOURLY_BUCKETS = 48
DAILY_BUCKETS = 30
RECENT_LIMIT = 10

TELEMETRY_FIELDS = (
    "version", "source", "os", "os_version", "browser", "browser_version",
    "architecture", "platform", "language", "screen_resolution", "timezone",
    "referrer",
)


def _nullable(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text if text else None


def record_download(
    db: Session,
    telemetry: dict,
    ip: Optional[str],
    user_agent: Optional[str],
    geo: Optional[dict] = None,
) -> DownloadEvent:
    """Insert one download event."""
    geo = geo or {}
    event = DownloadEvent(
        **{name: _nullable(telemetry.get(name)) for name in TELEMETRY_FIELDS},
        user_agent=_nullable(user_agent),
        ip=_nullable(ip),
        country=_nullable(geo.get("country")),
        city=_nullable(geo.get("city")),
        region=_nullable(geo.get("region")),
    )
    db.add(event)
    db.commit()
    db.refresh(event)
    return event


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _grouped_counts(db: Session, column) -> list[tuple[str, int]]:
    label = func.coalesce(func.nullif(func.trim(column), ""), "unknown")
    rows = (
        db.query(label.label("label"), func.count(DownloadEvent.id).label("count"))
        .group_by(label)
        .order_by(func.count(DownloadEvent.id).desc())
        .all()
    )
    return [(str(row.label), int(row.count)) for row in rows]


def _serialize_recent(event: DownloadEvent) -> dict:
    data = {name: _nullable(getattr(event, name)) for name in TELEMETRY_FIELDS}
    data.update({
        "id": event.id,
        # Raw user agents stay out of the dashboard payload
        "user_agent": None,
        "ip": _nullable(event.ip),
        "country": _nullable(event.country),
        "city": _nullable(event.city),
        "region": _nullable(event.region),
        "created_at": format_timestamp(event.created_at),
    })
    return data


def hourly_buckets(created: list[datetime], now: datetime) -> list[dict]:
    """Counts for the last 48 whole hours, oldest first, current hour last."""
    end = now.replace(minute=0, second=0, microsecond=0)
    start = end - timedelta(hours=HOURLY_BUCKETS - 1)
    counts = Counter(
        value.replace(minute=0, second=0, microsecond=0)
        for value in created if value >= start
    )
    return [
        {
            "bucket_start": (start + timedelta(hours=step)).strftime("%Y-%m-%d %H:00:00"),
            "count": counts.get(start + timedelta(hours=step), 0),
        }
        for step in range(HOURLY_BUCKETS)
    ]


def daily_buckets(created: list[datetime], now: datetime) -> list[dict]:
    """Counts for the last 30 days, oldest first, today last."""
    today = now.date()
    start = today - timedelta(days=DAILY_BUCKETS - 1)
    counts = Counter(value.date() for value in created if value.date() >= start)
    return [
        {
            "bucket_start": (start + timedelta(days=step)).isoformat(),
            "count": counts.get(start + timedelta(days=step), 0),
        }
        for step in range(DAILY_BUCKETS)
    ]


def get_download_analytics(db: Session, now: Optional[datetime] = None) -> dict:
    """
    Aggregate download stats for the dashboard.

    Returns:
        Dict with totalDownloads, byOs, bySource, recent (latest 10),
        hourlyDownloads (48 buckets) and dailyDownloads (30 buckets)
    """
    now = _as_utc(now or datetime.now(timezone.utc))

    total = db.query(func.count(DownloadEvent.id)).scalar() or 0
    recent = (
        db.query(DownloadEvent)
        .order_by(DownloadEvent.created_at.desc(), DownloadEvent.id.desc())
        .limit(RECENT_LIMIT)
        .all()
    )

    window_start = (now - timedelta(days=DAILY_BUCKETS)).replace(
        hour=0, minute=0, second=0, microsecond=0
    )
    created = [
        _as_utc(row.created_at)
        for row in db.query(DownloadEvent.created_at).filter(DownloadEvent.created_at >= window_start)
    ]

    return {
        "totalDownloads": int(total),
        "byOs": [{"os": label, "count": count} for label, count in _grouped_counts(db, DownloadEvent.os)],
        "bySource": [
            {"source": label, "count": count}
            for label, count in _grouped_counts(db, DownloadEvent.source)
        ],
        "recent": [_serialize_recent(event) for event in recent],
        "hourlyDownloads": hourly_buckets(created, now),
        "dailyDownloads": daily_buckets(created, now),
    }
