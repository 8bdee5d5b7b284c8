"""Feedback sync run: GitHub first, then Featurebase."""
import logging
import time
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from app.services.diagnostics import format_timestamp
from app.services.sync.featurebase_source import FeaturebaseSource
from app.services.sync.github_source import GitHubIssueSource
from app.services.sync.reconcile import upsert_external_items
from app.services.sync.records import SourceSyncSummary

logger = logging.getLogger(__name__)


async def run_sync(
    db: Session,
    github_source: Optional[GitHubIssueSource] = None,
    featurebase_source: Optional[FeaturebaseSource] = None,
) -> dict:
    """
    Reconcile both trackers into the feedback table.

    GitHub errors propagate and abort the run. Featurebase problems only mark
    its summary as skipped, and items missing from Featurebase are never
    resolved.
    """
    github_source = github_source or GitHubIssueSource()
    featurebase_source = featurebase_source or FeaturebaseSource()

    started_at = datetime.now(timezone.utc)
    start_time = time.monotonic()

    github_items = await github_source.fetch_outstanding()
    github = upsert_external_items(db, "github", github_items, resolve_missing=True)

    fetched = await featurebase_source.fetch_outstanding()
    if fetched.skipped:
        logger.warning(f"Featurebase sync skipped: {fetched.skip_reason}")
        featurebase = SourceSyncSummary(skipped=True, skip_reason=fetched.skip_reason)
    else:
        featurebase = upsert_external_items(db, "featurebase", fetched.items, resolve_missing=False)

    duration_ms = int((time.monotonic() - start_time) * 1000)
    return {
        "success": True,
        "startedAt": format_timestamp(started_at),
        "durationMs": duration_ms,
        "github": github.to_api(),
        "featurebase": featurebase.to_api(),
    }
