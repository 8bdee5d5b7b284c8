"""Reconcile fetched external items with local feedback rows."""
import json
import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from app.models import Feedback
from app.models.feedback import FEEDBACK_STATUSES, utcnow
from app.services.diagnostics import EMPTY_LEGACY_COLUMNS, parse_tags, to_string
from app.services.sync.records import (
    CLOSED_STATUSES,
    ExternalFeedbackRecord,
    SourceSyncSummary,
    build_description,
    merge_tags,
    parse_iso,
)

logger = logging.getLogger(__name__)

EXTERNAL_SYNC_VERSION = "external-sync"


@dataclass
class ExistingExternalRow:
    id: int
    external_id: str
    status: str
    tags: list[str]


def load_existing_external_rows(db: Session, source: str) -> dict[str, ExistingExternalRow]:
    """Local rows for ``source`` keyed by external id; the newest row wins on duplicates."""
    rows = (
        db.query(Feedback.id, Feedback.external_id, Feedback.status, Feedback.tags)
        .filter(Feedback.external_source == source, Feedback.external_id.isnot(None))
        .order_by(Feedback.id.desc())
        .all()
    )

    existing: dict[str, ExistingExternalRow] = {}
    for row in rows:
        external_id = to_string(row.external_id).strip()
        if not external_id or external_id in existing:
            continue
        status = to_string(row.status, "open")
        existing[external_id] = ExistingExternalRow(
            id=row.id,
            external_id=external_id,
            status=status if status in FEEDBACK_STATUSES else "open",
            tags=parse_tags(row.tags),
        )
    return existing


def upsert_external_items(
    db: Session,
    source: str,
    items: list[ExternalFeedbackRecord],
    resolve_missing: bool = True,
) -> SourceSyncSummary:
    """
    Apply one source's outstanding items to the local table.

    - Known items are refreshed; a resolved or closed one is reopened.
    - Unknown items are inserted as open.
    - With ``resolve_missing``, local items absent upstream are resolved.

    Re-running with unchanged upstream data makes no further status changes.
    """
    summary = SourceSyncSummary(fetched=len(items))
    existing_rows = load_existing_external_rows(db, source)
    incoming_ids: set[str] = set()

    for item in items:
        if item.external_id in incoming_ids:
            continue
        incoming_ids.add(item.external_id)
        existing = existing_rows.get(item.external_id)
        description = build_description(item)

        if existing is not None:
            next_status = existing.status
            if existing.status in CLOSED_STATUSES:
                next_status = "open"
                summary.reopened += 1

            db.query(Feedback).filter(Feedback.id == existing.id).update({
                Feedback.type: item.type,
                Feedback.description: description,
                Feedback.priority: item.priority,
                Feedback.tags: json.dumps(merge_tags(existing.tags, item.tags)),
                Feedback.status: next_status,
                Feedback.app_version: EXTERNAL_SYNC_VERSION,
                Feedback.build_number: item.source,
                Feedback.diagnostics_timestamp: item.updated_at,
                Feedback.external_url: item.external_url,
                Feedback.updated_at: utcnow(),
            }, synchronize_session=False)
            summary.updated += 1
            continue

        db.add(Feedback(
            type=item.type,
            email=None,
            description=description,
            status="open",
            priority=item.priority,
            notes="",
            tags=json.dumps(item.tags),
            is_read=False,
            app_version=EXTERNAL_SYNC_VERSION,
            build_number=item.source,
            macos_version="n/a",
            device_model="n/a",
            total_disk_space="n/a",
            free_disk_space="n/a",
            diagnostics_timestamp=item.updated_at,
            display_count=0,
            has_screenshot=False,
            external_source=item.source,
            external_id=item.external_id,
            external_url=item.external_url,
            created_at=parse_iso(item.created_at),
            updated_at=parse_iso(item.updated_at),
            **EMPTY_LEGACY_COLUMNS,
        ))
        summary.inserted += 1

    if resolve_missing:
        for existing in existing_rows.values():
            if existing.external_id in incoming_ids or existing.status in CLOSED_STATUSES:
                continue
            db.query(Feedback).filter(Feedback.id == existing.id).update({
                Feedback.status: "resolved",
                Feedback.updated_at: utcnow(),
            }, synchronize_session=False)
            summary.resolved += 1

    db.commit()
    logger.info(
        f"Reconciled {source}: {summary.inserted} inserted, {summary.updated} updated, "
        f"{summary.reopened} reopened, {summary.resolved} resolved"
    )
    return summary
