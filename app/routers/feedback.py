"""Feedback intake and triage routes."""
import base64
import binascii
import json
import logging
import traceback
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.db import get_db
from app.dependencies import require_bearer_token
from app.models import Feedback, FeedbackNote
from app.models.feedback import utcnow
from app.schemas import FeedbackCreate, FeedbackUpdate, ManualFeedbackCreate, NoteCreate
from app.services.diagnostics import (
    DiagnosticsPayload,
    format_timestamp,
    get_normalized_diagnostics_by_feedback_ids,
    map_feedback_row_to_api_item,
    map_feedback_row_to_summary,
    to_float,
    to_int,
    to_string,
    upsert_feedback_diagnostics,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/feedback", tags=["feedback"])

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


def error_response(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message, **extra}
    )


def validation_message(exc: ValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = str(first.get("msg", "Invalid request body"))
    if message.startswith("Value error, "):
        message = message[len("Value error, "):]
    return f"{location}: {message}" if location else message


async def read_json_object(request: Request) -> Optional[dict]:
    """Request body as a dict, or None when it is not a JSON object."""
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return body if isinstance(body, dict) else None


def decode_screenshot(data: Optional[str]) -> Optional[bytes]:
    """Base64 PNG (optionally a data URL) to bytes; raises ValueError when malformed."""
    if not data:
        return None
    if data.startswith("data:") and "," in data:
        data = data.split(",", 1)[1]
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError("Invalid screenshot data") from e


def hydrate(db: Session, feedback: Feedback, include_recent_logs: bool = True) -> dict:
    states = get_normalized_diagnostics_by_feedback_ids(db, [feedback.id])
    return map_feedback_row_to_api_item(feedback, states.get(feedback.id), include_recent_logs)


def get_feedback_or_none(db: Session, feedback_id: int) -> Optional[Feedback]:
    return db.query(Feedback).filter(Feedback.id == feedback_id).first()


def build_feedback_row(
    *,
    type: str,
    email: Optional[str],
    description: str,
    diagnostics: dict,
    payload: DiagnosticsPayload,
    screenshot: Optional[bytes],
    include_screenshot: bool,
    external_source: str,
    external_id: Optional[str] = None,
    external_url: Optional[str] = None,
    status: str = "open",
    priority: str = "medium",
    tags: Optional[list[str]] = None,
) -> Feedback:
    """New feedback row with environment fields and legacy JSON copies of the diagnostics."""
    stats = diagnostics.get("databaseStats")
    stats = stats if isinstance(stats, dict) else {}
    now = utcnow()

    return Feedback(
        type=type,
        email=email,
        description=description,
        status=status,
        priority=priority,
        notes="",
        tags=json.dumps(tags or []),
        is_read=False,
        app_version=to_string(diagnostics.get("appVersion")),
        build_number=to_string(diagnostics.get("buildNumber")),
        macos_version=to_string(diagnostics.get("macOSVersion")),
        device_model=to_string(diagnostics.get("deviceModel")),
        total_disk_space=to_string(diagnostics.get("totalDiskSpace")),
        free_disk_space=to_string(diagnostics.get("freeDiskSpace")),
        session_count=to_int(stats.get("sessionCount")),
        frame_count=to_int(stats.get("frameCount")),
        segment_count=to_int(stats.get("segmentCount")),
        database_size_mb=to_float(stats.get("databaseSizeMB")),
        diagnostics_timestamp=to_string(diagnostics.get("timestamp")) or None,
        display_count=payload.display_count,
        recent_errors=json.dumps(payload.recent_errors),
        recent_logs=json.dumps(payload.recent_logs),
        settings_snapshot=json.dumps(payload.settings_snapshot),
        display_info=json.dumps(payload.display_info.to_api()),
        process_info=json.dumps(payload.process_info.to_api()),
        accessibility_info=json.dumps(payload.accessibility_info.to_api()),
        performance_info=json.dumps(payload.performance_info.to_api()),
        emergency_crash_reports=json.dumps(payload.emergency_crash_reports),
        has_screenshot=bool(include_screenshot and screenshot),
        screenshot_data=screenshot,
        external_source=external_source,
        external_id=external_id,
        external_url=external_url,
        created_at=now,
        updated_at=now,
    )


def save_new_feedback(db: Session, feedback: Feedback, payload: DiagnosticsPayload):
    """Insert the row, then write its normalized diagnostics."""
    db.add(feedback)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return error_response(409, "Feedback with this external id already exists")
    db.refresh(feedback)

    upsert_feedback_diagnostics(db, feedback.id, payload)
    return None


# ============================================================================
# INTAKE
# ============================================================================

@router.post("")
async def submit_feedback(request: Request, db: Session = Depends(get_db)):
    """
    Submit feedback from the macOS app.

    Public endpoint. Diagnostics are optional; anything missing takes its
    default value.
    """
    body = await read_json_object(request)
    if body is None:
        return error_response(400, "Invalid JSON body")

    try:
        data = FeedbackCreate.model_validate(body)
        screenshot = decode_screenshot(data.screenshot_data)
    except ValidationError as e:
        return error_response(400, validation_message(e))
    except ValueError as e:
        return error_response(400, str(e))

    diagnostics = data.diagnostics or {}
    payload = DiagnosticsPayload.from_raw(diagnostics)

    feedback = build_feedback_row(
        type=data.type.value,
        email=data.email,
        description=data.description,
        diagnostics=diagnostics,
        payload=payload,
        screenshot=screenshot,
        include_screenshot=data.include_screenshot,
        external_source=data.external_source.value,
        external_id=data.external_id,
        external_url=data.external_url,
    )

    try:
        conflict = save_new_feedback(db, feedback, payload)
    except SQLAlchemyError:
        db.rollback()
        logger.error("Failed to save feedback", exc_info=True)
        return error_response(500, "Failed to process feedback submission")
    if conflict is not None:
        return conflict

    logger.info(
        f"Feedback saved: id={feedback.id}",
        extra={'extra_fields': {'feedback_id': feedback.id, 'type': feedback.type,
                                'app_version': feedback.app_version}}
    )

    return {
        "success": True,
        "message": "Feedback submitted successfully",
        "id": str(feedback.id),
    }


@router.post("/manual", dependencies=[Depends(require_bearer_token)])
async def create_manual_feedback(request: Request, db: Session = Depends(get_db)):
    """Create an issue by hand from the dashboard."""
    body = await read_json_object(request)
    if body is None:
        return error_response(400, "Invalid JSON body")

    try:
        data = ManualFeedbackCreate.model_validate(body)
        screenshot = decode_screenshot(data.screenshot_data)
    except ValidationError as e:
        return error_response(400, validation_message(e))
    except ValueError as e:
        return error_response(400, str(e))

    diagnostics = {
        "appVersion": "internal-dashboard",
        "buildNumber": "manual-entry",
        "macOSVersion": "unknown",
        "deviceModel": "unknown",
        "totalDiskSpace": "unknown",
        "freeDiskSpace": "unknown",
        "timestamp": format_timestamp(utcnow()),
    }
    payload = DiagnosticsPayload()

    feedback = build_feedback_row(
        type=data.type.value,
        email=(data.email or "").strip() or None,
        description=data.description,
        diagnostics=diagnostics,
        payload=payload,
        screenshot=screenshot,
        include_screenshot=screenshot is not None,
        external_source="manual",
        status=data.status.value,
        priority=data.priority.value,
        tags=[tag.strip() for tag in data.tags if tag.strip()],
    )
    try:
        conflict = save_new_feedback(db, feedback, payload)
    except SQLAlchemyError:
        db.rollback()
        logger.error("Failed to create manual feedback", exc_info=True)
        return error_response(500, "Failed to create feedback")
    if conflict is not None:
        return conflict

    return {"success": True, "id": str(feedback.id), "feedback": hydrate(db, feedback)}


# ============================================================================
# LIST
# ============================================================================

@router.get("", dependencies=[Depends(require_bearer_token)])
async def list_feedback(
    type: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    priority: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    limit: int = Query(DEFAULT_PAGE_SIZE),
    offset: int = Query(0),
    db: Session = Depends(get_db)
):
    """
    Paginated feedback summaries, most recently updated first.

    ``all`` for type/status/priority means no filter.
    """
    limit = max(1, min(MAX_PAGE_SIZE, limit))
    offset = max(0, offset)

    query = db.query(Feedback)
    if type and type != "all":
        query = query.filter(Feedback.type == type)
    if status and status != "all":
        query = query.filter(Feedback.status == status)
    if priority and priority != "all":
        query = query.filter(Feedback.priority == priority)
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(Feedback.description.ilike(pattern), Feedback.email.ilike(pattern)))

    total = query.count()
    rows = (
        query.order_by(Feedback.updated_at.desc(), Feedback.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )

    return {
        "count": len(rows),
        "total": total,
        "hasMore": offset + len(rows) < total,
        "offset": offset,
        "limit": limit,
        "feedback": [map_feedback_row_to_summary(row) for row in rows],
    }


# ============================================================================
# SINGLE ITEM
# ============================================================================

@router.get("/{feedback_id:int}", dependencies=[Depends(require_bearer_token)])
async def get_feedback(
    feedback_id: int,
    include_recent_logs: bool = Query(True, alias="includeRecentLogs"),
    db: Session = Depends(get_db)
):
    """Full feedback item with diagnostics."""
    feedback = get_feedback_or_none(db, feedback_id)
    if not feedback:
        return error_response(404, "Feedback item not found")

    return {"success": True, "feedback": hydrate(db, feedback, include_recent_logs)}


@router.patch("/{feedback_id:int}", dependencies=[Depends(require_bearer_token)])
async def update_feedback(feedback_id: int, request: Request, db: Session = Depends(get_db)):
    """
    Update triage fields.

    Marking an item read or unread does not change ``updated_at`` so the
    list order stays put.
    """
    body = await read_json_object(request)
    if body is None:
        return error_response(400, "Invalid JSON body")

    try:
        data = FeedbackUpdate.model_validate(body)
    except ValidationError as e:
        return error_response(400, validation_message(e))

    updates = {
        name: getattr(data, name)
        for name in data.model_fields_set
        if getattr(data, name) is not None
    }
    if not updates:
        return error_response(400, "No valid fields to update")

    feedback = get_feedback_or_none(db, feedback_id)
    if not feedback:
        return error_response(404, "Feedback item not found")

    try:
        if "status" in updates:
            feedback.status = updates["status"].value
        if "priority" in updates:
            feedback.priority = updates["priority"].value
        if "notes" in updates:
            feedback.notes = updates["notes"]
        if "tags" in updates:
            feedback.tags = json.dumps(updates["tags"])
        if "is_read" in updates:
            feedback.is_read = updates["is_read"]
        if set(updates) - {"is_read"}:
            feedback.updated_at = utcnow()

        db.commit()
        db.refresh(feedback)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error updating feedback {feedback_id}: {e}", exc_info=True)
        return error_response(
            500,
            "Failed to update feedback",
            details=str(e),
            stack=traceback.format_exc(),
        )

    return {"success": True, "feedback": hydrate(db, feedback)}


@router.delete("/{feedback_id:int}", dependencies=[Depends(require_bearer_token)])
async def delete_feedback(feedback_id: int, db: Session = Depends(get_db)):
    """Delete an item with its notes and diagnostics."""
    feedback = get_feedback_or_none(db, feedback_id)
    if not feedback:
        return error_response(404, "Feedback item not found")

    db.delete(feedback)
    db.commit()
    logger.info(f"Feedback {feedback_id} deleted")

    return {"success": True, "message": "Feedback item deleted"}


@router.get("/{feedback_id:int}/screenshot", dependencies=[Depends(require_bearer_token)])
async def get_screenshot(feedback_id: int, db: Session = Depends(get_db)):
    feedback = get_feedback_or_none(db, feedback_id)
    if not feedback:
        return error_response(404, "Feedback item not found")
    if not feedback.has_screenshot or not feedback.screenshot_data:
        return error_response(404, "No screenshot available for this feedback item")

    return Response(
        content=bytes(feedback.screenshot_data),
        media_type="image/png",
        headers={"Cache-Control": "public, max-age=31536000, immutable"},
    )


# ============================================================================
# NOTES
# ============================================================================

def serialize_note(note: FeedbackNote) -> dict:
    return {
        "id": note.id,
        "feedbackId": note.feedback_id,
        "author": note.author,
        "content": note.content,
        "createdAt": format_timestamp(note.created_at),
    }


@router.get("/{feedback_id:int}/notes", dependencies=[Depends(require_bearer_token)])
async def list_notes(feedback_id: int, db: Session = Depends(get_db)):
    notes = (
        db.query(FeedbackNote)
        .filter(FeedbackNote.feedback_id == feedback_id)
        .order_by(FeedbackNote.created_at.desc(), FeedbackNote.id.desc())
        .all()
    )
    return {"notes": [serialize_note(note) for note in notes]}


@router.post("/{feedback_id:int}/notes", dependencies=[Depends(require_bearer_token)])
async def add_note(feedback_id: int, request: Request, db: Session = Depends(get_db)):
    """Add a note; the parent item counts as updated."""
    body = await read_json_object(request)
    if body is None:
        return error_response(400, "Invalid JSON body")

    try:
        data = NoteCreate.model_validate(body)
    except ValidationError:
        return error_response(400, "Author and content are required")

    feedback = get_feedback_or_none(db, feedback_id)
    if not feedback:
        return error_response(404, "Feedback item not found")

    note = FeedbackNote(feedback_id=feedback.id, author=data.author, content=data.content)
    db.add(note)
    feedback.updated_at = utcnow()
    db.commit()
    db.refresh(note)

    return {"success": True, "note": serialize_note(note)}


@router.delete(
    "/{feedback_id:int}/notes/{note_id:int}",
    dependencies=[Depends(require_bearer_token)]
)
async def delete_note(feedback_id: int, note_id: int, db: Session = Depends(get_db)):
    note = (
        db.query(FeedbackNote)
        .filter(FeedbackNote.id == note_id, FeedbackNote.feedback_id == feedback_id)
        .first()
    )
    if not note:
        return error_response(404, "Note not found")

    db.delete(note)
    db.commit()

    return {"success": True, "message": "Note deleted"}
