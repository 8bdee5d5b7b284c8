"""Download tracking and analytics routes."""
import logging
from typing import Optional
from urllib.parse import unquote

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.db import get_db
from app.dependencies import require_bearer_token
from app.middleware.rate_limit import (
    DedupCache,
    check_download_rate_limit,
    download_dedup,
    get_client_ip,
)
from app.routers.feedback import error_response, read_json_object, validation_message
from app.schemas import DownloadTrack
from app.services.cloudflare_r2 import fetch_r2_version_history
from app.services.downloads import get_download_analytics, record_download

logger = logging.getLogger(__name__)

router = APIRouter(tags=["downloads"])


def _header(request: Request, *names: str) -> Optional[str]:
    for name in names:
        value = (request.headers.get(name) or "").strip()
        if value:
            return unquote(value)
    return None


def geo_from_headers(request: Request) -> dict:
    """Location hints added by the CDN in front of the app."""
    return {
        "country": _header(request, "cf-ipcountry", "x-vercel-ip-country"),
        "city": _header(request, "cf-ipcity", "x-vercel-ip-city"),
        "region": _header(request, "cf-region", "x-vercel-ip-country-region"),
    }


@router.post("/api/downloads/track")
async def track_download(request: Request, db: Session = Depends(get_db)):
    """
    Record a download (public).

    Rate limited per client IP; an identical request from the same client
    within the dedup window is acknowledged without storing a new row.
    """
    client_ip = get_client_ip(request)

    allowed, retry_after = check_download_rate_limit(request, client_ip)
    if not allowed:
        return JSONResponse(
            status_code=429,
            content={
                "success": False,
                "error": "Too many download events. Please try again later.",
                "retryAfter": retry_after,
            },
            headers={"Retry-After": str(retry_after)}
        )

    body = await read_json_object(request)
    if body is None:
        return error_response(400, "Invalid JSON body")

    try:
        data = DownloadTrack.model_validate(body)
    except ValidationError as e:
        return error_response(400, validation_message(e))

    user_agent = request.headers.get("user-agent")
    fingerprint = DedupCache.fingerprint(client_ip, data.source, data.version, user_agent)
    if download_dedup.contains(fingerprint):
        return {"success": True, "deduplicated": True}

    try:
        event = record_download(
            db,
            data.model_dump(),
            ip=client_ip,
            user_agent=user_agent,
            geo=geo_from_headers(request),
        )
    except SQLAlchemyError:
        db.rollback()
        logger.error("Failed to track download", exc_info=True)
        return error_response(500, "Failed to track download")

    download_dedup.remember(fingerprint)

    logger.info(
        f"Download tracked: version={event.version} source={event.source}",
        extra={'extra_fields': {'download_id': event.id, 'os': event.os}}
    )
    return {"success": True, "message": "Download tracked successfully"}


@router.get("/api/downloads/track", dependencies=[Depends(require_bearer_token)])
async def download_stats(db: Session = Depends(get_db)):
    """Aggregate download stats."""
    return get_download_analytics(db)


@router.get("/api/analytics", dependencies=[Depends(require_bearer_token)])
async def analytics(db: Session = Depends(get_db)):
    """Download stats plus per-version history from Cloudflare R2."""
    try:
        payload = get_download_analytics(db)
    except SQLAlchemyError:
        logger.error("Failed to fetch analytics", exc_info=True)
        return error_response(500, "Failed to fetch analytics")

    r2 = await fetch_r2_version_history()
    logger.info(
        "Analytics served",
        extra={'extra_fields': {
            'total_downloads': payload["totalDownloads"],
            'r2_history_versions': len(r2.history["versions"]) if r2.history else 0,
            'r2_history_error': r2.error,
        }}
    )

    return {
        **payload,
        "r2VersionHistory": r2.history,
        "r2VersionHistoryError": r2.error,
    }
