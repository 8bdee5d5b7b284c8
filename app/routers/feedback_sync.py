"""External tracker sync route."""
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.db import get_db
from app.dependencies import require_bearer_token
from app.services.sync import run_sync

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/feedback", tags=["feedback"])


@router.api_route(
    "/sync",
    methods=["GET", "POST"],
    dependencies=[Depends(require_bearer_token)]
)
async def sync_feedback(db: Session = Depends(get_db)):
    """
    Pull open GitHub issues and in-review Featurebase posts into feedback.

    A GitHub failure fails the whole request; Featurebase problems are
    reported as a skipped summary.
    """
    try:
        result = await run_sync(db)
    except Exception as e:
        db.rollback()
        logger.error(f"Feedback sync failed: {e}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Feedback sync failed", "details": str(e)}
        )

    logger.info(
        "Feedback sync finished",
        extra={'extra_fields': {
            'duration_ms': result["durationMs"],
            'github': result["github"],
            'featurebase': result["featurebase"],
        }}
    )
    return result
