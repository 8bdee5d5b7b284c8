"""Manual schema migration route."""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db import get_db
from app.dependencies import require_bearer_token
from app.startup import run_migrations

logger = logging.getLogger(__name__)

router = APIRouter(tags=["admin"])


@router.get("/api/migrate", dependencies=[Depends(require_bearer_token)])
async def migrate(db: Session = Depends(get_db)):
    """Apply pending schema revisions and backfill diagnostics. Safe to call repeatedly."""
    results = run_migrations(db)
    logger.info("Manual migration finished", extra={'extra_fields': {'results': results}})
    return {"success": True, "results": results}
