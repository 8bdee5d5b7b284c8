"""Health check endpoints."""
from fastapi import APIRouter, Depends, status, Response
from sqlalchemy.orm import Session
from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError
from app.db import get_db

router = APIRouter(tags=["health"])

REQUIRED_TABLES = ('feedback', 'feedback_notes', 'downloads', 'migration_state')


@router.get("/health")
async def health():
    """
    Basic health check - process is alive.

    Returns 200 if the application is running.
    """
    return {"status": "healthy"}


@router.get("/ready")
async def ready(response: Response, db: Session = Depends(get_db)):
    """
    Readiness check - verifies database connectivity and required tables.

    Returns 200 if ready to accept traffic, 503 if not ready.
    """
    try:
        connection = db.connection()
        connection.execute(text("SELECT 1"))
        existing_tables = set(inspect(connection).get_table_names())
    except SQLAlchemyError as e:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {
            "status": "not_ready",
            "database": "disconnected",
            "error": str(e),
            "message": "Database connection failed"
        }

    missing_tables = sorted(set(REQUIRED_TABLES) - existing_tables)
    if missing_tables:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {
            "status": "not_ready",
            "database": "connected",
            "tables": "missing",
            "missing_tables": missing_tables,
            "message": "Restart the service or call /api/migrate to create tables"
        }

    return {
        "status": "ready",
        "database": "connected",
        "tables": "present"
    }
