"""FastAPI application entrypoint."""
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.routers import health, feedback, feedback_sync, downloads, migrate
from app.settings import settings
from app.startup import run_startup
from app.middleware import RequestLoggingMiddleware, setup_logging

# Configure logging before anything else
setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Validate settings and prepare the database before accepting traffic."""
    logger.info(f"Starting application in {settings.ENV} environment")

    try:
        run_startup()
    except Exception as e:
        logger.error(f"Startup failed: {e}")
        logger.error("Application will not start")
        raise

    yield

    logger.info("Shutting down application")


app = FastAPI(
    title="Retrace Web API",
    description="Feedback intake, tracker sync and download analytics for Retrace",
    version="0.1.0",
    lifespan=lifespan
)

app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.detail},
        headers=getattr(exc, "headers", None)
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "error": f"{location}: {first.get('msg', 'Invalid request')}"}
    )


app.include_router(health.router)
app.include_router(feedback_sync.router)
app.include_router(feedback.router)
app.include_router(downloads.router)
app.include_router(migrate.router)
