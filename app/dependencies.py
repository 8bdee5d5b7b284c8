"""FastAPI dependencies for authentication."""
import hmac
import logging
from typing import Optional

from fastapi import Header, HTTPException, status

from app.settings import settings

logger = logging.getLogger(__name__)


def _extract_bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return credentials.strip() or None


async def require_bearer_token(
    authorization: Optional[str] = Header(None),
) -> None:
    """
    Require the dashboard bearer token (for internal API endpoints).

    Raises:
        HTTPException 500 if no token is configured on the server
        HTTPException 401 if the token is missing or wrong
    """
    expected = settings.bearer_token
    if not expected:
        logger.error("BEARER_TOKEN is not configured; rejecting internal API request")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server auth is not configured"
        )

    provided = _extract_bearer(authorization)
    if not provided:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token",
            headers={"WWW-Authenticate": "Bearer"}
        )

    if not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid bearer token",
            headers={"WWW-Authenticate": "Bearer"}
        )
