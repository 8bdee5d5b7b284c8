"""Request logging, rate limiting and dedup."""
from .logging import RequestLoggingMiddleware, setup_logging
from .rate_limit import (
    DedupCache,
    RateLimiter,
    download_dedup,
    get_client_ip,
    rate_limiter,
)

__all__ = [
    "RequestLoggingMiddleware",
    "setup_logging",
    "RateLimiter",
    "DedupCache",
    "rate_limiter",
    "download_dedup",
    "get_client_ip",
]
