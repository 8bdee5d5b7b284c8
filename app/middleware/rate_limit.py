"""In-memory rate limiting and duplicate-submission detection.

State is process-local: with several workers each keeps its own windows.
"""
import hashlib
import time
import logging
from typing import Dict, Optional, Tuple
from collections import defaultdict
from dataclasses import dataclass, field

from fastapi import Request

from app.settings import settings

DOWNLOAD_TRACK_ENDPOINT = "/api/downloads/track"


@dataclass
class RateLimitBucket:
    """Request timestamps inside the current window."""
    requests: list = field(default_factory=list)


class RateLimiter:
    """In-memory rate limiter using sliding window."""

    def __init__(self, prune_interval: float = 60.0):
        # Store: {endpoint: {client_ip: RateLimitBucket}}
        self.buckets: Dict[str, Dict[str, RateLimitBucket]] = defaultdict(
            lambda: defaultdict(RateLimitBucket)
        )
        self.prune_interval = prune_interval
        self._last_prune = time.time()
        self.logger = logging.getLogger("app.ratelimit")

    def _prune(self, now: float, window_seconds: int) -> None:
        """Drop buckets whose requests have all expired."""
        if now - self._last_prune < self.prune_interval:
            return
        self._last_prune = now

        for endpoint in list(self.buckets):
            clients = self.buckets[endpoint]
            for client_ip in list(clients):
                if all(now - ts >= window_seconds for ts in clients[client_ip].requests):
                    del clients[client_ip]
            if not clients:
                del self.buckets[endpoint]

    def is_allowed(
        self,
        client_ip: str,
        endpoint: str,
        max_requests: int,
        window_seconds: int
    ) -> Tuple[bool, int]:
        """
        Check if request is allowed under rate limit.

        Args:
            client_ip: Client IP address
            endpoint: API endpoint identifier
            max_requests: Maximum requests allowed in window
            window_seconds: Time window in seconds

        Returns:
            Tuple of (is_allowed, retry_after_seconds)
        """
        now = time.time()
        self._prune(now, window_seconds)
        bucket = self.buckets[endpoint][client_ip]

        # Remove expired timestamps
        bucket.requests = [
            ts for ts in bucket.requests
            if now - ts < window_seconds
        ]

        if len(bucket.requests) < max_requests:
            bucket.requests.append(now)
            return True, 0

        oldest_request = min(bucket.requests)
        retry_after = int(window_seconds - (now - oldest_request)) + 1

        return False, max(retry_after, 1)

    def reset(self):
        """Reset all rate limit buckets (for testing)."""
        self.buckets.clear()


class DedupCache:
    """Remembers request fingerprints for a short TTL."""

    def __init__(self, ttl_seconds: int):
        self.ttl_seconds = ttl_seconds
        self.entries: Dict[str, float] = {}

    @staticmethod
    def fingerprint(*parts: Optional[str]) -> str:
        joined = "|".join(part or "" for part in parts)
        return hashlib.sha256(joined.encode("utf-8")).hexdigest()

    def _evict(self, now: float) -> None:
        expired = [key for key, expires_at in self.entries.items() if expires_at <= now]
        for key in expired:
            del self.entries[key]

    def contains(self, key: str) -> bool:
        """True if ``key`` was remembered within the TTL."""
        self._evict(time.time())
        return key in self.entries

    def remember(self, key: str) -> None:
        now = time.time()
        self._evict(now)
        self.entries[key] = now + self.ttl_seconds

    def reset(self):
        self.entries.clear()


# Global instances
rate_limiter = RateLimiter()
download_dedup = DedupCache(ttl_seconds=settings.DOWNLOAD_DEDUP_WINDOW)


def get_client_ip(request: Request) -> str:
    """Client address, honouring proxy headers."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    for header in ("x-real-ip", "cf-connecting-ip"):
        value = (request.headers.get(header) or "").strip()
        if value:
            return value
    return request.client.host if request.client else "unknown"


def check_download_rate_limit(request: Request, client_ip: str) -> Tuple[bool, int]:
    """Apply the download-tracking limit for ``client_ip``."""
    if not settings.RATE_LIMIT_ENABLED:
        return True, 0

    allowed, retry_after = rate_limiter.is_allowed(
        client_ip=client_ip,
        endpoint=DOWNLOAD_TRACK_ENDPOINT,
        max_requests=settings.RATE_LIMIT_DOWNLOAD_REQUESTS,
        window_seconds=settings.RATE_LIMIT_DOWNLOAD_WINDOW,
    )
    if not allowed:
        rate_limiter.logger.warning(
            f"Rate limit exceeded for {client_ip} on {DOWNLOAD_TRACK_ENDPOINT}",
            extra={
                'request_id': getattr(request.state, 'request_id', None),
                'extra_fields': {
                    'client_ip': client_ip,
                    'endpoint': DOWNLOAD_TRACK_ENDPOINT,
                    'retry_after': retry_after
                }
            }
        )
    return allowed, retry_after
