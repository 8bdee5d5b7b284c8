"""Shared types and inference rules for external tracker sync."""
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from app.services.diagnostics import format_timestamp, to_optional_int
from app.services.feedback_text import (
    extract_leading_bracket_tokens,
    strip_leading_bracket_prefixes,
)

GH_PRIORITY_CRITICAL = ["critical", "p0", "urgent", "blocker"]
GH_PRIORITY_HIGH = ["high", "p1", "important"]
GH_PRIORITY_LOW = ["low", "p3", "minor", "nice-to-have"]
BUG_KEYWORDS = ["bug", "crash", "broken", "regression", "error", "failure", "fix"]
QUESTION_KEYWORDS = ["question", "support", "help"]
FEATURE_KEYWORDS = ["feature", "enhancement", "request", "idea"]
FEATUREBASE_IN_REVIEW_KEYWORDS = ["in review", "in-review", "in_review", "reviewing"]

MAX_DESCRIPTION_BODY_CHARS = 7000

CLOSED_STATUSES = ("resolved", "closed")


@dataclass
class ExternalFeedbackRecord:
    """One outstanding item fetched from an external tracker."""
    source: str  # github, featurebase
    external_id: str
    external_url: str
    title: str
    body: str
    type: str
    priority: str
    tags: list[str] = field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""


@dataclass
class SourceSyncSummary:
    fetched: int = 0
    inserted: int = 0
    updated: int = 0
    reopened: int = 0
    resolved: int = 0
    skipped: bool = False
    skip_reason: Optional[str] = None

    def to_api(self) -> dict:
        data = {
            "fetched": self.fetched,
            "inserted": self.inserted,
            "updated": self.updated,
            "reopened": self.reopened,
            "resolved": self.resolved,
            "skipped": self.skipped,
        }
        if self.skip_reason is not None:
            data["skipReason"] = self.skip_reason
        return data


def as_record(value: Any) -> Optional[dict]:
    return value if isinstance(value, dict) else None


def normalize_tag(value: str) -> str:
    """Lowercase slug form of a label: ``"Nice to Have!"`` -> ``nice-to-have``."""
    return re.sub(r"[^a-z0-9]+", "-", value.strip().lower()).strip("-")


def merge_tags(existing: list[str], incoming: list[str]) -> list[str]:
    """Union of two tag lists, order preserving, case-insensitive."""
    merged = []
    seen = set()
    for tag in [*existing, *incoming]:
        trimmed = tag.strip()
        if not trimmed:
            continue
        key = trimmed.lower()
        if key in seen:
            continue
        seen.add(key)
        merged.append(trimmed)
    return merged


def now_iso() -> str:
    return format_timestamp(datetime.now(timezone.utc))


def normalize_timestamp(value: Any, fallback_iso: str) -> str:
    """ISO-8601 UTC form of an upstream timestamp, or the fallback."""
    if not isinstance(value, str) or not value:
        return fallback_iso
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return fallback_iso
    return format_timestamp(parsed)


def parse_iso(value: str) -> datetime:
    """Parse a timestamp produced by ``normalize_timestamp``."""
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def trim_body(body: str) -> str:
    normalized = body.strip()
    if len(normalized) <= MAX_DESCRIPTION_BODY_CHARS:
        return normalized
    return f"{normalized[:MAX_DESCRIPTION_BODY_CHARS]}\n\n[truncated]"


def has_any_keyword(text: str, keywords: list[str]) -> bool:
    lowered = text.lower()
    return any(keyword in lowered for keyword in keywords)


def infer_priority_from_labels(labels: list[str]) -> str:
    lowered = [label.lower() for label in labels]

    def matches(needles: list[str]) -> bool:
        return any(needle in label for label in lowered for needle in needles)

    if matches(GH_PRIORITY_CRITICAL):
        return "critical"
    if matches(GH_PRIORITY_HIGH):
        return "high"
    if matches(GH_PRIORITY_LOW):
        return "low"
    return "medium"


def infer_type(title: str, body: str, labels: list[str]) -> str:
    """
    Guess the feedback type of an external item.

    Leading title tokens such as ``[Bug]`` or ``[Q]`` win; otherwise the
    title, body and labels are searched for bug, then question keywords.
    Anything else is a feature request.
    """
    tokens = [token.lower() for token in extract_leading_bracket_tokens(title).tokens]
    if any(keyword in token for token in tokens for keyword in BUG_KEYWORDS):
        return "Bug Report"
    if any(token == "q" or any(k in token for k in QUESTION_KEYWORDS) for token in tokens):
        return "Question"
    if any(keyword in token for token in tokens for keyword in FEATURE_KEYWORDS):
        return "Feature Request"

    joined = "\n".join([title, body, *labels])
    if has_any_keyword(joined, BUG_KEYWORDS):
        return "Bug Report"
    if has_any_keyword(joined, QUESTION_KEYWORDS):
        return "Question"
    return "Feature Request"


def build_description(record: ExternalFeedbackRecord) -> str:
    """Title (without bracket prefixes), link and body, separated by blank lines."""
    title = record.title.strip()
    cleaned = strip_leading_bracket_prefixes(title)
    parts = [cleaned or title, record.external_url]

    body = trim_body(record.body)
    if body:
        parts.append(body)

    return "\n\n".join(parts)


def to_external_id(value: Any) -> Optional[str]:
    number = to_optional_int(value)
    return None if number is None else str(number)
