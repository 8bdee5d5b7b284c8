"""Featurebase roadmap posts as an external feedback source.

Featurebase has no public API for this, so the public board pages are
scraped. Posts are read from embedded ``application/json`` script blocks;
when a page carries none, ``/p/<slug>`` links are used instead. Only posts
whose status reads "in review" are imported.
"""
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
from bs4 import BeautifulSoup

from app.services.diagnostics import to_optional_int, to_string
from app.services.sync.records import (
    FEATUREBASE_IN_REVIEW_KEYWORDS,
    ExternalFeedbackRecord,
    as_record,
    infer_priority_from_labels,
    infer_type,
    merge_tags,
    normalize_tag,
    normalize_timestamp,
    now_iso,
)
from app.settings import settings

logger = logging.getLogger(__name__)

POST_HREF = re.compile(r"^/p/[^?#]+")
STATUS_VALUE_KEYS = ("type", "name", "key", "label", "title", "text", "status", "value")
STATUS_FIELDS = (
    "status", "postStatus", "postStatusType", "post_status", "post_status_type",
    "statusName", "state", "workflowStatus", "workflow_state", "badge", "flag",
)
POST_MARKERS = ("content", "tags", "status", "postStatus")


@dataclass
class FeaturebaseFetchResult:
    items: list[ExternalFeedbackRecord] = field(default_factory=list)
    skipped: bool = False
    skip_reason: Optional[str] = None


def _first(post: dict, *keys: str) -> Any:
    """First truthy value among ``keys``."""
    for key in keys:
        value = post.get(key)
        if value:
            return value
    return None


def html_to_text(value: str) -> str:
    text = BeautifulSoup(value, "html.parser").get_text(" ")
    return re.sub(r"\s+", " ", text).strip()


def humanize_slug(slug: str) -> str:
    normalized = re.sub(r"[-_]+", " ", slug.lstrip("/")).strip()
    return normalized or "Untitled Featurebase post"


def resolve_post_url(raw_url: str, organization: str) -> str:
    base = f"https://{organization}.featurebase.app"
    trimmed = raw_url.strip()
    if trimmed.startswith(("http://", "https://")):
        return trimmed
    if trimmed.startswith("/"):
        return f"{base}{trimmed}"
    if not trimmed:
        return base
    return f"{base}/{trimmed}"


def parse_featurebase_tags(raw_tags: Any) -> list[str]:
    """Tag names from a list of strings/objects, a JSON array string or a CSV string."""
    if isinstance(raw_tags, str):
        trimmed = raw_tags.strip()
        if not trimmed:
            return []
        try:
            parsed = json.loads(trimmed)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            return parse_featurebase_tags(parsed)
        return [tag.strip() for tag in trimmed.split(",") if tag.strip()]

    if not isinstance(raw_tags, list):
        return []

    tags = []
    for raw in raw_tags:
        if isinstance(raw, str):
            tags.append(raw.strip())
            continue
        record = as_record(raw)
        if record is None:
            continue
        name = to_string(record.get("name")).strip() or to_string(record.get("key")).strip()
        if name:
            tags.append(name)
    return tags


def collect_post_candidates(value: Any, candidates: list[dict]) -> None:
    """Recursively gather objects that look like posts (a title plus a post field)."""
    if isinstance(value, list):
        for item in value:
            collect_post_candidates(item, candidates)
        return

    record = as_record(value)
    if record is None:
        return

    title = to_string(record.get("title")).strip()
    if title and (
        isinstance(record.get("postUrl"), str)
        or isinstance(record.get("slug"), str)
        or record.get("postNumber") is not None
        or any(record.get(marker) is not None for marker in POST_MARKERS)
    ):
        candidates.append(record)

    for nested in record.values():
        if isinstance(nested, (dict, list)):
            collect_post_candidates(nested, candidates)


def collect_status_strings(post: dict) -> list[str]:
    values = []

    def push(value: Any) -> None:
        if isinstance(value, str):
            normalized = value.strip().lower()
            if normalized:
                values.append(normalized)
            return
        record = as_record(value)
        if record is None:
            return
        for key in STATUS_VALUE_KEYS:
            candidate = to_string(record.get(key)).strip().lower()
            if candidate:
                values.append(candidate)

    for name in STATUS_FIELDS:
        push(post.get(name))
    for collection in (post.get("badges"), post.get("flags")):
        if isinstance(collection, list):
            for item in collection:
                push(item)

    return values


def is_in_review(post: dict) -> bool:
    return any(
        keyword in value
        for value in collect_status_strings(post)
        for keyword in FEATUREBASE_IN_REVIEW_KEYWORDS
    )


def candidate_to_record(post: dict, organization: str, fallback_iso: str) -> Optional[ExternalFeedbackRecord]:
    if not is_in_review(post):
        return None

    title = to_string(post.get("title")).strip()
    if not title:
        return None

    number = post.get("postNumber")
    post_number = to_optional_int(number if number is not None else post.get("number"))
    post_id = to_string(post.get("id")).strip()
    slug = to_string(post.get("slug")).strip()
    if post_number is not None:
        external_id = str(post_number)
    else:
        external_id = post_id or slug
    if not external_id:
        return None

    raw_url = to_string(_first(post, "postUrl", "url", "path")).strip()
    if not raw_url and slug:
        raw_url = f"/p/{slug}"

    content = html_to_text(to_string(_first(post, "content", "description", "body")).strip())
    tags = parse_featurebase_tags(_first(post, "tags", "labels", "tagNames", "postTags"))
    created_at = normalize_timestamp(_first(post, "createdAt", "created_at"), fallback_iso)
    updated_at = normalize_timestamp(_first(post, "updatedAt", "updated_at"), created_at)

    fb_tags = [f"fb:{tag}" for tag in (normalize_tag(t) for t in tags) if tag]

    return ExternalFeedbackRecord(
        source="featurebase",
        external_id=external_id,
        external_url=resolve_post_url(raw_url, organization),
        title=title,
        body=content,
        type=infer_type(title, content, tags),
        priority=infer_priority_from_labels(tags),
        tags=merge_tags(["source:featurebase"], fb_tags),
        created_at=created_at,
        updated_at=updated_at,
    )


def extract_json_candidates(soup: BeautifulSoup) -> list[dict]:
    candidates: list[dict] = []
    for script in soup.find_all("script", attrs={"type": "application/json"}):
        payload = (script.string or script.get_text() or "").strip()
        if not payload:
            continue
        try:
            parsed = json.loads(payload)
        except json.JSONDecodeError:
            continue
        collect_post_candidates(parsed, candidates)
    return candidates


def extract_records_from_anchors(soup: BeautifulSoup, organization: str) -> list[ExternalFeedbackRecord]:
    """Records for every ``/p/<slug>`` link; status is unknown so all are kept."""
    fallback_iso = now_iso()
    records = []
    seen = set()

    for anchor in soup.find_all("a", href=POST_HREF):
        href = to_string(anchor.get("href")).strip()
        slug = re.split(r"[?#]", href[len("/p/"):])[0].strip()
        if not slug:
            continue

        external_id = slug.lower()
        if external_id in seen:
            continue
        seen.add(external_id)

        text = re.sub(r"\s+", " ", anchor.get_text(" ")).strip()
        title = text[:220] if text else humanize_slug(slug)
        records.append(ExternalFeedbackRecord(
            source="featurebase",
            external_id=external_id,
            external_url=resolve_post_url(href, organization),
            title=title,
            body=text,
            type=infer_type(title, text, []),
            priority="medium",
            tags=["source:featurebase", "fb:scraped"],
            created_at=fallback_iso,
            updated_at=fallback_iso,
        ))

    return records


def extract_records(html: str, organization: str) -> list[ExternalFeedbackRecord]:
    """
    Records from one page.

    Embedded JSON is preferred; the anchor scrape only runs when the page
    has no post-like JSON objects at all.
    """
    soup = BeautifulSoup(html, "html.parser")
    candidates = extract_json_candidates(soup)
    if not candidates:
        return extract_records_from_anchors(soup, organization)

    fallback_iso = now_iso()
    records = []
    seen = set()
    for candidate in candidates:
        record = candidate_to_record(candidate, organization, fallback_iso)
        if record is None or record.external_id in seen:
            continue
        seen.add(record.external_id)
        records.append(record)
    return records


class FeaturebaseSource:
    """Scrapes the roadmap and board pages of one Featurebase organization."""

    def __init__(
        self,
        organization: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.organization = organization or settings.FEATUREBASE_ORGANIZATION
        self.transport = transport

    @property
    def source_urls(self) -> list[str]:
        base = f"https://{self.organization}.featurebase.app"
        return [f"{base}/roadmap", f"{base}/"]

    async def fetch_outstanding(self) -> FeaturebaseFetchResult:
        """
        Fetch in-review posts. Never raises for upstream problems; a failed
        or empty scrape is reported as skipped with a reason.
        """
        urls = self.source_urls
        records: list[ExternalFeedbackRecord] = []
        seen: set[str] = set()
        errors: list[str] = []
        empty_urls: list[str] = []

        async with httpx.AsyncClient(
            timeout=settings.SYNC_HTTP_TIMEOUT,
            headers={"Accept": "text/html,application/xhtml+xml"},
            follow_redirects=True,
            transport=self.transport,
        ) as client:
            for url in urls:
                try:
                    response = await client.get(url)
                except httpx.HTTPError as e:
                    logger.warning(f"Featurebase fetch failed for {url}: {e}")
                    errors.append(f"{url} -> {e}")
                    continue

                if not response.is_success:
                    errors.append(f"{url} -> {response.status_code}: {response.text[:300]}")
                    continue

                page_records = extract_records(response.text, self.organization)
                if not page_records:
                    empty_urls.append(url)
                for record in page_records:
                    if record.external_id in seen:
                        continue
                    seen.add(record.external_id)
                    records.append(record)

        if records:
            logger.info(f"Featurebase: found {len(records)} posts in review")
            return FeaturebaseFetchResult(items=records)

        if len(errors) == len(urls):
            reason = f"Featurebase scrape failed: {' | '.join(errors)[:700]}"
        elif errors:
            reason = (
                "Featurebase scrape found no posts marked 'in review'. "
                f"Partial errors: {' | '.join(errors)[:700]}"
            )
        elif empty_urls:
            reason = f"Featurebase scrape found no posts marked 'in review' on: {', '.join(empty_urls)}"
        else:
            reason = "Featurebase scrape found no posts marked 'in review'."

        return FeaturebaseFetchResult(skipped=True, skip_reason=reason)
