"""GitHub issues as an external feedback source."""
import logging
import re
from typing import Any, Optional
from urllib.parse import quote

import httpx

from app.services.diagnostics import to_string
from app.services.sync.records import (
    ExternalFeedbackRecord,
    as_record,
    infer_priority_from_labels,
    infer_type,
    merge_tags,
    normalize_tag,
    normalize_timestamp,
    now_iso,
    to_external_id,
)
from app.settings import settings

logger = logging.getLogger(__name__)

LINK_URL = re.compile(r"<([^>]+)>")


class GitHubSyncError(Exception):
    """GitHub returned an error or an unexpected payload."""


def parse_link_header_next(link_header: Optional[str]) -> Optional[str]:
    """URL of the ``rel="next"`` page from a GitHub ``Link`` header."""
    if not link_header:
        return None
    for part in link_header.split(","):
        if 'rel="next"' not in part:
            continue
        match = LINK_URL.search(part)
        if match:
            return match.group(1)
    return None


def parse_github_labels(raw_labels: Any) -> list[str]:
    if not isinstance(raw_labels, list):
        return []

    labels = []
    for raw in raw_labels:
        if isinstance(raw, str):
            labels.append(raw.strip())
            continue
        record = as_record(raw)
        if record is None:
            continue
        name = to_string(record.get("name")).strip()
        if name:
            labels.append(name)
    return labels


def issue_to_record(issue: dict) -> Optional[ExternalFeedbackRecord]:
    """Map one issue payload to a record; pull requests and incomplete items give None."""
    if "pull_request" in issue:
        return None

    external_id = to_external_id(issue.get("number"))
    if external_id is None:
        return None

    url = to_string(issue.get("html_url")).strip()
    title = to_string(issue.get("title")).strip()
    if not url or not title:
        return None

    body = to_string(issue.get("body")).strip()
    labels = parse_github_labels(issue.get("labels"))
    created_at = normalize_timestamp(issue.get("created_at"), now_iso())
    updated_at = normalize_timestamp(issue.get("updated_at"), created_at)

    label_tags = [f"gh:{tag}" for tag in (normalize_tag(label) for label in labels) if tag]

    return ExternalFeedbackRecord(
        source="github",
        external_id=external_id,
        external_url=url,
        title=title,
        body=body,
        type=infer_type(title, body, labels),
        priority=infer_priority_from_labels(labels),
        tags=merge_tags(["source:github"], label_tags),
        created_at=created_at,
        updated_at=updated_at,
    )


class GitHubIssueSource:
    """Fetches the open issues of one repository."""

    def __init__(
        self,
        owner: Optional[str] = None,
        repo: Optional[str] = None,
        token: Optional[str] = None,
        api_base: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.owner = owner or settings.FEEDBACK_SYNC_GITHUB_OWNER
        self.repo = repo or settings.FEEDBACK_SYNC_GITHUB_REPO
        self.token = token if token is not None else settings.GITHUB_TOKEN
        self.api_base = (api_base or settings.GITHUB_API_BASE).rstrip("/")
        self.transport = transport

    def _get_headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": "retrace-feedback-sync",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def first_page_url(self) -> str:
        return (
            f"{self.api_base}/repos/{quote(self.owner, safe='')}/{quote(self.repo, safe='')}"
            "/issues?state=open&sort=updated&direction=desc&per_page=100"
        )

    async def fetch_outstanding(self) -> list[ExternalFeedbackRecord]:
        """
        Fetch every open issue, following pagination.

        Raises:
            GitHubSyncError: On a non-2xx response or a non-array body
        """
        records: list[ExternalFeedbackRecord] = []
        seen: set[str] = set()
        next_url: Optional[str] = self.first_page_url()

        async with httpx.AsyncClient(
            timeout=settings.SYNC_HTTP_TIMEOUT,
            headers=self._get_headers(),
            transport=self.transport,
        ) as client:
            while next_url:
                response = await client.get(next_url)
                if not response.is_success:
                    raise GitHubSyncError(
                        f"GitHub sync failed ({response.status_code}): {response.text[:500]}"
                    )

                payload = response.json()
                if not isinstance(payload, list):
                    raise GitHubSyncError("GitHub sync failed: expected an array response.")

                for item in payload:
                    issue = as_record(item)
                    if issue is None:
                        continue
                    record = issue_to_record(issue)
                    if record is None or record.external_id in seen:
                        continue
                    seen.add(record.external_id)
                    records.append(record)

                next_url = parse_link_header_next(response.headers.get("link"))

        logger.info(f"GitHub: fetched {len(records)} open issues from {self.owner}/{self.repo}")
        return records
