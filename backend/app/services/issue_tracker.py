"""
Issue tracker (GitHub) integration.

Creates one issue per "my" action item with the meeting context in the body,
keeps the account labels in sync and imports repository issues as tasks.
Every call goes through the RateLimiter; transient failures are retried with
backoff, and a failed item never stops the batch.
"""

import logging
from dataclasses import dataclass, field, asdict
from datetime import date
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import ConfigurationError, ExternalServiceError
from app.models import Account, ActionItem, MeetingRecap
from app.services.normalization import utc_now, normalization_service as norm
from app.services.rate_limiter import RateLimiter
from app.services.source_ingestion import SourceIngestionService

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {403, 429, 500, 502, 503, 504}


# ============================================================================
# CLIENT
# ============================================================================

class GitHubIssueClient:
    """Minimal GitHub REST client for issues and labels."""

    def __init__(
        self,
        token: str,
        owner: str,
        repo: str,
        api_url: Optional[str] = None,
        limiter: Optional[RateLimiter] = None,
        max_retries: Optional[int] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.owner = owner
        self.repo = repo
        self.api_url = (api_url or settings.GITHUB_API_URL).rstrip("/")
        self.limiter = limiter or RateLimiter()
        self.max_retries = max_retries if max_retries is not None else settings.GITHUB_MAX_RETRIES
        self.timeout = timeout if timeout is not None else settings.GITHUB_TIMEOUT
        self.transport = transport
        self.headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    @classmethod
    def from_settings(cls, **kwargs) -> "GitHubIssueClient":
        """
        Raises:
            ConfigurationError: token or repository not configured
        """
        missing = [
            name for name in ("GITHUB_TOKEN", "GITHUB_ISSUE_REPO_OWNER", "GITHUB_ISSUE_REPO_NAME")
            if not getattr(settings, name)
        ]
        if missing:
            raise ConfigurationError(f"Issue tracker not configured, missing: {', '.join(missing)}")
        return cls(
            token=settings.GITHUB_TOKEN,
            owner=settings.GITHUB_ISSUE_REPO_OWNER,
            repo=settings.GITHUB_ISSUE_REPO_NAME,
            **kwargs
        )

    @property
    def repo_path(self) -> str:
        return f"/repos/{self.owner}/{self.repo}"

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """
        Rate-limited request with bounded retries.

        403/429/5xx and transport errors are retried with exponential
        backoff; other 4xx fail immediately.
        """
        last_error: Optional[ExternalServiceError] = None

        for attempt in range(self.max_retries + 1):
            await self.limiter.wait_before_request()
            try:
                async with httpx.AsyncClient(
                    base_url=self.api_url,
                    headers=self.headers,
                    timeout=self.timeout,
                    transport=self.transport
                ) as client:
                    response = await client.request(method, path, **kwargs)
            except httpx.TransportError as e:
                self.limiter.mark_error("transport")
                last_error = ExternalServiceError(f"{method} {path} failed: {e}", retryable=True)
                continue

            if response.status_code in RETRYABLE_STATUS_CODES:
                self.limiter.mark_error(f"http {response.status_code}")
                last_error = ExternalServiceError(
                    f"{method} {path} returned {response.status_code}: {response.text[:200]}",
                    status_code=response.status_code,
                    retryable=True
                )
                continue

            if response.status_code >= 400:
                raise ExternalServiceError(
                    f"{method} {path} returned {response.status_code}: {response.text[:200]}",
                    status_code=response.status_code
                )

            self.limiter.mark_success()
            return response

        logger.error(f"Giving up on {method} {path} after {self.max_retries + 1} attempts")
        raise last_error

    async def create_issue(self, title: str, body: str, labels: List[str]) -> Dict[str, Any]:
        response = await self._request(
            "POST", f"{self.repo_path}/issues",
            json={"title": title, "body": body, "labels": labels}
        )
        return response.json()

    async def list_labels(self) -> List[Dict[str, Any]]:
        labels = []
        page = 1
        while True:
            response = await self._request(
                "GET", f"{self.repo_path}/labels", params={"per_page": 100, "page": page}
            )
            batch = response.json()
            labels.extend(batch)
            if len(batch) < 100:
                return labels
            page += 1

    async def create_label(self, name: str, color: str, description: str = "") -> Dict[str, Any]:
        response = await self._request(
            "POST", f"{self.repo_path}/labels",
            json={"name": name, "color": color, "description": description}
        )
        return response.json()

    async def delete_label(self, name: str):
        await self._request("DELETE", f"{self.repo_path}/labels/{quote(name, safe='')}")

    async def list_issues(self, state: str = "all") -> List[Dict[str, Any]]:
        """Repository issues (pull requests filtered out)."""
        issues = []
        page = 1
        while True:
            response = await self._request(
                "GET", f"{self.repo_path}/issues",
                params={"state": state, "per_page": 100, "page": page}
            )
            batch = response.json()
            issues.extend(i for i in batch if "pull_request" not in i)
            if len(batch) < 100:
                return issues
            page += 1


# ============================================================================
# ISSUE CONTENT
# ============================================================================

def account_label(account_name: str) -> str:
    return f"{settings.ACCOUNT_LABEL_PREFIX}{account_name}"


def build_labels(recap: Optional[MeetingRecap]) -> List[str]:
    labels = [settings.AUTO_GENERATED_LABEL]
    if recap is not None and recap.account_name:
        labels.append(account_label(recap.account_name))
    return labels


def _long_date(value) -> str:
    return f"{value:%A, %B} {value.day}, {value.year}"


def build_issue_body(item: ActionItem, recap: Optional[MeetingRecap], today: Optional[date] = None) -> str:
    """Issue body: the item's description followed by a Meeting Context block."""
    today = today or utc_now().date()
    body = item.description or ""

    body += "\n\n---\n\n"
    body += "## Meeting Context\n\n"
    body += f"**Meeting:** {(recap.title if recap else None) or 'Unknown'}\n"
    if recap is not None:
        if recap.start:
            body += f"**Date:** {_long_date(recap.start)}\n"
        if recap.account_name:
            body += f"**Account:** {recap.account_name}\n"
        if recap.external_attendees:
            body += f"**External Attendees:** {', '.join(recap.external_attendees)}\n"
        if recap.meeting_link:
            body += f"**Meeting Recap:** [View Recap]({recap.meeting_link})\n"
        if recap.summary:
            body += f"\n### Meeting Summary\n{recap.summary}\n"

    body += f"\n---\n*Auto-generated from meeting recap on {today.isoformat()}*"
    return body


# ============================================================================
# SYNC SERVICE
# ============================================================================

@dataclass
class IssueSyncResult:
    created: int = 0
    skipped: int = 0
    errors: int = 0
    error_messages: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class LabelSyncResult:
    created: int = 0
    kept: int = 0
    removed: int = 0
    stale: int = 0
    errors: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class IssueSyncService:
    """Pushes action items and account labels to the issue tracker."""

    def __init__(self, db: Session, client: Optional[GitHubIssueClient] = None):
        self.db = db
        self.client = client or GitHubIssueClient.from_settings()

    async def sync_action_items(self, recap_id: Optional[str] = None) -> IssueSyncResult:
        """
        Create issues for "my" action items that have none yet.

        Args:
            recap_id: restrict to one recap's items

        Returns:
            IssueSyncResult with created / skipped / errors
        """
        result = IssueSyncResult()

        query = self.db.query(ActionItem).filter(ActionItem.owner == "mine")
        if recap_id:
            query = query.filter(ActionItem.recap_id == recap_id)
        items = query.order_by(ActionItem.recap_id, ActionItem.index).all()

        for item in items:
            if item.external_issue_id:
                result.skipped += 1
                continue

            recap = item.recap
            try:
                issue = await self.client.create_issue(
                    title=item.title or "Untitled action item",
                    body=build_issue_body(item, recap),
                    labels=build_labels(recap)
                )
            except ExternalServiceError as e:
                result.errors += 1
                result.error_messages.append(f"{item.item_key}: {e}")
                logger.warning(f"Issue creation failed for action item {item.item_key}: {e}")
                continue

            item.external_issue_id = str(issue.get("node_id") or issue.get("id"))
            item.external_issue_number = issue.get("number")
            self.db.commit()
            result.created += 1
            logger.info(f"Created issue #{item.external_issue_number} for action item {item.item_key}")

        logger.info(
            f"Issue sync: {result.created} created, {result.skipped} skipped, {result.errors} errors"
        )
        logger.debug(f"Rate limiter stats: {self.client.limiter.get_stats()}")
        return result

    async def sync_account_labels(self, remove_stale: bool = False) -> LabelSyncResult:
        """Ensure one account label per active account; optionally delete stale ones."""
        result = LabelSyncResult()
        prefix = settings.ACCOUNT_LABEL_PREFIX

        accounts = self.db.query(Account).filter(Account.is_active.is_(True)).all()
        desired = {account_label(a.name) for a in accounts if a.name}

        existing_labels = await self.client.list_labels()
        existing = {l["name"] for l in existing_labels if l.get("name", "").startswith(prefix)}

        for name in sorted(desired):
            if name in existing:
                result.kept += 1
                continue
            try:
                await self.client.create_label(
                    name, settings.ACCOUNT_LABEL_COLOR, f"Account: {name[len(prefix):]}"
                )
                result.created += 1
            except ExternalServiceError as e:
                result.errors += 1
                logger.warning(f"Could not create label {name}: {e}")

        stale = sorted(existing - desired)
        result.stale = len(stale)
        if remove_stale:
            for name in stale:
                try:
                    await self.client.delete_label(name)
                    result.removed += 1
                except ExternalServiceError as e:
                    result.errors += 1
                    logger.warning(f"Could not delete label {name}: {e}")

        logger.info(
            f"Label sync: {result.created} created, {result.kept} kept, "
            f"{result.removed} removed, {result.stale} stale"
        )
        return result

    async def import_tasks(self):
        """Fetch repository issues and upsert them as tasks."""
        issues = await self.client.list_issues()
        records = [issue_to_task_record(issue) for issue in issues]
        return SourceIngestionService(self.db).ingest_tasks(records)


def issue_to_task_record(issue: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "task_id": str(issue.get("node_id") or issue.get("id")),
        "number": issue.get("number"),
        "title": issue.get("title") or "",
        "description": issue.get("body") or "",
        "state": (issue.get("state") or "open").upper(),
        "url": issue.get("html_url"),
        "labels": [l.get("name") for l in issue.get("labels", []) if isinstance(l, dict)],
        "created_at": norm.parse_datetime(issue.get("created_at")),
        "updated_at": norm.parse_datetime(issue.get("updated_at")),
        "closed_at": norm.parse_datetime(issue.get("closed_at")),
    }
