# tests/services/test_issue_sync.py
"""
Tests for the issue tracker integration

The GitHub API is replaced by httpx.MockTransport; the rate limiter gets a
recording sleep so nothing actually waits.

Coverage:
- Issue body and labels
- Only unsynced "my" items create issues
- Per-item failure does not stop the batch
- Retry with backoff on 429 / 5xx, immediate failure on other 4xx
- Label sync and task import
"""

import json
import pytest
from datetime import date, datetime

import httpx

from app.config import settings
from app.errors import ConfigurationError, ExternalServiceError
from app.models import Account, ActionItem, Task
from app.services.issue_tracker import (
    GitHubIssueClient,
    IssueSyncService,
    build_issue_body,
    build_labels,
    issue_to_task_record,
)
from app.services.rate_limiter import RateLimiter

from factories import make_recap, make_action_item


class FakeGitHub:
    """Records requests and answers from a queue of (status, body) per route."""

    def __init__(self):
        self.requests = []
        self.responses = {}
        self.issue_number = 0

    def queue(self, method, path, *responses):
        self.responses.setdefault((method, path), []).extend(responses)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        queued = self.responses.get(key)
        if queued:
            status, body = queued.pop(0)
            return httpx.Response(status, json=body)

        if key == ("POST", "/repos/acme-cs/tracker/issues"):
            self.issue_number += 1
            return httpx.Response(201, json={
                "id": 1000 + self.issue_number,
                "node_id": f"I_{self.issue_number}",
                "number": self.issue_number,
            })
        return httpx.Response(200, json=[])

    def bodies(self, method, path):
        return [
            json.loads(r.content) for r in self.requests
            if r.method == method and r.url.path == path
        ]


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def github():
    return FakeGitHub()


@pytest.fixture
def client(github, sleeps):
    async def record_sleep(delay):
        sleeps.append(delay)

    limiter = RateLimiter(min_interval=0.0, backoff_base=1.0, sleep=record_sleep)
    return GitHubIssueClient(
        token="test-token",
        owner="acme-cs",
        repo="tracker",
        api_url="https://api.github.test",
        limiter=limiter,
        max_retries=2,
        transport=httpx.MockTransport(github),
    )


@pytest.fixture
def recap_with_items(acme_registry):
    recap = make_recap("r1", datetime(2025, 6, 10, 15, 0), title="Acme Sync", summary="Went well")
    recap.account_name = "Acme Corp"
    recap.external_attendees = ["jane@acme.com"]
    recap.meeting_link = "https://app.recaps.test/engagements/r1"
    acme_registry.add(recap)
    acme_registry.flush()
    acme_registry.add_all([
        make_action_item("r1", 0, title="Send proposal"),
        make_action_item("r1", 1, title="Book QBR"),
        make_action_item("r1", 0, owner="others", title="Share data"),
    ])
    acme_registry.commit()
    return acme_registry


ISSUES_PATH = "/repos/acme-cs/tracker/issues"
LABELS_PATH = "/repos/acme-cs/tracker/labels"


# ============================================================================
# TEST: Content
# ============================================================================

class TestIssueContent:

    def test_body_has_meeting_context(self, recap_with_items):
        item = recap_with_items.query(ActionItem).filter_by(owner="mine", index=0).one()

        body = build_issue_body(item, item.recap, today=date(2025, 6, 11))

        assert body.startswith("Details\n\n---\n\n## Meeting Context\n\n")
        assert "**Meeting:** Acme Sync\n" in body
        assert "**Date:** Tuesday, June 10, 2025\n" in body
        assert "**Account:** Acme Corp\n" in body
        assert "**External Attendees:** jane@acme.com\n" in body
        assert "[View Recap](https://app.recaps.test/engagements/r1)" in body
        assert "### Meeting Summary\nWent well" in body
        assert body.endswith("*Auto-generated from meeting recap on 2025-06-11*")

    def test_labels(self, recap_with_items):
        item = recap_with_items.query(ActionItem).filter_by(owner="mine", index=0).one()
        assert build_labels(item.recap) == ["auto-generated", "account:Acme Corp"]
        assert build_labels(None) == ["auto-generated"]


# ============================================================================
# TEST: Action item sync
# ============================================================================

class TestSyncActionItems:

    @pytest.mark.asyncio
    async def test_creates_issue_per_my_item(self, recap_with_items, client, github):
        result = await IssueSyncService(recap_with_items, client=client).sync_action_items()

        assert result.created == 2
        assert [b["title"] for b in github.bodies("POST", ISSUES_PATH)] == ["Send proposal", "Book QBR"]

        items = recap_with_items.query(ActionItem).filter_by(owner="mine").order_by(ActionItem.index).all()
        assert [i.external_issue_id for i in items] == ["I_1", "I_2"]
        assert [i.external_issue_number for i in items] == [1, 2]
        assert github.requests[0].headers["Authorization"] == "Bearer test-token"

    @pytest.mark.asyncio
    async def test_never_recreates_existing_issue(self, recap_with_items, client, github):
        service = IssueSyncService(recap_with_items, client=client)
        await service.sync_action_items()

        second = await service.sync_action_items()

        assert second.created == 0
        assert second.skipped == 2
        assert len(github.bodies("POST", ISSUES_PATH)) == 2

    @pytest.mark.asyncio
    async def test_failed_item_does_not_stop_batch(self, recap_with_items, client, github):
        github.queue("POST", ISSUES_PATH, (422, {"message": "Validation Failed"}))

        result = await IssueSyncService(recap_with_items, client=client).sync_action_items()

        assert result.errors == 1
        assert result.created == 1
        assert "r1_0" in result.error_messages[0]
        first = recap_with_items.query(ActionItem).filter_by(owner="mine", index=0).one()
        assert first.external_issue_id is None

    @pytest.mark.asyncio
    async def test_restricted_to_recap(self, recap_with_items, client, github):
        result = await IssueSyncService(recap_with_items, client=client).sync_action_items(recap_id="other")
        assert result.created == 0
        assert github.requests == []


# ============================================================================
# TEST: Retries
# ============================================================================

class TestRetries:

    @pytest.mark.asyncio
    async def test_retries_rate_limit_with_backoff(self, client, github, sleeps):
        github.queue("POST", ISSUES_PATH, (429, {"message": "slow down"}), (503, {"message": "busy"}))

        issue = await client.create_issue("Title", "Body", ["auto-generated"])

        assert issue["number"] == 1
        assert len(github.requests) == 3
        assert sleeps == [1.0, 2.0]
        assert client.limiter.consecutive_errors == 0

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, client, github):
        github.queue("POST", ISSUES_PATH, *[(502, {}) for _ in range(3)])

        with pytest.raises(ExternalServiceError) as exc:
            await client.create_issue("Title", "Body", [])

        assert exc.value.status_code == 502
        assert exc.value.retryable is True
        assert len(github.requests) == 3

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, client, github):
        github.queue("POST", ISSUES_PATH, (404, {"message": "Not Found"}))

        with pytest.raises(ExternalServiceError) as exc:
            await client.create_issue("Title", "Body", [])

        assert exc.value.status_code == 404
        assert len(github.requests) == 1


# ============================================================================
# TEST: Labels and import
# ============================================================================

class TestLabels:

    @pytest.mark.asyncio
    async def test_sync_creates_missing_and_reports_stale(self, acme_registry, client, github):
        acme_registry.get(Account, "ACC1").is_active = True
        acme_registry.commit()
        github.queue("GET", LABELS_PATH, (200, [
            {"name": "account:Old Customer"},
            {"name": "bug"},
        ]))

        result = await IssueSyncService(acme_registry, client=client).sync_account_labels()

        assert result.created == 1
        assert result.stale == 1
        assert result.removed == 0
        assert github.bodies("POST", LABELS_PATH)[0]["name"] == "account:Acme Corp"

    @pytest.mark.asyncio
    async def test_remove_stale(self, acme_registry, client, github):
        github.queue("GET", LABELS_PATH, (200, [{"name": "account:Old Customer"}]))

        result = await IssueSyncService(acme_registry, client=client).sync_account_labels(remove_stale=True)

        assert result.removed == 1
        deletes = [r for r in github.requests if r.method == "DELETE"]
        assert deletes[0].url.raw_path.decode().endswith("/labels/account%3AOld%20Customer")


class TestImportTasks:

    @pytest.mark.asyncio
    async def test_import_skips_pull_requests(self, acme_registry, client, github):
        github.queue("GET", ISSUES_PATH, (200, [
            {
                "node_id": "I_9", "number": 9, "title": "Send contract", "state": "open",
                "labels": [{"name": "account:Acme Corp"}],
                "created_at": "2025-06-01T10:00:00Z",
            },
            {"node_id": "PR_1", "number": 10, "title": "Fix", "state": "open", "pull_request": {}},
        ]))

        stats = await IssueSyncService(acme_registry, client=client).import_tasks()

        assert stats.created == 1
        task = acme_registry.get(Task, "I_9")
        assert task.account_id == "ACC1"
        assert task.state == "OPEN"
        assert acme_registry.get(Task, "PR_1") is None


def test_issue_to_task_record():
    record = issue_to_task_record({"id": 5, "number": 5, "state": "closed", "closed_at": "2025-06-02T00:00:00Z"})
    assert record["task_id"] == "5"
    assert record["state"] == "CLOSED"
    assert record["closed_at"] == datetime(2025, 6, 2)


def test_client_requires_configuration(monkeypatch):
    monkeypatch.setattr(settings, "GITHUB_TOKEN", None)
    with pytest.raises(ConfigurationError):
        GitHubIssueClient.from_settings()
