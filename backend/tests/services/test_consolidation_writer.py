# tests/services/test_consolidation_writer.py
"""
Tests for the consolidation writer

Coverage:
- Row content (snippets, id lists, renewal details)
- Content hash stability and summary carry-forward
- Renewal feed removal scenario (no source data loss)
- Run bookkeeping, newly active accounts, rollback on failure
"""

import pytest
from datetime import timedelta
from unittest.mock import patch

from app.errors import ConfigurationError
from app.models import (
    Account, AccountViewRow, AccountExclusion, ConsolidationRun, EmailMessage,
    RenewalRecord, Task, Opportunity
)
from app.services.consolidation_writer import ConsolidationWriter, content_hash, list_view

from factories import NOW, make_email, make_event, make_task, make_recap, make_action_item


@pytest.fixture
def populated(acme_registry):
    db = acme_registry
    db.add_all([
        make_email("m1", days_ago=1, subject="Renewal quote", from_address="jane@acme.com"),
        make_email("m2", days_ago=3, subject="Re: Renewal quote", from_address="me@example.com"),
        make_email("m3", days_ago=5, subject="Kickoff"),
        make_email("m4", days_ago=9, subject="Old thread"),
        make_event("e1", NOW - timedelta(days=2)),
        make_event("e2", NOW + timedelta(days=4)),
        make_task("t1", title="Send contract", status="In Progress"),
        make_task("t2", state="CLOSED", title="Done thing"),
        make_recap("r1", NOW - timedelta(days=2), title="QBR", summary="Went well"),
        make_recap("r2", NOW - timedelta(days=20), title="Kickoff", summary="Intro"),
        make_recap("r3", NOW - timedelta(days=40), title="Discovery", summary="Old"),
    ])
    db.flush()
    db.add_all([make_action_item("r1", 0), make_action_item("r1", 1)])
    db.commit()
    return db


class TestRowContent:

    def test_row_fields(self, populated):
        run = ConsolidationWriter(populated).rebuild(now=NOW)
        rows = list_view(populated)

        assert run.status == "completed"
        assert len(rows) == 1
        row = rows[0]

        assert row.account_name == "Acme Corp"
        assert row.opportunity_name == "2026 - REN - Acme"
        assert row.stage == "Negotiation"
        assert row.csm == "Casey"
        assert row.position == 1

        snippets = row.recent_email_snippets.split("\n")
        assert len(snippets) == 3
        assert snippets[0] == "2025-06-14 (IN): Renewal quote - Preview text"
        assert snippets[1].startswith("2025-06-12 (OUT): Re: Renewal quote")

        assert row.recent_task_summaries == "[OPEN] Send contract (In Progress)"
        assert row.recent_recap_summaries == "2025-06-13: QBR\nWent well\n---\n2025-05-26: Kickoff\nIntro"

        assert row.email_ids == ["m1", "m2", "m3", "m4"]
        assert sorted(row.task_ids) == ["t1", "t2"]
        assert row.meeting_ids == ["e1", "e2"]
        assert row.recap_ids == ["r1", "r2", "r3"]
        assert row.action_item_ids == ["r1_0", "r1_1"]

        assert row.meetings_future == 1
        assert row.tasks_open == 1
        assert len(row.content_hash) == 64

    def test_account_flag_updated(self, populated):
        ConsolidationWriter(populated).rebuild(now=NOW)
        assert populated.get(Account, "ACC1").is_active is True


class TestContentHash:

    def test_hash_ignores_drifting_counters(self):
        base = {"recent_email_snippets": "a", "engagement_score": 50, "emails_30d": 1}
        shifted = dict(base, emails_30d=7, days_since_last_contact=3)
        assert content_hash(base) == content_hash(shifted)

    def test_hash_changes_with_content(self):
        base = {"recent_email_snippets": "a", "engagement_score": 50, "stage": "Open"}
        assert content_hash(base) != content_hash(dict(base, stage="Closed Won"))

    def test_summary_carried_forward_when_unchanged(self, populated):
        writer = ConsolidationWriter(populated)
        writer.rebuild(now=NOW)
        row = populated.get(AccountViewRow, "ACC1")
        assert writer.record_summary("ACC1", "Healthy account", row.content_hash) is True

        writer.rebuild(now=NOW)

        assert populated.get(AccountViewRow, "ACC1").engagement_summary == "Healthy account"

    def test_summary_dropped_when_content_changes(self, populated):
        writer = ConsolidationWriter(populated)
        writer.rebuild(now=NOW)
        row = populated.get(AccountViewRow, "ACC1")
        writer.record_summary("ACC1", "Healthy account", row.content_hash)

        populated.add(make_email("m9", days_ago=0, subject="Escalation"))
        populated.commit()
        writer.rebuild(now=NOW)

        assert populated.get(AccountViewRow, "ACC1").engagement_summary is None

    def test_summary_rejected_for_stale_hash(self, populated):
        writer = ConsolidationWriter(populated)
        writer.rebuild(now=NOW)
        assert writer.record_summary("ACC1", "x", "0" * 64) is False
        assert writer.record_summary("NOPE", "x", "0" * 64) is False


class TestRenewalFeedScenario:

    def test_removed_from_feed_disappears_without_data_loss(self, populated):
        writer = ConsolidationWriter(populated)
        writer.rebuild(now=NOW)
        assert [r.account_name for r in list_view(populated)] == ["Acme Corp"]

        populated.query(RenewalRecord).delete()
        populated.commit()
        writer.rebuild(now=NOW)

        assert list_view(populated) == []
        exclusion = populated.get(AccountExclusion, "ACC1")
        assert exclusion.reason == "not_in_renewal_feed"
        assert populated.get(Account, "ACC1").is_active is False
        assert populated.query(EmailMessage).count() == 4
        assert populated.query(Task).count() == 2


class TestRuns:

    def test_newly_active_tracked(self, acme_registry):
        writer = ConsolidationWriter(acme_registry)
        first = writer.rebuild(now=NOW)
        assert first.newly_active == ["ACC1"]

        acme_registry.add_all([
            Account(id="ACC2", name="Globex", next_renewal_opportunity_id="OPP2"),
            Opportunity(id="OPP2", name="2026 - REN - Globex"),
            RenewalRecord(opportunity_name="2026 - REN - Globex", opportunity_id="OPP2"),
        ])
        acme_registry.commit()

        second = writer.rebuild(now=NOW)
        assert second.newly_active == ["ACC2"]
        assert second.accounts_included == 2

    def test_failure_keeps_previous_view(self, populated):
        writer = ConsolidationWriter(populated)
        writer.rebuild(now=NOW)
        previous_hash = populated.get(AccountViewRow, "ACC1").content_hash

        with patch(
            "app.services.consolidation_writer.build_row",
            side_effect=RuntimeError("boom")
        ):
            with pytest.raises(RuntimeError):
                writer.rebuild(now=NOW)

        assert populated.get(AccountViewRow, "ACC1").content_hash == previous_hash
        last = populated.query(ConsolidationRun).order_by(ConsolidationRun.id.desc()).first()
        assert last.status == "failed"
        assert last.error_message == "boom"

    def test_missing_required_table_marks_run_failed(self, db_session, test_engine):
        RenewalRecord.__table__.drop(test_engine)

        with pytest.raises(ConfigurationError):
            ConsolidationWriter(db_session).rebuild(now=NOW)

        run = db_session.query(ConsolidationRun).first()
        assert run.status == "failed"
