# tests/services/test_recap_matcher.py
"""
Tests for the recap <-> calendar event matcher

Coverage:
- Title / day / account candidate filter
- Closest start time wins
- Event consumption policy
- Two-sided writes, full recompute, idempotency
"""

import pytest
from datetime import datetime

from app.models import MeetingRecap, CalendarEvent
from app.services.recap_matcher import RecapMatcher, match_all

from factories import make_event, make_recap


# ============================================================================
# TEST: match_all
# ============================================================================

class TestMatchAll:

    def test_account_conflict_disqualifies(self):
        recap = make_recap("A", datetime(2024, 1, 1, 10, 0), account_id="1")
        e1 = make_event("E1", datetime(2024, 1, 1, 10, 0), account_id="2")
        e2 = make_event("E2", datetime(2024, 1, 1, 14, 0), account_id="1")

        matches = match_all([recap], [e1, e2])

        assert [(m.recap_id, m.event_id) for m in matches] == [("A", "E2")]

    def test_closest_start_wins(self):
        recap = make_recap("A", datetime(2024, 1, 1, 10, 5))
        far = make_event("far", datetime(2024, 1, 1, 8, 0))
        near = make_event("near", datetime(2024, 1, 1, 10, 0))

        assert match_all([recap], [far, near])[0].event_id == "near"

    def test_title_trimmed_but_case_sensitive(self):
        recap = make_recap("A", datetime(2024, 1, 1, 10, 0), title="  Sync ")
        trimmed = make_event("E1", datetime(2024, 1, 1, 10, 0), title="Sync")
        assert match_all([recap], [trimmed])[0].event_id == "E1"

        other_case = make_event("E2", datetime(2024, 1, 1, 10, 0), title="sync")
        assert match_all([recap], [other_case]) == []

    def test_different_day_never_matches(self):
        recap = make_recap("A", datetime(2024, 1, 1, 23, 50))
        event = make_event("E1", datetime(2024, 1, 2, 0, 5))
        assert match_all([recap], [event]) == []

    def test_missing_account_on_one_side_is_allowed(self):
        recap = make_recap("A", datetime(2024, 1, 1, 10, 0), account_id=None)
        event = make_event("E1", datetime(2024, 1, 1, 10, 0), account_id="1")
        assert match_all([recap], [event])[0].event_id == "E1"

    def test_event_consumed_by_first_recap(self):
        first = make_recap("R1", datetime(2024, 1, 1, 10, 0))
        second = make_recap("R2", datetime(2024, 1, 1, 10, 30))
        only = make_event("E1", datetime(2024, 1, 1, 10, 30))

        matches = match_all([second, first], [only])

        # R1 starts earlier so it is processed first and takes the event
        assert [(m.recap_id, m.event_id) for m in matches] == [("R1", "E1")]

    def test_tie_goes_to_earliest_event(self):
        recap = make_recap("A", datetime(2024, 1, 1, 10, 0))
        before = make_event("before", datetime(2024, 1, 1, 9, 0))
        after = make_event("after", datetime(2024, 1, 1, 11, 0))
        assert match_all([recap], [after, before])[0].event_id == "before"

    def test_no_candidates(self):
        recap = make_recap("A", datetime(2024, 1, 1, 10, 0), title="Kickoff")
        assert match_all([recap], [make_event("E1", datetime(2024, 1, 1, 10, 0))]) == []


# ============================================================================
# TEST: RecapMatcher.run
# ============================================================================

class TestRecapMatcherRun:

    @pytest.fixture
    def seeded(self, db_session):
        db_session.add_all([
            make_recap("A", datetime(2024, 1, 1, 10, 0), account_id="1"),
            make_event("E1", datetime(2024, 1, 1, 10, 0), account_id="2"),
            make_event("E2", datetime(2024, 1, 1, 14, 0), account_id="1"),
        ])
        db_session.commit()
        return db_session

    def test_writes_both_sides(self, seeded):
        summary = RecapMatcher(seeded).run()

        assert summary.matched == 1
        assert seeded.get(MeetingRecap, "A").calendar_event_id == "E2"
        assert seeded.get(CalendarEvent, "E2").meeting_recap_id == "A"
        assert seeded.get(CalendarEvent, "E1").meeting_recap_id is None

    def test_idempotent(self, seeded):
        RecapMatcher(seeded).run()
        first = {(r.recap_id, r.calendar_event_id) for r in seeded.query(MeetingRecap).all()}

        summary = RecapMatcher(seeded).run()
        second = {(r.recap_id, r.calendar_event_id) for r in seeded.query(MeetingRecap).all()}

        assert first == second
        assert summary.changed == 0

    def test_stale_links_cleared(self, seeded):
        # Hand-set link that no longer qualifies
        event = seeded.get(CalendarEvent, "E1")
        event.meeting_recap_id = "A"
        seeded.get(MeetingRecap, "A").calendar_event_id = "E1"
        seeded.commit()

        summary = RecapMatcher(seeded).run()

        assert summary.cleared == 1
        assert seeded.get(CalendarEvent, "E1").meeting_recap_id is None
        assert seeded.get(MeetingRecap, "A").calendar_event_id == "E2"

    def test_unmatched_recap_stays_empty(self, db_session):
        db_session.add(make_recap("lonely", datetime(2024, 2, 1, 9, 0), title="Nothing"))
        db_session.commit()

        summary = RecapMatcher(db_session).run()

        assert summary.unmatched == 1
        assert db_session.get(MeetingRecap, "lonely").calendar_event_id is None
