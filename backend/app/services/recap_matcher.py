"""
Recap <-> calendar event matcher.

Every run is a full recompute: all cross references are cleared and the
matches are written again, both sides together, in one transaction.
"""

import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from app.models import MeetingRecap, CalendarEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Match:
    recap_id: str
    event_id: str
    time_diff_seconds: float


@dataclass
class MatchSummary:
    recaps_total: int = 0
    events_total: int = 0
    matched: int = 0
    unmatched: int = 0
    cleared: int = 0
    changed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def _same_day(a: datetime, b: datetime) -> bool:
    return a.date() == b.date()


def is_candidate(recap: MeetingRecap, event: CalendarEvent) -> bool:
    """
    Title equal after trimming (case-sensitive), same UTC day, and equal
    account ids whenever both sides have one.
    """
    if recap.start is None or event.start is None:
        return False
    if (event.title or "").strip() != (recap.title or "").strip():
        return False
    if not _same_day(recap.start, event.start):
        return False
    if recap.account_id and event.account_id and recap.account_id != event.account_id:
        return False
    return True


def match_all(recaps: Sequence[MeetingRecap], events: Sequence[CalendarEvent]) -> List[Match]:
    """
    Match recaps to calendar events.

    Recaps are processed in (start, recap_id) order; each takes the
    unconsumed candidate with the smallest start-time difference, the
    earliest (start, event_id) winning ties. An event is consumed by the
    first recap that takes it.
    """
    ordered_recaps = sorted(
        [r for r in recaps if r.start is not None and (r.title or "").strip()],
        key=lambda r: (r.start, r.recap_id)
    )
    ordered_events = sorted(
        [e for e in events if e.start is not None],
        key=lambda e: (e.start, e.event_id)
    )

    consumed = set()
    matches = []

    for recap in ordered_recaps:
        best: Optional[CalendarEvent] = None
        best_diff = None

        for event in ordered_events:
            if event.event_id in consumed or not is_candidate(recap, event):
                continue
            diff = abs((event.start - recap.start).total_seconds())
            if best is None or diff < best_diff:
                best, best_diff = event, diff

        if best is not None:
            consumed.add(best.event_id)
            matches.append(Match(recap_id=recap.recap_id, event_id=best.event_id, time_diff_seconds=best_diff))

    return matches


class RecapMatcher:
    """Applies match_all to the store."""

    def __init__(self, db: Session):
        self.db = db

    def run(self) -> MatchSummary:
        recaps = self.db.query(MeetingRecap).all()
        events = self.db.query(CalendarEvent).all()
        summary = MatchSummary(recaps_total=len(recaps), events_total=len(events))

        previous = {r.recap_id: r.calendar_event_id for r in recaps}
        matches = match_all(recaps, events)
        recaps_by_id = {r.recap_id: r for r in recaps}
        events_by_id = {e.event_id: e for e in events}

        try:
            for recap in recaps:
                if recap.calendar_event_id:
                    summary.cleared += 1
                recap.calendar_event_id = None
            for event in events:
                event.meeting_recap_id = None

            for match in matches:
                recaps_by_id[match.recap_id].calendar_event_id = match.event_id
                events_by_id[match.event_id].meeting_recap_id = match.recap_id

            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception("Recap matching failed, cross references left unchanged")
            raise

        summary.matched = len(matches)
        summary.unmatched = summary.recaps_total - summary.matched
        summary.changed = len([
            rid for rid, recap in recaps_by_id.items()
            if previous.get(rid) != recap.calendar_event_id
        ])

        logger.info(
            f"Recap matching: {summary.matched} matched, {summary.unmatched} unmatched, "
            f"{summary.changed} changed"
        )
        return summary
