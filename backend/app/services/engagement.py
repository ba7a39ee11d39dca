"""Engagement metrics and the composite account health score."""

import logging
import math
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from app.config import settings
from app.models import EmailMessage, CalendarEvent, Task, MeetingRecap, ActionItem
from app.services.domain_mapper import extract_domain
from app.services.normalization import utc_now

logger = logging.getLogger(__name__)


@dataclass
class EngagementMetrics:
    engagement_score: int = 0
    days_since_last_contact: Optional[int] = None
    email_total: int = 0
    emails_sent: int = 0
    emails_received: int = 0
    emails_30d: int = 0
    emails_90d: int = 0
    last_email_date: Optional[datetime] = None
    meetings_past: int = 0
    meetings_future: int = 0
    meetings_30d: int = 0
    avg_attendance_pct: int = 0
    last_meeting_date: Optional[datetime] = None
    next_meeting_date: Optional[datetime] = None
    tasks_total: int = 0
    tasks_open: int = 0
    tasks_closed: int = 0
    recaps_count: int = 0
    action_items_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class EngagementScorer:
    """
    Rule-table scorer. Five independent bands, summed and capped at 100.

    Bands are exact thresholds, checked top-down; there is no interpolation.
    """

    MAX_SCORE = 100

    # (max days since last contact, points)
    RECENCY_BANDS = [(7, 40), (14, 35), (30, 25), (60, 15), (90, 8), (180, 3)]

    # (min emails in trailing 90 days, points)
    EMAIL_VOLUME_BANDS = [(10, 20), (5, 12), (1, 6)]

    # (min meetings in trailing 30 days, points)
    MEETING_VOLUME_BANDS = [(3, 20), (2, 15), (1, 10)]

    FUTURE_MEETING_POINTS = 10

    # (min open tasks, points)
    OPEN_TASK_BANDS = [(5, 10), (3, 7), (1, 4)]

    def __init__(self, internal_domain: Optional[str] = None):
        self.internal_domain = (internal_domain if internal_domain is not None else settings.INTERNAL_DOMAIN or "").lower()

    @classmethod
    def recency_points(cls, days: Optional[int]) -> int:
        if days is None:
            return 0
        for max_days, points in cls.RECENCY_BANDS:
            if days <= max_days:
                return points
        return 0

    @staticmethod
    def _at_least(value: int, bands) -> int:
        for minimum, points in bands:
            if value >= minimum:
                return points
        return 0

    @classmethod
    def compute_score(
        cls,
        days_since_last_contact: Optional[int],
        emails_90d: int,
        meetings_30d: int,
        meetings_future: int,
        tasks_open: int
    ) -> int:
        score = cls.recency_points(days_since_last_contact)
        score += cls._at_least(emails_90d, cls.EMAIL_VOLUME_BANDS)
        score += cls._at_least(meetings_30d, cls.MEETING_VOLUME_BANDS)
        score += cls.FUTURE_MEETING_POINTS if meetings_future > 0 else 0
        score += cls._at_least(tasks_open, cls.OPEN_TASK_BANDS)
        return min(score, cls.MAX_SCORE)

    def is_outbound(self, email: EmailMessage) -> bool:
        domain = extract_domain(email.from_address)
        return bool(domain and self.internal_domain and self.internal_domain in domain)

    def score(
        self,
        emails: Sequence[EmailMessage],
        meetings: Sequence[CalendarEvent],
        tasks: Sequence[Task],
        recaps: Sequence[MeetingRecap],
        action_items: Sequence[ActionItem],
        now: Optional[datetime] = None
    ) -> EngagementMetrics:
        """
        Compute all metrics for one account.

        Args:
            emails: the account's e-mails (already capped)
            meetings: the account's calendar events (already capped)
            tasks, recaps, action_items: the account's remaining aggregates
            now: reference time, naive UTC

        Returns:
            EngagementMetrics including the composite score
        """
        now = now or utc_now()
        cutoff_30 = now - timedelta(days=30)
        cutoff_90 = now - timedelta(days=90)
        metrics = EngagementMetrics()

        # Emails
        dated_emails = [e for e in emails if e.date is not None]
        metrics.email_total = len(emails)
        metrics.emails_sent = len([e for e in emails if self.is_outbound(e)])
        metrics.emails_received = metrics.email_total - metrics.emails_sent
        metrics.emails_30d = len([e for e in dated_emails if e.date >= cutoff_30])
        metrics.emails_90d = len([e for e in dated_emails if e.date >= cutoff_90])
        if dated_emails:
            metrics.last_email_date = max(e.date for e in dated_emails)

        # Meetings
        past = [m for m in meetings if m.start is not None and m.start < now]
        future = [m for m in meetings if m.start is not None and m.start >= now]
        metrics.meetings_past = len(past)
        metrics.meetings_future = len(future)
        metrics.meetings_30d = len([m for m in past if m.start >= cutoff_30])
        if past:
            metrics.last_meeting_date = max(m.start for m in past)
        if future:
            metrics.next_meeting_date = min(m.start for m in future)

        attendance = [m.accepted_count / m.attendee_count for m in past if m.attendee_count > 0]
        if attendance:
            metrics.avg_attendance_pct = round(sum(attendance) / len(attendance) * 100)

        # Tasks
        metrics.tasks_total = len(tasks)
        metrics.tasks_open = len([t for t in tasks if is_open(t)])
        metrics.tasks_closed = metrics.tasks_total - metrics.tasks_open

        # Recaps
        metrics.recaps_count = len(recaps)
        metrics.action_items_count = len(action_items)

        last_contact = max(
            [d for d in (metrics.last_email_date, metrics.last_meeting_date) if d is not None],
            default=None
        )
        if last_contact is not None:
            metrics.days_since_last_contact = math.floor((now - last_contact).total_seconds() / 86400)

        metrics.engagement_score = self.compute_score(
            metrics.days_since_last_contact,
            metrics.emails_90d,
            metrics.meetings_30d,
            metrics.meetings_future,
            metrics.tasks_open
        )
        return metrics


def is_open(task: Task) -> bool:
    return (task.state or "OPEN").upper() == "OPEN"


def open_tasks(tasks: Sequence[Task]) -> List[Task]:
    return [t for t in tasks if is_open(t)]
