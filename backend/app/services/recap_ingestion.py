"""
Meeting recap ingestion.

received -> duplicate-check -> skipped | stored, then best-effort follow-ups
(recap matching, issue creation) that never fail the ingestion.
"""

import re
import logging
from typing import Any, Callable, Dict, List, Optional, Union
from urllib.parse import urlparse

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import InvalidPayloadError
from app.models import MeetingRecap, ActionItem
from app.schemas.recap import MeetingRecapPayload
from app.services.domain_mapper import DomainMapper, extract_domain
from app.services.normalization import utc_now, normalization_service as norm
from app.services.issue_tracker import IssueSyncService
from app.services.recap_matcher import RecapMatcher

logger = logging.getLogger(__name__)

ENGAGEMENT_ID_PATTERN = re.compile(r'/engagements/([^/?#]+)')
ASSIGNEE_PATTERN = re.compile(r'Assignee:\s*([^\n]+)')


def extract_recap_id(meeting_link: Optional[str]) -> Optional[str]:
    """
    Recap id from the recap URL.

    ".../engagements/ngmt_01ABC?x=1" -> "ngmt_01ABC"; otherwise the last
    path segment.
    """
    if not meeting_link or not isinstance(meeting_link, str):
        return None

    match = ENGAGEMENT_ID_PATTERN.search(meeting_link)
    if match:
        return match.group(1)

    path = urlparse(meeting_link).path if "://" in meeting_link else meeting_link.split("?")[0].split("#")[0]
    parts = [p for p in path.split("/") if p]
    return parts[-1] if parts else None


def extract_assignee(description: Optional[str]) -> Optional[str]:
    match = ASSIGNEE_PATTERN.search(description or "")
    return match.group(1).strip() if match else None


def _unique(values: List[str]) -> List[str]:
    seen = []
    for value in values:
        value = (value or "").strip()
        if value and value not in seen:
            seen.append(value)
    return seen


class RecapIngestionService:
    """Stores webhook recaps with their action items."""

    def __init__(
        self,
        db: Session,
        mapper: Optional[DomainMapper] = None,
        issue_sync_factory: Optional[Callable[[Session], Any]] = None
    ):
        self.db = db
        self.mapper = mapper or DomainMapper.from_db(db)
        self.issue_sync_factory = issue_sync_factory

    @staticmethod
    def parse_payload(payload: Union[Dict[str, Any], MeetingRecapPayload]) -> MeetingRecapPayload:
        if isinstance(payload, MeetingRecapPayload):
            parsed = payload
        else:
            if not isinstance(payload, dict):
                raise InvalidPayloadError("Payload must be a JSON object")
            try:
                parsed = MeetingRecapPayload.model_validate(payload)
            except ValidationError as e:
                raise InvalidPayloadError(f"Invalid payload: {e.errors()[0].get('msg', str(e))}")

        if parsed.meetingInfo is None:
            raise InvalidPayloadError("Invalid payload: missing meetingInfo object")
        return parsed

    def build_recap(self, payload: MeetingRecapPayload, recap_id: str) -> MeetingRecap:
        """Flatten the payload and resolve the account from attendees."""
        info = payload.meetingInfo
        actual = _unique(payload.attendees.actual)
        invited = _unique(payload.attendees.invited)

        external = [
            email for email in _unique(actual + invited)
            if not self.mapper.is_internal(extract_domain(email))
        ]

        match = None
        for email in external:
            match = self.mapper.resolve_account(email)
            if match:
                logger.info(f"Matched recap {recap_id} to account {match.account_name} ({match.account_id}) via {email}")
                break

        if match is None:
            if external:
                logger.warning(f"No account match for recap {recap_id}, tried: {', '.join(external)}")
            else:
                logger.warning(f"Recap {recap_id} has no external attendees")

        return MeetingRecap(
            recap_id=recap_id,
            title=norm.clean_text(info.title),
            start=norm.parse_datetime(info.startTime),
            end=norm.parse_datetime(info.endTime),
            summary=payload.summary or "",
            meeting_link=info.meetingLink,
            meeting_url=info.meetingUrl,
            company_name=payload.companyInfo.companyName,
            actual_attendees=actual,
            invited_attendees=invited,
            all_names=list(payload.attendees.allNames),
            external_attendees=external,
            account_id=match.account_id if match else None,
            account_name=match.account_name if match else None,
            mapped_domain=match.domain if match else None,
            received_at=utc_now(),
        )

    async def ingest(self, payload: Union[Dict[str, Any], MeetingRecapPayload]) -> Dict[str, Any]:
        """
        Process one webhook delivery: store, then create issues.

        Returns:
            Response dict with action "created" or "skipped"

        Raises:
            InvalidPayloadError: payload cannot be interpreted
        """
        result = self.store(payload)
        return await self.sync_issues(result)

    def store(self, payload: Union[Dict[str, Any], MeetingRecapPayload]) -> Dict[str, Any]:
        """
        Database half of ingest(): parse, duplicate-check, insert and run
        the calendar matcher. Blocking, safe to run in a worker thread.
        """
        parsed = self.parse_payload(payload)
        recap_id = extract_recap_id(parsed.meetingInfo.meetingLink)
        if not recap_id:
            raise InvalidPayloadError("Could not extract meeting recap ID from meetingLink")

        logger.info(f"Processing meeting recap {recap_id}: {parsed.meetingInfo.title}")

        if self.db.get(MeetingRecap, recap_id) is not None:
            logger.info(f"Duplicate meeting recap: {recap_id}")
            return self._skipped(recap_id)

        recap = self.build_recap(parsed, recap_id)

        for index, item in enumerate(parsed.actionItems.myItems):
            recap.action_items.append(ActionItem(
                index=index,
                owner="mine",
                title=item.actionItemTitle or "",
                description=item.actionItemDescription or "",
                priority=item.priority or None,
            ))
        for index, item in enumerate(parsed.actionItems.othersItems):
            recap.action_items.append(ActionItem(
                index=index,
                owner="others",
                title=item.actionItemTitle or "",
                description=item.actionItemDescription or "",
                assignee=extract_assignee(item.actionItemDescription),
            ))

        self.db.add(recap)
        try:
            self.db.commit()
        except IntegrityError:
            # Concurrent delivery of the same id won the insert
            self.db.rollback()
            logger.info(f"Duplicate meeting recap (concurrent): {recap_id}")
            return self._skipped(recap_id)

        result = {
            "success": True,
            "action": "created",
            "meetingRecapId": recap_id,
            "meetingTitle": recap.title,
            "accountId": recap.account_id,
            "myActionItems": len(parsed.actionItems.myItems),
            "othersActionItems": len(parsed.actionItems.othersItems),
            "githubIssuesCreated": 0,
            "githubIssuesSkipped": 0,
        }

        self._run_matcher()
        return result

    async def sync_issues(self, result: Dict[str, Any]) -> Dict[str, Any]:
        """Add issue counts to a store() result; skipped deliveries pass through."""
        if result.get("action") != "created":
            return result
        issues = await self._create_issues(result["meetingRecapId"])
        if issues is not None:
            result["githubIssuesCreated"] = issues.created
            result["githubIssuesSkipped"] = issues.skipped
        return result

    def _skipped(self, recap_id: str) -> Dict[str, Any]:
        return {
            "success": True,
            "action": "skipped",
            "reason": "duplicate",
            "meetingRecapId": recap_id,
        }

    def _run_matcher(self):
        if not settings.ENABLE_RECAP_MATCHING:
            return
        try:
            RecapMatcher(self.db).run()
        except Exception as e:
            logger.warning(f"Calendar matching failed: {e}")

    async def _create_issues(self, recap_id: str):
        if not settings.ENABLE_ISSUE_SYNC:
            return None
        try:
            if self.issue_sync_factory is not None:
                service = self.issue_sync_factory(self.db)
            else:
                service = IssueSyncService(self.db)
            return await service.sync_action_items(recap_id=recap_id)
        except Exception as e:
            logger.warning(f"Issue creation failed for recap {recap_id}: {e}")
            return None
