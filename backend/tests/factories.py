"""Model and payload builders shared by the test modules."""

from datetime import datetime, timedelta

from app.models import EmailMessage, CalendarEvent, Task, MeetingRecap, ActionItem

# Fixed reference time for deterministic metrics
NOW = datetime(2025, 6, 15, 12, 0, 0)


def make_email(message_id, account_id="ACC1", days_ago=1, from_address="jane@acme.com",
               to_addresses=None, subject="Hello", now=NOW):
    return EmailMessage(
        message_id=message_id,
        date=now - timedelta(days=days_ago),
        from_address=from_address,
        to_addresses=to_addresses if to_addresses is not None else ["me@example.com"],
        cc_addresses=[],
        subject=subject,
        body_preview="Preview text",
        account_id=account_id,
    )


def make_event(event_id, start, title="Sync", account_id="ACC1", attendees=None):
    return CalendarEvent(
        event_id=event_id,
        title=title,
        start=start,
        end=start + timedelta(minutes=30),
        attendees=attendees if attendees is not None else [],
        account_id=account_id,
    )


def make_task(task_id, state="OPEN", account_id="ACC1", title="Follow up", status="Todo"):
    return Task(task_id=task_id, title=title, state=state, status=status, account_id=account_id, labels=[])


def make_recap(recap_id, start, title="Sync", account_id="ACC1", summary="Discussed renewal"):
    return MeetingRecap(
        recap_id=recap_id,
        title=title,
        start=start,
        summary=summary,
        account_id=account_id,
        actual_attendees=[],
        invited_attendees=[],
        external_attendees=[],
    )


def make_action_item(recap_id, index, owner="mine", title="Send proposal"):
    return ActionItem(recap_id=recap_id, index=index, owner=owner, title=title, description="Details")


def sample_recap_payload(recap_id="ngmt_001", title="Acme Sync", start="2025-06-10T15:00:00Z",
                         actual=None, invited=None, my_items=None, others_items=None):
    return {
        "meetingInfo": {
            "title": title,
            "startTime": start,
            "endTime": "2025-06-10T15:30:00Z",
            "meetingLink": f"https://app.recaps.test/workspace/engagements/{recap_id}",
            "meetingUrl": "https://zoom.test/j/123",
        },
        "companyInfo": {"companyName": "Acme Corp"},
        "attendees": {
            "actual": actual if actual is not None else ["me@example.com", "jane@acme.com"],
            "invited": invited if invited is not None else ["bob@acme.com"],
            "allNames": ["Me", "Jane", "Bob"],
        },
        "actionItems": {
            "myItems": my_items if my_items is not None else [
                {"actionItemTitle": "Send proposal", "actionItemDescription": "Pricing for 2026", "priority": "High"},
                {"actionItemTitle": "Book QBR", "actionItemDescription": "Next quarter"},
            ],
            "othersItems": others_items if others_items is not None else [
                {"actionItemTitle": "Share usage data", "actionItemDescription": "Export\nAssignee: Jane Doe"},
            ],
        },
        "summary": "Renewal discussion went well.",
    }


