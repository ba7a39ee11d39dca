"""Value normalization shared by the feed loader, ingestion and webhook."""

import re
import logging
from datetime import datetime, date, timezone
from typing import Any, List, Optional

logger = logging.getLogger(__name__)

HYPERLINK_PATTERN = re.compile(r'=HYPERLINK\s*\(\s*"[^"]+"\s*,\s*"([^"]+)"\s*\)', re.IGNORECASE)
HYPERLINK_URL_PATTERN = re.compile(r'=HYPERLINK\s*\(\s*"([^"]+)"', re.IGNORECASE)

DATE_FORMATS = (
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%d.%m.%Y",
    "%Y/%m/%d",
)


def utc_now() -> datetime:
    """Current time as naive UTC, the storage convention for every timestamp."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class NormalizationService:
    """Normalize raw feed and payload values."""

    @staticmethod
    def normalize_email(email: Optional[str]) -> str:
        """
        Normalize email address.
        - Convert to lowercase
        - Strip whitespace
        """
        if not email:
            return ""
        return email.lower().strip()

    @staticmethod
    def clean_text(value: Any) -> str:
        """Stringify and strip a cell value; None becomes an empty string."""
        if value is None:
            return ""
        return str(value).strip()

    @staticmethod
    def parse_datetime(value: Any) -> Optional[datetime]:
        """
        Parse an ISO-8601 timestamp or a plain date into naive UTC.

        Aware values are converted to UTC first. Unparseable input returns
        None rather than raising.
        """
        if value is None or value == "":
            return None

        if isinstance(value, datetime):
            parsed = value
        elif isinstance(value, date):
            parsed = datetime(value.year, value.month, value.day)
        else:
            text = str(value).strip()
            if text.endswith("Z"):
                text = text[:-1] + "+00:00"
            try:
                parsed = datetime.fromisoformat(text)
            except ValueError:
                parsed = None
                for fmt in DATE_FORMATS:
                    try:
                        parsed = datetime.strptime(text, fmt)
                        break
                    except ValueError:
                        continue
            if parsed is None:
                logger.debug(f"Unparseable timestamp: {value!r}")
                return None

        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        return parsed

    @staticmethod
    def split_addresses(value: Any) -> List[str]:
        """Split a comma separated address header (or pass a list through)."""
        if not value:
            return []
        if isinstance(value, (list, tuple)):
            return [str(v).strip() for v in value if str(v).strip()]
        return [part.strip() for part in str(value).split(",") if part.strip()]

    @staticmethod
    def extract_link_name(cell: Any) -> str:
        """
        Display name of a renewal-feed link cell.

        Accepts plain text or a spreadsheet formula of the form
        =HYPERLINK("url","name").
        """
        text = NormalizationService.clean_text(cell)
        match = HYPERLINK_PATTERN.search(text)
        if match:
            return match.group(1).strip()
        return text

    @staticmethod
    def extract_link_url(cell: Any) -> Optional[str]:
        """URL part of a HYPERLINK formula, or the cell itself when it is a URL."""
        text = NormalizationService.clean_text(cell)
        match = HYPERLINK_URL_PATTERN.search(text)
        if match:
            return match.group(1).strip()
        if text.startswith(("http://", "https://")):
            return text
        return None


# Singleton instance
normalization_service = NormalizationService()
