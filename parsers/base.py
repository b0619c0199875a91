"""Parser contract shared by all document formats."""
from abc import ABC, abstractmethod
from datetime import date, datetime, time
from typing import List, Optional, Union

from processor.models import EventDraft


class ParseError(Exception):
    """Content was fetched but could not be understood."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class EventParser(ABC):
    """Base class for document parsers."""

    name = 'base'

    @abstractmethod
    def parse(self, content: str) -> List[EventDraft]:
        """
        Turn document content into event drafts, in document order.

        Args:
            content: Decoded document body

        Returns:
            List of EventDraft objects (may be empty)

        Raises:
            ParseError: If the content is not a document of this format
        """

    def natural_key(self, draft: EventDraft) -> str:
        """
        Identity used to recognize the same event across imports.

        Args:
            draft: EventDraft produced by this parser

        Returns:
            External identifier, event URL, or title plus start time
        """
        if draft.external_id:
            return f"id:{draft.external_id}"
        if draft.url:
            return f"url:{draft.url}"
        start = draft.start_time.isoformat() if draft.start_time else ''
        return f"title:{draft.title.strip()}|{start}"


# Formats tried after ISO 8601
DATETIME_FORMATS = [
    '%Y%m%dT%H%M%SZ',
    '%Y%m%dT%H%M%S',
    '%Y%m%d',
    '%m/%d/%Y %I:%M %p',
    '%m/%d/%Y %H:%M',
    '%m/%d/%Y',
    '%B %d, %Y %I:%M %p',
    '%B %d, %Y',
    '%b %d, %Y',
]


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a date or datetime string in the formats seen in calendar markup.

    Args:
        value: Date string, possibly empty

    Returns:
        datetime, or None if nothing matched
    """
    if not value:
        return None
    value = value.strip()
    try:
        return datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        pass

    for fmt in DATETIME_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue

    return None


def as_datetime(value: Union[date, datetime, None]) -> Optional[datetime]:
    """All-day values become midnight datetimes."""
    if value is None or isinstance(value, datetime):
        return value
    return datetime.combine(value, time.min)
