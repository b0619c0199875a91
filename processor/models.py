"""Data models for the source import pipeline."""
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


@dataclass
class VenueDraft:
    """Location data attached to an event draft."""
    title: str = ''
    address: str = ''
    locality: str = ''
    region: str = ''
    postal_code: str = ''
    country: str = ''
    latitude: Optional[str] = None
    longitude: Optional[str] = None

    def to_dict(self) -> Dict[str, str]:
        """Return the non-empty venue fields."""
        return {
            key: value
            for key, value in self.__dict__.items()
            if value not in (None, '')
        }


@dataclass
class EventDraft:
    """Unpersisted event produced by a parser."""
    title: str
    start_time: Optional[datetime]
    end_time: Optional[datetime] = None
    venue: Optional[VenueDraft] = None
    description: str = ''
    url: Optional[str] = None
    external_id: Optional[str] = None
    recurrence_id: Optional[datetime] = None


@dataclass
class Event:
    """Validated event owned by exactly one source."""
    source_id: str
    event_id: str
    title: str
    start_time: str
    end_time: Optional[str]
    venue: Dict[str, str]
    description: str
    url: Optional[str]
    external_id: Optional[str]
    last_updated: int


@dataclass
class Source:
    """Remote document URL scoped to an organization."""
    organization_id: str
    url: str
    title: str = ''
    metadata: Dict[str, Any] = field(default_factory=dict)
    source_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: int = field(default_factory=lambda: int(time.time()))
    updated_at: int = field(default_factory=lambda: int(time.time()))
    # URL of the stored row; None until the source has been saved
    stored_url: Optional[str] = None

    @property
    def persisted(self) -> bool:
        return self.stored_url is not None


@dataclass
class FetchedDocument:
    """Raw content retrieved for a source URL."""
    url: str
    content: str
    content_type: str = ''


class ImportState(Enum):
    """States of a single import run."""
    RESOLVING = 'resolving'
    FETCHING = 'fetching'
    PARSING = 'parsing'
    PERSISTING = 'persisting'
    DONE = 'done'
    FAILED = 'failed'


class FailureCategory(Enum):
    """Closed set of user-facing import failures."""
    REMOTE_HTTP_ERROR = 'RemoteHttpError'
    HOST_UNREACHABLE = 'HostUnreachable'
    HOST_RESOLUTION_FAILURE = 'HostResolutionFailure'
    AUTHENTICATION_REQUIRED = 'AuthenticationRequired'
    PARSE_FAILURE = 'ParseFailure'
    VALIDATION_FAILURE = 'ValidationFailure'


@dataclass
class ClassifiedFailure:
    """Failure mapped to a category with a rendered message."""
    category: FailureCategory
    message: str
    field_errors: Dict[str, List[str]] = field(default_factory=dict)


@dataclass
class ImportResult:
    """Display-ready outcome of one import run."""
    source: Source
    state: ImportState = ImportState.RESOLVING
    events: List[Event] = field(default_factory=list)
    maximum_displayed: int = 5
    created_count: int = 0
    updated_count: int = 0
    skipped_count: int = 0
    errors: List[str] = field(default_factory=list)
    failure: Optional[ClassifiedFailure] = None

    @property
    def succeeded(self) -> bool:
        return self.failure is None and self.state is ImportState.DONE

    @property
    def total_event_count(self) -> int:
        return len(self.events)

    @property
    def displayed_events(self) -> List[Event]:
        return self.events[:self.maximum_displayed]

    @property
    def overflow_count(self) -> int:
        return max(0, self.total_event_count - self.maximum_displayed)

    def summary_message(self) -> str:
        """
        Render the success message listing the displayed events.

        Returns:
            Multi-line message, ending with the overflow note when some
            accepted events are not listed
        """
        lines = [f"Imported {self.total_event_count} entries:"]
        for event in self.displayed_events:
            lines.append(f"- {event.title}")
        if self.overflow_count:
            noun = 'event' if self.overflow_count == 1 else 'events'
            lines.append(f"And {self.overflow_count} other {noun}.")
        return '\n'.join(lines)
