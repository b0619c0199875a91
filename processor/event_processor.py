"""Event processor for validating and normalizing event drafts."""
import hashlib
import logging
import time
from typing import List

from processor.models import Event, EventDraft, Source

logger = logging.getLogger(__name__)


class EventValidationError(Exception):
    """A single draft cannot be accepted as an event."""

    def __init__(self, title: str, problems: List[str]):
        super().__init__(f"{title or '(untitled)'}: {', '.join(problems)}")
        self.title = title
        self.problems = problems


class EventProcessor:
    """Processor for validating and normalizing event drafts."""

    MAX_TITLE_LENGTH = 200
    MAX_DESCRIPTION_LENGTH = 2000

    def process_draft(self, draft: EventDraft, source: Source, natural_key: str) -> Event:
        """
        Turn a draft into an event owned by a source.

        Args:
            draft: EventDraft from a parser
            source: Saved Source the event belongs to
            natural_key: Parser-defined identity of the draft

        Returns:
            Event ready to be upserted

        Raises:
            EventValidationError: If required fields are missing or invalid
        """
        problems = self._validate(draft)
        if problems:
            logger.debug(f"Rejected draft '{draft.title}': {problems}")
            raise EventValidationError(draft.title, problems)

        title = draft.title.strip()[:self.MAX_TITLE_LENGTH]
        description = (draft.description or '').strip()[:self.MAX_DESCRIPTION_LENGTH]

        return Event(
            source_id=source.source_id,
            event_id=self.generate_event_id(source.source_id, natural_key),
            title=title,
            start_time=draft.start_time.isoformat(),
            end_time=draft.end_time.isoformat() if draft.end_time else None,
            venue=draft.venue.to_dict() if draft.venue else {},
            description=description,
            url=draft.url,
            external_id=draft.external_id,
            last_updated=int(time.time())
        )

    def _validate(self, draft: EventDraft) -> List[str]:
        """
        Check required fields of a draft.

        Args:
            draft: EventDraft to validate

        Returns:
            List of problems, empty when the draft is valid
        """
        problems = []

        if not draft.title or not draft.title.strip():
            problems.append("title can't be blank")

        if draft.start_time is None:
            problems.append("start time can't be blank")
        elif draft.end_time is not None:
            try:
                if draft.end_time < draft.start_time:
                    problems.append("end time is before start time")
            except TypeError:
                # naive and aware datetimes from mixed TZID usage
                problems.append("end time and start time use incompatible time zones")

        return problems

    def generate_event_id(self, source_id: str, natural_key: str) -> str:
        """
        Generate the identifier of an event within its source.

        Args:
            source_id: Owning source identifier
            natural_key: Parser-defined identity of the event

        Returns:
            Event ID (SHA256 hash)
        """
        composite = f"{source_id}|{natural_key}"
        return hashlib.sha256(composite.encode('utf-8')).hexdigest()
