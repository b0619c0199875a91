"""iCalendar (RFC 5545) parser."""
import logging
from typing import List, Optional

from icalendar import Calendar

from parsers.base import EventParser, ParseError, as_datetime
from processor.models import EventDraft, VenueDraft

logger = logging.getLogger(__name__)


class ICalendarParser(EventParser):
    """Parser for text/calendar feeds."""

    name = 'ical'

    def parse(self, content: str) -> List[EventDraft]:
        if 'BEGIN:VCALENDAR' not in content.upper():
            raise ParseError('no VCALENDAR component found')

        try:
            calendars = Calendar.from_ical(content, multiple=True)
        except (ValueError, IndexError, KeyError) as e:
            logger.warning(f"Malformed iCalendar document: {e}")
            raise ParseError('malformed iCalendar data') from e
        if not calendars:
            raise ParseError('unterminated VCALENDAR component')

        drafts = []
        for calendar in calendars:
            for component in calendar.walk('VEVENT'):
                drafts.append(self._parse_component(component))

        logger.info(f"Parsed {len(drafts)} events from iCalendar document")
        return drafts

    def natural_key(self, draft: EventDraft) -> str:
        key = super().natural_key(draft)
        # modified occurrences of a recurring event share its UID
        if draft.external_id and draft.recurrence_id is not None:
            key = f"{key}|recurrence:{draft.recurrence_id.isoformat()}"
        return key

    def _parse_component(self, component) -> EventDraft:
        """
        Convert a VEVENT component into a draft.

        Missing properties are left empty so the processor can reject
        the event on its own without failing the document.

        Args:
            component: icalendar VEVENT component

        Returns:
            EventDraft
        """
        start_time = self._decoded_time(component, 'DTSTART')
        end_time = self._decoded_time(component, 'DTEND')
        if end_time is None and start_time is not None and 'DURATION' in component:
            end_time = start_time + component.decoded('DURATION')

        uid = component.get('UID')
        url = component.get('URL')
        return EventDraft(
            title=self._text(component, 'SUMMARY'),
            start_time=start_time,
            end_time=end_time,
            venue=self._venue(component),
            description=self._text(component, 'DESCRIPTION'),
            url=str(url) if url else None,
            external_id=str(uid) if uid else None,
            recurrence_id=self._decoded_time(component, 'RECURRENCE-ID')
        )

    def _decoded_time(self, component, name: str):
        if name not in component:
            return None
        try:
            return as_datetime(component.decoded(name))
        except (ValueError, TypeError) as e:
            logger.warning(f"Unreadable {name} value: {e}")
            return None

    def _text(self, component, name: str) -> str:
        value = component.get(name)
        return str(value).strip() if value is not None else ''

    def _venue(self, component) -> Optional[VenueDraft]:
        location = self._text(component, 'LOCATION')
        geo = component.get('GEO')
        if not location and geo is None:
            return None

        venue = VenueDraft(title=location)
        if geo is not None:
            venue.latitude = str(geo.latitude)
            venue.longitude = str(geo.longitude)
        return venue
