"""hCalendar microformat parser for HTML pages."""
import logging
from typing import List, Optional

from bs4 import BeautifulSoup

from parsers.base import EventParser, ParseError, parse_datetime
from processor.models import EventDraft, VenueDraft

logger = logging.getLogger(__name__)


class HCalendarParser(EventParser):
    """Parser for HTML pages marked up with the hCalendar microformat."""

    name = 'hcalendar'

    def parse(self, content: str) -> List[EventDraft]:
        soup = BeautifulSoup(content, 'html.parser')
        if soup.find() is None:
            raise ParseError('document contains no HTML markup')

        drafts = []
        for element in soup.find_all(class_='vevent'):
            drafts.append(self._parse_event_element(element))

        logger.info(f"Parsed {len(drafts)} events from hCalendar markup")
        return drafts

    def _parse_event_element(self, element) -> EventDraft:
        """
        Parse a single vevent element.

        Args:
            element: BeautifulSoup element carrying the vevent class

        Returns:
            EventDraft; fields not found in the markup are left empty
        """
        summary_elem = element.find(class_='summary')
        description_elem = element.find(class_='description')
        uid_elem = element.find(class_='uid')
        url_elem = element.find(class_='url')

        url = None
        if url_elem is not None:
            url = url_elem.get('href') or url_elem.get_text(strip=True) or None

        return EventDraft(
            title=summary_elem.get_text(' ', strip=True) if summary_elem else '',
            start_time=self._parse_time(element.find(class_='dtstart')),
            end_time=self._parse_time(element.find(class_='dtend')),
            venue=self._parse_venue(element.find(class_='location')),
            description=description_elem.get_text(' ', strip=True) if description_elem else '',
            url=url,
            external_id=uid_elem.get_text(strip=True) if uid_elem else None
        )

    def _parse_time(self, time_elem):
        """
        Read a date from the value-class pattern.

        Args:
            time_elem: Element with dtstart/dtend class, or None

        Returns:
            datetime or None
        """
        if time_elem is None:
            return None

        value_title = time_elem.find(class_='value-title')
        if value_title is not None and value_title.get('title'):
            return parse_datetime(value_title['title'])

        for attribute in ('datetime', 'title', 'content'):
            if time_elem.get(attribute):
                return parse_datetime(time_elem[attribute])

        return parse_datetime(time_elem.get_text(' ', strip=True))

    def _parse_venue(self, location_elem) -> Optional[VenueDraft]:
        if location_elem is None:
            return None

        def text_of(class_name: str) -> str:
            found = location_elem.find(class_=class_name)
            return found.get_text(' ', strip=True) if found else ''

        venue = VenueDraft(
            title=text_of('fn') or text_of('org') or location_elem.get_text(' ', strip=True),
            address=text_of('street-address'),
            locality=text_of('locality'),
            region=text_of('region'),
            postal_code=text_of('postal-code'),
            country=text_of('country-name')
        )

        geo = location_elem.find(class_='geo')
        if geo is not None:
            latitude = geo.find(class_='latitude')
            longitude = geo.find(class_='longitude')
            if latitude is not None and longitude is not None:
                venue.latitude = latitude.get('title') or latitude.get_text(strip=True)
                venue.longitude = longitude.get('title') or longitude.get_text(strip=True)

        return venue
