"""Parser selection by declared content type, URL extension, or content sniffing."""
import logging
from typing import Dict, List, Optional, Type
from urllib.parse import urlparse

from parsers.base import EventParser, ParseError
from parsers.hcalendar_parser import HCalendarParser
from parsers.ical_parser import ICalendarParser
from processor.models import FetchedDocument

logger = logging.getLogger(__name__)


class ParserRegistry:
    """Maps document formats to parser classes."""

    def __init__(self):
        self._by_content_type: Dict[str, Type[EventParser]] = {}
        self._by_extension: Dict[str, Type[EventParser]] = {}

    def register(
        self,
        parser_class: Type[EventParser],
        content_types: List[str],
        extensions: Optional[List[str]] = None
    ) -> None:
        """
        Register a parser for content types and URL extensions.

        Args:
            parser_class: EventParser subclass
            content_types: MIME types the parser accepts
            extensions: URL path extensions such as '.ics'
        """
        for content_type in content_types:
            self._by_content_type[content_type.lower()] = parser_class
        for extension in extensions or []:
            self._by_extension[extension.lower()] = parser_class

    def for_document(self, document: FetchedDocument) -> EventParser:
        """
        Pick the parser for a fetched document.

        Args:
            document: FetchedDocument from the fetcher

        Returns:
            New EventParser instance

        Raises:
            ParseError: If no registered parser accepts the document
        """
        parser_class = (
            self._by_content_type.get(self._media_type(document.content_type))
            or self._by_extension_of(document.url)
            or self._sniff(document.content)
        )
        if parser_class is None:
            raise ParseError(
                f"unsupported document format '{document.content_type or 'unknown'}'"
            )

        logger.info(f"Selected {parser_class.name} parser for {document.url}")
        return parser_class()

    def _media_type(self, content_type: str) -> str:
        return content_type.split(';', 1)[0].strip().lower()

    def _by_extension_of(self, url: str) -> Optional[Type[EventParser]]:
        path = urlparse(url).path.lower()
        for extension, parser_class in self._by_extension.items():
            if path.endswith(extension):
                return parser_class
        return None

    def _sniff(self, content: str) -> Optional[Type[EventParser]]:
        head = content.lstrip()[:512].upper()
        if head.startswith('BEGIN:VCALENDAR'):
            return self._by_content_type.get('text/calendar')
        if head.startswith('<!DOCTYPE HTML') or head.startswith('<HTML'):
            return self._by_content_type.get('text/html')
        return None


def default_registry() -> ParserRegistry:
    """Registry with the bundled iCalendar and hCalendar parsers."""
    registry = ParserRegistry()
    registry.register(ICalendarParser, ['text/calendar', 'application/ics'], ['.ics', '.ical'])
    registry.register(
        HCalendarParser,
        ['text/html', 'application/xhtml+xml'],
        ['.html', '.htm']
    )
    return registry
