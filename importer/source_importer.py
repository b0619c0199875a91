"""Orchestration of a single source import."""
import logging
import time
from typing import Any, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from fetcher.errors import FetchError
from fetcher.remote_fetcher import RemoteFetcher
from importer.error_classifier import ErrorClassifier
from importer.settings import ImportSettings
from importer.source_resolver import SourceResolver
from parsers.base import EventParser, ParseError
from parsers.registry import ParserRegistry, default_registry
from processor.event_processor import EventProcessor, EventValidationError
from processor.models import (
    ClassifiedFailure,
    EventDraft,
    ImportResult,
    ImportState,
    Source,
)
from storage.event_repository import EventRepository
from storage.source_repository import (
    SourceAlreadyExistsError,
    SourceRepository,
    SourceValidationError,
)

logger = logging.getLogger(__name__)


class SourceImporter:
    """
    Imports the events published at a URL into an organization's source.

    One call runs RESOLVING, FETCHING, PARSING, PERSISTING and DONE in
    order. A failure in any of the first three stages ends the run in
    FAILED with a classified failure. The source row saved during
    RESOLVING is kept in that case.
    """

    def __init__(
        self,
        settings: ImportSettings,
        source_repository: SourceRepository,
        event_repository: EventRepository,
        fetcher: Optional[RemoteFetcher] = None,
        parsers: Optional[ParserRegistry] = None,
        processor: Optional[EventProcessor] = None,
        classifier: Optional[ErrorClassifier] = None
    ):
        self.settings = settings
        self.source_repository = source_repository
        self.event_repository = event_repository
        self.resolver = SourceResolver(source_repository)
        self.fetcher = fetcher or RemoteFetcher(timeout=settings.fetch_timeout_seconds)
        self.parsers = parsers or default_registry()
        self.processor = processor or EventProcessor()
        self.classifier = classifier or ErrorClassifier()

    def import_source(
        self,
        organization_id: str,
        url: str,
        overrides: Optional[Dict[str, Any]] = None
    ) -> ImportResult:
        """
        Import the document at a URL.

        Args:
            organization_id: Owning organization
            url: Submitted URL
            overrides: Source attributes to persist before fetching

        Returns:
            ImportResult; fetch, parse and validation problems are reported
            through its failure field instead of being raised
        """
        start_time = time.time()
        overrides = overrides or {}

        source = self.resolver.resolve(organization_id, url, overrides)
        result = ImportResult(
            source=source,
            maximum_displayed=self.settings.maximum_events_to_display_in_flash
        )

        try:
            result.source = source = self._save_source(source, overrides)
        except SourceValidationError as e:
            return self._fail(result, self.classifier.classify(e, source.url))

        self._transition(result, ImportState.FETCHING)
        try:
            document = self.fetcher.fetch(source.url)
        except Exception as e:
            return self._fail(result, self.classifier.classify(e, source.url), e)

        self._transition(result, ImportState.PARSING)
        try:
            parser = self.parsers.for_document(document)
            drafts = list(parser.parse(document.content))
        except Exception as e:
            return self._fail(
                result,
                self.classifier.classify(e, source.url, during_parse=True),
                e
            )

        self._transition(result, ImportState.PERSISTING)
        self._persist_drafts(result, parser, drafts)

        self._transition(result, ImportState.DONE)
        logger.info(
            f"Imported {result.total_event_count} events for {source.url}",
            extra={
                'source_id': source.source_id,
                'events_created': result.created_count,
                'events_updated': result.updated_count,
                'events_skipped': result.skipped_count,
                'errors': len(result.errors),
                'duration_seconds': round(time.time() - start_time, 2)
            }
        )
        return result

    def _save_source(self, source: Source, overrides: Dict[str, Any]) -> Source:
        """
        Persist the resolved source.

        When another import created the same URL first, the winner's row is
        loaded, the overrides are applied to it and it is saved instead.

        Args:
            source: Resolved source with overrides applied
            overrides: Caller-supplied attributes

        Returns:
            Stored source

        Raises:
            SourceValidationError: If the attributes are invalid
        """
        try:
            return self.source_repository.save(source)
        except SourceAlreadyExistsError:
            logger.info(f"Source {source.url} was created concurrently, re-resolving")
            winner = self.resolver.resolve(source.organization_id, source.url, overrides)
            try:
                return self.source_repository.save(winner)
            except SourceAlreadyExistsError:
                # winner not visible to the first read
                logger.info(f"Source {source.url} still not visible, re-resolving once more")
                winner = self.resolver.resolve(source.organization_id, source.url, overrides)
                return self.source_repository.save(winner)

    def _persist_drafts(self, result: ImportResult, parser: EventParser, drafts: List[EventDraft]) -> None:
        """
        Upsert each draft on its own so one bad event does not void the batch.

        Args:
            result: ImportResult being built
            parser: Parser that produced the drafts
            drafts: Drafts in document order
        """
        seen_keys = set()

        for draft in drafts:
            natural_key = parser.natural_key(draft)
            if natural_key in seen_keys:
                result.skipped_count += 1
                continue

            try:
                event = self.processor.process_draft(draft, result.source, natural_key)
                created = self.event_repository.upsert(event)
            except EventValidationError as e:
                logger.warning(f"Skipping invalid event: {e}")
                result.errors.append(f"Skipped event '{e.title or '(untitled)'}': {', '.join(e.problems)}")
                continue
            except (ClientError, BotoCoreError) as e:
                if isinstance(e, ClientError):
                    code = e.response.get('Error', {}).get('Code', 'Unknown')
                else:
                    code = type(e).__name__
                logger.warning(f"Failed to store event '{draft.title}': {code}")
                result.errors.append(f"Couldn't store event '{draft.title}'")
                continue

            seen_keys.add(natural_key)
            result.events.append(event)
            if created:
                result.created_count += 1
            else:
                result.updated_count += 1

    def _transition(self, result: ImportResult, state: ImportState) -> None:
        logger.info(f"Import of {result.source.url}: {result.state.value} -> {state.value}")
        result.state = state

    def _fail(
        self,
        result: ImportResult,
        failure: ClassifiedFailure,
        error: Optional[BaseException] = None
    ) -> ImportResult:
        logger.error(
            f"Import of {result.source.url} failed during {result.state.value}: "
            f"{failure.category.value}",
            extra={'error_type': type(error).__name__ if error else failure.category.value},
            exc_info=error is not None and not isinstance(error, (FetchError, ParseError))
        )
        result.failure = failure
        result.state = ImportState.FAILED
        return result
