"""AWS Lambda handler for importing events from remote source URLs."""
import json
import logging
import time
from typing import Any, Dict

from importer.error_classifier import ErrorClassifier
from importer.settings import ImportSettings
from importer.source_importer import SourceImporter
from importer.source_resolver import SourceResolver, normalize_url
from processor.models import FailureCategory, ImportResult, Source
from storage.event_repository import EventRepository
from storage.source_repository import (
    SourceAlreadyExistsError,
    SourceNotFoundError,
    SourceRepository,
    SourceValidationError,
)

ACTIONS = ('import', 'create', 'show', 'update', 'destroy')


# Attributes every LogRecord carries; anything else came in through extra=
STANDARD_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {'message', 'asctime'}


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in record.__dict__.items():
            if key not in STANDARD_RECORD_ATTRS and key not in log_data:
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def _response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {'statusCode': status_code, 'body': json.dumps(body)}


def _source_summary(source: Source) -> Dict[str, Any]:
    return {
        'source_id': source.source_id,
        'organization_id': source.organization_id,
        'url': source.url,
        'title': source.title,
        'metadata': source.metadata
    }


def _import_response(result: ImportResult, duration: float) -> Dict[str, Any]:
    """
    Render an ImportResult as a Lambda response.

    Args:
        result: Outcome of the import
        duration: Elapsed seconds

    Returns:
        Response dict with statusCode and JSON body
    """
    body = {
        'source': _source_summary(result.source),
        'statistics': {
            'total_events': result.total_event_count,
            'events_created': result.created_count,
            'events_updated': result.updated_count,
            'events_skipped': result.skipped_count,
            'overflow_count': result.overflow_count,
            'duration_seconds': round(duration, 2)
        },
        'errors': result.errors
    }

    if result.failure is not None:
        body['message'] = 'Import failed'
        body['flash'] = {'failure': result.failure.message}
        body['failure'] = {
            'category': result.failure.category.value,
            'message': result.failure.message,
            'field_errors': result.failure.field_errors
        }
        if result.failure.category is FailureCategory.VALIDATION_FAILURE:
            return _response(422, body)
        return _response(502, body)

    body['message'] = 'Import completed successfully'
    body['flash'] = {'success': result.summary_message()}
    body['events'] = [
        {'event_id': event.event_id, 'title': event.title, 'start_time': event.start_time}
        for event in result.displayed_events
    ]
    return _response(200, body)


def _invalid_source_response(source: Source, error: SourceValidationError) -> Dict[str, Any]:
    failure = ErrorClassifier().classify(error, source.url)
    return _response(422, {
        'message': 'Source is invalid',
        'flash': {'failure': failure.message},
        'failure': {
            'category': failure.category.value,
            'message': failure.message,
            'field_errors': failure.field_errors
        }
    })


def _save_source(
    source_repository: SourceRepository,
    source: Source,
    status_code: int,
    message: str
) -> Dict[str, Any]:
    """
    Save a source built by the create or update action.

    Args:
        source_repository: Repository to save into
        source: Source with the requested changes applied
        status_code: Status returned on success
        message: Message returned on success

    Returns:
        Response dict; 422 on invalid attributes, 409 when the URL is taken
    """
    try:
        source_repository.save(source)
    except SourceValidationError as e:
        return _invalid_source_response(source, e)
    except SourceAlreadyExistsError:
        return _response(409, {
            'message': 'Another source already uses this URL',
            'url': source.url
        })
    return _response(status_code, {'message': message, 'source': _source_summary(source)})


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function for source imports.

    Actions:
        import: save the source and import its events (the default)
        create: save a new source without fetching it
        show: return a source and its events
        update: change a source's attributes, including its URL
        destroy: delete a source and its events

    Args:
        event: Payload with action, organization_id, url and source overrides
        context: Lambda context object

    Returns:
        Response dict with statusCode and JSON body
    """
    settings = ImportSettings.from_env()

    setup_logging(settings.log_level)
    logger = logging.getLogger(__name__)

    start_time = time.time()
    action = event.get('action', 'import')
    organization_id = event.get('organization_id')
    overrides = event.get('source') or {}
    url = event.get('url') or overrides.get('url', '')

    logger.info(
        f"Lambda execution started",
        extra={'action': action, 'organization_id': organization_id, 'url': url}
    )

    if not organization_id or action not in ACTIONS:
        return _response(400, {'message': 'Request must name an organization_id and a valid action'})

    try:
        event_repository = EventRepository(table_name=settings.events_table_name)
        source_repository = SourceRepository(
            table_name=settings.sources_table_name,
            event_repository=event_repository
        )

        if action == 'create':
            source = Source(organization_id=organization_id, url=normalize_url(url))
            SourceResolver(source_repository).apply_overrides(source, overrides)
            response = _save_source(source_repository, source, 201, 'Source created')
            logger.info(f"Lambda execution completed", extra={'status_code': response['statusCode']})
            return response

        if action == 'import':
            importer = SourceImporter(
                settings=settings,
                source_repository=source_repository,
                event_repository=event_repository
            )
            result = importer.import_source(organization_id, url, overrides)

            logger.info(
                f"Lambda execution completed successfully",
                extra={
                    'state': result.state.value,
                    'duration_seconds': round(time.time() - start_time, 2)
                }
            )
            return _import_response(result, time.time() - start_time)

        source = source_repository.get(organization_id, normalize_url(url))
        if source is None:
            raise SourceNotFoundError(url)

        if action == 'show':
            events = event_repository.list_for_source(source.source_id)
            logger.info(f"Lambda execution completed successfully")
            return _response(200, {
                'source': _source_summary(source),
                'events': [
                    {'event_id': e.event_id, 'title': e.title, 'start_time': e.start_time}
                    for e in events
                ],
                'statistics': {'total_events': len(events)}
            })

        if action == 'update':
            SourceResolver(source_repository).apply_overrides(source, overrides)
            if 'url' in overrides:
                source.url = normalize_url(overrides['url'])
            response = _save_source(source_repository, source, 200, 'Source updated')
            logger.info(f"Lambda execution completed", extra={'status_code': response['statusCode']})
            return response

        deleted = source_repository.destroy(source)
        logger.info(f"Lambda execution completed successfully")
        return _response(200, {
            'message': 'Source destroyed',
            'source': _source_summary(source),
            'statistics': {'events_deleted': deleted}
        })

    except SourceNotFoundError:
        logger.warning(f"No source for {url!r} in organization {organization_id}")
        return _response(404, {'message': 'Source not found', 'url': url})

    except Exception as e:
        duration = time.time() - start_time

        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )

        return _response(500, {
            'message': 'Request failed unexpectedly',
            'error_type': type(e).__name__,
            'duration_seconds': round(duration, 2)
        })
