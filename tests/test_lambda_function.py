"""Integration tests for Lambda handler."""
import json
import logging
import os
from unittest.mock import Mock, patch

import pytest

from importer.settings import ImportSettings
from lambda_function import JsonFormatter, lambda_handler, setup_logging
from processor.models import (
    ClassifiedFailure,
    Event,
    FailureCategory,
    ImportResult,
    ImportState,
    Source,
)
from storage.source_repository import SourceAlreadyExistsError, SourceValidationError


@pytest.fixture
def mock_env():
    """Set up environment variables for testing."""
    env_vars = {
        'SOURCES_TABLE_NAME': 'test-import-sources',
        'EVENTS_TABLE_NAME': 'test-import-events',
        'LOG_LEVEL': 'INFO',
        'TIMEOUT_SECONDS': '30',
        'MAXIMUM_EVENTS_TO_DISPLAY_IN_FLASH': '5'
    }
    with patch.dict(os.environ, env_vars):
        yield env_vars


@pytest.fixture
def mock_context():
    """Create a mock Lambda context."""
    context = Mock()
    context.function_name = 'test-function'
    context.aws_request_id = 'test-request-id'
    return context


@pytest.fixture
def source():
    return Source(
        organization_id='org-1',
        url='https://example.org/feed.ics',
        title='My Title',
        source_id='src-1',
        stored_url='https://example.org/feed.ics'
    )


def make_events(count):
    return [
        Event(
            source_id='src-1',
            event_id=f'event-{i}',
            title=f'Event {i}',
            start_time='2024-01-15T10:00:00',
            end_time=None,
            venue={},
            description='',
            url=None,
            external_id=None,
            last_updated=1234567890
        )
        for i in range(count)
    ]


@pytest.fixture
def payload():
    return {
        'organization_id': 'org-1',
        'url': 'https://example.org/feed.ics',
        'source': {'title': 'My Title'}
    }


@patch('lambda_function.SourceRepository')
@patch('lambda_function.EventRepository')
@patch('lambda_function.SourceImporter')
class TestLambdaHandler:
    """Test cases for Lambda handler."""

    def test_successful_import(
        self, mock_importer_class, mock_event_repo_class, mock_source_repo_class,
        mock_env, mock_context, payload, source
    ):
        """Test successful import response with the capped event list."""
        result = ImportResult(
            source=source,
            state=ImportState.DONE,
            events=make_events(10),
            maximum_displayed=5,
            created_count=10
        )
        mock_importer_class.return_value.import_source.return_value = result

        response = lambda_handler(payload, mock_context)

        assert response['statusCode'] == 200
        body = json.loads(response['body'])
        assert body['message'] == 'Import completed successfully'
        assert body['statistics']['total_events'] == 10
        assert body['statistics']['events_created'] == 10
        assert body['statistics']['overflow_count'] == 5
        assert len(body['events']) == 5
        assert 'And 5 other events' in body['flash']['success']
        assert body['source']['title'] == 'My Title'

        mock_importer_class.return_value.import_source.assert_called_once_with(
            'org-1', 'https://example.org/feed.ics', {'title': 'My Title'}
        )
        settings = mock_importer_class.call_args.kwargs['settings']
        assert isinstance(settings, ImportSettings)
        assert settings.maximum_events_to_display_in_flash == 5

    def test_classified_failure(
        self, mock_importer_class, mock_event_repo_class, mock_source_repo_class,
        mock_env, mock_context, payload, source
    ):
        """Test fetch failures render as a failure flash."""
        result = ImportResult(
            source=source,
            state=ImportState.FAILED,
            failure=ClassifiedFailure(
                category=FailureCategory.HOST_RESOLUTION_FAILURE,
                message="Couldn't find IP address for remote site example.org. Is the URL correct?"
            )
        )
        mock_importer_class.return_value.import_source.return_value = result

        response = lambda_handler(payload, mock_context)

        assert response['statusCode'] == 502
        body = json.loads(response['body'])
        assert body['failure']['category'] == 'HostResolutionFailure'
        assert "Couldn't find IP address" in body['flash']['failure']

    def test_validation_failure(
        self, mock_importer_class, mock_event_repo_class, mock_source_repo_class,
        mock_env, mock_context, source
    ):
        result = ImportResult(
            source=source,
            state=ImportState.FAILED,
            failure=ClassifiedFailure(
                category=FailureCategory.VALIDATION_FAILURE,
                message="Please fix the following: url can't be blank.",
                field_errors={'url': ["can't be blank"]}
            )
        )
        mock_importer_class.return_value.import_source.return_value = result

        response = lambda_handler({'organization_id': 'org-1', 'url': ''}, mock_context)

        assert response['statusCode'] == 422
        body = json.loads(response['body'])
        assert body['failure']['field_errors'] == {'url': ["can't be blank"]}

    def test_url_taken_from_source_attributes(
        self, mock_importer_class, mock_event_repo_class, mock_source_repo_class,
        mock_env, mock_context, source
    ):
        mock_importer_class.return_value.import_source.return_value = ImportResult(
            source=source, state=ImportState.DONE
        )

        lambda_handler(
            {'organization_id': 'org-1', 'source': {'url': 'https://example.org/feed.ics'}},
            mock_context
        )

        args = mock_importer_class.return_value.import_source.call_args.args
        assert args[1] == 'https://example.org/feed.ics'

    def test_missing_organization(
        self, mock_importer_class, mock_event_repo_class, mock_source_repo_class,
        mock_env, mock_context
    ):
        response = lambda_handler({'url': 'https://example.org/feed.ics'}, mock_context)

        assert response['statusCode'] == 400
        mock_importer_class.assert_not_called()

    def test_destroy(
        self, mock_importer_class, mock_event_repo_class, mock_source_repo_class,
        mock_env, mock_context, source
    ):
        """Test the destroy action removes the source through the repository."""
        mock_source_repo = mock_source_repo_class.return_value
        mock_source_repo.get.return_value = source
        mock_source_repo.destroy.return_value = 4

        response = lambda_handler(
            {'action': 'destroy', 'organization_id': 'org-1', 'url': 'https://EXAMPLE.org/feed.ics'},
            mock_context
        )

        assert response['statusCode'] == 200
        body = json.loads(response['body'])
        assert body['statistics']['events_deleted'] == 4
        mock_source_repo.get.assert_called_once_with('org-1', 'https://example.org/feed.ics')
        mock_source_repo.destroy.assert_called_once_with(source)

    def test_destroy_unknown_source(
        self, mock_importer_class, mock_event_repo_class, mock_source_repo_class,
        mock_env, mock_context
    ):
        mock_source_repo_class.return_value.get.return_value = None

        response = lambda_handler(
            {'action': 'destroy', 'organization_id': 'org-1', 'url': 'https://example.org/x'},
            mock_context
        )

        assert response['statusCode'] == 404

    def test_show(
        self, mock_importer_class, mock_event_repo_class, mock_source_repo_class,
        mock_env, mock_context, source
    ):
        mock_source_repo_class.return_value.get.return_value = source
        mock_event_repo_class.return_value.list_for_source.return_value = make_events(7)

        response = lambda_handler(
            {'action': 'show', 'organization_id': 'org-1', 'url': 'https://example.org/feed.ics'},
            mock_context
        )

        assert response['statusCode'] == 200
        body = json.loads(response['body'])
        assert body['source']['source_id'] == 'src-1'
        assert len(body['events']) == 7
        assert body['statistics']['total_events'] == 7
        mock_event_repo_class.return_value.list_for_source.assert_called_once_with('src-1')
        mock_importer_class.assert_not_called()

    def test_update(
        self, mock_importer_class, mock_event_repo_class, mock_source_repo_class,
        mock_env, mock_context, source
    ):
        """Test the update action applies attributes and a new URL before saving."""
        mock_source_repo = mock_source_repo_class.return_value
        mock_source_repo.get.return_value = source

        response = lambda_handler(
            {
                'action': 'update',
                'organization_id': 'org-1',
                'url': 'https://example.org/feed.ics',
                'source': {'title': 'undisclosed', 'url': 'webcal://Example.org/new.ics'}
            },
            mock_context
        )

        assert response['statusCode'] == 200
        mock_source_repo.save.assert_called_once_with(source)
        assert source.title == 'undisclosed'
        assert source.url == 'http://example.org/new.ics'
        mock_importer_class.assert_not_called()

    def test_update_with_invalid_url(
        self, mock_importer_class, mock_event_repo_class, mock_source_repo_class,
        mock_env, mock_context, source
    ):
        mock_source_repo = mock_source_repo_class.return_value
        mock_source_repo.get.return_value = source
        mock_source_repo.save.side_effect = SourceValidationError({'url': ["can't be blank"]})

        response = lambda_handler(
            {
                'action': 'update',
                'organization_id': 'org-1',
                'url': 'https://example.org/feed.ics',
                'source': {'url': ''}
            },
            mock_context
        )

        assert response['statusCode'] == 422
        body = json.loads(response['body'])
        assert body['failure']['category'] == 'ValidationFailure'
        assert body['failure']['field_errors'] == {'url': ["can't be blank"]}
        assert body['flash']['failure']

    def test_update_to_taken_url(
        self, mock_importer_class, mock_event_repo_class, mock_source_repo_class,
        mock_env, mock_context, source
    ):
        mock_source_repo = mock_source_repo_class.return_value
        mock_source_repo.get.return_value = source
        mock_source_repo.save.side_effect = SourceAlreadyExistsError('org-1', 'https://example.org/other.ics')

        response = lambda_handler(
            {
                'action': 'update',
                'organization_id': 'org-1',
                'url': 'https://example.org/feed.ics',
                'source': {'url': 'https://example.org/other.ics'}
            },
            mock_context
        )

        assert response['statusCode'] == 409

    def test_update_unknown_source(
        self, mock_importer_class, mock_event_repo_class, mock_source_repo_class,
        mock_env, mock_context
    ):
        mock_source_repo_class.return_value.get.return_value = None

        response = lambda_handler(
            {'action': 'update', 'organization_id': 'org-1', 'url': 'https://example.org/x'},
            mock_context
        )

        assert response['statusCode'] == 404
        mock_source_repo_class.return_value.save.assert_not_called()

    def test_create(
        self, mock_importer_class, mock_event_repo_class, mock_source_repo_class,
        mock_env, mock_context, payload
    ):
        """Test the create action saves a new source without importing."""
        response = lambda_handler({**payload, 'action': 'create'}, mock_context)

        assert response['statusCode'] == 201
        saved = mock_source_repo_class.return_value.save.call_args.args[0]
        assert not saved.persisted
        assert saved.url == 'https://example.org/feed.ics'
        assert saved.title == 'My Title'
        mock_importer_class.assert_not_called()

    def test_unexpected_error(
        self, mock_importer_class, mock_event_repo_class, mock_source_repo_class,
        mock_env, mock_context, payload
    ):
        """Test unexpected errors become a 500 without leaking details."""
        mock_importer_class.return_value.import_source.side_effect = Exception('DynamoDB error')

        response = lambda_handler(payload, mock_context)

        assert response['statusCode'] == 500
        body = json.loads(response['body'])
        assert body['error_type'] == 'Exception'
        assert 'DynamoDB error' not in response['body']
        assert 'duration_seconds' in body

    @patch('lambda_function.setup_logging')
    def test_logging_output(
        self, mock_setup_logging, mock_importer_class, mock_event_repo_class,
        mock_source_repo_class, mock_env, mock_context, payload, source, caplog
    ):
        """Test that logging output is generated correctly."""
        mock_importer_class.return_value.import_source.return_value = ImportResult(
            source=source, state=ImportState.DONE
        )

        with caplog.at_level(logging.INFO, logger='lambda_function'):
            response = lambda_handler(payload, mock_context)

        assert response['statusCode'] == 200
        log_messages = [record.message for record in caplog.records]
        assert any('Lambda execution started' in msg for msg in log_messages)
        assert any('Lambda execution completed successfully' in msg for msg in log_messages)


class TestSetupLogging:
    """Test cases for logging setup."""

    def test_setup_logging_default_level(self):
        setup_logging()
        assert logging.getLogger().level == logging.INFO

    def test_setup_logging_debug_level(self):
        setup_logging('DEBUG')
        assert logging.getLogger().level == logging.DEBUG


class TestJsonFormatter:
    """Test cases for the JSON log formatter."""

    def test_extra_fields_are_included(self):
        record = logging.makeLogRecord({
            'name': 'importer.source_importer',
            'levelname': 'ERROR',
            'msg': 'Import failed',
            'error_type': 'HostResolutionFailure',
            'source_id': 'src-1',
            'duration_seconds': 1.5
        })

        log_data = json.loads(JsonFormatter().format(record))

        assert log_data['message'] == 'Import failed'
        assert log_data['error_type'] == 'HostResolutionFailure'
        assert log_data['source_id'] == 'src-1'
        assert log_data['duration_seconds'] == 1.5
        assert 'msg' not in log_data
        assert 'args' not in log_data

    def test_unserializable_extra_is_stringified(self):
        record = logging.makeLogRecord({'msg': 'Saved', 'state': ImportState.DONE})

        log_data = json.loads(JsonFormatter().format(record))

        assert log_data['state'] == str(ImportState.DONE)


class TestImportSettings:
    """Test cases for settings read from the environment."""

    def test_defaults(self):
        settings = ImportSettings.from_env({})

        assert settings.sources_table_name == 'import-sources'
        assert settings.events_table_name == 'import-events'
        assert settings.fetch_timeout_seconds == 30
        assert settings.maximum_events_to_display_in_flash == 5

    def test_from_env(self):
        settings = ImportSettings.from_env({
            'MAXIMUM_EVENTS_TO_DISPLAY_IN_FLASH': '12',
            'TIMEOUT_SECONDS': '5'
        })

        assert settings.maximum_events_to_display_in_flash == 12
        assert settings.fetch_timeout_seconds == 5

    @pytest.mark.parametrize("env", [
        {'MAXIMUM_EVENTS_TO_DISPLAY_IN_FLASH': '-1'},
        {'MAXIMUM_EVENTS_TO_DISPLAY_IN_FLASH': 'lots'},
        {'TIMEOUT_SECONDS': '0'},
    ])
    def test_invalid_values(self, env):
        with pytest.raises(ValueError):
            ImportSettings.from_env(env)


class TestSourceActions:
    """Source actions run against mock DynamoDB tables."""

    def test_update_moves_source_to_new_url(
        self, source_repository, event_repository, mock_env, mock_context
    ):
        source = source_repository.save(
            Source(organization_id='org-1', url='https://example.org/old.ics', title='Old')
        )

        response = lambda_handler(
            {
                'action': 'update',
                'organization_id': 'org-1',
                'url': 'https://example.org/old.ics',
                'source': {'url': 'https://Example.org/new.ics', 'title': 'New'}
            },
            mock_context
        )

        assert response['statusCode'] == 200
        assert source_repository.get('org-1', 'https://example.org/old.ics') is None
        moved = source_repository.get('org-1', 'https://example.org/new.ics')
        assert moved.source_id == source.source_id
        assert moved.title == 'New'
        assert source_repository.count('org-1') == 1

    def test_update_with_blank_url_keeps_source(
        self, source_repository, event_repository, mock_env, mock_context
    ):
        source_repository.save(
            Source(organization_id='org-1', url='https://example.org/feed.ics', title='Feed')
        )

        response = lambda_handler(
            {
                'action': 'update',
                'organization_id': 'org-1',
                'url': 'https://example.org/feed.ics',
                'source': {'url': '', 'title': 'Changed'}
            },
            mock_context
        )

        assert response['statusCode'] == 422
        assert json.loads(response['body'])['failure']['field_errors'] == {'url': ["can't be blank"]}
        stored = source_repository.get('org-1', 'https://example.org/feed.ics')
        assert stored.title == 'Feed'

    def test_create_then_show(self, source_repository, event_repository, mock_env, mock_context):
        created = lambda_handler(
            {
                'action': 'create',
                'organization_id': 'org-1',
                'source': {'url': 'https://example.org/feed.ics', 'title': 'Feed'}
            },
            mock_context
        )
        duplicate = lambda_handler(
            {'action': 'create', 'organization_id': 'org-1', 'url': 'https://example.org/feed.ics'},
            mock_context
        )
        shown = lambda_handler(
            {'action': 'show', 'organization_id': 'org-1', 'url': 'https://example.org/feed.ics'},
            mock_context
        )

        assert created['statusCode'] == 201
        assert duplicate['statusCode'] == 409
        assert shown['statusCode'] == 200
        body = json.loads(shown['body'])
        assert body['source']['title'] == 'Feed'
        assert body['events'] == []
