"""Shared fixtures for DynamoDB-backed tests."""
import os
from unittest.mock import patch

import boto3
import pytest
from moto import mock_aws

from storage.event_repository import EventRepository
from storage.source_repository import SourceRepository

SOURCES_TABLE = 'test-import-sources'
EVENTS_TABLE = 'test-import-events'


@pytest.fixture
def aws_credentials():
    """Fake credentials so boto3 never reaches a real account."""
    env_vars = {
        'AWS_ACCESS_KEY_ID': 'testing',
        'AWS_SECRET_ACCESS_KEY': 'testing',
        'AWS_SECURITY_TOKEN': 'testing',
        'AWS_SESSION_TOKEN': 'testing',
        'AWS_DEFAULT_REGION': 'us-east-1'
    }
    with patch.dict(os.environ, env_vars):
        yield env_vars


@pytest.fixture
def dynamodb(aws_credentials):
    """Create mock sources and events tables."""
    with mock_aws():
        resource = boto3.resource('dynamodb', region_name='us-east-1')

        resource.create_table(
            TableName=SOURCES_TABLE,
            KeySchema=[
                {'AttributeName': 'organization_id', 'KeyType': 'HASH'},
                {'AttributeName': 'url', 'KeyType': 'RANGE'}
            ],
            AttributeDefinitions=[
                {'AttributeName': 'organization_id', 'AttributeType': 'S'},
                {'AttributeName': 'url', 'AttributeType': 'S'}
            ],
            BillingMode='PAY_PER_REQUEST'
        )

        resource.create_table(
            TableName=EVENTS_TABLE,
            KeySchema=[
                {'AttributeName': 'source_id', 'KeyType': 'HASH'},
                {'AttributeName': 'event_id', 'KeyType': 'RANGE'}
            ],
            AttributeDefinitions=[
                {'AttributeName': 'source_id', 'AttributeType': 'S'},
                {'AttributeName': 'event_id', 'AttributeType': 'S'}
            ],
            BillingMode='PAY_PER_REQUEST'
        )

        yield resource


@pytest.fixture
def event_repository(dynamodb):
    return EventRepository(EVENTS_TABLE, dynamodb=dynamodb)


@pytest.fixture
def source_repository(dynamodb, event_repository):
    return SourceRepository(SOURCES_TABLE, event_repository, dynamodb=dynamodb)
