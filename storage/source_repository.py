"""DynamoDB storage for sources, unique per organization and URL."""
import json
import logging
import time
from typing import Dict, List, Optional
from urllib.parse import urlparse

import boto3
from boto3.dynamodb.conditions import Attr, Key
from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import ClientError

from processor.models import Source
from storage.event_repository import EventRepository

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 200
# DynamoDB sort key limit
MAX_URL_BYTES = 1024
URL_SCHEMES = ('http', 'https', 'webcal')


class SourceValidationError(Exception):
    """Source attributes break persistence rules."""

    def __init__(self, errors: Dict[str, List[str]]):
        super().__init__('; '.join(
            f"{field} {message}" for field, messages in errors.items() for message in messages
        ))
        self.errors = errors


class SourceAlreadyExistsError(Exception):
    """Another source row already holds the organization and URL."""

    def __init__(self, organization_id: str, url: str):
        super().__init__(f"{organization_id}: {url}")
        self.organization_id = organization_id
        self.url = url


class SourceNotFoundError(Exception):
    """No source row for the organization and URL."""


def validate_source(source: Source) -> Dict[str, List[str]]:
    """
    Check a source against the persistence rules.

    Args:
        source: Source to validate

    Returns:
        Mapping of field name to error messages, empty when valid
    """
    errors: Dict[str, List[str]] = {}

    if not source.url or not source.url.strip():
        errors.setdefault('url', []).append("can't be blank")
    else:
        parsed = urlparse(source.url)
        if parsed.scheme not in URL_SCHEMES or not parsed.hostname:
            errors.setdefault('url', []).append('is invalid')
        elif len(source.url.encode('utf-8')) > MAX_URL_BYTES:
            errors.setdefault('url', []).append('is too long')

    if not source.organization_id:
        errors.setdefault('organization_id', []).append("can't be blank")

    if source.title and len(source.title) > MAX_TITLE_LENGTH:
        errors.setdefault('title', []).append(
            f"is too long (maximum is {MAX_TITLE_LENGTH} characters)"
        )

    if not isinstance(source.metadata, dict):
        errors.setdefault('metadata', []).append('must be a mapping')

    return errors


class SourceRepository:
    """Manager for source rows keyed by (organization_id, url)."""

    def __init__(self, table_name: str, event_repository: EventRepository, dynamodb=None):
        """
        Initialize DynamoDB table reference.

        Args:
            table_name: Name of the sources table
            event_repository: Repository holding the events owned by sources
            dynamodb: Optional boto3 DynamoDB resource
        """
        self.table_name = table_name
        self.event_repository = event_repository
        self.dynamodb = dynamodb or boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)
        self._serializer = TypeSerializer()
        logger.info(f"Initialized SourceRepository for table: {table_name}")

    def get(self, organization_id: str, url: str) -> Optional[Source]:
        """
        Look up a source by its identity.

        Args:
            organization_id: Owning organization
            url: Normalized source URL

        Returns:
            Source or None if no row exists
        """
        if not organization_id or not url:
            return None
        response = self.table.get_item(
            Key={'organization_id': organization_id, 'url': url},
            ConsistentRead=True
        )
        item = response.get('Item')
        return self._item_to_source(item) if item else None

    def count(self, organization_id: str) -> int:
        """Number of sources stored for an organization."""
        query = {
            'KeyConditionExpression': Key('organization_id').eq(organization_id),
            'Select': 'COUNT'
        }
        response = self.table.query(**query)
        total = response.get('Count', 0)
        while 'LastEvaluatedKey' in response:
            response = self.table.query(ExclusiveStartKey=response['LastEvaluatedKey'], **query)
            total += response.get('Count', 0)
        return total

    def save(self, source: Source) -> Source:
        """
        Persist a source after validating it.

        A new source is written only if no row holds its URL yet. A saved
        source whose URL changed is moved to the new key in one transaction.

        Args:
            source: Source to persist

        Returns:
            The same source, marked as stored

        Raises:
            SourceValidationError: If the source breaks a validation rule;
                nothing is written
            SourceAlreadyExistsError: If another row holds the URL
        """
        errors = validate_source(source)
        if errors:
            logger.warning(
                f"Source {source.url!r} failed validation",
                extra={'validation_errors': errors}
            )
            raise SourceValidationError(errors)

        source.updated_at = int(time.time())
        item = self._source_to_item(source)

        if not source.persisted:
            self._create(source, item)
        elif source.stored_url != source.url:
            self._move(source, item)
        else:
            self.table.put_item(Item=item)

        source.stored_url = source.url
        logger.info(f"Saved source {source.source_id} ({source.url})")
        return source

    def destroy(self, source: Source) -> int:
        """
        Delete a source and every event it owns.

        The source row is removed first, under a condition on its id, so a
        stale or missing source leaves the events untouched.

        Args:
            source: Stored source

        Returns:
            Count of deleted events

        Raises:
            SourceNotFoundError: If the source row does not exist
        """
        try:
            self.table.delete_item(
                Key={'organization_id': source.organization_id, 'url': source.stored_url or source.url},
                ConditionExpression=Attr('source_id').eq(source.source_id)
            )
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                raise SourceNotFoundError(source.url) from e
            raise

        # events go only once the row is known to be this source
        deleted_events = self.event_repository.delete_for_source(source.source_id)
        logger.info(
            f"Destroyed source {source.source_id} and {deleted_events} events"
        )
        source.stored_url = None
        return deleted_events

    def _create(self, source: Source, item: dict) -> None:
        try:
            self.table.put_item(Item=item, ConditionExpression=Attr('url').not_exists())
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                raise SourceAlreadyExistsError(source.organization_id, source.url) from e
            raise

    def _move(self, source: Source, item: dict) -> None:
        """
        Write the source under its new URL and remove the old row atomically.

        Args:
            source: Source whose URL changed
            item: Serialized source with the new URL
        """
        client = self.dynamodb.meta.client
        try:
            client.transact_write_items(TransactItems=[
                {
                    'Put': {
                        'TableName': self.table_name,
                        'Item': {k: self._serializer.serialize(v) for k, v in item.items()},
                        'ConditionExpression': 'attribute_not_exists(#url)',
                        'ExpressionAttributeNames': {'#url': 'url'}
                    }
                },
                {
                    'Delete': {
                        'TableName': self.table_name,
                        'Key': {
                            'organization_id': {'S': source.organization_id},
                            'url': {'S': source.stored_url}
                        },
                        'ConditionExpression': 'source_id = :source_id',
                        'ExpressionAttributeValues': {':source_id': {'S': source.source_id}}
                    }
                }
            ])
        except ClientError as e:
            if e.response['Error']['Code'] == 'TransactionCanceledException':
                raise SourceAlreadyExistsError(source.organization_id, source.url) from e
            raise

    def _item_to_source(self, item: dict) -> Source:
        return Source(
            organization_id=item['organization_id'],
            url=item['url'],
            title=item.get('title', ''),
            metadata=json.loads(item.get('metadata', '{}')),
            source_id=item['source_id'],
            created_at=int(item['created_at']),
            updated_at=int(item['updated_at']),
            stored_url=item['url']
        )

    def _source_to_item(self, source: Source) -> dict:
        # metadata is free-form; JSON keeps floats away from the Decimal-only API
        return {
            'organization_id': source.organization_id,
            'url': source.url,
            'source_id': source.source_id,
            'title': source.title or '',
            'metadata': json.dumps(source.metadata, sort_keys=True, default=str),
            'created_at': source.created_at,
            'updated_at': source.updated_at
        }
