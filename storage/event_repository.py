"""DynamoDB storage for events owned by sources."""
import logging
from typing import List, Optional

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from processor.models import Event

logger = logging.getLogger(__name__)


class EventRepository:
    """Manager for event rows keyed by (source_id, event_id)."""

    BATCH_SIZE = 25  # DynamoDB batch operation limit

    def __init__(self, table_name: str, dynamodb=None):
        """
        Initialize DynamoDB table reference.

        Args:
            table_name: Name of the events table
            dynamodb: Optional boto3 DynamoDB resource
        """
        self.table_name = table_name
        self.dynamodb = dynamodb or boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized EventRepository for table: {table_name}")

    def upsert(self, event: Event) -> bool:
        """
        Write an event, replacing any row with the same key.

        Args:
            event: Event to write

        Returns:
            True if the event was created, False if it replaced a row
        """
        response = self.table.put_item(
            Item=self._event_to_item(event),
            ReturnValues='ALL_OLD'
        )
        return 'Attributes' not in response

    def list_for_source(self, source_id: str) -> List[Event]:
        """
        Retrieve all events of a source.

        Args:
            source_id: Owning source identifier

        Returns:
            List of Event objects ordered by start time
        """
        items = []
        query = {'KeyConditionExpression': Key('source_id').eq(source_id)}
        try:
            response = self.table.query(**query)
            items.extend(response.get('Items', []))

            # Handle pagination
            while 'LastEvaluatedKey' in response:
                response = self.table.query(
                    ExclusiveStartKey=response['LastEvaluatedKey'],
                    **query
                )
                items.extend(response.get('Items', []))
        except ClientError as e:
            logger.error(f"Error querying events of source {source_id}: {e}")
            raise

        events = [event for event in map(self._item_to_event, items) if event]
        events.sort(key=lambda event: event.start_time)
        return events

    def delete_for_source(self, source_id: str) -> int:
        """
        Delete every event of a source in batches of 25 items.

        Args:
            source_id: Owning source identifier

        Returns:
            Count of deleted events
        """
        event_ids = self._event_ids(source_id)
        if not event_ids:
            return 0

        logger.info(f"Deleting {len(event_ids)} events of source {source_id}")
        deleted_count = 0

        for i in range(0, len(event_ids), self.BATCH_SIZE):
            batch = event_ids[i:i + self.BATCH_SIZE]
            with self.table.batch_writer() as writer:
                for event_id in batch:
                    writer.delete_item(Key={'source_id': source_id, 'event_id': event_id})
            deleted_count += len(batch)

        logger.info(f"Successfully deleted {deleted_count} events")
        return deleted_count

    def _event_ids(self, source_id: str) -> List[str]:
        # raw keys, including rows that do not convert to an Event
        query = {
            'KeyConditionExpression': Key('source_id').eq(source_id),
            'ProjectionExpression': 'event_id'
        }
        response = self.table.query(**query)
        event_ids = [item['event_id'] for item in response.get('Items', [])]
        while 'LastEvaluatedKey' in response:
            response = self.table.query(ExclusiveStartKey=response['LastEvaluatedKey'], **query)
            event_ids.extend(item['event_id'] for item in response.get('Items', []))
        return event_ids

    def _item_to_event(self, item: dict) -> Optional[Event]:
        """
        Convert DynamoDB item to Event object.

        Args:
            item: DynamoDB item dictionary

        Returns:
            Event object or None if conversion fails
        """
        try:
            return Event(
                source_id=item['source_id'],
                event_id=item['event_id'],
                title=item['title'],
                start_time=item['start_time'],
                end_time=item.get('end_time'),
                venue=dict(item.get('venue', {})),
                description=item.get('description', ''),
                url=item.get('url'),
                external_id=item.get('external_id'),
                last_updated=int(item['last_updated'])
            )
        except (KeyError, ValueError) as e:
            logger.warning(f"Failed to convert item to Event: {e}")
            return None

    def _event_to_item(self, event: Event) -> dict:
        item = {
            'source_id': event.source_id,
            'event_id': event.event_id,
            'title': event.title,
            'start_time': event.start_time,
            'venue': event.venue,
            'description': event.description,
            'last_updated': event.last_updated
        }

        # Add optional fields if present
        if event.end_time:
            item['end_time'] = event.end_time
        if event.url:
            item['url'] = event.url
        if event.external_id:
            item['external_id'] = event.external_id

        return item
