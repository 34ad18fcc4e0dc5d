"""AWS DynamoDB Manager for run record persistence."""

from typing import Any, Optional

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import BotoCoreError, ClientError
from structlog import get_logger

from ps_ingestion.aws.client_factory import get_boto3_client_kwargs

logger = get_logger(__name__)


class DynamoDBError(Exception):
    """Raised when a DynamoDB operation fails."""

    pass


class DynamoDBManager:
    """Thin wrapper over a single DynamoDB table."""

    def __init__(self, table_name: str):
        """Initialize the manager.

        Args:
            table_name: Name of the table holding the items
        """
        self.table_name = table_name
        dynamodb = boto3.resource("dynamodb", **get_boto3_client_kwargs("dynamodb"))
        self.table = dynamodb.Table(table_name)

    def put_item(self, item: dict[str, Any]) -> None:
        """Write (or overwrite) an item.

        Raises:
            DynamoDBError: If the write fails
        """
        try:
            self.table.put_item(Item=item)
        except (ClientError, BotoCoreError) as e:
            logger.error(
                "Failed to put item",
                table_name=self.table_name,
                error=str(e),
            )
            raise DynamoDBError(f"Failed to write to {self.table_name}: {str(e)}") from e

    def get_item(self, key: dict[str, Any]) -> Optional[dict[str, Any]]:
        """Fetch an item by primary key.

        Returns:
            The item, or None when it does not exist

        Raises:
            DynamoDBError: If the read fails
        """
        try:
            response = self.table.get_item(Key=key, ConsistentRead=True)
        except (ClientError, BotoCoreError) as e:
            logger.error(
                "Failed to get item",
                table_name=self.table_name,
                key=key,
                error=str(e),
            )
            raise DynamoDBError(f"Failed to read from {self.table_name}: {str(e)}") from e
        return response.get("Item")

    def scan_items(
        self,
        filters: Optional[dict[str, Any]] = None,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        """Scan the table, optionally filtering on attribute equality.

        Args:
            filters: Attribute name -> required value
            limit: Maximum number of items to return

        Raises:
            DynamoDBError: If the scan fails
        """
        scan_kwargs: dict[str, Any] = {}
        if filters:
            condition = None
            for name, value in filters.items():
                clause = Attr(name).eq(value)
                condition = clause if condition is None else condition & clause
            scan_kwargs["FilterExpression"] = condition

        items: list[dict[str, Any]] = []
        try:
            while len(items) < limit:
                response = self.table.scan(**scan_kwargs)
                items.extend(response.get("Items", []))
                last_key = response.get("LastEvaluatedKey")
                if not last_key:
                    break
                scan_kwargs["ExclusiveStartKey"] = last_key
        except (ClientError, BotoCoreError) as e:
            logger.error(
                "Failed to scan table",
                table_name=self.table_name,
                error=str(e),
            )
            raise DynamoDBError(f"Failed to scan {self.table_name}: {str(e)}") from e

        return items[:limit]
