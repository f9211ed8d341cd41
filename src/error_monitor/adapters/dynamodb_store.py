"""
DynamoDB audit log store.

boto3 is synchronous, so table calls run in a worker thread.
"""

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional
from loguru import logger

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import BotoCoreError, ClientError

from ..exceptions import AuditStoreError
from ..models import AuditError, AuditErrorFilter, ErrorStats
from .base import AuditStore


class DynamoDBAuditStore(AuditStore):
    """Audit store backed by a DynamoDB table keyed on ``id``."""

    def __init__(self, region: str, table_name: str, table: Any = None):
        """
        Initialize the store.

        Args:
            region: AWS region of the table
            table_name: Audit log table name
            table: Pre-built boto3 Table resource (mainly for tests)
        """
        self.region = region
        self.table_name = table_name
        self._table = table

    @property
    def table(self) -> Any:
        """Get or create the boto3 Table resource."""
        if self._table is None:
            self._table = boto3.resource("dynamodb", region_name=self.region).Table(self.table_name)
        return self._table

    async def _call(self, operation: str, func, error_id: Optional[str] = None):
        try:
            return await asyncio.to_thread(func)
        except (ClientError, BotoCoreError) as e:
            raise AuditStoreError(
                f"DynamoDB {operation} failed on {self.table_name}: {e}",
                error_id=error_id,
                operation=operation,
                cause=e
            )

    def _scan(
        self,
        filter_expression,
        limit: Optional[int] = None,
        projection: Optional[str] = None,
        names: Optional[Dict[str, str]] = None
    ) -> List[Dict[str, Any]]:
        """Scan all pages, stopping once ``limit`` matching items are collected."""
        kwargs: Dict[str, Any] = {"FilterExpression": filter_expression}
        if projection:
            kwargs["ProjectionExpression"] = projection
        if names:
            kwargs["ExpressionAttributeNames"] = names

        items: List[Dict[str, Any]] = []
        while True:
            response = self.table.scan(**kwargs)
            items.extend(response.get("Items", []))
            if limit and len(items) >= limit:
                return items[:limit]
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                return items
            kwargs["ExclusiveStartKey"] = last_key

    @staticmethod
    def _to_error(item: Dict[str, Any]) -> AuditError:
        error = AuditError.from_dict(item)
        processing = item.get("processingMetadata")
        if processing:
            error.metadata = {**error.metadata, **processing}
        return error

    async def get_unprocessed_errors(self, error_filter: Optional[AuditErrorFilter] = None) -> List[AuditError]:
        error_filter = error_filter or AuditErrorFilter()

        condition = Attr("processed").eq(False)
        if error_filter.severities:
            condition = condition & Attr("severity").is_in([s.value for s in error_filter.severities])
        if error_filter.source:
            condition = condition & Attr("source").eq(error_filter.source)
        if error_filter.since:
            condition = condition & Attr("timestamp").gte(error_filter.since)

        items = await self._call("scan", lambda: self._scan(condition, error_filter.limit))
        logger.debug(f"Fetched {len(items)} unprocessed errors from {self.table_name}")
        return [self._to_error(item) for item in items]

    async def get_error_by_id(self, error_id: str) -> Optional[AuditError]:
        response = await self._call(
            "get_item", lambda: self.table.get_item(Key={"id": error_id}), error_id=error_id
        )
        item = response.get("Item")
        return self._to_error(item) if item else None

    async def mark_as_processed(self, error_id: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        expressions = ["processed = :processed", "processedAt = :processedAt"]
        values: Dict[str, Any] = {
            ":processed": True,
            ":processedAt": datetime.now().isoformat(),
        }
        if metadata:
            expressions.append("processingMetadata = :metadata")
            values[":metadata"] = {key: value for key, value in metadata.items() if value is not None}

        await self._call(
            "mark_as_processed",
            lambda: self.table.update_item(
                Key={"id": error_id},
                UpdateExpression="SET " + ", ".join(expressions),
                ExpressionAttributeValues=values,
            ),
            error_id=error_id,
        )

    async def update_fix_info(
        self,
        error_id: str,
        work_item_id: Optional[int] = None,
        pull_request_url: Optional[str] = None,
        branch: Optional[str] = None,
        fixed_at: Optional[str] = None,
    ) -> None:
        fields = {
            "workItemId": work_item_id,
            "pullRequestUrl": pull_request_url,
            "fixBranch": branch,
            "fixedAt": fixed_at,
        }
        fields = {name: value for name, value in fields.items() if value not in (None, "")}
        if not fields:
            return

        await self._call(
            "update_fix_info",
            lambda: self.table.update_item(
                Key={"id": error_id},
                UpdateExpression="SET " + ", ".join(f"{name} = :{name}" for name in fields),
                ExpressionAttributeValues={f":{name}": value for name, value in fields.items()},
            ),
            error_id=error_id,
        )

    async def get_error_stats(self) -> ErrorStats:
        items = await self._call(
            "scan",
            lambda: self._scan(Attr("processed").eq(False), projection="#sev, #src", names={"#sev": "severity", "#src": "source"}),
        )
        stats = ErrorStats(total_unprocessed=len(items))
        for item in items:
            severity = item.get("severity", "unknown")
            source = item.get("source", "unknown")
            stats.by_severity[severity] = stats.by_severity.get(severity, 0) + 1
            stats.by_source[source] = stats.by_source.get(source, 0) + 1
        return stats
