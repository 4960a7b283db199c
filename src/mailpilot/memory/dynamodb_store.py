"""DynamoDB Memory Store - memories shared across processes.

Table layout: partition key ``scope_key`` (``"{scope}#{scope_id}"``), sort
key ``memory_key``. The memory itself is a JSON document; ``usage_count``,
``ttl_category`` and ``expires_at`` are mirrored for conditions and scans.
"""

import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import boto3
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from mailpilot.core.types import MemoryScope, TtlCategory
from mailpilot.memory.schemas import StoredMemory
from mailpilot.memory.store import MemoryStore, supersede

logger = logging.getLogger(__name__)

CONDITIONAL_CHECK_FAILED = "ConditionalCheckFailedException"


def _scope_key(scope: MemoryScope, scope_id: str) -> str:
    return f"{scope.value}#{scope_id}"


def _iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


class DynamoDBMemoryStore(MemoryStore):
    """Memories keyed by (scope, scope_id, key) with optimistic upserts."""

    DEFAULT_REGION = "us-east-1"
    MAX_UPSERT_ATTEMPTS = 3

    def __init__(
        self,
        table_name: Optional[str] = None,
        region: Optional[str] = None,
        aws_profile: Optional[str] = None,
        table: Any = None,
    ):
        self.table_name = table_name or os.environ.get("MAILPILOT_MEMORIES_TABLE")
        if not self.table_name and table is None:
            raise ValueError("MAILPILOT_MEMORIES_TABLE required")

        self.region = region or os.environ.get("AWS_DEFAULT_REGION", self.DEFAULT_REGION)

        if table is not None:
            self.table = table
        else:
            if aws_profile:
                session = boto3.Session(profile_name=aws_profile)
                self.dynamodb = session.resource("dynamodb", region_name=self.region)
            else:
                self.dynamodb = boto3.resource("dynamodb", region_name=self.region)
            self.table = self.dynamodb.Table(self.table_name)
        logger.info(f"DynamoDB memory store initialized: {self.table_name} ({self.region})")

    @staticmethod
    def _to_item(memory: StoredMemory) -> Dict[str, Any]:
        item = {
            "scope_key": _scope_key(memory.scope, memory.scope_id),
            "memory_key": memory.key,
            "ttl_category": memory.ttl_category.value,
            "usage_count": memory.usage_count,
            "document": json.dumps(memory.model_dump(mode="json"), sort_keys=True),
        }
        if memory.expires_at is not None:
            item["expires_at"] = _iso(memory.expires_at)
        return item

    @staticmethod
    def _from_item(item: Dict[str, Any]) -> StoredMemory:
        return StoredMemory.model_validate(json.loads(item["document"]))

    def _get_item(self, scope: MemoryScope, scope_id: str, key: str) -> Optional[Dict[str, Any]]:
        try:
            resp = self.table.get_item(
                Key={"scope_key": _scope_key(scope, scope_id), "memory_key": key},
                ConsistentRead=True,
            )
        except ClientError as e:
            logger.error(f"get memory failed: {e}")
            raise
        return resp.get("Item")

    def upsert(self, memory: StoredMemory) -> StoredMemory:
        for attempt in range(1, self.MAX_UPSERT_ATTEMPTS + 1):
            item = self._get_item(memory.scope, memory.scope_id, memory.key)
            if item is None:
                stored = memory
                condition: Dict[str, Any] = {"ConditionExpression": "attribute_not_exists(scope_key)"}
            else:
                existing = self._from_item(item)
                stored = supersede(existing, memory)
                condition = {
                    "ConditionExpression": "usage_count = :expected",
                    "ExpressionAttributeValues": {":expected": existing.usage_count},
                }

            try:
                self.table.put_item(Item=self._to_item(stored), **condition)
                return stored
            except ClientError as e:
                if e.response.get("Error", {}).get("Code") != CONDITIONAL_CHECK_FAILED:
                    logger.error(f"upsert memory failed: {e}")
                    raise
                logger.debug(
                    "Concurrent memory write, retrying",
                    extra={"memory_key": memory.key, "scope": memory.scope.value, "attempt": attempt},
                )

        raise RuntimeError(f"Memory upsert kept conflicting: {memory.scope.value}/{memory.key}")

    def get(self, scope: MemoryScope, scope_id: str, key: str) -> Optional[StoredMemory]:
        item = self._get_item(scope, scope_id, key)
        return self._from_item(item) if item else None

    def list_scope(self, scope: MemoryScope, scope_id: str) -> List[StoredMemory]:
        query_kwargs: Dict[str, Any] = {
            "KeyConditionExpression": Key("scope_key").eq(_scope_key(scope, scope_id)),
        }
        memories: List[StoredMemory] = []
        try:
            while True:
                resp = self.table.query(**query_kwargs)
                memories.extend(self._from_item(item) for item in resp.get("Items", []))
                last_key = resp.get("LastEvaluatedKey")
                if not last_key:
                    break
                query_kwargs["ExclusiveStartKey"] = last_key
        except ClientError as e:
            logger.error(f"list memories failed: {e}")
            raise
        return memories

    def prune_expired(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        scan_kwargs: Dict[str, Any] = {
            "FilterExpression": (
                Attr("expires_at").lte(_iso(now)) & Attr("ttl_category").ne(TtlCategory.LEGAL.value)
            ),
        }

        pruned = 0
        try:
            while True:
                resp = self.table.scan(**scan_kwargs)
                for item in resp.get("Items", []):
                    if not self._from_item(item).is_expired(now):
                        continue
                    self.table.delete_item(
                        Key={"scope_key": item["scope_key"], "memory_key": item["memory_key"]}
                    )
                    pruned += 1
                last_key = resp.get("LastEvaluatedKey")
                if not last_key:
                    break
                scan_kwargs["ExclusiveStartKey"] = last_key
        except ClientError as e:
            logger.error(f"prune memories failed: {e}")
            raise

        logger.info("Pruned expired memories", extra={"count": pruned})
        return pruned
