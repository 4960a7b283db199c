"""DynamoDB Action Store - conditional writes on the action version."""

import json
import logging
import os
from decimal import Decimal
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import ClientError

from mailpilot.actions.schemas import Action
from mailpilot.actions.store import ActionStore
from mailpilot.common.exceptions import ActionNotFound
from mailpilot.core.types import ActionStatus

logger = logging.getLogger(__name__)

CONDITIONAL_CHECK_FAILED = "ConditionalCheckFailedException"


class DynamoDBActionStore(ActionStore):
    """Actions keyed by ``action_id``.

    The full action is kept as a JSON document; status, version and the
    timestamps are mirrored as top-level attributes for conditions and scans.
    """

    DEFAULT_REGION = "us-east-1"

    def __init__(
        self,
        table_name: Optional[str] = None,
        region: Optional[str] = None,
        aws_profile: Optional[str] = None,
        table: Any = None,
    ):
        self.table_name = table_name or os.environ.get("MAILPILOT_ACTIONS_TABLE")
        if not self.table_name and table is None:
            raise ValueError("MAILPILOT_ACTIONS_TABLE required")

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
        logger.info(f"DynamoDB action store initialized: {self.table_name} ({self.region})")

    @staticmethod
    def _to_item(action: Action) -> Dict[str, Any]:
        return {
            "action_id": action.action_id,
            "account_id": action.account_id,
            "status": action.status.value,
            "version": action.version,
            "confidence": Decimal(str(action.confidence)),
            "created_at": action.created_at.isoformat(),
            "expires_at": action.expires_at.isoformat() if action.expires_at else None,
            "document": json.dumps(action.model_dump(mode="json"), sort_keys=True),
        }

    @staticmethod
    def _from_item(item: Dict[str, Any]) -> Action:
        return Action.model_validate(json.loads(item["document"]))

    def create(self, action: Action) -> Action:
        try:
            self.table.put_item(
                Item=self._to_item(action),
                ConditionExpression="attribute_not_exists(action_id)",
            )
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == CONDITIONAL_CHECK_FAILED:
                raise ValueError(f"Action already exists: {action.action_id}") from e
            logger.error(f"create action failed: {e}")
            raise
        return action

    def get(self, action_id: str) -> Action:
        try:
            resp = self.table.get_item(Key={"action_id": action_id}, ConsistentRead=True)
        except ClientError as e:
            logger.error(f"get action failed: {e}")
            raise
        item = resp.get("Item")
        if not item:
            raise ActionNotFound(action_id)
        return self._from_item(item)

    def compare_and_set(self, action: Action, expected_version: int) -> Optional[Action]:
        stored = action.model_copy(update={"version": expected_version + 1}, deep=True)
        try:
            self.table.put_item(
                Item=self._to_item(stored),
                ConditionExpression="attribute_exists(action_id) AND #version = :expected",
                ExpressionAttributeNames={"#version": "version"},
                ExpressionAttributeValues={":expected": expected_version},
            )
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == CONDITIONAL_CHECK_FAILED:
                logger.debug(
                    "Version conflict",
                    extra={"action_id": action.action_id, "expected_version": expected_version},
                )
                return None
            logger.error(f"compare_and_set failed: {e}")
            raise
        return stored

    def list_actions(self, status: Optional[ActionStatus] = None, limit: Optional[int] = None) -> List[Action]:
        scan_kwargs: Dict[str, Any] = {}
        if status is not None:
            scan_kwargs["FilterExpression"] = "#status = :status"
            scan_kwargs["ExpressionAttributeNames"] = {"#status": "status"}
            scan_kwargs["ExpressionAttributeValues"] = {":status": status.value}

        actions: List[Action] = []
        try:
            while True:
                resp = self.table.scan(**scan_kwargs)
                actions.extend(self._from_item(item) for item in resp.get("Items", []))
                last_key = resp.get("LastEvaluatedKey")
                if not last_key:
                    break
                scan_kwargs["ExclusiveStartKey"] = last_key
        except ClientError as e:
            logger.error(f"list actions failed: {e}")
            raise

        actions.sort(key=lambda a: a.created_at, reverse=True)
        return actions[:limit] if limit is not None else actions
