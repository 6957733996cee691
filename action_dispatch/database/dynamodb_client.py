"""
DynamoDB repositories for action configurations and delivery logs.

Both repositories take an injectable boto3 resource for testability, retry
throttled calls with exponential backoff and translate botocore errors into
the exception hierarchy in ``exceptions.py``.
"""

import time
import uuid
from typing import Any, Callable, Dict, List, Optional, TypeVar, Union

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import BotoCoreError, ClientError

from action_dispatch.domain.action import ActionConfig, normalize_config_input
from action_dispatch.domain.event import DeliveryResult, utc_now_iso
from action_dispatch.domain.schema import validate_action_config
from action_dispatch.rules.context import sanitize_payload
from action_dispatch.utils.logger import get_logger
from .exceptions import (
    DynamoDBException,
    NotFoundError,
    ThrottlingError,
    NetworkError,
    PermissionError,
)


logger = get_logger(__name__)

T = TypeVar("T")

THROTTLING_CODES = {"ProvisionedThroughputExceededException", "ThrottlingException"}

# Keys owned by the store; callers can never overwrite them
IMMUTABLE_FIELDS = ("id", "tenantId", "createdAt")


class _DynamoRepository:
    """Shared table wiring, retry loop and error translation."""

    def __init__(
        self,
        table_name: str,
        dynamodb_resource: Optional[Any] = None,
        max_retries: int = 3,
        backoff_base: float = 1.0,
        region_name: Optional[str] = None,
    ):
        """
        Args:
            table_name: DynamoDB table name
            dynamodb_resource: boto3 DynamoDB resource (default: creates new)
            max_retries: Attempts for throttled calls
            backoff_base: Base exponential backoff multiplier (seconds)
            region_name: Region used when creating the resource
        """
        self.table_name = table_name
        self.dynamodb = dynamodb_resource or boto3.resource("dynamodb", region_name=region_name)
        self.table = self.dynamodb.Table(table_name)
        self.max_retries = max(1, max_retries)
        self.backoff_base = backoff_base

    def _execute(
        self,
        operation: str,
        context: Dict[str, Any],
        call: Callable[[], T],
        missing_message: Optional[str] = None,
    ) -> T:
        """
        Run ``call`` with throttling retries.

        Raises:
            NotFoundError: Conditional check failed and ``missing_message`` given
            ThrottlingError: If throttled after max retries
            PermissionError: If IAM permissions insufficient
            NetworkError: If connection fails
            DynamoDBException: Any other DynamoDB error
        """
        for attempt in range(self.max_retries):
            try:
                start_time = time.time()
                result = call()
                duration_ms = (time.time() - start_time) * 1000
                logger.debug(
                    f"{operation} succeeded",
                    operation=operation,
                    context={**context, "duration_ms": round(duration_ms, 2)},
                )
                return result

            except ClientError as e:
                error_code = e.response.get("Error", {}).get("Code", "Unknown")

                if error_code in THROTTLING_CODES:
                    if attempt < self.max_retries - 1:
                        wait_time = self.backoff_base * (2**attempt)
                        logger.warning(
                            f"Throttled, retrying after {wait_time}s",
                            operation=operation,
                            context=context,
                            error=error_code,
                        )
                        time.sleep(wait_time)
                        continue
                    logger.error(
                        "Throttling after max retries",
                        operation=operation,
                        context=context,
                        error=error_code,
                    )
                    raise ThrottlingError(f"DynamoDB throttled after {self.max_retries} retries")

                if error_code == "ConditionalCheckFailedException" and missing_message:
                    raise NotFoundError(missing_message)

                if error_code == "AccessDeniedException":
                    logger.error(
                        "Permission denied",
                        operation=operation,
                        context=context,
                        error=error_code,
                    )
                    raise PermissionError(f"Insufficient IAM permissions: {error_code}")

                logger.error(
                    "DynamoDB error",
                    operation=operation,
                    context=context,
                    error=str(e),
                )
                raise DynamoDBException(f"DynamoDB error: {e}")

            except (BotoCoreError, OSError) as e:
                logger.error(
                    "Network error",
                    operation=operation,
                    context=context,
                    error=str(e),
                )
                raise NetworkError(f"Network error: {e}")

        raise ThrottlingError(f"DynamoDB throttled after {self.max_retries} retries")

    def _query_all(self, operation: str, context: Dict[str, Any], **query: Any) -> List[Dict]:
        """Follow ``LastEvaluatedKey`` until the partition is exhausted."""
        items: List[Dict[str, Any]] = []
        start_key: Optional[Dict[str, Any]] = None

        while True:
            kwargs = dict(query)
            if start_key:
                kwargs["ExclusiveStartKey"] = start_key
            response = self._execute(operation, context, lambda: self.table.query(**kwargs))
            items.extend(response.get("Items", []))
            start_key = response.get("LastEvaluatedKey")
            if not start_key:
                return items


class ActionConfigRepository(_DynamoRepository):
    """
    Repository for operator-defined actions.

    Validation happens here, at save time; the dispatcher trusts stored
    records.

    Table Schema:
        Partition Key: tenant_id
        Sort Key: action_id (generated, 32 hex chars)
    """

    def __init__(self, table_name: str = "actions", **kwargs: Any):
        super().__init__(table_name, **kwargs)

    @staticmethod
    def _to_item(action: ActionConfig) -> Dict[str, Any]:
        item = action.to_dict()
        item.pop("id", None)
        item.pop("tenantId", None)
        item["tenant_id"] = action.tenant_id
        item["action_id"] = action.id
        return item

    @staticmethod
    def _from_item(item: Dict[str, Any]) -> ActionConfig:
        record = sanitize_payload(dict(item))
        record["id"] = record.pop("action_id")
        record["tenantId"] = record.pop("tenant_id")
        return ActionConfig.from_dict(record)

    @staticmethod
    def _input_record(config: Union[ActionConfig, Dict[str, Any]]) -> Dict[str, Any]:
        if isinstance(config, ActionConfig):
            return config.to_dict()
        return normalize_config_input(dict(config))

    def create(
        self, tenant_id: str, config: Union[ActionConfig, Dict[str, Any]]
    ) -> ActionConfig:
        """
        Validate and persist a new action.

        Args:
            tenant_id: Owning tenant
            config: Form input (camelCase or legacy keys) or ActionConfig

        Returns:
            Stored ActionConfig with generated id and createdAt

        Raises:
            ValidationError: If the configuration is malformed for its type
            DynamoDBException: On store errors
        """
        record = self._input_record(config)
        for key in IMMUTABLE_FIELDS:
            record.pop(key, None)
        record.setdefault("isActive", True)

        validate_action_config(record)

        action = ActionConfig.from_dict(
            {
                **record,
                "id": uuid.uuid4().hex,
                "tenantId": tenant_id,
                "createdAt": utc_now_iso(),
            }
        )
        context = {"tenant_id": tenant_id, "action_id": action.id, "type": action.type.value}

        self._execute(
            "create_action",
            context,
            lambda: self.table.put_item(
                Item=self._to_item(action),
                ConditionExpression="attribute_not_exists(action_id)",
            ),
        )
        logger.info("Action created", operation="create_action", context=context)
        return action

    def update(
        self, tenant_id: str, action_id: str, changes: Union[ActionConfig, Dict[str, Any]]
    ) -> ActionConfig:
        """
        Merge ``changes`` into an existing action and persist it.

        ``id``, ``tenantId`` and ``createdAt`` are ignored if present.

        Raises:
            NotFoundError: If the action does not exist
            ValidationError: If the merged record is invalid
            DynamoDBException: On store errors
        """
        existing = self.get(tenant_id, action_id)
        if existing is None:
            raise NotFoundError(f"Action {action_id} not found")

        patch = self._input_record(changes)
        ignored = [key for key in IMMUTABLE_FIELDS if key in patch]
        for key in ignored:
            patch.pop(key)
        if ignored:
            logger.debug(
                "Ignoring immutable fields on update",
                operation="update_action",
                context={"tenant_id": tenant_id, "action_id": action_id, "fields": ignored},
            )

        merged = {**existing.to_dict(), **patch}
        validate_action_config({k: v for k, v in merged.items() if k not in IMMUTABLE_FIELDS})

        updated = ActionConfig.from_dict(
            {
                **merged,
                "id": existing.id,
                "tenantId": existing.tenant_id,
                "createdAt": existing.created_at,
            }
        )
        context = {"tenant_id": tenant_id, "action_id": action_id, "type": updated.type.value}

        self._execute(
            "update_action",
            context,
            lambda: self.table.put_item(
                Item=self._to_item(updated),
                ConditionExpression="attribute_exists(action_id)",
            ),
            missing_message=f"Action {action_id} not found",
        )
        logger.info("Action updated", operation="update_action", context=context)
        return updated

    def delete(self, tenant_id: str, action_id: str) -> bool:
        """
        Delete an action. Deleting a missing action is not an error.

        Returns:
            True
        """
        context = {"tenant_id": tenant_id, "action_id": action_id}
        self._execute(
            "delete_action",
            context,
            lambda: self.table.delete_item(Key={"tenant_id": tenant_id, "action_id": action_id}),
        )
        logger.info("Action deleted", operation="delete_action", context=context)
        return True

    def get(self, tenant_id: str, action_id: str) -> Optional[ActionConfig]:
        """Return one action, or None when it does not exist."""
        context = {"tenant_id": tenant_id, "action_id": action_id}
        response = self._execute(
            "get_action",
            context,
            lambda: self.table.get_item(Key={"tenant_id": tenant_id, "action_id": action_id}),
        )
        item = response.get("Item")
        if item is None:
            return None
        return self._from_item(item)

    def list_by_tenant(self, tenant_id: str) -> List[ActionConfig]:
        """
        Return every action of ``tenant_id``.

        Records whose type this version cannot handle are skipped with a
        warning so one bad record never hides the others.
        """
        context = {"tenant_id": tenant_id}
        items = self._query_all(
            "list_actions",
            context,
            KeyConditionExpression=Key("tenant_id").eq(tenant_id),
        )

        actions: List[ActionConfig] = []
        for item in items:
            try:
                actions.append(self._from_item(item))
            except (ValueError, KeyError) as e:
                logger.warning(
                    "Skipping unreadable action record",
                    operation="list_actions",
                    context={**context, "action_id": item.get("action_id")},
                    error=str(e),
                )

        logger.debug(
            f"Loaded {len(actions)} action(s)",
            operation="list_actions",
            context=context,
        )
        return actions


class DeliveryLogRepository(_DynamoRepository):
    """
    Append-only record of delivery outcomes, shown to operators.

    Table Schema:
        Partition Key: tenant_id
        Sort Key: log_id ("<timestamp>#<random>", so items sort by time)
    """

    def __init__(self, table_name: str = "action_delivery_logs", **kwargs: Any):
        super().__init__(table_name, **kwargs)

    def record(
        self,
        tenant_id: str,
        result: DeliveryResult,
        action_name: Optional[str] = None,
    ) -> str:
        """
        Store one delivery outcome.

        Returns:
            Generated log id
        """
        log_id = f"{result.timestamp}#{uuid.uuid4().hex[:8]}"
        item = {**result.to_dict(), "tenant_id": tenant_id, "log_id": log_id}
        if action_name:
            item["actionName"] = action_name

        self._execute(
            "record_delivery",
            {"tenant_id": tenant_id, "action_id": result.action_id},
            lambda: self.table.put_item(Item=item),
        )
        return log_id

    def list_by_tenant(self, tenant_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        """Return the newest ``limit`` delivery records, newest first."""
        context = {"tenant_id": tenant_id, "limit": limit}
        logs: List[Dict[str, Any]] = []
        start_key: Optional[Dict[str, Any]] = None

        while len(logs) < limit:
            kwargs: Dict[str, Any] = {
                "KeyConditionExpression": Key("tenant_id").eq(tenant_id),
                "ScanIndexForward": False,
                "Limit": limit - len(logs),
            }
            if start_key:
                kwargs["ExclusiveStartKey"] = start_key
            response = self._execute(
                "list_delivery_logs", context, lambda: self.table.query(**kwargs)
            )
            for item in response.get("Items", []):
                entry = sanitize_payload(dict(item))
                entry["logId"] = entry.pop("log_id")
                entry.pop("tenant_id", None)
                logs.append(entry)
            start_key = response.get("LastEvaluatedKey")
            if not start_key:
                break

        return logs[:limit]

    def clear_by_tenant(self, tenant_id: str) -> int:
        """
        Delete every delivery record of ``tenant_id``.

        Returns:
            Number of records deleted
        """
        context = {"tenant_id": tenant_id}
        items = self._query_all(
            "clear_delivery_logs",
            context,
            KeyConditionExpression=Key("tenant_id").eq(tenant_id),
            ProjectionExpression="tenant_id, log_id",
        )

        def _delete_all() -> None:
            with self.table.batch_writer() as batch:
                for item in items:
                    batch.delete_item(
                        Key={"tenant_id": item["tenant_id"], "log_id": item["log_id"]}
                    )

        if items:
            self._execute("clear_delivery_logs", context, _delete_all)

        logger.info(
            f"Cleared {len(items)} delivery log(s)",
            operation="clear_delivery_logs",
            context=context,
        )
        return len(items)
