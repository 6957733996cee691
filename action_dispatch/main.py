"""
Entry points for the action dispatch engine.

Exposes the configuration surface used by the settings UI (save/list/test
actions, delivery logs), a ``publish_event`` helper for business code, and a
Lambda handler that routes both by ``operation``.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import boto3

from action_dispatch.config.settings import ConfigurationError, Settings
from action_dispatch.database.dynamodb_client import ActionConfigRepository, DeliveryLogRepository
from action_dispatch.database.exceptions import DynamoDBException
from action_dispatch.domain.action import ActionType, normalize_config_input
from action_dispatch.domain.event import EventKind
from action_dispatch.domain.schema import ValidationError
from action_dispatch.notifications.chat_service import ChatSender
from action_dispatch.notifications.webhook_service import WebhookClient
from action_dispatch.publisher import EventPublisher
from action_dispatch.rules.dispatcher import Dispatcher
from action_dispatch.rules.draft import send_test
from action_dispatch.rules.samples import available_variables
from action_dispatch.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class Services:
    """Wired collaborators shared by every entry point in a process."""

    settings: Settings
    repository: ActionConfigRepository
    log_repository: DeliveryLogRepository
    dispatcher: Dispatcher
    publisher: EventPublisher


_services: Optional[Services] = None


def build_services(
    settings: Optional[Settings] = None,
    dynamodb_resource: Optional[Any] = None,
    webhook_client: Optional[WebhookClient] = None,
    chat_sender: Optional[ChatSender] = None,
) -> Services:
    """
    Wire repositories, dispatcher and publisher from settings.

    Args:
        settings: Runtime settings (default: read from environment)
        dynamodb_resource: boto3 DynamoDB resource (default: creates new)
        webhook_client: Override for the webhook transport
        chat_sender: Override for the chat transport
    """
    settings = settings or Settings()
    dynamodb = dynamodb_resource or boto3.resource("dynamodb", region_name=settings.region_name)

    repository = ActionConfigRepository(
        table_name=settings.actions_table_name, dynamodb_resource=dynamodb
    )
    log_repository = DeliveryLogRepository(
        table_name=settings.delivery_log_table_name, dynamodb_resource=dynamodb
    )
    dispatcher = Dispatcher(
        webhook_client=webhook_client, chat_sender=chat_sender, settings=settings
    )
    publisher = EventPublisher(
        repository,
        dispatcher,
        log_repository=log_repository,
        credentials_loader=settings.load_gateway_credentials,
        settings=settings,
    )
    return Services(
        settings=settings,
        repository=repository,
        log_repository=log_repository,
        dispatcher=dispatcher,
        publisher=publisher,
    )


def get_services() -> Services:
    """Process-wide services, created on first use (Lambda cold start)."""
    global _services
    if _services is None:
        _services = build_services()
    return _services


# ============================================================
# Configuration surface
# ============================================================
def save_action_config(
    payload: Dict[str, Any], services: Optional[Services] = None
) -> Dict[str, Any]:
    """
    Create, update or delete an action configuration.

    Args:
        payload: ``{"userId", "action": create|update|delete, "configId"?, "config"?}``
            (``tenantId`` is accepted in place of ``userId``)

    Returns:
        ``{"success": True, "id": ...}`` or ``{"success": False, "error": ...}``
    """
    services = services or get_services()
    tenant_id = payload.get("userId") or payload.get("tenantId")
    operation = payload.get("action")
    config_id = payload.get("configId") or payload.get("id")
    config = payload.get("config")

    if not tenant_id:
        return {"success": False, "error": "Tenant id is required"}

    try:
        if operation == "delete":
            if not config_id:
                return {"success": False, "error": "Config id is required to delete"}
            services.repository.delete(tenant_id, config_id)
            return {"success": True, "id": config_id}

        if not config:
            return {"success": False, "error": "Config is required to create or update"}

        if operation == "create":
            action = services.repository.create(tenant_id, config)
            return {"success": True, "id": action.id}

        if operation == "update":
            if not config_id:
                return {"success": False, "error": "Config id is required to update"}
            action = services.repository.update(tenant_id, config_id, config)
            return {"success": True, "id": action.id}

        return {"success": False, "error": f"Unknown operation: {operation!r}"}

    except (ValidationError, DynamoDBException, ValueError) as e:
        logger.error(
            "Failed to save action config",
            operation="save_action_config",
            context={"tenant_id": tenant_id, "action": operation, "config_id": config_id},
            error=str(e),
        )
        return {"success": False, "error": str(e)}


def list_action_configs(
    tenant_id: str, services: Optional[Services] = None
) -> List[Dict[str, Any]]:
    """Return every action of ``tenant_id`` in stored form."""
    services = services or get_services()
    return [action.to_dict() for action in services.repository.list_by_tenant(tenant_id)]


def send_test_action(
    tenant_id: str,
    config: Dict[str, Any],
    event: Optional[str] = None,
    filter_tags: Optional[List[str]] = None,
    services: Optional[Services] = None,
) -> Dict[str, Any]:
    """
    Fire a draft action once with a sample payload.

    Returns:
        ``{"success": bool, "message": str}``
    """
    services = services or get_services()

    credentials = None
    record = normalize_config_input(dict(config or {}))
    if ActionType.parse(record.get("type")) == ActionType.CHAT_MESSAGE:
        try:
            credentials = services.settings.load_gateway_credentials(tenant_id)
        except Exception as e:  # noqa: BLE001
            logger.warning(
                "Could not load chat gateway credentials for test send",
                operation="send_test_action",
                context={"tenant_id": tenant_id},
                error=str(e),
            )
            return {"success": False, "message": f"Chat gateway not configured: {e}"}

    result = send_test(
        services.dispatcher,
        tenant_id=tenant_id,
        draft=record,
        event=event,
        filter_tags=filter_tags,
        credentials=credentials,
    )
    return {"success": result.success, "message": result.message}


def list_delivery_logs(
    tenant_id: str, limit: int = 50, services: Optional[Services] = None
) -> List[Dict[str, Any]]:
    """Newest delivery outcomes of ``tenant_id``."""
    services = services or get_services()
    return services.log_repository.list_by_tenant(tenant_id, limit=limit)


def clear_delivery_logs(tenant_id: str, services: Optional[Services] = None) -> Dict[str, Any]:
    """Delete every delivery outcome of ``tenant_id``."""
    services = services or get_services()
    try:
        deleted = services.log_repository.clear_by_tenant(tenant_id)
    except DynamoDBException as e:
        return {"success": False, "error": str(e)}
    return {"success": True, "deleted": deleted}


def publish_event(
    tenant_id: str,
    event: str,
    data: Optional[Dict[str, Any]] = None,
    services: Optional[Services] = None,
):
    """Publish a business event; returns the DispatchBatch or None."""
    services = services or get_services()
    return services.publisher.publish(tenant_id, event, data)


# ============================================================
# Lambda entry point
# ============================================================
def _response(status_code: int, body: Any) -> Dict[str, Any]:
    return {"statusCode": status_code, "body": json.dumps(body, ensure_ascii=False, default=str)}


def lambda_handler(event, context):
    """
    Route a Lambda invocation by ``operation``.

    Supported operations: save_action_config, list_action_configs,
    send_test_action, list_delivery_logs, clear_delivery_logs,
    list_template_variables, publish_event.

    ``publish_event`` waits for its deliveries (up to the test deadline)
    because the Lambda runtime freezes the process once the handler returns.

    Returns:
        dict: ``{"statusCode", "body"}`` with a JSON body
    """
    event = event or {}
    operation = event.get("operation")
    tenant_id = event.get("userId") or event.get("tenantId")

    logger.info(
        "Lambda handler started",
        operation="lambda_start",
        context={
            "operation": operation,
            "tenant_id": tenant_id,
            "aws_request_id": getattr(context, "aws_request_id", "local") if context else "local",
        },
    )

    try:
        if operation == "list_template_variables":
            kind = EventKind.parse(event.get("event"))
            if kind is None:
                return _response(400, {"success": False, "error": "Unknown event"})
            return _response(200, {"success": True, "variables": available_variables(kind)})

        services = get_services()

        if operation == "save_action_config":
            result = save_action_config(event, services=services)
            return _response(200 if result["success"] else 400, result)

        if not tenant_id:
            return _response(400, {"success": False, "error": "Tenant id is required"})

        if operation == "list_action_configs":
            return _response(
                200, {"success": True, "actions": list_action_configs(tenant_id, services)}
            )

        if operation == "send_test_action":
            result = send_test_action(
                tenant_id,
                event.get("config") or {},
                event=event.get("event"),
                filter_tags=event.get("filterTags"),
                services=services,
            )
            return _response(200, result)

        if operation == "list_delivery_logs":
            try:
                limit = int(event.get("limit", 50))
            except (TypeError, ValueError):
                return _response(400, {"success": False, "error": "limit must be an integer"})
            logs = list_delivery_logs(tenant_id, limit, services)
            return _response(200, {"success": True, "logs": logs})

        if operation == "clear_delivery_logs":
            result = clear_delivery_logs(tenant_id, services)
            return _response(200 if result["success"] else 500, result)

        if operation == "publish_event":
            batch = publish_event(tenant_id, event.get("event"), event.get("data"), services)
            deadline = services.settings.test_deadline_seconds
            results = batch.results(timeout=deadline) if batch else []
            return _response(
                200, {"success": True, "results": [result.to_dict() for result in results]}
            )

        return _response(400, {"success": False, "error": f"Unknown operation: {operation!r}"})

    except ConfigurationError as e:
        logger.error("Invalid configuration", operation="lambda_handler", error=str(e))
        return _response(500, {"success": False, "error": str(e)})
    except DynamoDBException as e:
        logger.error("Action store error", operation="lambda_handler", error=str(e))
        return _response(500, {"success": False, "error": str(e)})
