"""
Test-send path for actions that are being edited.

Lets an operator fire a draft action once against a sample payload and see
the delivery outcome before saving it. Drafts never touch the config store.
"""

from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Dict, Iterable, Optional, Union

from action_dispatch.domain.action import ActionConfig, ActionType, normalize_config_input
from action_dispatch.domain.event import DeliveryResult, EventKind
from action_dispatch.rules.dispatcher import Dispatcher
from action_dispatch.rules.samples import build_sample_envelope
from action_dispatch.utils.logger import get_logger, log_operation

logger = get_logger(__name__)

DRAFT_ACTION_ID = "draft"


def _failure(message: str, event: Optional[EventKind] = None) -> DeliveryResult:
    return DeliveryResult(
        action_id=DRAFT_ACTION_ID,
        success=False,
        message=message,
        event=event.value if event else None,
    )


def _draft_record(draft: Union[ActionConfig, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(draft, ActionConfig):
        return draft.to_dict()
    return normalize_config_input(dict(draft or {}))


@log_operation("send_test")
def send_test(
    dispatcher: Dispatcher,
    tenant_id: str,
    draft: Union[ActionConfig, Dict[str, Any]],
    event: Optional[Union[EventKind, str]] = None,
    filter_tags: Optional[Iterable[Any]] = None,
    deadline_seconds: Optional[float] = None,
    credentials: Optional[Dict[str, str]] = None,
) -> DeliveryResult:
    """
    Deliver a sample envelope to a draft action exactly once.

    Args:
        dispatcher: Dispatcher whose executors and pool perform the delivery
        tenant_id: Tenant the draft belongs to
        draft: ActionConfig or raw form input (camelCase or legacy keys)
        event: Event to simulate (defaults to the draft's event, then test_event)
        filter_tags: Tags for tag_added samples (defaults to the draft's triggerTags)
        deadline_seconds: Maximum wait for the outcome
        credentials: Tenant chat gateway credentials for chat drafts

    Returns:
        DeliveryResult; failures are returned, never raised
    """
    record = _draft_record(draft)

    event_kind = EventKind.parse(event or record.get("event") or EventKind.TEST_EVENT)
    if event_kind is None:
        return _failure(f"Unknown event: {event or record.get('event')}")

    action_type = ActionType.parse(record.get("type"))
    if action_type is None:
        return _failure(f"Invalid action type: {record.get('type')!r}", event_kind)

    if action_type == ActionType.WEBHOOK and not record.get("url"):
        return _failure("Webhook URL is required", event_kind)
    if action_type == ActionType.CHAT_MESSAGE:
        if not record.get("recipient"):
            return _failure("Recipient phone number is required", event_kind)
        if not str(record.get("messageTemplate") or "").strip():
            return _failure("Message template is required", event_kind)

    action = ActionConfig.from_dict(
        {
            **record,
            "id": record.get("id") or DRAFT_ACTION_ID,
            "tenantId": tenant_id,
            "name": record.get("name") or "Draft action",
            "event": event_kind.value,
            "isActive": True,
        }
    )

    tags = list(filter_tags) if filter_tags is not None else action.trigger_tags
    envelope = build_sample_envelope(tenant_id, event_kind, tags)

    deadline = deadline_seconds or dispatcher.settings.test_deadline_seconds
    http_timeout = min(deadline, dispatcher.settings.http_timeout_seconds)

    future = dispatcher.submit(
        envelope, action, credentials=credentials, timeout=http_timeout, max_attempts=1
    )
    try:
        return future.result(timeout=deadline)
    except FutureTimeoutError:
        future.cancel()
        logger.warning(
            "Test send exceeded deadline",
            operation="send_test",
            context={"tenant_id": tenant_id, "event": event_kind.value},
            error=f"Timed out after {deadline}s",
        )
        return _failure(f"Timed out after {deadline:g}s", event_kind)
    except Exception as e:  # noqa: BLE001
        return _failure(f"Delivery failed: {type(e).__name__}: {e}", event_kind)
