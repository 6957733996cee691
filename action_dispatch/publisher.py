"""
Event publisher: the single entry point business code calls when something
happens in a conversation.

publish() reads the tenant's actions once, builds the envelope, selects the
matching actions and hands them to the dispatcher without waiting for
delivery. It never raises: a broken action store or gateway must not break
the conversation flow that emitted the event.
"""

from typing import Any, Callable, Dict, List, Optional, Union

from action_dispatch.config.settings import Settings
from action_dispatch.database.dynamodb_client import ActionConfigRepository, DeliveryLogRepository
from action_dispatch.database.exceptions import DynamoDBException
from action_dispatch.domain.action import ActionConfig, ActionType
from action_dispatch.domain.event import DeliveryResult, EventKind
from action_dispatch.rules.context import build_envelope
from action_dispatch.rules.dispatcher import Dispatcher, DispatchBatch
from action_dispatch.rules.matcher import extract_filter_tags, match
from action_dispatch.utils.logger import get_logger

logger = get_logger(__name__)

ClientLookup = Callable[[str, str], Optional[Dict[str, Any]]]
CredentialsLoader = Callable[[str], Dict[str, str]]


class EventPublisher:
    """
    Fan-out of business events to operator-configured actions.

    Example:
        >>> publisher = EventPublisher(repository, dispatcher)
        >>> publisher.publish("tenant-1", "tag_added", {"conversationId": "55...", "tag": "VIP"})
    """

    def __init__(
        self,
        repository: ActionConfigRepository,
        dispatcher: Dispatcher,
        log_repository: Optional[DeliveryLogRepository] = None,
        client_lookup: Optional[ClientLookup] = None,
        credentials_loader: Optional[CredentialsLoader] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize the publisher.

        Args:
            repository: Action configuration store
            dispatcher: Delivers envelopes to matched actions
            log_repository: Optional store for delivery outcomes
            client_lookup: ``(tenant_id, conversation_id) -> client record``
                used to attach the full client record as ``data.clientData``
            credentials_loader: ``tenant_id -> gateway credentials``, only
                called when a chat action matched
            settings: Runtime settings (delivery log toggle)
        """
        self.repository = repository
        self.dispatcher = dispatcher
        self.log_repository = log_repository
        self.client_lookup = client_lookup
        self.credentials_loader = credentials_loader
        self.settings = settings or dispatcher.settings

    def publish(
        self,
        tenant_id: str,
        event_kind: Union[EventKind, str],
        event_data: Optional[Dict[str, Any]] = None,
    ) -> Optional[DispatchBatch]:
        """
        Trigger every active action of ``tenant_id`` subscribed to ``event_kind``.

        Args:
            tenant_id: Tenant that owns the conversation
            event_kind: Business event that happened
            event_data: Event payload from the producer

        Returns:
            DispatchBatch for the started deliveries, or None when nothing was
            dispatched. Callers are free to ignore it.
        """
        context = {"tenant_id": tenant_id, "event": str(getattr(event_kind, "value", event_kind))}

        kind = EventKind.parse(event_kind)
        if kind is None:
            logger.warning("Ignoring unknown event kind", operation="publish", context=context)
            return None

        try:
            return self._publish(tenant_id, kind, event_data or {})
        except DynamoDBException as e:
            logger.error(
                "Could not load actions; event dropped",
                operation="publish",
                context=context,
                error=str(e),
            )
        except Exception as e:  # noqa: BLE001
            logger.error(
                "Unexpected error while publishing event",
                operation="publish",
                context=context,
                error=f"{type(e).__name__}: {e}",
            )
        return None

    def _publish(
        self, tenant_id: str, kind: EventKind, event_data: Dict[str, Any]
    ) -> Optional[DispatchBatch]:
        context = {"tenant_id": tenant_id, "event": kind.value}

        actions = self.repository.list_by_tenant(tenant_id)
        if not actions:
            logger.debug("No actions configured", operation="publish", context=context)
            return None

        envelope = build_envelope(
            tenant_id,
            kind,
            event_data,
            client_data=self._lookup_client(tenant_id, event_data),
        )
        matched = match(actions, kind, extract_filter_tags(envelope))
        if not matched:
            logger.debug("No matching actions", operation="publish", context=context)
            return None

        credentials = self._load_credentials(tenant_id, matched)
        return self.dispatcher.dispatch_async(
            envelope,
            matched,
            credentials=credentials,
            on_result=self._result_recorder(tenant_id, matched),
        )

    def _lookup_client(
        self, tenant_id: str, event_data: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        conversation_id = event_data.get("conversationId")
        if not self.client_lookup or not conversation_id:
            return None
        try:
            return self.client_lookup(tenant_id, str(conversation_id))
        except Exception as e:  # noqa: BLE001
            logger.warning(
                "Client lookup failed; publishing without client record",
                operation="publish",
                context={"tenant_id": tenant_id},
                error=str(e),
            )
            return None

    def _load_credentials(
        self, tenant_id: str, actions: List[ActionConfig]
    ) -> Optional[Dict[str, str]]:
        if not self.credentials_loader:
            return None
        if not any(action.type == ActionType.CHAT_MESSAGE for action in actions):
            return None
        try:
            return self.credentials_loader(tenant_id)
        except Exception as e:  # noqa: BLE001
            # Chat deliveries will fail individually; webhooks still go out
            logger.error(
                "Could not load chat gateway credentials",
                operation="publish",
                context={"tenant_id": tenant_id},
                error=str(e),
            )
            return None

    def _result_recorder(
        self, tenant_id: str, actions: List[ActionConfig]
    ) -> Optional[Callable[[DeliveryResult], None]]:
        if not self.log_repository or not self.settings.is_delivery_log_enabled():
            return None

        names = {action.id: action.name for action in actions}
        log_repository = self.log_repository

        def _record(result: DeliveryResult) -> None:
            try:
                log_repository.record(tenant_id, result, action_name=names.get(result.action_id))
            except DynamoDBException as e:
                logger.warning(
                    "Could not record delivery outcome",
                    operation="record_delivery",
                    context={"tenant_id": tenant_id, "action_id": result.action_id},
                    error=str(e),
                )

        return _record
