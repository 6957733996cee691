"""
Action Dispatcher

Delivers one event envelope to every matched action:
- Webhook actions: canonical JSON body, optional HMAC signature header, POST
- Chat actions: template rendered against the envelope, sent via the chat sender
- Each action runs as its own task on a bounded worker pool
- A failing action becomes a failed DeliveryResult and never affects siblings
- ``dispatch_async`` returns immediately with a DispatchBatch handle so
  publishers do not wait on delivery; a supervisor can still observe results
"""

import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from action_dispatch.config.settings import Settings
from action_dispatch.domain.action import ActionConfig, ActionType
from action_dispatch.domain.event import DeliveryResult, EventEnvelope
from action_dispatch.notifications.chat_service import ChatSender, EvolutionChatClient
from action_dispatch.notifications.webhook_service import WebhookClient, WebhookServiceError
from action_dispatch.rules.signing import SIGNATURE_HEADER, canonical_json, signature_header
from action_dispatch.rules.templates import find_placeholders, lookup_path, render
from action_dispatch.utils.logger import get_logger, mask_phone, mask_url

logger = get_logger(__name__)

ResultCallback = Callable[[DeliveryResult], None]


@dataclass(frozen=True)
class DeliveryOptions:
    """Per-call transport options handed to executors."""

    credentials: Optional[Dict[str, str]] = None
    timeout: Optional[float] = None
    max_attempts: Optional[int] = None


Executor = Callable[[EventEnvelope, ActionConfig, DeliveryOptions], DeliveryResult]


def _target(action: ActionConfig) -> str:
    return mask_url(action.url) if action.is_webhook else mask_phone(action.recipient)


def _result(
    envelope: EventEnvelope,
    action: ActionConfig,
    success: bool,
    message: str,
    status_code: Optional[int] = None,
) -> DeliveryResult:
    return DeliveryResult(
        action_id=action.id,
        success=success,
        message=message,
        status_code=status_code,
        event=envelope.event.value,
        action_type=action.type.value,
        target=_target(action),
    )


def _crash_result(
    envelope: EventEnvelope, action: ActionConfig, error: BaseException
) -> DeliveryResult:
    # Built without touching the target so it cannot fail the same way
    return DeliveryResult(
        action_id=action.id,
        success=False,
        message=f"Delivery failed: {type(error).__name__}: {error}",
        event=envelope.event.value,
        action_type=getattr(action.type, "value", str(action.type)),
    )


class DispatchBatch:
    """
    Handle on the deliveries started for one event.

    Publishers may drop it (fire-and-forget); tests and supervisors can wait
    on it or attach completion callbacks.
    """

    def __init__(self, envelope: EventEnvelope, tasks: List[Tuple[Future, ActionConfig]]):
        self.envelope = envelope
        self._tasks = tasks

    @property
    def futures(self) -> List[Future]:
        return [future for future, _ in self._tasks]

    def __len__(self) -> int:
        return len(self._tasks)

    def done(self) -> bool:
        return all(future.done() for future, _ in self._tasks)

    def add_done_callback(self, callback: ResultCallback) -> None:
        """Invoke ``callback`` with each DeliveryResult as it completes."""
        for future, _ in self._tasks:
            future.add_done_callback(_result_callback(callback))

    def results(self, timeout: Optional[float] = None) -> List[DeliveryResult]:
        """
        Wait up to ``timeout`` seconds and collect one result per action.

        Deliveries still running when the wait ends are reported as failures.
        """
        wait(self.futures, timeout=timeout)
        collected: List[DeliveryResult] = []
        for future, action in self._tasks:
            if future.done() and not future.cancelled():
                error = future.exception()
                if error is None:
                    collected.append(future.result())
                else:
                    collected.append(_crash_result(self.envelope, action, error))
            else:
                collected.append(
                    _result(
                        self.envelope,
                        action,
                        False,
                        f"Delivery still pending after {timeout}s",
                    )
                )
        return collected


def _result_callback(callback: ResultCallback) -> Callable[[Future], None]:
    def _invoke(future: Future) -> None:
        if future.cancelled():
            return
        try:
            callback(future.result())
        except Exception as e:  # noqa: BLE001
            logger.error(
                "Delivery result callback failed",
                operation="dispatch_callback",
                error=str(e),
            )

    return _invoke


class Dispatcher:
    """
    Per-action delivery with pluggable executors keyed by action type.

    Features:
    - Executor registry (webhook and chat registered by default)
    - Bounded worker pool; every transport call has a timeout
    - Structured results, never raises to callers
    """

    def __init__(
        self,
        webhook_client: Optional[WebhookClient] = None,
        chat_sender: Optional[ChatSender] = None,
        settings: Optional[Settings] = None,
        executor: Optional[ThreadPoolExecutor] = None,
        on_result: Optional[ResultCallback] = None,
    ):
        """
        Initialize the dispatcher.

        Args:
            webhook_client: HTTP client for webhook actions
            chat_sender: Callable ``(tenant_id, recipient, text, credentials=...)``
            settings: Runtime settings (timeouts, pool size, retry policy)
            executor: Worker pool to run deliveries on (created when omitted)
            on_result: Observer called with every DeliveryResult
        """
        self.settings = settings or Settings()
        self.webhook_client = webhook_client or WebhookClient(
            timeout_seconds=self.settings.http_timeout_seconds,
            max_attempts=self.settings.webhook_max_attempts,
            retry_delay_seconds=self.settings.retry_backoff_seconds,
        )
        self.chat_sender = chat_sender or EvolutionChatClient(
            timeout_seconds=self.settings.http_timeout_seconds
        )
        self._pool = executor or ThreadPoolExecutor(
            max_workers=self.settings.max_workers, thread_name_prefix="action-dispatch"
        )
        self._owns_pool = executor is None
        self.on_result = on_result
        self.executors: Dict[ActionType, Executor] = {}

        self.register_executor(ActionType.WEBHOOK, self._deliver_webhook)
        self.register_executor(ActionType.CHAT_MESSAGE, self._deliver_chat)

    def register_executor(self, action_type: ActionType, executor: Executor) -> None:
        """
        Register the delivery function for an action type.

        Raises:
            TypeError: If executor is not callable
        """
        if not callable(executor):
            raise TypeError(f"Executor must be callable, got {type(executor)}")

        self.executors[action_type] = executor
        logger.debug(f"Registered executor: {action_type.value}", operation="register_executor")

    # ------------------------------------------------------------------ #
    # Single delivery
    # ------------------------------------------------------------------ #
    def deliver(
        self,
        envelope: EventEnvelope,
        action: ActionConfig,
        credentials: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ) -> DeliveryResult:
        """
        Deliver ``envelope`` for one action. Never raises.

        Args:
            envelope: Event to deliver
            action: Persisted or draft action
            credentials: Tenant chat gateway credentials
            timeout: Transport timeout override
            max_attempts: Webhook attempt override (1 disables retries)

        Returns:
            DeliveryResult
        """
        start_time = time.time()
        try:
            return self._run(envelope, action, credentials, timeout, max_attempts, start_time)
        except Exception as e:  # noqa: BLE001
            logger.error(
                "Action delivery crashed",
                operation="deliver_action",
                context={"tenant_id": envelope.tenant_id, "action_id": action.id},
                error=f"{type(e).__name__}: {e}",
                duration_ms=(time.time() - start_time) * 1000,
            )
            return _crash_result(envelope, action, e)

    def _run(
        self,
        envelope: EventEnvelope,
        action: ActionConfig,
        credentials: Optional[Dict[str, str]],
        timeout: Optional[float],
        max_attempts: Optional[int],
        start_time: float,
    ) -> DeliveryResult:
        log_context = {
            "tenant_id": envelope.tenant_id,
            "action_id": action.id,
            "action_type": action.type.value,
            "event": envelope.event.value,
            "target": _target(action),
        }

        executor = self.executors.get(action.type)
        if not executor:
            logger.error(
                f"Unknown action type '{action.type}'",
                operation="deliver_action",
                context=log_context,
                error=f"No executor registered for '{action.type}'",
            )
            return _result(envelope, action, False, f"Unknown action type: {action.type}")

        options = DeliveryOptions(
            credentials=credentials, timeout=timeout, max_attempts=max_attempts
        )
        try:
            result = executor(envelope, action, options)
        except Exception as e:  # noqa: BLE001
            result = _result(envelope, action, False, f"Delivery failed: {e}")

        duration_ms = (time.time() - start_time) * 1000
        if result.success:
            logger.info(
                "Action delivered",
                operation="deliver_action",
                context={**log_context, "status_code": result.status_code},
                duration_ms=duration_ms,
            )
        else:
            logger.error(
                "Action delivery failed",
                operation="deliver_action",
                context={**log_context, "status_code": result.status_code},
                error=result.message,
                duration_ms=duration_ms,
            )
        return result

    def _deliver_webhook(
        self, envelope: EventEnvelope, action: ActionConfig, options: DeliveryOptions
    ) -> DeliveryResult:
        if not action.url:
            return _result(envelope, action, False, "Webhook URL not configured")

        body = canonical_json(envelope.to_dict())
        headers: Dict[str, str] = {}
        if action.secret:
            headers[SIGNATURE_HEADER] = signature_header(action.secret, body)

        try:
            response = self.webhook_client.post(
                action.url,
                body,
                headers=headers,
                timeout=options.timeout,
                max_attempts=options.max_attempts,
            )
        except WebhookServiceError as e:
            return _result(
                envelope,
                action,
                False,
                f"Webhook to {mask_url(action.url)} failed: {e}",
                status_code=e.status_code,
            )

        return _result(
            envelope,
            action,
            True,
            f"Webhook delivered to {mask_url(action.url)} (HTTP {response.status_code})",
            status_code=response.status_code,
        )

    def _deliver_chat(
        self, envelope: EventEnvelope, action: ActionConfig, options: DeliveryOptions
    ) -> DeliveryResult:
        if not action.recipient or not action.message_template:
            return _result(envelope, action, False, "Chat recipient or message template missing")

        context = envelope.template_context()
        unresolved = [
            path
            for path in find_placeholders(action.message_template)
            if lookup_path(context, path) is None
        ]
        if unresolved:
            logger.warning(
                "Message template references missing values",
                operation="render_template",
                context={
                    "tenant_id": envelope.tenant_id,
                    "action_id": action.id,
                    "event": envelope.event.value,
                    "unresolved": unresolved,
                },
            )
        text = render(action.message_template, context)
        outcome: Any = self.chat_sender(
            envelope.tenant_id, action.recipient, text, credentials=options.credentials
        )

        if isinstance(outcome, dict):
            success = bool(outcome.get("success"))
            error = outcome.get("error")
            message_id = outcome.get("messageId") or outcome.get("message_id")
        else:
            success = bool(getattr(outcome, "success", False))
            error = getattr(outcome, "error", None)
            message_id = getattr(outcome, "message_id", None)

        recipient = mask_phone(action.recipient)
        if success:
            suffix = f" (message {message_id})" if message_id else ""
            return _result(envelope, action, True, f"Chat message sent to {recipient}{suffix}")
        return _result(
            envelope,
            action,
            False,
            f"Chat message to {recipient} failed: {error or 'unknown error'}",
        )

    # ------------------------------------------------------------------ #
    # Fan-out
    # ------------------------------------------------------------------ #
    def submit(
        self,
        envelope: EventEnvelope,
        action: ActionConfig,
        credentials: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ) -> Future:
        """Schedule one delivery on the worker pool."""
        try:
            return self._pool.submit(
                self.deliver, envelope, action, credentials, timeout, max_attempts
            )
        except RuntimeError as e:
            # Pool already shut down
            future: Future = Future()
            future.set_result(_result(envelope, action, False, f"Dispatcher unavailable: {e}"))
            return future

    def dispatch_async(
        self,
        envelope: EventEnvelope,
        actions: Iterable[ActionConfig],
        credentials: Optional[Dict[str, str]] = None,
        on_result: Optional[ResultCallback] = None,
    ) -> DispatchBatch:
        """
        Start one delivery per action and return without waiting.

        Args:
            envelope: Event to deliver
            actions: Matched actions
            credentials: Tenant chat gateway credentials
            on_result: Extra observer for this batch only

        Returns:
            DispatchBatch tracking the started deliveries
        """
        tasks = [(self.submit(envelope, action, credentials), action) for action in actions]
        batch = DispatchBatch(envelope, tasks)

        if self.on_result:
            batch.add_done_callback(self.on_result)
        if on_result:
            batch.add_done_callback(on_result)

        logger.info(
            f"Dispatching '{envelope.event.value}' to {len(tasks)} action(s)",
            operation="dispatch",
            context={"tenant_id": envelope.tenant_id, "event": envelope.event.value},
        )
        return batch

    def dispatch(
        self,
        envelope: EventEnvelope,
        actions: Iterable[ActionConfig],
        credentials: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> List[DeliveryResult]:
        """
        Deliver to every action concurrently and wait for all results.

        Returns:
            One DeliveryResult per action, in input order
        """
        results = self.dispatch_async(envelope, actions, credentials).results(timeout=timeout)

        success_count = sum(1 for r in results if r.success)
        logger.info(
            f"Dispatch complete: {success_count} succeeded, {len(results) - success_count} failed",
            operation="dispatch_complete",
            context={
                "tenant_id": envelope.tenant_id,
                "event": envelope.event.value,
                "actions_executed": len(results),
                "actions_succeeded": success_count,
                "actions_failed": len(results) - success_count,
            },
        )
        return results

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work; optionally wait for in-flight deliveries."""
        if self._owns_pool:
            self._pool.shutdown(wait=wait)
