"""
WhatsApp gateway (Evolution API) chat client.

The dispatcher only depends on the ``ChatSender`` call shape
``(tenant_id, recipient, text, credentials=None) -> ChatSendResult``; this
module provides the production implementation. Per-tenant gateway
credentials are passed in by the caller.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

import requests

from action_dispatch.utils.logger import StructuredLogger, get_logger, mask_phone


class ChatServiceError(Exception):
    """Raised when gateway credentials are unusable."""


@dataclass
class ChatSendResult:
    """Outcome reported by a chat transport."""

    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


REQUIRED_CREDENTIALS = ("api_url", "api_key", "instance_name")

ChatSender = Callable[..., ChatSendResult]


class EvolutionChatClient:
    """
    Sends plain text messages through an Evolution API instance.

    Never raises from ``send_message``: transport failures are returned as
    ``ChatSendResult(success=False)``.
    """

    def __init__(
        self,
        http_client: Optional[requests.Session] = None,
        logger: Optional[StructuredLogger] = None,
        timeout_seconds: float = 15.0,
        typing_delay_ms: int = 1200,
    ) -> None:
        """
        Initialize the gateway client.

        Args:
            http_client: Optional requests-like session (useful for testing)
            logger: Optional structured logger instance
            timeout_seconds: Per-request timeout
            typing_delay_ms: "composing" presence shown before the message
        """
        self.logger = logger or get_logger(__name__)
        self.http_client = http_client or requests.Session()
        self.timeout_seconds = timeout_seconds
        self.typing_delay_ms = typing_delay_ms

    def __call__(
        self,
        tenant_id: str,
        recipient: str,
        text: str,
        credentials: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> ChatSendResult:
        return self.send_message(tenant_id, recipient, text, credentials, timeout)

    def send_message(
        self,
        tenant_id: str,
        recipient: str,
        text: str,
        credentials: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> ChatSendResult:
        """
        Send ``text`` to ``recipient`` on behalf of ``tenant_id``.

        Args:
            tenant_id: Tenant whose gateway instance sends the message
            recipient: Phone number (any formatting; digits are kept)
            text: Rendered message
            credentials: Dict with api_url, api_key, instance_name
            timeout: Per-call timeout override

        Returns:
            ChatSendResult
        """
        log_context = {"tenant_id": tenant_id, "recipient_masked": mask_phone(recipient)}

        if not text or not text.strip():
            error = "Refusing to send an empty message"
            self.logger.warning("Chat message skipped", operation="send_chat", context=log_context)
            return ChatSendResult(success=False, error=error)

        try:
            url, headers = self._endpoint(credentials)
        except ChatServiceError as e:
            self.logger.error(
                "Chat gateway not configured",
                operation="send_chat",
                context=log_context,
                error=str(e),
            )
            return ChatSendResult(success=False, error=str(e))

        body = {
            "number": "".join(ch for ch in recipient if ch.isdigit()),
            "text": text,
            "options": {"delay": self.typing_delay_ms, "presence": "composing"},
        }

        try:
            response = self.http_client.post(
                url, headers=headers, json=body, timeout=timeout or self.timeout_seconds
            )
        except requests.Timeout:
            error = f"Chat gateway timed out after {timeout or self.timeout_seconds}s"
            self._log_failure(log_context, error)
            return ChatSendResult(success=False, error=error)
        except (requests.RequestException, OSError) as e:
            error = f"Chat gateway request failed: {e}"
            self._log_failure(log_context, error)
            return ChatSendResult(success=False, error=error)

        status_code = int(response.status_code)
        if status_code >= 400:
            error = f"Chat gateway responded with {status_code}: {getattr(response, 'text', '')}"
            self._log_failure(log_context, error)
            return ChatSendResult(success=False, error=error)

        message_id = self._message_id(response)
        self.logger.info(
            "Chat message sent",
            operation="send_chat",
            context={**log_context, "message_id": message_id},
        )
        return ChatSendResult(success=True, message_id=message_id)

    def _log_failure(self, log_context: Dict[str, Any], error: str) -> None:
        self.logger.error(
            "Chat delivery failed", operation="send_chat", context=log_context, error=error
        )

    def _endpoint(self, credentials: Optional[Dict[str, str]]) -> Tuple[str, Dict[str, str]]:
        if not credentials:
            raise ChatServiceError("Chat gateway credentials not provided")
        missing = [key for key in REQUIRED_CREDENTIALS if not credentials.get(key)]
        if missing:
            raise ChatServiceError(f"Chat gateway credentials missing: {', '.join(missing)}")

        api_url = credentials["api_url"].rstrip("/")
        url = f"{api_url}/message/sendText/{credentials['instance_name']}"
        headers = {"Content-Type": "application/json", "apikey": credentials["api_key"]}
        return url, headers

    @staticmethod
    def _message_id(response: Any) -> str:
        try:
            payload = response.json()
        except (ValueError, AttributeError):
            payload = None
        if isinstance(payload, dict):
            key = payload.get("key")
            if isinstance(key, dict) and key.get("id"):
                return str(key["id"])
        return uuid.uuid4().hex.upper()
