"""
Outbound webhook HTTP client.

Posts pre-serialised bodies so the bytes on the wire are exactly the bytes
that were signed. Every request carries a timeout; retries are opt-in.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import requests

from action_dispatch.utils.logger import StructuredLogger, get_logger, mask_url


class WebhookServiceError(Exception):
    """Raised when a webhook endpoint cannot be reached or answers non-2xx."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class WebhookResponse:
    """Successful (2xx) endpoint answer."""

    status_code: int
    text: str = ""


class WebhookClient:
    """
    Client for POSTing JSON event envelopes to operator-configured URLs.

    Attributes:
        timeout_seconds: Per-request timeout
        max_attempts: Attempts per delivery (1 = no retry)
        retry_delay_seconds: Base delay for exponential backoff
    """

    USER_AGENT = "Action-Dispatch-Webhook/1.0"
    MAX_ERROR_BODY = 500

    def __init__(
        self,
        http_client: Optional[requests.Session] = None,
        logger: Optional[StructuredLogger] = None,
        timeout_seconds: float = 15.0,
        max_attempts: int = 1,
        retry_delay_seconds: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """
        Initialize the webhook client.

        Args:
            http_client: Optional requests-like session (useful for testing)
            logger: Optional structured logger instance
            timeout_seconds: Default per-request timeout
            max_attempts: Default attempts per delivery
            retry_delay_seconds: Base delay between retries (doubles each attempt)
            sleep: Sleep function, replaceable in tests
        """
        self.logger = logger or get_logger(__name__)
        self.http_client = http_client or requests.Session()
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max(1, max_attempts)
        self.retry_delay_seconds = retry_delay_seconds
        self._sleep = sleep

    def build_headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self.USER_AGENT,
        }
        headers.update(extra or {})
        return headers

    def post(
        self,
        url: str,
        body: bytes,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ) -> WebhookResponse:
        """
        POST ``body`` to ``url``.

        Network errors, timeouts, 429 and 5xx answers are retried while
        attempts remain; other 4xx answers fail immediately.

        Raises:
            WebhookServiceError: On the final failed attempt
        """
        request_headers = self.build_headers(headers)
        request_timeout = timeout or self.timeout_seconds
        attempts = max(1, max_attempts or self.max_attempts)
        log_context = {"url": mask_url(url), "bytes": len(body)}

        for attempt in range(1, attempts + 1):
            status_code: Optional[int] = None
            retryable = True
            try:
                response = self.http_client.post(
                    url, headers=request_headers, data=body, timeout=request_timeout
                )
                status_code = int(response.status_code)
                if 200 <= status_code < 300:
                    self.logger.info(
                        "Webhook delivered",
                        operation="post_webhook",
                        context={**log_context, "status_code": status_code, "attempt": attempt},
                    )
                    return WebhookResponse(
                        status_code=status_code, text=getattr(response, "text", "") or ""
                    )

                body_text = (getattr(response, "text", "") or "")[: self.MAX_ERROR_BODY]
                error_message = f"HTTP {status_code}"
                if body_text:
                    error_message = f"{error_message}: {body_text}"
                retryable = status_code == 429 or status_code >= 500
            except requests.Timeout:
                error_message = f"Request timed out after {request_timeout}s"
            except (requests.RequestException, OSError) as exc:
                error_message = f"Request failed: {exc}"

            if attempt >= attempts or not retryable:
                self.logger.error(
                    "Webhook delivery failed",
                    operation="post_webhook",
                    context={**log_context, "status_code": status_code, "attempt": attempt},
                    error=error_message,
                )
                raise WebhookServiceError(error_message, status_code=status_code)

            wait_time = self.retry_delay_seconds * (2 ** (attempt - 1))
            self.logger.warning(
                f"Retrying webhook delivery in {wait_time}s",
                operation="post_webhook",
                context={**log_context, "status_code": status_code, "attempt": attempt},
                error=error_message,
            )
            self._sleep(wait_time)

        raise WebhookServiceError("Webhook delivery exhausted all attempts")
