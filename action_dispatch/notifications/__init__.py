"""Outbound transports: webhook HTTP client and chat gateway client."""

from .chat_service import ChatSendResult, ChatSender, ChatServiceError, EvolutionChatClient
from .webhook_service import WebhookClient, WebhookResponse, WebhookServiceError

__all__ = [
    "ChatSendResult",
    "ChatSender",
    "ChatServiceError",
    "EvolutionChatClient",
    "WebhookClient",
    "WebhookResponse",
    "WebhookServiceError",
]
