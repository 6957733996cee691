"""
Action configuration domain model.

An ActionConfig is one operator-defined automation rule: "when event X
happens, deliver to target Y". Records are persisted with camelCase keys;
older records written by the dashboard may still carry the legacy
``whatsapp`` type and ``phoneNumber`` field, which are read transparently.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Union

from .event import EventKind


class ActionType(str, Enum):
    """Delivery channel of an action."""

    WEBHOOK = "webhook"
    CHAT_MESSAGE = "chat_message"

    @classmethod
    def parse(cls, value: Any) -> Optional["ActionType"]:
        if isinstance(value, cls):
            return value
        if value == "whatsapp":
            return cls.CHAT_MESSAGE
        try:
            return cls(value)
        except ValueError:
            return None


# Legacy/alternate input keys -> canonical stored keys
_KEY_ALIASES = {
    "phoneNumber": "recipient",
    "is_active": "isActive",
    "message_template": "messageTemplate",
    "trigger_tags": "triggerTags",
    "tenant_id": "tenantId",
    "created_at": "createdAt",
}

WEBHOOK_FIELDS = ("url", "secret")
CHAT_FIELDS = ("recipient", "messageTemplate")


def normalize_tags(tags: Optional[Iterable[Any]]) -> List[str]:
    """Strip, drop blanks and de-duplicate while keeping first-seen order."""
    normalized: List[str] = []
    for tag in tags or []:
        if tag is None:
            continue
        text = str(tag).strip()
        if text and text not in normalized:
            normalized.append(text)
    return normalized


def normalize_config_input(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    Map legacy and snake_case keys onto the stored camelCase form.

    Canonical keys win when both spellings are present. Also rewrites the
    legacy ``whatsapp`` type.
    """
    data: Dict[str, Any] = {}
    for key, value in raw.items():
        canonical = _KEY_ALIASES.get(key)
        if canonical:
            data.setdefault(canonical, value)
        else:
            data[key] = value

    if data.get("type") == "whatsapp":
        data["type"] = ActionType.CHAT_MESSAGE.value
    if "triggerTags" in data and data["triggerTags"] is not None:
        data["triggerTags"] = normalize_tags(data["triggerTags"])
    return data


@dataclass
class ActionConfig:
    """
    Persisted automation rule.

    Attributes:
        tenant_id: Owning tenant (partition key)
        name: Human label
        type: Delivery channel
        event: Event kind; unknown kinds from newer writers stay as raw strings
        is_active: Inactive actions are never matched
        id: Store-generated identifier (sort key)
        url: Webhook target
        secret: Optional webhook signing secret
        recipient: Chat recipient phone number
        message_template: Chat message template with {{path}} placeholders
        trigger_tags: Tag filter for tag_added; empty matches any tag
        created_at: ISO-8601 creation time, immutable
    """

    tenant_id: str
    name: str
    type: ActionType
    event: Union[EventKind, str]
    is_active: bool = True
    id: str = ""
    url: Optional[str] = None
    secret: Optional[str] = None
    recipient: Optional[str] = None
    message_template: Optional[str] = None
    trigger_tags: List[str] = field(default_factory=list)
    created_at: Optional[str] = None

    @property
    def is_webhook(self) -> bool:
        return self.type == ActionType.WEBHOOK

    @property
    def event_value(self) -> str:
        return self.event.value if isinstance(self.event, EventKind) else str(self.event)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActionConfig":
        """
        Create ActionConfig from a stored record or API input.

        Raises:
            ValueError: If ``type`` is not a known action type
        """
        record = normalize_config_input(data)
        action_type = ActionType.parse(record.get("type"))
        if action_type is None:
            raise ValueError(f"Unknown action type: {record.get('type')!r}")

        raw_event = record.get("event") or EventKind.TEST_EVENT.value
        event: Union[EventKind, str] = EventKind.parse(raw_event) or str(raw_event)

        return cls(
            tenant_id=str(record.get("tenantId", "")),
            name=str(record.get("name", "")),
            type=action_type,
            event=event,
            is_active=bool(record.get("isActive", True)),
            id=str(record.get("id") or record.get("action_id") or ""),
            url=record.get("url") or None,
            secret=record.get("secret") or None,
            recipient=record.get("recipient") or None,
            message_template=record.get("messageTemplate") or None,
            trigger_tags=normalize_tags(record.get("triggerTags")),
            created_at=record.get("createdAt"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """
        Stored/wire representation.

        Only the field group matching ``type`` is emitted, so a record never
        carries both webhook and chat targets.
        """
        data: Dict[str, Any] = {
            "id": self.id,
            "tenantId": self.tenant_id,
            "name": self.name,
            "type": self.type.value,
            "event": self.event_value,
            "isActive": self.is_active,
            "triggerTags": list(self.trigger_tags),
        }
        if self.is_webhook:
            data["url"] = self.url
            data["secret"] = self.secret
        else:
            data["recipient"] = self.recipient
            data["messageTemplate"] = self.message_template
        if self.created_at:
            data["createdAt"] = self.created_at
        return {key: value for key, value in data.items() if value is not None}
