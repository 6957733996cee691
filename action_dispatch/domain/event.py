"""
Business event domain model.

An EventEnvelope is built fresh for every published event. Its ``data`` is a
tagged union keyed by the event kind: every variant shares the conversation
id and client record, adds the fields its producer emits, and keeps any
unrecognised keys in ``extra`` so nothing a producer sends is lost on the
wire.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Type


def utc_now_iso() -> str:
    """Return the current UTC time as ``2024-12-25T10:00:00.000Z``."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class EventKind(str, Enum):
    """Closed list of business events an action can subscribe to."""

    CONVERSATION_CREATED = "conversation_created"
    CONVERSATION_UPDATED = "conversation_updated"
    MESSAGE_RECEIVED = "message_received"
    MESSAGE_SENT = "message_sent"
    HUMAN_SUPPORT_REQUESTED = "human_support_requested"
    APPOINTMENT_SCHEDULED = "appointment_scheduled"
    APPOINTMENT_RESCHEDULED_OR_CANCELED = "appointment_rescheduled_or_canceled"
    CLIENT_INFO_UPDATED = "client_info_updated"
    LEAD_QUALIFIED = "lead_qualified"
    AI_KNOWLEDGE_MISS = "ai_knowledge_miss"
    CONVERSATION_ENDED_BY_AI = "conversation_ended_by_ai"
    TAG_ADDED = "tag_added"
    TEST_EVENT = "test_event"

    @classmethod
    def parse(cls, value: Any) -> Optional["EventKind"]:
        """Return the matching kind, or None for values this version doesn't know."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None

    @classmethod
    def values(cls) -> List[str]:
        return [kind.value for kind in cls]


def _wire(name: str, always: bool = False, **kwargs: Any) -> Any:
    return field(metadata={"wire": name, "always": always}, **kwargs)


@dataclass
class EventData:
    """
    Fields shared by every event payload.

    Attributes:
        conversation_id: WhatsApp number identifying the conversation
        client_data: Full conversation/client record (serialised even when None)
        extra: Producer keys with no dedicated field
    """

    conversation_id: Optional[str] = _wire("conversationId", default=None)
    client_data: Optional[Dict[str, Any]] = _wire("clientData", always=True, default=None)
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> "EventData":
        """Split a producer payload into typed fields and leftover extras."""
        remaining = dict(raw or {})
        kwargs: Dict[str, Any] = {}
        for f in fields(cls):
            wire = f.metadata.get("wire")
            if wire and wire in remaining:
                kwargs[f.name] = remaining.pop(wire)
        return cls(extra=remaining, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        """Wire form: camelCase keys, extras first so typed fields win on clashes."""
        out = dict(self.extra)
        for f in fields(self):
            wire = f.metadata.get("wire")
            if not wire:
                continue
            value = getattr(self, f.name)
            if value is None and not f.metadata.get("always"):
                continue
            out[wire] = value
        return out


@dataclass
class ConversationEventData(EventData):
    triggering_message: Optional[Dict[str, Any]] = _wire("triggeringMessage", default=None)


@dataclass
class MessageEventData(EventData):
    message: Optional[Dict[str, Any]] = _wire("message", default=None)


@dataclass
class HumanSupportEventData(EventData):
    reason: Optional[str] = _wire("reason", default=None)


@dataclass
class AppointmentScheduledEventData(EventData):
    appointment: Optional[Dict[str, Any]] = _wire("appointment", default=None)


@dataclass
class AppointmentChangedEventData(EventData):
    event_id: Optional[str] = _wire("eventId", default=None)
    action: Optional[str] = _wire("action", default=None)


@dataclass
class ClientInfoUpdatedEventData(EventData):
    updated_fields: Optional[List[str]] = _wire("updatedFields", default=None)


@dataclass
class LeadQualifiedEventData(EventData):
    reason: Optional[str] = _wire("reason", default=None)


@dataclass
class KnowledgeMissEventData(EventData):
    client_question: Optional[str] = _wire("clientQuestion", default=None)
    reason: Optional[str] = _wire("reason", default=None)


@dataclass
class ConversationEndedEventData(EventData):
    summary: Optional[str] = _wire("summary", default=None)


@dataclass
class TagAddedEventData(EventData):
    tag: Optional[str] = _wire("tag", default=None)
    tags: Optional[List[str]] = _wire("tags", default=None)

    def all_tags(self) -> List[str]:
        """Every tag carried by the event, single ``tag`` first."""
        collected: List[str] = []
        if self.tag:
            collected.append(str(self.tag))
        for tag in self.tags or []:
            if tag and str(tag) not in collected:
                collected.append(str(tag))
        return collected


@dataclass
class TestEventData(EventData):
    __test__ = False

    message: Optional[str] = _wire("message", default=None)


EVENT_DATA_TYPES: Dict[EventKind, Type[EventData]] = {
    EventKind.CONVERSATION_CREATED: ConversationEventData,
    EventKind.CONVERSATION_UPDATED: ConversationEventData,
    EventKind.MESSAGE_RECEIVED: MessageEventData,
    EventKind.MESSAGE_SENT: MessageEventData,
    EventKind.HUMAN_SUPPORT_REQUESTED: HumanSupportEventData,
    EventKind.APPOINTMENT_SCHEDULED: AppointmentScheduledEventData,
    EventKind.APPOINTMENT_RESCHEDULED_OR_CANCELED: AppointmentChangedEventData,
    EventKind.CLIENT_INFO_UPDATED: ClientInfoUpdatedEventData,
    EventKind.LEAD_QUALIFIED: LeadQualifiedEventData,
    EventKind.AI_KNOWLEDGE_MISS: KnowledgeMissEventData,
    EventKind.CONVERSATION_ENDED_BY_AI: ConversationEndedEventData,
    EventKind.TAG_ADDED: TagAddedEventData,
    EventKind.TEST_EVENT: TestEventData,
}


def parse_event_data(event: EventKind, raw: Optional[Dict[str, Any]]) -> EventData:
    """Build the payload variant registered for ``event``."""
    data_type = EVENT_DATA_TYPES.get(event, EventData)
    return data_type.from_dict(raw)


@dataclass(frozen=True)
class EventEnvelope:
    """
    One occurrence of a business event.

    Attributes:
        event: Event kind
        tenant_id: Owning tenant
        data: Event-specific payload variant
        timestamp: ISO-8601 UTC creation time
    """

    event: EventKind
    tenant_id: str
    data: EventData
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        """Outbound webhook body. ``userId`` carries the tenant id."""
        return {
            "event": self.event.value,
            "timestamp": self.timestamp,
            "userId": self.tenant_id,
            "data": self.data.to_dict(),
        }

    def template_context(self) -> Dict[str, Any]:
        """Wire form plus a ``tenantId`` alias, for message templates."""
        context = self.to_dict()
        context["tenantId"] = self.tenant_id
        return context


@dataclass
class DeliveryResult:
    """Outcome of one delivery attempt for one action."""

    action_id: str
    success: bool
    message: str
    timestamp: str = field(default_factory=utc_now_iso)
    status_code: Optional[int] = None
    event: Optional[str] = None
    action_type: Optional[str] = None
    target: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "actionId": self.action_id,
            "success": self.success,
            "message": self.message,
            "timestamp": self.timestamp,
            "statusCode": self.status_code,
            "event": self.event,
            "actionType": self.action_type,
            "target": self.target,
        }
        return {key: value for key, value in data.items() if value is not None}
