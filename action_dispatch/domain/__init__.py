"""Domain models for actions, events and delivery results."""

from .action import ActionConfig, ActionType, normalize_config_input, normalize_tags
from .event import (
    DeliveryResult,
    EventData,
    EventEnvelope,
    EventKind,
    TagAddedEventData,
    parse_event_data,
    utc_now_iso,
)
from .schema import ValidationError, validate_action_config

__all__ = [
    "ActionConfig",
    "ActionType",
    "normalize_config_input",
    "normalize_tags",
    "DeliveryResult",
    "EventData",
    "EventEnvelope",
    "EventKind",
    "TagAddedEventData",
    "parse_event_data",
    "utc_now_iso",
    "ValidationError",
    "validate_action_config",
]
