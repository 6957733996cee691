"""
Save-time validation for action configurations.

Validation runs once, when the settings UI creates or updates an action.
The dispatcher trusts whatever made it into the store.
"""

from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit

import jsonschema

from .event import EventKind


class ValidationError(Exception):
    """Raised when an action configuration is malformed for its type."""

    def __init__(
        self, message: str, field: Optional[str] = None, errors: Optional[List[str]] = None
    ):
        super().__init__(message)
        self.message = message
        self.field = field
        self.errors = errors or [message]


URL_PATTERN = r"^https?://[^\s/$.?#][^\s]*$"

ACTION_CONFIG_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["name", "type", "event", "isActive"],
    "properties": {
        "name": {"type": "string", "pattern": r"\S"},
        "type": {"enum": ["webhook", "chat_message"]},
        "event": {"enum": EventKind.values()},
        "isActive": {"type": "boolean"},
        "url": {"type": "string"},
        "secret": {"type": "string"},
        "recipient": {"type": "string"},
        "messageTemplate": {"type": "string"},
        "triggerTags": {"type": "array", "items": {"type": "string"}},
        "createdAt": {},
    },
    "allOf": [
        {
            "if": {"properties": {"type": {"const": "webhook"}}, "required": ["type"]},
            "then": {
                "required": ["url"],
                "properties": {"url": {"type": "string", "pattern": URL_PATTERN}},
            },
        },
        {
            "if": {"properties": {"type": {"const": "chat_message"}}, "required": ["type"]},
            "then": {
                "required": ["recipient", "messageTemplate"],
                "properties": {
                    "recipient": {"type": "string", "pattern": r"^\+?[0-9][0-9 ()\-]{6,}$"},
                    "messageTemplate": {"type": "string", "pattern": r"\S"},
                },
            },
        },
    ],
}

_VALIDATOR = jsonschema.Draft7Validator(ACTION_CONFIG_SCHEMA)


def _describe(error: jsonschema.ValidationError) -> str:
    location = ".".join(str(part) for part in error.absolute_path)
    if error.validator == "pattern" and location:
        return f"'{location}' has an invalid value"
    if location:
        return f"'{location}': {error.message}"
    return error.message


def _has_valid_port(url: Any) -> bool:
    # The pattern accepts any authority; urlsplit rejects ports above 65535
    try:
        urlsplit(str(url or "")).port
    except ValueError:
        return False
    return True


def validate_action_config(config: Dict[str, Any]) -> None:
    """
    Validate a normalized (camelCase) configuration record.

    Raises:
        ValidationError: Listing every violation; ``field`` names the first one
    """
    # None means "not provided" for optional fields
    instance = {key: value for key, value in config.items() if value is not None}
    errors = sorted(
        _VALIDATOR.iter_errors(instance),
        key=lambda e: [str(part) for part in e.absolute_path],
    )
    messages = [_describe(error) for error in errors]

    field = None
    if errors:
        first = errors[0]
        if first.absolute_path:
            field = str(first.absolute_path[0])
        elif first.validator == "required":
            # "'url' is a required property"
            field = first.message.split("'")[1] if "'" in first.message else None
    elif instance.get("type") == "webhook" and not _has_valid_port(instance.get("url")):
        messages.append("'url' has an invalid port")
        field = "url"

    if not messages:
        return
    raise ValidationError("; ".join(messages), field=field, errors=messages)
