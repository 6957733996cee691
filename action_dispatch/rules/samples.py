"""
Sample envelopes for test sends and the template variable catalogue.

Sample data lives in ``config/sample_payloads.yaml`` and is loaded once.
Building a sample is pure: the same (event, tags) always yields the same
payload apart from the timestamp.
"""

import copy
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

import yaml

from action_dispatch.domain.action import normalize_tags
from action_dispatch.domain.event import EventEnvelope, EventKind
from action_dispatch.rules.context import build_envelope
from action_dispatch.rules.templates import lookup_path, stringify

SAMPLE_PAYLOADS_PATH = Path(__file__).resolve().parents[1] / "config" / "sample_payloads.yaml"


@lru_cache(maxsize=1)
def load_sample_catalog(path: Path = SAMPLE_PAYLOADS_PATH) -> Dict[str, Any]:
    """Load and sanity-check the sample payload YAML."""
    if not path.exists():
        raise FileNotFoundError(f"Sample payloads file not found: {path}")

    with path.open("r", encoding="utf-8") as handle:
        catalog = yaml.safe_load(handle) or {}

    if not catalog.get("defaults") or not catalog.get("events"):
        raise ValueError("Invalid sample_payloads.yaml structure; expected defaults and events")
    return catalog


def sample_event_data(
    event: EventKind, filter_tags: Optional[Iterable[Any]] = None
) -> Dict[str, Any]:
    """Raw ``data`` payload for ``event`` (a fresh copy on every call)."""
    catalog = load_sample_catalog()
    defaults = catalog["defaults"]
    event_data = catalog["events"].get(event.value) or catalog["events"]["test_event"]

    data: Dict[str, Any] = {"conversationId": defaults["conversationId"]}
    data.update(copy.deepcopy(event_data))
    data["clientData"] = copy.deepcopy(defaults["clientData"])

    if event == EventKind.TAG_ADDED:
        tags = normalize_tags(filter_tags)
        if tags:
            data["tag"] = tags[0]
            data["tags"] = tags
    return data


def build_sample_envelope(
    tenant_id: str,
    event: EventKind,
    filter_tags: Optional[Iterable[Any]] = None,
    timestamp: Optional[str] = None,
) -> EventEnvelope:
    """
    Build a realistic envelope for ``event`` without touching any store.

    Args:
        tenant_id: Tenant sending the test
        event: Event kind to simulate
        filter_tags: Trigger tags of the draft; first one becomes ``tag``
        timestamp: Override for tests

    Returns:
        EventEnvelope
    """
    return build_envelope(
        tenant_id, event, sample_event_data(event, filter_tags), timestamp=timestamp
    )


def available_variables(event: EventKind) -> Dict[str, Dict[str, str]]:
    """
    Placeholders an operator can use in templates for ``event``.

    Returns:
        Mapping of ``path`` -> ``{"description", "example"}``; examples are
        rendered from the sample payload exactly as a template would be
    """
    catalog = load_sample_catalog()
    variables = catalog.get("variables") or {}
    descriptions: Dict[str, str] = dict(variables.get("common") or {})
    descriptions.update(variables.get(event.value) or {})

    sample = build_sample_envelope(
        catalog["defaults"].get("tenant_id", "user_12345"), event
    ).template_context()

    return {
        path: {"description": description, "example": stringify(lookup_path(sample, path))}
        for path, description in descriptions.items()
    }
