"""
Rule matching: which of a tenant's actions fire for one event.

Only ``tag_added`` carries a filter dimension today. A new event kind needs a
branch here only if it introduces its own filter.
"""

from typing import Any, Iterable, List, Optional, Union

from action_dispatch.domain.action import ActionConfig
from action_dispatch.domain.event import EventEnvelope, EventKind, TagAddedEventData
from action_dispatch.utils.logger import get_logger

logger = get_logger(__name__)


def _tags_match(trigger_tags: List[str], event_tags: List[str]) -> bool:
    """Empty trigger list matches any tag; otherwise case-insensitive overlap."""
    if not trigger_tags:
        return True
    wanted = {tag.casefold() for tag in trigger_tags}
    return any(tag.casefold() in wanted for tag in event_tags)


def match(
    actions: Iterable[ActionConfig],
    event: Union[EventKind, str],
    filter_tags: Optional[Iterable[Any]] = None,
) -> List[ActionConfig]:
    """
    Return the active actions subscribed to ``event``.

    Args:
        actions: Every action configured for the tenant
        event: Event kind; unknown kinds match nothing
        filter_tags: Tags carried by a tag_added event

    Returns:
        Matching actions; order is not significant
    """
    kind = EventKind.parse(event)
    if kind is None:
        logger.warning(
            "Ignoring unknown event kind",
            operation="match_actions",
            context={"event": str(event)},
        )
        return []

    event_tags = [str(tag) for tag in (filter_tags or []) if tag]
    matched: List[ActionConfig] = []

    for action in actions:
        if not action.is_active:
            continue
        if action.event != kind:
            continue
        if kind == EventKind.TAG_ADDED and not _tags_match(action.trigger_tags, event_tags):
            continue
        matched.append(action)

    logger.debug(
        f"Matched {len(matched)} action(s) for '{kind.value}'",
        operation="match_actions",
        context={"event": kind.value, "matched": len(matched), "filter_tags": event_tags},
    )
    return matched


def extract_filter_tags(envelope: EventEnvelope) -> List[str]:
    """Tags relevant to matching for ``envelope`` (empty for non-tag events)."""
    if isinstance(envelope.data, TagAddedEventData):
        return envelope.data.all_tags()
    return []
