"""Parse and sanitize raw extraction responses into :class:`ExtractionResult`.

Backend output drifts between shapes, so three are accepted: a bare array
of items, ``{"actionItems": [...]}`` and ``{"tasks": [...]}``.  Any other
well-formed JSON yields an empty result and a warning.  Text that is not
JSON at all is a contract violation and raises.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from meeting_tasks.errors import CorrelationContext, ExtractionContractError
from meeting_tasks.extraction.models import (
    UNASSIGNED,
    ActionItem,
    ExtractionResult,
    Priority,
    WorkItemType,
)

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 255

_BUG_SYNONYMS = frozenset({"bug", "defect", "fix"})
_STORY_SYNONYMS = frozenset({"user story", "userstory", "story", "feature"})
_HIGH_SYNONYMS = frozenset({"high", "critical", "urgent", "1"})
_LOW_SYNONYMS = frozenset({"low", "minor", "3"})

_WHITESPACE_RE = re.compile(r"\s+")


def _normalized_key(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip().lower()


def normalize_work_item_type(value: Any) -> WorkItemType:
    """Collapse free-text type names onto the enum; unknown values are tasks."""
    key = _normalized_key(value)
    if key in _BUG_SYNONYMS:
        return WorkItemType.BUG
    if key in _STORY_SYNONYMS:
        return WorkItemType.USER_STORY
    return WorkItemType.TASK


def normalize_priority(value: Any) -> Priority:
    """Collapse free-text priorities onto the enum; unknown values are medium."""
    key = _normalized_key(value)
    if key in _HIGH_SYNONYMS:
        return Priority.HIGH
    if key in _LOW_SYNONYMS:
        return Priority.LOW
    return Priority.MEDIUM


def sanitize_title(title: str) -> str:
    """Single-line, whitespace-collapsed, at most 255 characters."""
    return _WHITESPACE_RE.sub(" ", title).strip()[:MAX_TITLE_LENGTH].rstrip()


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _validate_item(raw: Any) -> ActionItem | None:
    if not isinstance(raw, dict):
        return None
    title = raw.get("title")
    if not isinstance(title, str) or not title.strip():
        return None

    return ActionItem(
        title=sanitize_title(title),
        assigned_to=_optional_text(raw.get("assignedTo")) or UNASSIGNED,
        type=normalize_work_item_type(raw.get("type")),
        priority=normalize_priority(raw.get("priority")),
        description=_optional_text(raw.get("description")) or "",
        deadline=_optional_text(raw.get("deadline")),
    )


def _locate_items(parsed: Any) -> tuple[list[Any], str | None] | None:
    if isinstance(parsed, list):
        return parsed, None
    if isinstance(parsed, dict):
        summary = _optional_text(parsed.get("summary"))
        for key in ("actionItems", "tasks"):
            if isinstance(parsed.get(key), list):
                return parsed[key], summary
    return None


def parse_extraction_response(content: str, context: CorrelationContext) -> ExtractionResult:
    """Validate raw backend text into an :class:`ExtractionResult`.

    Raises:
        ExtractionContractError: If *content* is not valid JSON.
    """
    try:
        parsed = json.loads(content)
    except (json.JSONDecodeError, TypeError) as exc:
        logger.error(
            "[%s] Failed to parse extraction response: %s",
            context.correlation_id,
            content,
        )
        raise ExtractionContractError(
            "Failed to parse extraction response as JSON", context, raw_content=content
        ) from exc

    located = _locate_items(parsed)
    if located is None:
        logger.warning(
            "[%s] Unexpected extraction response shape: %s",
            context.correlation_id,
            type(parsed).__name__,
        )
        return ExtractionResult()

    raw_items, summary = located
    items = [item for item in (_validate_item(raw) for raw in raw_items) if item is not None]
    dropped = len(raw_items) - len(items)
    if dropped:
        logger.debug("[%s] Dropped %d entries without a title", context.correlation_id, dropped)

    return ExtractionResult(action_items=items, summary=summary)
