"""Cross-chunk deduplication and summary merging."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable

from meeting_tasks.extraction.models import ActionItem

logger = logging.getLogger(__name__)

SUMMARY_SEPARATOR = " "

_FILLER_WORDS = ("the", "a", "an")


def dedup_key(title: str) -> str:
    """Case-folded title with everything but letters and digits removed.

    Letters from any script count. The articles "the", "a" and "an" are
    ignored as whole words, so "Fix the login bug!" and "fix login bug" collide.
    """
    words = [w for w in title.casefold().split() if w not in _FILLER_WORDS]
    return "".join(ch for ch in "".join(words) if ch.isalnum())


def deduplicate_items(items: Iterable[ActionItem]) -> list[ActionItem]:
    """Drop near-duplicate items, keeping the more descriptive entry.

    Output order follows the first occurrence of each key.
    """
    seen: dict[str, ActionItem] = {}
    for item in items:
        key = dedup_key(item.title)
        if not key:
            # Nothing to compare on; never merge.
            seen[f"#{len(seen)}"] = item
            continue
        existing = seen.get(key)
        if existing is None:
            seen[key] = item
        elif len(item.description or "") > len(existing.description or ""):
            seen[key] = item
    return list(seen.values())


async def merge_summaries(
    summaries: list[str],
    consolidate: Callable[[list[str]], Awaitable[str]],
) -> str | None:
    """Combine per-chunk summaries into one.

    Never raises: when *consolidate* fails (or returns nothing) the chunk
    summaries are concatenated instead.
    """
    summaries = [s for s in summaries if s]
    if not summaries:
        return None
    if len(summaries) == 1:
        return summaries[0]

    try:
        merged = await consolidate(summaries)
    except Exception:
        logger.warning("Summary consolidation failed; concatenating %d summaries", len(summaries), exc_info=True)
        return SUMMARY_SEPARATOR.join(summaries)

    return merged.strip() or SUMMARY_SEPARATOR.join(summaries)
