"""Caption normalizer: timed caption markup (WebVTT) to attributed dialogue text.

Malformed or unrecognised lines are dropped rather than rejected, so a
partially garbled caption file still yields usable dialogue.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable

from meeting_tasks.ingestion.models import CaptionDocument, CaptionSegment

logger = logging.getLogger(__name__)

TIMING_ARROW = "-->"

# <v Speaker Name> or <v.class Speaker Name>; the closing </v> is optional per WebVTT.
_VOICE_TAG_RE = re.compile(r"<v(?:\.[^\s>]+)?\s+([^>]+)>")
_VOICE_CLOSE_RE = re.compile(r"</v\s*>")
# Inline cue styling and karaoke timestamps carry no dialogue.
_CUE_MARKUP_RE = re.compile(r"</?(?:c|i|b|u|ruby|rt|lang)(?:[.\s][^>]*)?>|<\d{1,2}:\d{2}(?::\d{2})?[.,]\d{3}>")
_CUE_INDEX_RE = re.compile(r"^\d+$")
_WHITESPACE_RE = re.compile(r"\s+")


def _is_skippable(line: str) -> bool:
    """Header, comment, timing and cue-index lines are not dialogue."""
    return (
        not line
        or line.startswith("WEBVTT")
        or line.startswith("NOTE")
        or TIMING_ARROW in line
        or bool(_CUE_INDEX_RE.match(line))
    )


def _clean(text: str) -> str:
    text = _VOICE_CLOSE_RE.sub("", text)
    text = _CUE_MARKUP_RE.sub("", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def _split_voices(line: str) -> list[tuple[str | None, str]]:
    """Split one caption line into ``(speaker, text)`` runs.

    Text before the first voice tag is returned with ``speaker=None``.
    """
    runs: list[tuple[str | None, str]] = []
    matches = list(_VOICE_TAG_RE.finditer(line))
    if not matches:
        return [(None, _clean(line))]

    lead = _clean(line[: matches[0].start()])
    if lead:
        runs.append((None, lead))
    for idx, match in enumerate(matches):
        end = matches[idx + 1].start() if idx + 1 < len(matches) else len(line)
        runs.append((match.group(1).strip(), _clean(line[match.end() : end])))
    return runs


def parse_captions(content: str) -> CaptionDocument:
    """Parse caption markup into speaker-attributed segments.

    Consecutive runs from the same speaker are merged into one segment.
    Unlabelled lines continue the current segment (or open an anonymous one
    when no speaker has been seen yet).
    """
    doc = CaptionDocument()
    if not content:
        return doc

    for raw_line in content.splitlines():
        line = raw_line.strip()
        if _is_skippable(line):
            continue

        for speaker, text in _split_voices(line):
            current = doc.segments[-1] if doc.segments else None
            if speaker is None:
                if not text:
                    continue
                if current is None:
                    doc.segments.append(CaptionSegment(speaker=None, text=text))
                else:
                    current.text = f"{current.text} {text}".strip()
            elif current is not None and current.speaker == speaker:
                if text:
                    current.text = f"{current.text} {text}".strip()
            else:
                doc.segments.append(CaptionSegment(speaker=speaker, text=text))

    return doc


def render_dialogue(doc: CaptionDocument) -> str:
    """Render segments as ``Speaker: text`` runs, whitespace-collapsed."""
    parts: list[str] = []
    for seg in doc.segments:
        if seg.speaker:
            parts.append(f"\n{seg.speaker}:")
        if seg.text:
            parts.append(seg.text)
    return _WHITESPACE_RE.sub(" ", " ".join(parts)).strip()


def normalize_captions(content: str) -> str:
    """Convert raw caption markup into plain attributed dialogue text."""
    doc = parse_captions(content)
    logger.debug("Parsed %d caption segments from %d speakers", len(doc), len(doc.speakers))
    return render_dialogue(doc)


def normalize_plain_text(content: str) -> str:
    """Plain-text transcripts only need whitespace collapsing."""
    return _WHITESPACE_RE.sub(" ", content or "").strip()


def normalize_transcript(content: str, format: str) -> str:
    """Dispatch to the correct normalizer based on *format*.

    Args:
        content: Raw transcript text.
        format: ``"vtt"`` or one of ``"text"`` / ``"plain_text"`` / ``"txt"``.

    Raises:
        ValueError: If *format* is not recognized.
    """
    dispatch: dict[str, Callable[[str], str]] = {
        "vtt": normalize_captions,
        "text": normalize_plain_text,
        "plain_text": normalize_plain_text,
        "txt": normalize_plain_text,
    }

    normalizer = dispatch.get(format)
    if normalizer is None:
        msg = f"Unknown transcript format: {format!r}. Supported: {list(dispatch.keys())}"
        raise ValueError(msg)

    return normalizer(content)
