"""Data models for caption ingestion."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class CaptionSegment:
    """One attributed run of caption text."""

    speaker: str | None
    text: str


@dataclass
class CaptionDocument:
    """Ordered caption segments; produced by the parser, consumed immediately."""

    segments: list[CaptionSegment] = field(default_factory=list)

    @property
    def speakers(self) -> list[str]:
        """Distinct speakers in order of first appearance."""
        seen: list[str] = []
        for seg in self.segments:
            if seg.speaker and seg.speaker not in seen:
                seen.append(seg.speaker)
        return seen

    def __len__(self) -> int:
        return len(self.segments)
