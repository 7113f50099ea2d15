"""Data models for directory identity resolution."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class Confidence(StrEnum):
    """Strength of a match, from the lookup strategy that produced it."""

    HIGH = "high"  # exact display-name match
    MEDIUM = "medium"  # prefix match
    LOW = "low"  # fuzzy search match


@dataclass(frozen=True)
class DirectoryUser:
    """A raw directory record, before a confidence tier is attached."""

    id: str
    display_name: str
    principal_name: str
    mail: str | None = None


@dataclass(frozen=True)
class ResolvedIdentity:
    display_name: str
    principal_name: str
    mail: str | None
    id: str
    confidence: Confidence

    @classmethod
    def from_user(cls, user: DirectoryUser, confidence: Confidence) -> ResolvedIdentity:
        return cls(
            display_name=user.display_name,
            principal_name=user.principal_name,
            mail=user.mail,
            id=user.id,
            confidence=confidence,
        )


@dataclass
class ResolutionResult:
    original_name: str
    resolved: bool
    identity: ResolvedIdentity | None = None
    alternatives: list[ResolvedIdentity] = field(default_factory=list)
    error: str | None = None

    def ticket_identity(self) -> str:
        """Principal name when resolved, otherwise the original free text."""
        if self.resolved and self.identity is not None:
            return self.identity.principal_name
        return self.original_name

    def display_label(self) -> str:
        if not self.resolved or self.identity is None:
            return f"{self.original_name} (unresolved)"
        return f"{self.identity.display_name} ({self.identity.confidence.value})"
