"""Data models for work-item delivery."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from meeting_tasks.extraction.models import ActionItem
from meeting_tasks.identity.models import ResolutionResult


@dataclass(frozen=True)
class PatchOperation:
    """One JSON Patch operation in a work-item creation document."""

    path: str
    value: Any
    op: Literal["add", "remove", "replace", "move", "copy", "test"] = "add"

    def to_dict(self) -> dict[str, Any]:
        return {"op": self.op, "path": self.path, "value": self.value}


@dataclass(frozen=True)
class CreatedWorkItem:
    id: int
    url: str


@dataclass
class DeliveryRecord:
    """A ticket that was created successfully."""

    id: int
    url: str
    title: str
    type: str
    correlation_id: str
    assignee_resolution: ResolutionResult | None = None


@dataclass
class DeliveryFailure:
    item: ActionItem
    error: Exception

    @property
    def correlation_id(self) -> str | None:
        return getattr(self.error, "correlation_id", None)


@dataclass
class DeliveryReport:
    records: list[DeliveryRecord] = field(default_factory=list)
    failures: list[DeliveryFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures
