"""Data models for structured extraction results."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

UNASSIGNED = "Unassigned"


class WorkItemType(StrEnum):
    """Category of extracted work."""

    TASK = "Task"
    BUG = "Bug"
    USER_STORY = "User Story"


class Priority(StrEnum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


@dataclass
class ActionItem:
    """A single validated action item.

    ``title`` is non-empty, single-line and at most 255 characters.
    """

    title: str
    assigned_to: str = UNASSIGNED
    type: WorkItemType = WorkItemType.TASK
    priority: Priority = Priority.MEDIUM
    description: str = ""
    deadline: str | None = None

    @property
    def is_assigned(self) -> bool:
        return bool(self.assigned_to) and self.assigned_to.lower() != UNASSIGNED.lower()


@dataclass
class ExtractionResult:
    """Items and summary extracted from one chunk or a whole transcript."""

    action_items: list[ActionItem] = field(default_factory=list)
    summary: str | None = None
