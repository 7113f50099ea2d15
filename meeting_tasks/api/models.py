"""Pydantic request/response schemas for the Meeting Tasks API."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from meeting_tasks.delivery.models import DeliveryFailure, DeliveryRecord
from meeting_tasks.extraction.models import ActionItem


class TranscriptFormat(str, Enum):
    """Accepted transcript encodings."""

    VTT = "vtt"
    TEXT = "text"


class ProcessRequest(BaseModel):
    """Request body for the /api/transcripts/process endpoint."""

    captions: str = Field(min_length=1)
    format: TranscriptFormat = TranscriptFormat.VTT
    deliver: bool = False
    resolve_identities: bool = True


class SummaryRequest(BaseModel):
    """Request body for the /api/transcripts/summary endpoint."""

    captions: str = Field(min_length=1)
    format: TranscriptFormat = TranscriptFormat.VTT


class ActionItemResponse(BaseModel):
    title: str
    assigned_to: str
    type: str
    priority: str
    description: str = ""
    deadline: str | None = None

    @classmethod
    def from_item(cls, item: ActionItem) -> ActionItemResponse:
        return cls(
            title=item.title,
            assigned_to=item.assigned_to,
            type=item.type.value,
            priority=item.priority.value,
            description=item.description,
            deadline=item.deadline,
        )


class DeliveryRecordResponse(BaseModel):
    """A ticket that was created, with its resolved assignee label."""

    id: int
    url: str
    title: str
    type: str
    correlation_id: str
    assignee: str | None = None
    assignee_resolved: bool = False

    @classmethod
    def from_record(cls, record: DeliveryRecord) -> DeliveryRecordResponse:
        resolution = record.assignee_resolution
        return cls(
            id=record.id,
            url=record.url,
            title=record.title,
            type=record.type,
            correlation_id=record.correlation_id,
            assignee=resolution.display_label() if resolution is not None else None,
            assignee_resolved=bool(resolution and resolution.resolved),
        )


class DeliveryFailureResponse(BaseModel):
    """An item whose ticket could not be created.

    Only the reference id is exposed; the underlying error stays in the logs.
    """

    title: str
    reference_id: str | None = None

    @classmethod
    def from_failure(cls, failure: DeliveryFailure) -> DeliveryFailureResponse:
        return cls(title=failure.item.title, reference_id=failure.correlation_id)


class ProcessResponse(BaseModel):
    """Response body for the /api/transcripts/process endpoint."""

    correlation_id: str
    summary: str | None = None
    action_items: list[ActionItemResponse] = []
    delivered: bool = False
    records: list[DeliveryRecordResponse] = []
    failures: list[DeliveryFailureResponse] = []


class SummaryResponse(BaseModel):
    summary: str
