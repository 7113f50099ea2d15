"""Transcript endpoints: extract action items and optionally file them as tickets."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from meeting_tasks.api.models import (
    ActionItemResponse,
    DeliveryFailureResponse,
    DeliveryRecordResponse,
    ProcessRequest,
    ProcessResponse,
    SummaryRequest,
    SummaryResponse,
)
from meeting_tasks.errors import PipelineError
from meeting_tasks.pipeline import TranscriptPipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/transcripts")


def get_pipeline(request: Request) -> TranscriptPipeline:
    """The pipeline built once at application startup."""
    return request.app.state.pipeline


def _upstream_failure(exc: PipelineError) -> HTTPException:
    # Details stay in the logs; callers only get the reference id.
    logger.error(exc.log_message())
    return HTTPException(status_code=502, detail=exc.user_message())


@router.post("/process", response_model=ProcessResponse)
async def process_transcript(
    request: ProcessRequest,
    pipeline: TranscriptPipeline = Depends(get_pipeline),
) -> ProcessResponse:
    """Extract action items from a caption transcript.

    With ``deliver`` set, each item is also created as a work item; items
    that fail to deliver are listed under ``failures`` with a reference id.
    """
    try:
        result = await pipeline.process(
            request.captions,
            format=request.format.value,
            deliver=request.deliver,
            resolve_identities=request.resolve_identities,
        )
    except PipelineError as exc:
        raise _upstream_failure(exc) from exc

    return ProcessResponse(
        correlation_id=result.correlation_id,
        summary=result.summary,
        action_items=[ActionItemResponse.from_item(item) for item in result.action_items],
        delivered=result.delivered,
        records=[DeliveryRecordResponse.from_record(record) for record in result.records],
        failures=[DeliveryFailureResponse.from_failure(failure) for failure in result.failures],
    )


@router.post("/summary", response_model=SummaryResponse)
async def summarize_transcript(
    request: SummaryRequest,
    pipeline: TranscriptPipeline = Depends(get_pipeline),
) -> SummaryResponse:
    try:
        summary = await pipeline.summarize(request.captions, format=request.format.value)
    except PipelineError as exc:
        raise _upstream_failure(exc) from exc
    return SummaryResponse(summary=summary)
