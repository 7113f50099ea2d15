"""End-to-end pipeline: captions -> normalize -> extract -> deliver."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

import httpx

from meeting_tasks.config import Settings, get_settings
from meeting_tasks.delivery.models import DeliveryFailure, DeliveryRecord, DeliveryReport
from meeting_tasks.delivery.orchestrator import DeliveryOrchestrator
from meeting_tasks.delivery.ticketing import AzureDevOpsBackend
from meeting_tasks.errors import PipelineError, create_correlation_context, log_operation_complete
from meeting_tasks.extraction.backends import build_backend
from meeting_tasks.extraction.extractor import Extractor
from meeting_tasks.extraction.models import ActionItem, ExtractionResult
from meeting_tasks.identity.directory import GraphDirectory
from meeting_tasks.identity.resolver import IdentityCache, IdentityResolver
from meeting_tasks.ingestion.parsers import normalize_transcript
from meeting_tasks.pipeline_config import (
    SprintPolicy,
    delivery_policy_from_settings,
    extraction_policy_from_settings,
    retry_policy_from_settings,
)
from meeting_tasks.telemetry import Telemetry

logger = logging.getLogger(__name__)

HTTP_TIMEOUT_SECONDS = 30.0


@dataclass
class ProcessResult:
    """Everything the caller needs to render one processed transcript."""

    correlation_id: str
    summary: str | None = None
    action_items: list[ActionItem] = field(default_factory=list)
    records: list[DeliveryRecord] = field(default_factory=list)
    failures: list[DeliveryFailure] = field(default_factory=list)
    delivered: bool = False


class TranscriptPipeline:
    """Stateless per call; collaborators are injected."""

    def __init__(self, extractor: Extractor, orchestrator: DeliveryOrchestrator | None = None) -> None:
        self.extractor = extractor
        self.orchestrator = orchestrator

    async def process(
        self,
        content: str,
        format: str = "vtt",
        deliver: bool = True,
        resolve_identities: bool = True,
    ) -> ProcessResult:
        """Normalize, extract and (optionally) deliver one transcript.

        Raises:
            PipelineError: On extraction failure, with the pipeline's
                correlation id.  Per-item delivery failures are reported in
                the result instead.
        """
        context = create_correlation_context(
            "pipeline.process_transcript", format=format, length=len(content or "")
        )
        try:
            text = normalize_transcript(content, format)
            result = ProcessResult(correlation_id=context.correlation_id)
            if not text:
                logger.warning("[%s] Transcript is empty after normalization", context.correlation_id)
                log_operation_complete(context, True, {"items": 0})
                return result

            extraction: ExtractionResult = await self.extractor.extract(text, context)
            result.summary = extraction.summary
            result.action_items = extraction.action_items

            if deliver and extraction.action_items:
                if self.orchestrator is None:
                    raise PipelineError("No ticketing backend configured", context)
                report: DeliveryReport = await self.orchestrator.deliver_all(
                    extraction.action_items, resolve_identities, context
                )
                result.records = report.records
                result.failures = report.failures
                result.delivered = True
        except PipelineError:
            raise
        except Exception as exc:
            logger.exception("[%s] Transcript processing failed", context.correlation_id)
            raise PipelineError(str(exc), context) from exc

        log_operation_complete(
            context,
            True,
            {"items": len(result.action_items), "created": len(result.records), "failed": len(result.failures)},
        )
        logger.debug("[%s] Metrics: %s", context.correlation_id, self.extractor.telemetry.metrics_summary())
        return result

    async def summarize(self, content: str, format: str = "vtt") -> str:
        return await self.extractor.summarize_meeting(normalize_transcript(content, format))


def build_pipeline(
    settings: Settings,
    http_client: httpx.AsyncClient,
    cache: IdentityCache | None = None,
) -> TranscriptPipeline:
    """Wire concrete backends from *settings* around a shared HTTP client."""
    tracker = Telemetry(enabled=settings.enable_telemetry)
    retry = retry_policy_from_settings(settings)

    extractor = Extractor(
        build_backend(settings),
        policy=extraction_policy_from_settings(settings),
        retry=retry,
        tracker=tracker,
    )
    resolver = IdentityResolver(
        GraphDirectory.from_settings(settings, http_client),
        cache=cache if cache is not None else IdentityCache(ttl=settings.identity_cache_ttl_seconds),
        batch_size=settings.identity_batch_size,
        tracker=tracker,
    )
    orchestrator = DeliveryOrchestrator(
        AzureDevOpsBackend.from_settings(settings, http_client),
        resolver=resolver,
        policy=delivery_policy_from_settings(settings),
        retry=retry,
        sprint=SprintPolicy(sprint_end_weekday=settings.sprint_end_weekday),
        tracker=tracker,
    )
    return TranscriptPipeline(extractor, orchestrator)


@asynccontextmanager
async def open_pipeline(settings: Settings | None = None) -> AsyncIterator[TranscriptPipeline]:
    """Build a pipeline whose HTTP and model clients are closed on exit."""
    settings = settings or get_settings()
    async with httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS) as client:
        pipeline = build_pipeline(settings, client)
        try:
            yield pipeline
        finally:
            await pipeline.extractor.backend.close()
