"""Action-item extraction from meeting transcripts via a text-generation backend."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from meeting_tasks.errors import (
    CorrelationContext,
    child_context,
    create_correlation_context,
    with_error_handling,
    with_retry,
)
from meeting_tasks.extraction.backends import GenerationRequest, TextGenerationBackend
from meeting_tasks.extraction.merge import deduplicate_items, merge_summaries
from meeting_tasks.extraction.models import ActionItem, ExtractionResult
from meeting_tasks.extraction.validation import parse_extraction_response
from meeting_tasks.ingestion.chunking import split_into_chunks
from meeting_tasks.pipeline_config import ExtractionPolicy, RetryPolicy
from meeting_tasks.telemetry import Telemetry, telemetry, track_operation

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """\
You are a technical project manager assistant analyzing meeting transcripts for software engineering teams.

Your task is to:
1. Identify clear, actionable TECHNICAL tasks from the conversation.
2. Determine who is responsible for each task (look for "I'll do", "assigned to", "can you", names followed by commitments).
3. Classify the type of work:
   - "Bug": defects, errors, fixes needed
   - "Task": general technical work, investigations, updates
   - "User Story": new features, user-facing changes
4. Assess priority from urgency indicators:
   - "High": ASAP, blocker, critical, urgent, breaking
   - "Medium": should, need to, important (default)
   - "Low": nice to have, eventually, when time permits

STRICT RULES:
- ONLY extract technical engineering action items (code changes, bug fixes, deployments, documentation, testing, infrastructure).
- IGNORE small talk, greetings, off-topic discussion and non-committal discussion ("we should think about..." without a commitment).
- If a task has no clear assignee, use "Unassigned".
- If a deadline is mentioned (EOD, tomorrow, next week, end of sprint, a specific date), include it verbatim.
- Titles must be specific enough to be work item titles: 5-15 words, starting with a verb when possible.

Output ONLY valid JSON with this exact structure (no markdown, no explanation):
{
  "actionItems": [
    {
      "title": "Fix authentication timeout on login page",
      "assignedTo": "Sarah",
      "type": "Bug",
      "priority": "High",
      "description": "Users see 30-second timeouts when logging in during peak hours",
      "deadline": "End of sprint"
    }
  ],
  "summary": "Brief 2-3 sentence summary of technical decisions and outcomes"
}

If no technical action items are found, return: {"actionItems": [], "summary": "No technical action items identified in this meeting."}"""

USER_PROMPT_TEMPLATE = (
    "Please analyze the following meeting transcript and extract all technical "
    "action items:\n\n{transcript}"
)

CONSOLIDATION_PROMPT = (
    "Consolidate these meeting summaries into a single 2-3 sentence technical summary."
)

MEETING_SUMMARY_PROMPT = (
    "You are a meeting summarizer. Create a concise 3-5 bullet point summary of the key "
    "technical decisions and outcomes from this meeting. Focus on what was decided, "
    "not what was discussed."
)


def part_marker(index: int, total: int) -> str:
    """Context marker prepended to chunk *index* (0-based) of *total*."""
    return f"[Part {index + 1} of {total}]"


class Extractor:
    """Turns transcript text into a merged :class:`ExtractionResult`.

    Chunks are extracted strictly in order; each chunk's backend call is
    retried on transient failures, while an unparseable response fails the
    whole extraction immediately.
    """

    def __init__(
        self,
        backend: TextGenerationBackend,
        policy: ExtractionPolicy | None = None,
        retry: RetryPolicy | None = None,
        tracker: Telemetry | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.backend = backend
        self.policy = policy or ExtractionPolicy()
        self.retry = retry or RetryPolicy()
        self.telemetry = tracker or telemetry
        self._sleep = sleep

    async def call_backend(self, transcript_text: str) -> str:
        """Issue one extraction request and return the raw response text."""
        request = GenerationRequest(
            system_instruction=SYSTEM_PROMPT,
            user_content=USER_PROMPT_TEMPLATE.format(transcript=transcript_text),
            temperature=self.policy.temperature,
            max_output_tokens=self.policy.max_output_tokens,
            response_format="json",
        )
        try:
            content = await track_operation(
                "extraction.backend_call", lambda: self.backend.generate(request), tracker=self.telemetry
            )
        except Exception as exc:
            if getattr(exc, "status_code", None) == 429:
                self.telemetry.track_rate_limit("extraction")
            raise
        return content or "{}"

    async def _extract_chunk(self, text: str, context: CorrelationContext) -> ExtractionResult:
        raw = await with_retry(lambda: self.call_backend(text), context, self.retry, self._sleep)
        return parse_extraction_response(raw, context)

    async def _consolidate(self, summaries: list[str]) -> str:
        request = GenerationRequest(
            system_instruction=CONSOLIDATION_PROMPT,
            user_content="\n\n".join(summaries),
            temperature=self.policy.summary_temperature,
            max_output_tokens=self.policy.consolidation_max_tokens,
            response_format="text",
        )
        return await self.backend.generate(request)

    async def extract(
        self,
        transcript_text: str,
        context: CorrelationContext | None = None,
    ) -> ExtractionResult:
        """Extract, validate and merge action items from *transcript_text*.

        Raises:
            PipelineError: On exhausted retries or an unparseable response
                (:class:`ExtractionContractError`), tagged with the
                correlation id of *context*.
        """
        operation = "extraction.extract_action_items"
        if context is None:
            context = create_correlation_context(operation, transcript_length=len(transcript_text))
        else:
            context = child_context(context, operation, transcript_length=len(transcript_text))

        async def run() -> ExtractionResult:
            logger.info(
                "[%s] Extracting action items from transcript (%d chars)",
                context.correlation_id,
                len(transcript_text),
            )
            chunks = split_into_chunks(transcript_text, self.policy.max_chunk_length)
            if not chunks:
                return ExtractionResult()

            if len(chunks) > 1:
                logger.info("[%s] Split transcript into %d chunks", context.correlation_id, len(chunks))

            items: list[ActionItem] = []
            summaries: list[str] = []
            for index, chunk in enumerate(chunks):
                text = chunk if len(chunks) == 1 else f"{part_marker(index, len(chunks))}\n\n{chunk}"
                logger.debug("[%s] Processing chunk %d/%d", context.correlation_id, index + 1, len(chunks))
                partial = await self._extract_chunk(text, context)
                items.extend(partial.action_items)
                if partial.summary:
                    summaries.append(partial.summary)

            result = ExtractionResult(
                action_items=deduplicate_items(items),
                summary=await merge_summaries(summaries, self._consolidate),
            )
            logger.info(
                "[%s] Extracted %d action items (%d before dedup)",
                context.correlation_id,
                len(result.action_items),
                len(items),
            )
            return result

        return await with_error_handling(run, context)

    async def summarize_meeting(self, transcript_text: str) -> str:
        """Bullet-point summary of decisions, without item extraction."""
        context = create_correlation_context("extraction.summarize_meeting")
        request = GenerationRequest(
            system_instruction=MEETING_SUMMARY_PROMPT,
            user_content=transcript_text[: self.policy.max_chunk_length],
            temperature=self.policy.summary_temperature,
            max_output_tokens=self.policy.summary_max_tokens,
            response_format="text",
        )

        async def run() -> str:
            text = await self.backend.generate(request)
            return text.strip() or "No summary available."

        return await with_error_handling(run, context, retry=self.retry, sleep=self._sleep)
