"""Tests for response validation, deduplication and the extractor (no external APIs required)."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from meeting_tasks.errors import (
    BackendError,
    ExtractionContractError,
    PipelineError,
    create_correlation_context,
)
from meeting_tasks.extraction.backends import (
    EXTRACTION_TOOL,
    AnthropicBackend,
    GenerationRequest,
    OpenAIBackend,
)
from meeting_tasks.extraction.extractor import Extractor, part_marker
from meeting_tasks.extraction.merge import (
    SUMMARY_SEPARATOR,
    dedup_key,
    deduplicate_items,
    merge_summaries,
)
from meeting_tasks.extraction.models import UNASSIGNED, ActionItem, Priority, WorkItemType
from meeting_tasks.extraction.validation import (
    MAX_TITLE_LENGTH,
    normalize_priority,
    normalize_work_item_type,
    parse_extraction_response,
)
from meeting_tasks.pipeline_config import ExtractionPolicy, RetryPolicy
from meeting_tasks.telemetry import Telemetry

ITEM = {
    "title": "Fix login timeout bug",
    "assignedTo": "Sam",
    "type": "Bug",
    "priority": "High",
    "deadline": "tomorrow",
}


class FakeBackend:
    """Returns queued responses (or raises queued exceptions) in order."""

    def __init__(self, *responses: str | Exception) -> None:
        self.responses = list(responses)
        self.requests: list[GenerationRequest] = []

    async def generate(self, request: GenerationRequest) -> str:
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _context():
    return create_correlation_context("test.extraction")


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestParseExtractionResponse:
    def test_three_shapes_are_equivalent(self) -> None:
        ctx = _context()
        shapes = [
            json.dumps([ITEM]),
            json.dumps({"actionItems": [ITEM]}),
            json.dumps({"tasks": [ITEM]}),
        ]
        results = [parse_extraction_response(s, ctx).action_items for s in shapes]
        assert results[0] == results[1] == results[2]
        assert results[0][0].title == "Fix login timeout bug"

    def test_fields_are_normalized(self) -> None:
        result = parse_extraction_response(json.dumps({"actionItems": [ITEM], "summary": " Done. "}), _context())
        item = result.action_items[0]
        assert item.type is WorkItemType.BUG
        assert item.priority is Priority.HIGH
        assert item.assigned_to == "Sam"
        assert item.deadline == "tomorrow"
        assert result.summary == "Done."

    def test_missing_fields_get_defaults(self) -> None:
        result = parse_extraction_response(json.dumps([{"title": "Update the docs"}]), _context())
        item = result.action_items[0]
        assert item.assigned_to == UNASSIGNED
        assert item.type is WorkItemType.TASK
        assert item.priority is Priority.MEDIUM
        assert item.description == ""
        assert item.deadline is None

    def test_entries_without_title_are_dropped(self) -> None:
        raw = json.dumps([{"title": ""}, {"assignedTo": "Sam"}, "junk", {"title": "Keep me"}])
        items = parse_extraction_response(raw, _context()).action_items
        assert [i.title for i in items] == ["Keep me"]

    def test_title_is_single_line_and_truncated(self) -> None:
        raw = json.dumps([{"title": "Fix\nthe   thing " + "x" * 400}])
        title = parse_extraction_response(raw, _context()).action_items[0].title
        assert "\n" not in title
        assert len(title) <= MAX_TITLE_LENGTH
        assert title.startswith("Fix the thing x")

    def test_unexpected_shape_yields_empty_result(self) -> None:
        result = parse_extraction_response(json.dumps({"items": [ITEM]}), _context())
        assert result.action_items == []
        assert result.summary is None

    def test_scalar_json_yields_empty_result(self) -> None:
        assert parse_extraction_response("42", _context()).action_items == []

    def test_non_json_raises_contract_error(self) -> None:
        ctx = _context()
        with pytest.raises(ExtractionContractError) as exc_info:
            parse_extraction_response("Sure! Here are the items:", ctx)
        assert exc_info.value.correlation_id == ctx.correlation_id
        assert exc_info.value.raw_content == "Sure! Here are the items:"
        assert exc_info.value.retryable is False


class TestNormalizers:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("Bug", WorkItemType.BUG),
            ("defect", WorkItemType.BUG),
            ("user story", WorkItemType.USER_STORY),
            ("Feature", WorkItemType.USER_STORY),
            ("Task", WorkItemType.TASK),
            ("epic", WorkItemType.TASK),
            (None, WorkItemType.TASK),
            (7, WorkItemType.TASK),
        ],
    )
    def test_work_item_type(self, raw: object, expected: WorkItemType) -> None:
        assert normalize_work_item_type(raw) is expected

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("HIGH", Priority.HIGH),
            ("critical", Priority.HIGH),
            ("low", Priority.LOW),
            ("Medium", Priority.MEDIUM),
            ("whenever", Priority.MEDIUM),
            ("", Priority.MEDIUM),
            (None, Priority.MEDIUM),
        ],
    )
    def test_priority(self, raw: object, expected: Priority) -> None:
        assert normalize_priority(raw) is expected


# ---------------------------------------------------------------------------
# Deduplication and summary merging
# ---------------------------------------------------------------------------


class TestDeduplication:
    def test_dedup_key_ignores_case_punctuation_and_articles(self) -> None:
        assert dedup_key("Fix login bug") == dedup_key("fix the login bug!")
        assert dedup_key("Fix login bug") != dedup_key("Fix logout bug")

    def test_non_ascii_titles_stay_distinct(self) -> None:
        items = [
            ActionItem(title="修复登录超时错误"),
            ActionItem(title="部署新版本到生产环境"),
            ActionItem(title="Исправить ошибку входа"),
            ActionItem(title="исправить ошибку входа!"),
        ]
        result = deduplicate_items(items)
        assert [i.title for i in result] == ["修复登录超时错误", "部署新版本到生产环境", "Исправить ошибку входа"]
        assert dedup_key("修复登录超时错误") == "修复登录超时错误"

    def test_titles_without_letters_are_never_merged(self) -> None:
        items = [ActionItem(title="!!!"), ActionItem(title="???"), ActionItem(title="Ship it")]
        assert dedup_key("!!!") == ""
        assert len(deduplicate_items(items)) == 3

    def test_keeps_longer_description(self) -> None:
        items = [
            ActionItem(title="Fix login bug", description="short"),
            ActionItem(title="fix the login bug!", description="a much longer description"),
        ]
        result = deduplicate_items(items)
        assert len(result) == 1
        assert result[0].description == "a much longer description"

    def test_preserves_first_seen_order(self) -> None:
        items = [
            ActionItem(title="Alpha"),
            ActionItem(title="Beta"),
            ActionItem(title="alpha!", description="more detail"),
        ]
        assert [i.description for i in deduplicate_items(items)] == ["more detail", ""]
        assert len(deduplicate_items(items)) == 2

    def test_idempotent(self) -> None:
        items = [ActionItem(title="One"), ActionItem(title="one."), ActionItem(title="Two")]
        once = deduplicate_items(items)
        assert deduplicate_items(once) == once


class TestMergeSummaries:
    def test_empty(self) -> None:
        consolidate = AsyncMock()
        assert asyncio.run(merge_summaries([], consolidate)) is None
        consolidate.assert_not_called()

    def test_single_summary_passes_through(self) -> None:
        consolidate = AsyncMock()
        assert asyncio.run(merge_summaries(["Only one."], consolidate)) == "Only one."
        consolidate.assert_not_called()

    def test_consolidates_multiple(self) -> None:
        consolidate = AsyncMock(return_value=" Merged. ")
        assert asyncio.run(merge_summaries(["A.", "B."], consolidate)) == "Merged."
        consolidate.assert_awaited_once_with(["A.", "B."])

    def test_falls_back_to_concatenation_on_failure(self) -> None:
        consolidate = AsyncMock(side_effect=RuntimeError("backend down"))
        merged = asyncio.run(merge_summaries(["A.", "B."], consolidate))
        assert merged == SUMMARY_SEPARATOR.join(["A.", "B."])


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------


class TestExtractor:
    def test_single_chunk_extraction(self) -> None:
        backend = FakeBackend(json.dumps({"actionItems": [ITEM], "summary": "Login fix agreed."}))
        extractor = Extractor(backend, tracker=Telemetry())

        result = asyncio.run(extractor.extract("Sam: I will fix the login timeout bug by tomorrow."))

        assert len(result.action_items) == 1
        assert result.summary == "Login fix agreed."
        request = backend.requests[0]
        assert request.response_format == "json"
        assert "[Part" not in request.user_content
        assert "Sam: I will fix the login timeout bug" in request.user_content

    def test_empty_transcript_makes_no_calls(self) -> None:
        backend = FakeBackend()
        result = asyncio.run(Extractor(backend, tracker=Telemetry()).extract("   "))
        assert result.action_items == []
        assert backend.requests == []

    def test_multi_chunk_markers_order_and_dedup(self) -> None:
        backend = FakeBackend(
            json.dumps({"actionItems": [{"title": "Fix login bug"}], "summary": "Part one."}),
            json.dumps({"actionItems": [{"title": "fix the login bug!"}], "summary": "Part two."}),
            "Both parts covered the login bug.",
        )
        extractor = Extractor(
            backend,
            policy=ExtractionPolicy(max_chunk_length=40),
            tracker=Telemetry(),
        )
        transcript = "Sam: I will fix the login bug. Jess: Please fix the login bug soon."

        result = asyncio.run(extractor.extract(transcript))

        assert len(result.action_items) == 1
        assert result.summary == "Both parts covered the login bug."
        assert backend.requests[0].user_content.split("\n\n", 1)[1].startswith(part_marker(0, 2))
        assert part_marker(1, 2) in backend.requests[1].user_content
        assert backend.requests[2].response_format == "text"

    def test_retries_transient_failures(self) -> None:
        backend = FakeBackend(
            BackendError("Service unavailable", status_code=503),
            BackendError("Service unavailable", status_code=503),
            json.dumps([ITEM]),
        )
        sleep = RecordingSleep()
        extractor = Extractor(
            backend,
            retry=RetryPolicy(max_attempts=3, base_delay=1.0, jitter=0.0),
            tracker=Telemetry(),
            sleep=sleep,
        )

        result = asyncio.run(extractor.extract("Sam: fix the bug."))

        assert len(backend.requests) == 3
        assert len(result.action_items) == 1
        assert sleep.delays == [1.0, 2.0]

    def test_exhausted_retries_raise_pipeline_error(self) -> None:
        backend = FakeBackend(*[BackendError("unavailable", status_code=503)] * 3)
        extractor = Extractor(
            backend,
            retry=RetryPolicy(max_attempts=3, jitter=0.0),
            tracker=Telemetry(),
            sleep=RecordingSleep(),
        )
        ctx = create_correlation_context("pipeline.process_transcript")

        with pytest.raises(PipelineError) as exc_info:
            asyncio.run(extractor.extract("Sam: fix the bug.", ctx))

        assert exc_info.value.correlation_id == ctx.correlation_id
        assert len(backend.requests) == 3

    def test_non_retryable_failure_is_not_retried(self) -> None:
        backend = FakeBackend(BackendError("bad request", status_code=400))
        sleep = RecordingSleep()
        extractor = Extractor(backend, tracker=Telemetry(), sleep=sleep)

        with pytest.raises(PipelineError):
            asyncio.run(extractor.extract("Sam: fix the bug."))

        assert len(backend.requests) == 1
        assert sleep.delays == []

    def test_contract_violation_is_not_retried(self) -> None:
        backend = FakeBackend("not json at all")
        extractor = Extractor(backend, tracker=Telemetry(), sleep=RecordingSleep())

        with pytest.raises(ExtractionContractError):
            asyncio.run(extractor.extract("Sam: fix the bug."))

        assert len(backend.requests) == 1

    def test_backend_calls_are_tracked(self) -> None:
        tracker = Telemetry()
        extractor = Extractor(FakeBackend(json.dumps([ITEM])), tracker=tracker)
        asyncio.run(extractor.extract("Sam: fix the bug."))
        assert tracker.metrics_summary()["extraction.backend_call.success"]["count"] == 1
        assert tracker.metrics_summary()["extraction.backend_call.duration"]["count"] == 1

    def test_rate_limited_calls_are_counted(self) -> None:
        tracker = Telemetry()
        backend = FakeBackend(BackendError("slow down", status_code=429), json.dumps([ITEM]))
        extractor = Extractor(
            backend,
            retry=RetryPolicy(max_attempts=2, jitter=0.0),
            tracker=tracker,
            sleep=RecordingSleep(),
        )
        asyncio.run(extractor.extract("Sam: fix the bug."))
        assert tracker.metrics_summary()["rate_limit.hit"]["count"] == 1
        assert tracker.metrics_summary()["extraction.backend_call.success"]["count"] == 1

    def test_summarize_meeting(self) -> None:
        backend = FakeBackend("  - Decided to ship Friday  ")
        summary = asyncio.run(Extractor(backend, tracker=Telemetry()).summarize_meeting("Sam: ship Friday."))
        assert summary == "- Decided to ship Friday"
        assert backend.requests[0].response_format == "text"


# ---------------------------------------------------------------------------
# Backend adapters
# ---------------------------------------------------------------------------


class TestAnthropicBackend:
    def test_close_closes_sdk_client(self) -> None:
        client = MagicMock()
        client.close = AsyncMock()
        asyncio.run(AnthropicBackend(client, "claude-test").close())
        client.close.assert_awaited_once()

    def test_json_mode_forces_tool_and_returns_its_input(self) -> None:
        tool_block = MagicMock()
        tool_block.type = "tool_use"
        tool_block.input = {"actionItems": [ITEM]}
        response = MagicMock()
        response.content = [tool_block]
        client = MagicMock()
        client.messages.create = AsyncMock(return_value=response)

        backend = AnthropicBackend(client, "claude-test")
        text = asyncio.run(backend.generate(GenerationRequest("system", "user")))

        assert json.loads(text) == {"actionItems": [ITEM]}
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["tool_choice"] == {"type": "tool", "name": EXTRACTION_TOOL["name"]}
        assert kwargs["system"] == "system"

    def test_text_mode_joins_text_blocks(self) -> None:
        block = MagicMock()
        block.type = "text"
        block.text = "A summary."
        response = MagicMock()
        response.content = [block]
        client = MagicMock()
        client.messages.create = AsyncMock(return_value=response)

        text = asyncio.run(
            AnthropicBackend(client, "claude-test").generate(
                GenerationRequest("system", "user", response_format="text")
            )
        )

        assert text == "A summary."
        assert "tools" not in client.messages.create.call_args.kwargs


class TestOpenAIBackend:
    def test_close_closes_sdk_client(self) -> None:
        client = MagicMock()
        client.close = AsyncMock()
        asyncio.run(OpenAIBackend(client, "gpt-test").close())
        client.close.assert_awaited_once()

    def test_json_mode(self) -> None:
        completion = MagicMock()
        completion.choices = [MagicMock()]
        completion.choices[0].message.content = '{"actionItems": []}'
        client = MagicMock()
        client.chat.completions.create = AsyncMock(return_value=completion)

        text = asyncio.run(OpenAIBackend(client, "gpt-test").generate(GenerationRequest("system", "user")))

        assert text == '{"actionItems": []}'
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["messages"][0] == {"role": "system", "content": "system"}

    def test_empty_choices_in_json_mode(self) -> None:
        completion = MagicMock()
        completion.choices = []
        client = MagicMock()
        client.chat.completions.create = AsyncMock(return_value=completion)

        text = asyncio.run(OpenAIBackend(client, "gpt-test").generate(GenerationRequest("system", "user")))

        assert text == "{}"
