"""Run a caption file through extraction and, optionally, ticket creation."""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from meeting_tasks.config import get_settings
from meeting_tasks.errors import PipelineError
from meeting_tasks.ingestion.parsers import normalize_transcript
from meeting_tasks.pipeline import ProcessResult, open_pipeline
from meeting_tasks.telemetry import configure_logging

PREVIEW_LENGTH = 500


def print_result(result: ProcessResult) -> None:
    print(f"\nCorrelation ID: {result.correlation_id}")
    print(f"\nSummary:\n  {result.summary or '(none)'}")

    print(f"\nAction items ({len(result.action_items)}):")
    for i, item in enumerate(result.action_items, start=1):
        print(f"  {i}. [{item.type.value}/{item.priority.value}] {item.title}")
        print(f"     Assigned to: {item.assigned_to}")
        if item.deadline:
            print(f"     Deadline: {item.deadline}")

    if not result.delivered:
        return

    print(f"\nCreated {len(result.records)} work item(s):")
    for record in result.records:
        assignee = record.assignee_resolution.display_label() if record.assignee_resolution else "-"
        print(f"  #{record.id} {record.title} -> {assignee}")
        print(f"     {record.url}")

    if result.failures:
        print(f"\nFailed to create {len(result.failures)} work item(s):")
        for failure in result.failures:
            print(f"  {failure.item.title} (Reference ID: {failure.correlation_id})")


async def process_file(path: Path, format: str, create: bool, resolve: bool) -> int:
    content = path.read_text(encoding="utf-8")
    normalized = normalize_transcript(content, format)
    print(f"Normalized transcript ({len(normalized)} chars):")
    print(normalized[:PREVIEW_LENGTH] + ("..." if len(normalized) > PREVIEW_LENGTH else ""))

    async with open_pipeline() as pipeline:
        try:
            result = await pipeline.process(content, format=format, deliver=create, resolve_identities=resolve)
        except PipelineError as exc:
            print(f"\n{exc.user_message()}", file=sys.stderr)
            return 1

    print_result(result)
    return 0 if not result.failures else 2


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("path", type=Path)
    parser.add_argument("--format", default="vtt", choices=["vtt", "text"])
    parser.add_argument("--create", action="store_true", help="create work items for extracted tasks")
    parser.add_argument("--no-resolve", action="store_true", help="skip directory lookups for assignees")
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(settings.log_level, json_output=settings.log_json)
    sys.exit(asyncio.run(process_file(args.path, args.format, args.create, not args.no_resolve)))
