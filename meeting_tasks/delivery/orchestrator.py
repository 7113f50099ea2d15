"""Deliver validated action items to the ticketing backend.

Items are created ``batch_size`` at a time with a pause between batches.
A failed creation is recorded in the report and logged; it never cancels
its siblings or aborts the batch.
"""

from __future__ import annotations

import asyncio
import html
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime

from meeting_tasks.delivery.deadlines import parse_deadline
from meeting_tasks.delivery.models import (
    DeliveryFailure,
    DeliveryRecord,
    DeliveryReport,
    PatchOperation,
)
from meeting_tasks.delivery.ticketing import TicketingBackend
from meeting_tasks.errors import (
    CorrelationContext,
    create_correlation_context,
    with_error_handling,
)
from meeting_tasks.extraction.models import ActionItem, WorkItemType
from meeting_tasks.identity.models import ResolutionResult
from meeting_tasks.identity.resolver import IdentityResolver, is_unassigned
from meeting_tasks.pipeline_config import DeliveryPolicy, RetryPolicy, SprintPolicy
from meeting_tasks.telemetry import Telemetry, telemetry

logger = logging.getLogger(__name__)

# Ticketing priority: 1 = highest, 4 = lowest
PRIORITY_ORDINALS: dict[str, int] = {
    "critical": 1,
    "high": 1,
    "medium": 2,
    "normal": 2,
    "low": 3,
    "lowest": 4,
}
DEFAULT_PRIORITY_ORDINAL = 2

FIELD_TITLE = "/fields/System.Title"
FIELD_DESCRIPTION = "/fields/System.Description"
FIELD_PRIORITY = "/fields/Microsoft.VSTS.Common.Priority"
FIELD_TAGS = "/fields/System.Tags"
FIELD_ASSIGNED_TO = "/fields/System.AssignedTo"
FIELD_AREA_PATH = "/fields/System.AreaPath"
FIELD_ITERATION_PATH = "/fields/System.IterationPath"
FIELD_TARGET_DATE = "/fields/Microsoft.VSTS.Scheduling.TargetDate"


def priority_ordinal(priority: str) -> int:
    return PRIORITY_ORDINALS.get(str(priority).strip().lower(), DEFAULT_PRIORITY_ORDINAL)


def map_work_item_type(item_type: WorkItemType, policy: DeliveryPolicy) -> str:
    """Backend category name for *item_type* under the process template."""
    if item_type is WorkItemType.BUG:
        return "Bug"
    if item_type is WorkItemType.USER_STORY:
        return policy.user_story_type
    return policy.default_work_item_type


def format_description(item: ActionItem, correlation_id: str) -> str:
    """HTML body: generation notice, the item's own description, a field table."""
    parts = [
        "<div><strong>Generated from a meeting transcript</strong></div>",
        "<hr/>",
    ]
    if item.description:
        parts.append(f"<p>{html.escape(item.description)}</p>")

    parts.append("<br/><table>")
    parts.append(f"<tr><td><strong>Priority:</strong></td><td>{html.escape(item.priority.value)}</td></tr>")
    parts.append(
        f"<tr><td><strong>Original Assignee:</strong></td><td>{html.escape(item.assigned_to)}</td></tr>"
    )
    if item.deadline:
        parts.append(f"<tr><td><strong>Deadline:</strong></td><td>{html.escape(item.deadline)}</td></tr>")
    parts.append("</table>")
    parts.append("<br/><p><em>This work item was created automatically from a meeting transcript.</em></p>")
    parts.append(f'<p style="color: #888; font-size: 10px;">Correlation ID: {html.escape(correlation_id)}</p>')
    return "".join(parts)


def build_patch_document(
    item: ActionItem,
    assignee_identity: str,
    correlation_id: str,
    policy: DeliveryPolicy,
    sprint: SprintPolicy | None = None,
    now: datetime | None = None,
) -> list[PatchOperation]:
    operations = [
        PatchOperation(FIELD_TITLE, item.title),
        PatchOperation(FIELD_DESCRIPTION, format_description(item, correlation_id)),
        PatchOperation(FIELD_PRIORITY, priority_ordinal(item.priority)),
        PatchOperation(FIELD_TAGS, policy.tags),
    ]

    if not is_unassigned(assignee_identity):
        operations.append(PatchOperation(FIELD_ASSIGNED_TO, assignee_identity))
    elif policy.triage_user:
        operations.append(PatchOperation(FIELD_ASSIGNED_TO, policy.triage_user))

    if policy.area_path:
        operations.append(PatchOperation(FIELD_AREA_PATH, policy.area_path))
    if policy.iteration_path:
        operations.append(PatchOperation(FIELD_ITERATION_PATH, policy.iteration_path))

    target = parse_deadline(item.deadline, now=now, policy=sprint)
    if target is not None:
        operations.append(PatchOperation(FIELD_TARGET_DATE, target.astimezone().isoformat()))

    return operations


class DeliveryOrchestrator:
    def __init__(
        self,
        ticketing: TicketingBackend,
        resolver: IdentityResolver | None = None,
        policy: DeliveryPolicy | None = None,
        retry: RetryPolicy | None = None,
        sprint: SprintPolicy | None = None,
        tracker: Telemetry | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.ticketing = ticketing
        self.resolver = resolver
        self.policy = policy or DeliveryPolicy()
        self.retry = retry or RetryPolicy()
        self.sprint = sprint or SprintPolicy()
        self.telemetry = tracker or telemetry
        self._sleep = sleep

    async def _resolve_assignees(self, items: list[ActionItem]) -> dict[str, ResolutionResult]:
        if self.resolver is None:
            return {}
        names = [item.assigned_to for item in items if item.is_assigned]
        if not names:
            return {}
        try:
            return await self.resolver.resolve_many(names)
        except Exception:
            logger.warning("Identity resolution failed; using original assignee names", exc_info=True)
            return {}

    async def create_one(
        self,
        item: ActionItem,
        resolution: ResolutionResult | None = None,
    ) -> DeliveryRecord:
        """Create a single ticket (with retry) for *item*.

        Raises:
            PipelineError: When creation fails, tagged with this item's
                correlation id.
        """
        context = create_correlation_context(
            "delivery.create_work_item", title=item.title, type=item.type.value
        )
        assignee = resolution.ticket_identity() if resolution is not None else item.assigned_to
        if resolution is not None and resolution.resolved:
            logger.debug("Resolved assignee %r to %r", item.assigned_to, assignee)

        work_item_type = map_work_item_type(item.type, self.policy)
        operations = build_patch_document(
            item, assignee, context.correlation_id, self.policy, self.sprint
        )

        async def create() -> DeliveryRecord:
            with self.telemetry.start_timer("delivery.create_work_item"):
                created = await self.ticketing.create_work_item(work_item_type, operations)
            logger.info("[%s] Created work item #%s: %s", context.correlation_id, created.id, item.title)
            self.telemetry.track_success("delivery.create_work_item", {"type": work_item_type})
            return DeliveryRecord(
                id=created.id,
                url=created.url,
                title=item.title,
                type=work_item_type,
                correlation_id=context.correlation_id,
                assignee_resolution=resolution,
            )

        return await with_error_handling(create, context, retry=self.retry, sleep=self._sleep)

    async def deliver_all(
        self,
        items: list[ActionItem],
        resolve_identities: bool = True,
        context: CorrelationContext | None = None,
    ) -> DeliveryReport:
        """Create tickets for *items*, collecting successes and failures."""
        context = context or create_correlation_context("delivery.batch_create", count=len(items))
        logger.info("[%s] Creating %d work items", context.correlation_id, len(items))

        resolutions = await self._resolve_assignees(items) if resolve_identities else {}
        report = DeliveryReport()
        batch_size = max(1, self.policy.batch_size)

        for start in range(0, len(items), batch_size):
            batch = items[start : start + batch_size]
            outcomes = await asyncio.gather(
                *(self.create_one(item, resolutions.get(item.assigned_to)) for item in batch),
                return_exceptions=True,
            )
            for item, outcome in zip(batch, outcomes, strict=True):
                if isinstance(outcome, DeliveryRecord):
                    report.records.append(outcome)
                elif isinstance(outcome, Exception):
                    report.failures.append(DeliveryFailure(item=item, error=outcome))
                    self.telemetry.track_failure("delivery.create_work_item", type(outcome).__name__)
                    logger.error(
                        "[%s] Failed to create work item %r: %s",
                        context.correlation_id,
                        item.title,
                        outcome,
                    )
                else:
                    raise outcome

            if start + batch_size < len(items):
                await self._sleep(self.policy.batch_delay)

        if report.ok:
            logger.info(
                "[%s] Batch creation completed: %d work items created",
                context.correlation_id,
                len(report.records),
            )
        else:
            logger.warning(
                "[%s] Batch creation completed with errors: %d succeeded, %d failed",
                context.correlation_id,
                len(report.records),
                len(report.failures),
            )
        return report

    async def deliver(self, items: list[ActionItem], resolve_identities: bool = True) -> list[DeliveryRecord]:
        """Create tickets and return only the successful records."""
        report = await self.deliver_all(items, resolve_identities)
        return report.records
