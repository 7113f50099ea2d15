"""Pipeline configuration: provider enum and immutable policy dataclasses."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from meeting_tasks.config import Settings


class LLMProvider(str, Enum):
    """Available text-generation backends."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with jitter for transient backend failures.

    Delays are in seconds.  ``enabled=False`` runs every operation once.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.2
    enabled: bool = True


@dataclass(frozen=True)
class ExtractionPolicy:
    """Request limits for the text-generation backend."""

    max_chunk_length: int = 100_000
    temperature: float = 0.3
    max_output_tokens: int = 4000
    summary_temperature: float = 0.5
    consolidation_max_tokens: int = 300
    summary_max_tokens: int = 500


@dataclass(frozen=True)
class SprintPolicy:
    """Domain convention for relative deadline phrases.

    Sprints are assumed to end on ``sprint_end_weekday`` (Monday is 0).
    """

    sprint_end_weekday: int = 4
    end_of_day: tuple[int, int, int] = (23, 59, 59)
    tomorrow_time: tuple[int, int] = (17, 0)


@dataclass(frozen=True)
class DeliveryPolicy:
    """Ticketing backend field defaults and pacing."""

    default_work_item_type: str = "Task"
    user_story_type: str = "User Story"
    area_path: str = ""
    iteration_path: str = ""
    triage_user: str = ""
    tags: str = "Meeting Tasks; AI-Generated"
    batch_size: int = 5
    batch_delay: float = 0.5


def retry_policy_from_settings(settings: Settings) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=max(1, settings.max_retries),
        base_delay=settings.retry_delay_ms / 1000.0,
        max_delay=settings.retry_max_delay_ms / 1000.0,
        jitter=settings.retry_jitter,
        enabled=settings.enable_retries,
    )


def extraction_policy_from_settings(settings: Settings) -> ExtractionPolicy:
    return ExtractionPolicy(
        max_chunk_length=settings.max_chunk_length,
        temperature=settings.llm_temperature,
        max_output_tokens=settings.llm_max_tokens,
    )


def delivery_policy_from_settings(settings: Settings) -> DeliveryPolicy:
    return DeliveryPolicy(
        default_work_item_type=settings.devops_default_work_item_type,
        user_story_type=settings.devops_user_story_type,
        area_path=settings.devops_area_path,
        iteration_path=settings.devops_iteration_path,
        triage_user=settings.devops_triage_user,
        batch_size=max(1, settings.delivery_batch_size),
        batch_delay=settings.delivery_batch_delay_ms / 1000.0,
    )
