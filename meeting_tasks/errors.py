"""Correlation ids, the pipeline error taxonomy, and the shared retry wrapper.

Every pipeline-level operation runs under a :class:`CorrelationContext`.
Errors surfaced to callers are :class:`PipelineError` instances carrying the
correlation id; :meth:`PipelineError.user_message` is safe to show to end
users while the full chain is logged under the same id.
"""

from __future__ import annotations

import asyncio
import logging
import random
import re
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

import anthropic
import httpx
import openai

from meeting_tasks.pipeline_config import RetryPolicy

T = TypeVar("T")

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

_TRANSIENT_MARKERS = (
    "timeout",
    "timed out",
    "econnreset",
    "econnrefused",
    "connection reset",
    "rate limit",
    "too many requests",
    "service unavailable",
    "gateway timeout",
)

_STATUS_IN_MESSAGE_RE = re.compile(r"status[:\s]+(\d{3})", re.IGNORECASE)

_TRANSIENT_TYPES: tuple[type[BaseException], ...] = (
    httpx.TimeoutException,
    httpx.TransportError,
    asyncio.TimeoutError,
    ConnectionError,
    anthropic.APIConnectionError,
    openai.APIConnectionError,
)


@dataclass
class CorrelationContext:
    """Identifies one logical operation across log lines and errors."""

    operation_name: str
    correlation_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    started_at: float = field(default_factory=time.monotonic)
    metadata: dict[str, Any] = field(default_factory=dict)

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started_at) * 1000)


def create_correlation_context(operation_name: str, **metadata: Any) -> CorrelationContext:
    return CorrelationContext(operation_name=operation_name, metadata=metadata)


def child_context(parent: CorrelationContext, operation_name: str, **metadata: Any) -> CorrelationContext:
    """A new operation that shares *parent*'s correlation id."""
    return CorrelationContext(
        operation_name=operation_name,
        correlation_id=parent.correlation_id,
        metadata={**parent.metadata, **metadata},
    )


class PipelineError(Exception):
    """Error raised to callers, always tied to a correlation id."""

    def __init__(
        self,
        message: str,
        context: CorrelationContext,
        *,
        retryable: bool = False,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.correlation_id = context.correlation_id
        self.operation_name = context.operation_name
        self.retryable = retryable
        self.status_code = status_code

    def user_message(self) -> str:
        return f"Something went wrong. Reference ID: {self.correlation_id}"

    def log_message(self) -> str:
        return f"[{self.correlation_id}] {self.operation_name}: {self.message}"


class ExtractionContractError(PipelineError):
    """The text-generation backend returned something that is not JSON."""

    def __init__(self, message: str, context: CorrelationContext, raw_content: str) -> None:
        super().__init__(message, context, retryable=False)
        self.raw_content = raw_content


class BackendError(Exception):
    """Transport-level failure from a backend adapter."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DirectoryError(BackendError):
    """The directory service could not answer a query."""


class TicketingError(BackendError):
    """The ticketing backend rejected or mangled a creation request."""


def _status_code_of(error: BaseException) -> int | None:
    status = getattr(error, "status_code", None)
    if isinstance(status, int):
        return status
    response = getattr(error, "response", None)
    status = getattr(response, "status_code", None)
    if isinstance(status, int):
        return status
    return None


def is_retryable(error: BaseException) -> bool:
    """Classify *error* as transient (worth retrying) or terminal."""
    if isinstance(error, PipelineError):
        return error.retryable

    status = _status_code_of(error)
    if status is not None:
        return status in RETRYABLE_STATUS_CODES

    if isinstance(error, _TRANSIENT_TYPES):
        return True

    message = str(error).lower()
    if any(marker in message for marker in _TRANSIENT_MARKERS):
        return True

    match = _STATUS_IN_MESSAGE_RE.search(message)
    if match:
        return int(match.group(1)) in RETRYABLE_STATUS_CODES

    return False


def backoff_delay(
    attempt: int,
    policy: RetryPolicy,
    rand: Callable[[], float] = random.random,
) -> float:
    """Seconds to wait after failed *attempt* (1-based)."""
    exponential = policy.base_delay * (2 ** (attempt - 1))
    capped = min(exponential, policy.max_delay)
    jitter = capped * policy.jitter * (rand() - 0.5)
    return max(0.0, capped + jitter)


def log_operation_complete(
    context: CorrelationContext,
    success: bool,
    info: dict[str, Any] | None = None,
) -> None:
    status = "SUCCESS" if success else "FAILED"
    logger.info(
        "[%s] %s %s (%dms)%s",
        context.correlation_id,
        status,
        context.operation_name,
        context.elapsed_ms(),
        f" {info}" if info else "",
        extra={"correlation_id": context.correlation_id},
    )


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    context: CorrelationContext,
    policy: RetryPolicy | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Await *operation* with exponential backoff on transient failures.

    Raises:
        PipelineError: once attempts are exhausted or on a non-retryable
            failure.  Non-retryable ``PipelineError`` subclasses (such as
            :class:`ExtractionContractError`) propagate unchanged.
    """
    policy = policy or RetryPolicy()
    max_attempts = policy.max_attempts if policy.enabled else 1

    last_error: Exception | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            result = await operation()
        except PipelineError as exc:
            if not exc.retryable:
                raise
            last_error = exc
        except Exception as exc:
            last_error = exc
        else:
            if attempt > 1:
                logger.info(
                    "[%s] %s succeeded on attempt %d",
                    context.correlation_id,
                    context.operation_name,
                    attempt,
                )
            return result

        if attempt < max_attempts and is_retryable(last_error):
            delay = backoff_delay(attempt, policy)
            logger.warning(
                "[%s] %s failed (attempt %d/%d), retrying in %.2fs: %s",
                context.correlation_id,
                context.operation_name,
                attempt,
                max_attempts,
                delay,
                last_error,
            )
            await sleep(delay)
            continue

        logger.error(
            "[%s] %s failed permanently after %d attempt(s): %s",
            context.correlation_id,
            context.operation_name,
            attempt,
            last_error,
        )
        break

    assert last_error is not None
    raise PipelineError(
        str(last_error) or "Operation failed after retries",
        context,
        retryable=False,
        status_code=_status_code_of(last_error),
    ) from last_error


async def with_error_handling(
    operation: Callable[[], Awaitable[T]],
    context: CorrelationContext,
    retry: RetryPolicy | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run *operation* (optionally with retry), logging completion.

    Any failure leaves as a :class:`PipelineError` bearing *context*'s id.
    """
    try:
        if retry is not None:
            result = await with_retry(operation, context, retry, sleep)
        else:
            result = await operation()
    except PipelineError as exc:
        log_operation_complete(context, False, {"error": str(exc)})
        raise
    except Exception as exc:
        log_operation_complete(context, False, {"error": str(exc)})
        raise PipelineError(str(exc), context, status_code=_status_code_of(exc)) from exc

    log_operation_complete(context, True)
    return result
