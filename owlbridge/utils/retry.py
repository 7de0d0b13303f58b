"""Retry and polling policies for outbound calls.

Each call attempt yields an explicit outcome (``Ok``, ``Retryable`` or
``Fatal``). The wrappers below decide what to do from the tag alone.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar, Union

import httpx

from ..config import PollConfig, RetryConfig
from ..contracts import RunDone, RunStatus
from ..errors import OwlBridgeError, TransientNetworkError, UpstreamError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[Any]]


@dataclass
class Ok(Generic[T]):
    value: T


@dataclass
class Retryable:
    error: BaseException
    status: Optional[int] = None
    body: Any = None


@dataclass
class Fatal:
    error: BaseException
    status: Optional[int] = None
    body: Any = None


Failure = Union[Retryable, Fatal]
Outcome = Union[Ok[T], Retryable, Fatal]


@dataclass
class RetryState:
    """Per-call retry bookkeeping. Lives for one logical call only."""

    attempt: int = 0
    next_delay: float = 0.0


def compute_backoff(attempt: int, base_delay: float) -> float:
    """Exponential backoff: ``base_delay * 2 ** attempt``."""
    return base_delay * (2**attempt)


def is_retryable_status(status: Optional[int]) -> bool:
    return status is not None and 500 <= status < 600


def is_client_error(status: Optional[int]) -> bool:
    return status is not None and 400 <= status < 500


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


def classify_http_failure(exc: BaseException) -> Failure:
    """Tag an exception raised by a single httpx call.

    Network errors (no response) and 5xx statuses are retryable. Everything
    else, 4xx included, is fatal.
    """
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        body = _response_body(exc.response)
        if is_retryable_status(status):
            return Retryable(exc, status, body)
        return Fatal(exc, status, body)
    if isinstance(exc, httpx.TransportError):
        return Retryable(exc)
    return Fatal(exc)


def classify_poll_failure(exc: BaseException) -> Failure:
    """Tag a failed poll. Only a 4xx aborts the loop outright."""
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        body = _response_body(exc.response)
        if is_client_error(status):
            return Fatal(exc, status, body)
        return Retryable(exc, status, body)
    return Retryable(exc)


async def attempt_call(
    fn: Callable[[], Awaitable[T]],
    classify: Callable[[BaseException], Failure] = classify_http_failure,
) -> Outcome[T]:
    """Run ``fn`` once and wrap its result or failure in an outcome."""
    try:
        return Ok(await fn())
    except OwlBridgeError as exc:
        if isinstance(exc, TransientNetworkError):
            return Retryable(exc, exc.status_code, exc.details)
        return Fatal(exc, exc.status_code, exc.details)
    except Exception as exc:
        return classify(exc)


def upstream_error_from(failure: Failure, action: str) -> OwlBridgeError:
    """Escalate a terminal failure to an ``UpstreamError``."""
    if isinstance(failure.error, OwlBridgeError) and not isinstance(
        failure.error, TransientNetworkError
    ):
        return failure.error
    return UpstreamError(
        f"{action} failed: {failure.error}",
        status_code=failure.status or 500,
        details=failure.body,
    )


async def call_with_retry(
    attempt_fn: Callable[[], Awaitable[Outcome[T]]],
    policy: RetryConfig,
    escalate: Callable[[Failure], Exception],
    sleep: Sleep = asyncio.sleep,
    description: str = "call",
) -> T:
    """Drive ``attempt_fn`` until it succeeds or the retry bound is hit.

    ``Fatal`` outcomes are escalated immediately. ``Retryable`` outcomes are
    retried up to ``policy.max_retries`` additional times with exponential
    backoff, then escalated.
    """
    state = RetryState(attempt=0, next_delay=policy.base_delay)
    while True:
        outcome = await attempt_fn()
        if isinstance(outcome, Ok):
            return outcome.value
        if isinstance(outcome, Fatal):
            raise escalate(outcome)
        if state.attempt >= policy.max_retries:
            logger.error(
                f"{description} failed after {state.attempt + 1} attempts: {outcome.error}"
            )
            raise escalate(outcome)

        state.next_delay = compute_backoff(state.attempt, policy.base_delay)
        logger.warning(
            f"{description} attempt {state.attempt + 1} failed ({outcome.error}); "
            f"retrying in {state.next_delay:.2f}s"
        )
        await sleep(state.next_delay)
        state.attempt += 1


async def poll_until_done(
    poll_fn: Callable[[], Awaitable[Outcome[RunStatus]]],
    policy: PollConfig,
    sleep: Sleep = asyncio.sleep,
    description: str = "poll",
) -> Any:
    """Poll on a fixed interval until a terminal payload arrives.

    Returns the payload carried by the terminal status. Raises
    ``UpstreamError`` after ``policy.max_consecutive_errors`` consecutive
    failures, or at once on a ``Fatal`` (4xx) outcome.
    """
    consecutive_errors = 0
    polls = 0
    while True:
        await sleep(policy.interval)
        polls += 1
        outcome = await poll_fn()

        if isinstance(outcome, Ok):
            consecutive_errors = 0
            if isinstance(outcome.value, RunDone):
                logger.debug(f"{description} finished after {polls} polls")
                return outcome.value.payload
            continue

        if isinstance(outcome, Fatal):
            logger.error(f"{description} aborted on poll {polls}: {outcome.error}")
            raise upstream_error_from(outcome, description)

        consecutive_errors += 1
        logger.warning(
            f"{description} error {consecutive_errors}/{policy.max_consecutive_errors}: "
            f"{outcome.error}"
        )
        if consecutive_errors >= policy.max_consecutive_errors:
            raise upstream_error_from(outcome, description)
