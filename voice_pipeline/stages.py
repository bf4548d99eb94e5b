"""
Pipeline stage runner.

Each stage declares how its failure affects the turn:
- MANDATORY: the failure aborts the turn (raised)
- BEST_EFFORT: the failure is absorbed and a fallback value is used
- DEGRADED: the failure is reported in the outcome and the turn still succeeds

Every stage runs under its own timeout. Cancellation is never absorbed.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Generic, Optional, Type, TypeVar

from .errors import VoicePipelineError
from .observability import TurnObserver

T = TypeVar("T")


class FailurePolicy(str, Enum):
    MANDATORY = "mandatory"
    BEST_EFFORT = "best_effort"
    DEGRADED = "degraded"


class OutcomeStatus(str, Enum):
    SUCCEEDED = "succeeded"
    SUPPRESSED = "suppressed"
    FAILED = "failed"


@dataclass(frozen=True)
class Stage:
    name: str
    policy: FailurePolicy
    timeout_seconds: float
    error_cls: Type[VoicePipelineError]


@dataclass(frozen=True)
class StageOutcome(Generic[T]):
    stage: str
    status: OutcomeStatus
    value: Optional[T] = None
    error: Optional[VoicePipelineError] = None
    latency_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.status is OutcomeStatus.SUCCEEDED


def _as_stage_error(stage: Stage, exc: BaseException) -> VoicePipelineError:
    """Normalize any failure into the stage's error type, keeping the original reason."""
    if isinstance(exc, stage.error_cls):
        return exc
    if isinstance(exc, asyncio.TimeoutError):
        error = stage.error_cls(
            f"{stage.name} timed out after {stage.timeout_seconds:g}s",
            reason="timeout",
        )
    elif isinstance(exc, VoicePipelineError):
        error = stage.error_cls(str(exc), reason=exc.code)
    else:
        error = stage.error_cls(f"{stage.name} failed: {type(exc).__name__}", reason="internal_error")
    error.__cause__ = exc
    return error


async def run_stage(
    stage: Stage,
    call: Callable[[], Awaitable[T]],
    observer: TurnObserver,
    *,
    fallback: Optional[T] = None,
) -> StageOutcome[T]:
    """Run one stage under its timeout and apply its failure policy."""
    start = time.perf_counter()
    try:
        value = await asyncio.wait_for(call(), timeout=stage.timeout_seconds)
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        error = _as_stage_error(stage, exc)
        latency_ms = int((time.perf_counter() - start) * 1000)

        if stage.policy is FailurePolicy.BEST_EFFORT:
            observer.stage_suppressed(stage.name, latency_ms, error.reason)
            return StageOutcome(stage.name, OutcomeStatus.SUPPRESSED, fallback, error, latency_ms)

        observer.stage_failed(stage.name, latency_ms, error.reason)
        if stage.policy is FailurePolicy.MANDATORY:
            raise error
        return StageOutcome(stage.name, OutcomeStatus.FAILED, None, error, latency_ms)

    latency_ms = int((time.perf_counter() - start) * 1000)
    observer.stage_completed(stage.name, latency_ms)
    return StageOutcome(stage.name, OutcomeStatus.SUCCEEDED, value, None, latency_ms)
