"""
Stage runner tests: timeouts and failure policies.
"""
import asyncio

import pytest

from observability.event_store import event_store
from voice_pipeline.errors import GenerationError, InvalidAudio, RetrievalError, SynthesisError, TranscriptionError
from voice_pipeline.observability import TurnObserver
from voice_pipeline.stages import FailurePolicy, OutcomeStatus, Stage, run_stage

SESSION = "5e0c2a3b-7f1d-4c6e-8a9b-0d1e2f3a4b5c"


def observer() -> TurnObserver:
    return TurnObserver(SESSION, turn_id="turn_stages")


async def ok():
    return "value"


async def slow():
    await asyncio.sleep(1)
    return "too late"


async def boom():
    raise RuntimeError("provider down")


@pytest.mark.asyncio
async def test_success_outcome():
    stage = Stage("generation", FailurePolicy.MANDATORY, 1.0, GenerationError)

    outcome = await run_stage(stage, ok, observer())

    assert outcome.ok
    assert outcome.value == "value"
    assert outcome.error is None
    assert event_store.query(session_id=SESSION, event_type="stage.completed")[0]["stage"] == "generation"


@pytest.mark.asyncio
async def test_mandatory_timeout_raises_stage_error():
    stage = Stage("generation", FailurePolicy.MANDATORY, 0.01, GenerationError)

    with pytest.raises(GenerationError) as exc_info:
        await run_stage(stage, slow, observer())

    assert exc_info.value.reason == "timeout"
    assert event_store.query(session_id=SESSION, event_type="stage.failed")


@pytest.mark.asyncio
async def test_mandatory_keeps_underlying_reason():
    async def invalid():
        raise InvalidAudio("bad wav")

    stage = Stage("transcription", FailurePolicy.MANDATORY, 1.0, TranscriptionError)

    with pytest.raises(TranscriptionError) as exc_info:
        await run_stage(stage, invalid, observer())

    assert exc_info.value.reason == "invalid_audio"
    assert isinstance(exc_info.value.__cause__, InvalidAudio)


@pytest.mark.asyncio
async def test_unexpected_exception_is_internal_error():
    stage = Stage("generation", FailurePolicy.MANDATORY, 1.0, GenerationError)

    with pytest.raises(GenerationError) as exc_info:
        await run_stage(stage, boom, observer())

    assert exc_info.value.reason == "internal_error"


@pytest.mark.asyncio
async def test_best_effort_uses_fallback():
    stage = Stage("retrieval", FailurePolicy.BEST_EFFORT, 0.01, RetrievalError)

    outcome = await run_stage(stage, slow, observer(), fallback=[])

    assert outcome.status is OutcomeStatus.SUPPRESSED
    assert outcome.value == []
    assert outcome.error.reason == "timeout"
    suppressed = event_store.query(session_id=SESSION, event_type="stage.suppressed")
    assert suppressed[0]["severity"] == "warn"


@pytest.mark.asyncio
async def test_degraded_reports_failure():
    stage = Stage("synthesis", FailurePolicy.DEGRADED, 1.0, SynthesisError)

    outcome = await run_stage(stage, boom, observer())

    assert outcome.status is OutcomeStatus.FAILED
    assert not outcome.ok
    assert outcome.value is None
    assert isinstance(outcome.error, SynthesisError)


@pytest.mark.asyncio
async def test_stage_error_passes_through_unchanged():
    original = SynthesisError("quota", reason="provider_error")

    async def fail():
        raise original

    stage = Stage("synthesis", FailurePolicy.DEGRADED, 1.0, SynthesisError)
    outcome = await run_stage(stage, fail, observer())

    assert outcome.error is original


@pytest.mark.asyncio
async def test_cancellation_is_not_absorbed():
    stage = Stage("retrieval", FailurePolicy.BEST_EFFORT, 5.0, RetrievalError)

    task = asyncio.create_task(run_stage(stage, slow, observer(), fallback=[]))
    await asyncio.sleep(0.01)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
