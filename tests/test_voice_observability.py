"""
Tests for voice turn observability.

Verifies:
- Turn lifecycle events
- Correlation by turn_id
- PII marking of transcript and reply
"""
from observability.event_store import event_store
from voice_pipeline.observability import TurnObserver, new_turn_id

SESSION = "0f1e2d3c-4b5a-4697-8877-665544332211"


class FakeTimer:
    def __init__(self):
        self.value = 100.0

    def __call__(self) -> float:
        return self.value


def events(event_type=None):
    return event_store.query(session_id=SESSION, event_type=event_type)


def test_new_turn_id_format():
    turn_id = new_turn_id()
    assert turn_id.startswith("turn_")
    assert len(turn_id) == len("turn_") + 16
    assert new_turn_id() != turn_id


def test_turn_started_event(capsys):
    observer = TurnObserver(SESSION, turn_id="turn_1")
    observer.turn_started(audio_bytes=32044, history_turns=2)

    captured = capsys.readouterr()
    assert "turn.started" in captured.out
    event = events("turn.started")[0]
    assert event["audio_bytes"] == 32044
    assert event["history_turns"] == 2
    assert event["correlation_id"] == "turn_1"
    assert event["turn_id"] == "turn_1"


def test_elapsed_is_measured_from_turn_start():
    timer = FakeTimer()
    observer = TurnObserver(SESSION, now=timer)
    timer.value = 200.0
    observer.turn_started(audio_bytes=1, history_turns=0)
    timer.value = 200.75

    assert observer.elapsed_ms() == 750


def test_transcript_is_marked_pii():
    observer = TurnObserver(SESSION)
    observer.transcript_final("my address is secret")

    event = events("stt.final")[0]
    assert event["pii"] == {"contains_pii": True, "fields": ["transcript"], "handling": "ephemeral"}
    assert event["transcript_length"] == len("my address is secret")


def test_stage_events_severity():
    observer = TurnObserver(SESSION)
    observer.stage_completed("transcription", 120)
    observer.stage_suppressed("retrieval", 2000, "timeout")
    observer.stage_failed("generation", 15, "provider_error")

    severities = {e["event_type"]: e["severity"] for e in events()}
    assert severities == {
        "stage.completed": "info",
        "stage.suppressed": "warn",
        "stage.failed": "error",
    }


def test_turn_completed_and_degraded():
    timer = FakeTimer()
    observer = TurnObserver(SESSION, turn_id="turn_ok", now=timer)
    observer.turn_started(audio_bytes=1, history_turns=0)
    timer.value += 1.5
    observer.turn_completed("Hello!", degraded=False)

    completed = events("turn.completed")[0]
    assert completed["latency_ms"] == 1500
    assert completed["reply"] == "Hello!"
    assert completed["pii"]["fields"] == ["reply"]

    TurnObserver(SESSION, turn_id="turn_deg").turn_completed("Hi", degraded=True, reason="timeout")
    degraded = events("turn.degraded")[0]
    assert degraded["severity"] == "warn"
    assert degraded["reason"] == "timeout"


def test_turn_failed():
    observer = TurnObserver(SESSION, turn_id="turn_bad")
    observer.turn_failed("transcription", "invalid_audio")

    failed = events("turn.failed")[0]
    assert failed["stage"] == "transcription"
    assert failed["reason"] == "invalid_audio"
    assert failed["severity"] == "error"
