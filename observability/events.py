"""
Structured JSON event emission (shared).

Used by the gateway and the voice pipeline. Every event is one JSON line on
stdout with a fixed envelope, and is also kept in the in-memory event store so
the session read API can return it.
"""

from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from logging_setup import format_latency

from .event_store import event_store


class Component(str, Enum):
    """Event source components."""

    GATEWAY = "gateway"
    VOICE_PIPELINE = "voice_pipeline"
    SESSION_STORE = "session_store"


class Severity(str, Enum):
    """Event severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


DEFAULT_PII = {"contains_pii": False, "fields": [], "handling": "none"}


def pii_block(*fields: str) -> Dict[str, Any]:
    """PII marker for events that carry user content (transcripts, replies)."""
    return {"contains_pii": True, "fields": list(fields), "handling": "ephemeral"}


class EventEmitter:
    """Emits structured JSON events."""

    # ANSI color codes for latency formatting
    ORANGE = '\033[38;5;208m'
    RESET = '\033[0m'

    def __init__(self, component: Component):
        self.component = component

    def emit(
        self,
        event_type: str,
        session_id: str,
        severity: Severity = Severity.INFO,
        correlation_id: Optional[str] = None,
        pii: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> Dict[str, Any]:
        event = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "session_id": session_id,
            "component": self.component.value,
            "event_type": event_type,
            "severity": severity.value,
            "correlation_id": correlation_id or session_id,
            "pii": pii or DEFAULT_PII,
        }

        event.update(kwargs)

        json_output = json.dumps(event, ensure_ascii=False, default=str)
        if kwargs.get("latency_ms") is not None:
            json_output = format_latency(json_output, self.ORANGE, self.RESET)

        sys.stdout.write(json_output)
        sys.stdout.write("\n")
        sys.stdout.flush()

        # Store the uncolored dict for the read API
        event_store.store(event)
        return event
