"""
Ephemeral voice session store.

Each voice session holds an append-only history of (transcript, reply) turns
and lives for a fixed TTL measured from creation. Sessions are never written
to disk; the SessionReaper removes expired entries in the background.

Concurrency:
- One lock guards the session table and is held only for O(1) dict work,
  never across an await.
- sweep() evaluates entries one at a time so request traffic is not stalled.
- Callers receive immutable SessionHandle snapshots, never the live record.
"""
from __future__ import annotations

import asyncio
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple

from logging_setup import get_logger, Component
from observability.events import Component as ObsComponent, EventEmitter
from .errors import InvalidSessionId, SessionAlreadyExists, SessionNotFound

logger = get_logger(Component.SESSION_STORE)
emitter = EventEmitter(ObsComponent.SESSION_STORE)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_session_id(raw: str) -> str:
    """Session ids are caller-supplied UUIDs; return the canonical lowercase form."""
    try:
        return str(uuid.UUID(str(raw).strip()))
    except (ValueError, AttributeError, TypeError) as e:
        raise InvalidSessionId(f"Invalid voice session id: {raw!r}") from e


@dataclass(frozen=True)
class Turn:
    """One completed exchange. Immutable once appended."""

    transcript: str
    reply: str
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict:
        return {
            "transcript": self.transcript,
            "reply": self.reply,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class SessionHandle:
    """Read-only snapshot of a session handed out to callers."""

    session_id: str
    created_at: datetime
    last_activity: datetime
    expires_at: datetime
    turns: Tuple[Turn, ...] = ()


@dataclass
class VoiceSession:
    """Live session record. Only the store touches this."""

    session_id: str
    created_at: datetime
    last_activity: datetime
    expires_at: datetime
    turns: List[Turn] = field(default_factory=list)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def snapshot(self) -> SessionHandle:
        return SessionHandle(
            session_id=self.session_id,
            created_at=self.created_at,
            last_activity=self.last_activity,
            expires_at=self.expires_at,
            turns=tuple(self.turns),
        )


class SessionStore:
    """In-memory voice session table with fixed-TTL expiry."""

    def __init__(
        self,
        ttl: timedelta = timedelta(minutes=30),
        *,
        now: Callable[[], datetime] = _utcnow,
        on_evict: Optional[Callable[[str], None]] = None,
    ):
        if ttl <= timedelta(0):
            raise ValueError("ttl must be positive")
        self.ttl = ttl
        self._now = now
        self._on_evict = on_evict
        self._sessions: Dict[str, VoiceSession] = {}
        self._lock = threading.Lock()

    def _new_session(self, session_id: str, now: datetime) -> VoiceSession:
        return VoiceSession(
            session_id=session_id,
            created_at=now,
            last_activity=now,
            expires_at=now + self.ttl,
        )

    def _live(self, session_id: str, now: datetime) -> Optional[VoiceSession]:
        session = self._sessions.get(session_id)
        if session is None or session.is_expired(now):
            return None
        return session

    def create(self, session_id: str) -> SessionHandle:
        """Create a session; fails with SessionAlreadyExists if a live one holds the id."""
        session_id = normalize_session_id(session_id)
        with self._lock:
            now = self._now()
            if self._live(session_id, now) is not None:
                raise SessionAlreadyExists(f"Voice session {session_id} already exists")
            session = self._new_session(session_id, now)
            self._sessions[session_id] = session
            handle = session.snapshot()

        self._emit_created(handle)
        return handle

    def get_or_create(self, session_id: str) -> SessionHandle:
        """
        Return the live session for `session_id`, creating it if absent.

        Atomic per id: concurrent callers observe exactly one session. An
        expired entry is replaced by a fresh session, never revived.
        """
        session_id = normalize_session_id(session_id)
        created = False
        with self._lock:
            now = self._now()
            session = self._live(session_id, now)
            if session is None:
                session = self._new_session(session_id, now)
                self._sessions[session_id] = session
                created = True
            handle = session.snapshot()

        if created:
            self._emit_created(handle)
        return handle

    def get(self, session_id: str) -> SessionHandle:
        """Return the live session; expired or unknown ids raise SessionNotFound."""
        session_id = normalize_session_id(session_id)
        with self._lock:
            session = self._live(session_id, self._now())
            if session is None:
                raise SessionNotFound(f"Voice session {session_id} not found")
            return session.snapshot()

    def append_turn(self, session_id: str, turn: Turn) -> SessionHandle:
        """Append a completed turn. Expiry is fixed; only last_activity moves."""
        session_id = normalize_session_id(session_id)
        with self._lock:
            now = self._now()
            session = self._live(session_id, now)
            if session is None:
                raise SessionNotFound(f"Voice session {session_id} not found")
            session.turns.append(turn)
            session.last_activity = now
            return session.snapshot()

    def history(self, session_id: str) -> Tuple[Turn, ...]:
        return self.get(session_id).turns

    def sweep(self, now: Optional[datetime] = None) -> int:
        """
        Remove every session whose expires_at <= now. Returns the number removed.

        Only the reaper should call this; request paths rely on lazy expiry
        checks instead.
        """
        now = now or self._now()
        with self._lock:
            candidates = list(self._sessions.keys())

        removed: List[str] = []
        for session_id in candidates:
            with self._lock:
                session = self._sessions.get(session_id)
                if session is None or not session.is_expired(now):
                    continue
                del self._sessions[session_id]
            removed.append(session_id)

        for session_id in removed:
            emitter.emit("session.expired", session_id=session_id)
            if self._on_evict is not None:
                self._on_evict(session_id)

        if removed:
            logger.info("Expired voice sessions removed", removed=len(removed), remaining=len(self))
        return len(removed)

    def active_count(self) -> int:
        now = self._now()
        with self._lock:
            return sum(1 for s in self._sessions.values() if not s.is_expired(now))

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _emit_created(self, handle: SessionHandle) -> None:
        emitter.emit(
            "session.created",
            session_id=handle.session_id,
            expires_at=handle.expires_at.isoformat(),
        )


class SessionReaper:
    """
    Background task that sweeps expired sessions at a fixed interval.

    Uses only the store's public API. start() and stop() are idempotent.
    """

    def __init__(self, store: SessionStore, interval_seconds: float = 300.0):
        self.store = store
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="voice-session-reaper")
        logger.info("Session reaper started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Session reaper stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                self.store.sweep()
            except Exception as e:
                # A failed sweep is retried on the next tick
                logger.error("Session sweep failed", error=str(e), error_type=type(e).__name__)
