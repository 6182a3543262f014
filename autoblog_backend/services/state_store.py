"""
Persistence for the autopilot JobState.
"""
import asyncio
import logging
import threading
from datetime import date, datetime, timezone
from typing import Callable, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError

from autoblog_backend.core.errors import PersistenceError
from autoblog_backend.db.base import AutopilotState
from autoblog_backend.schemas.autopilot import JobState

logger = logging.getLogger(__name__)


class JobStateStore(Protocol):
    def load(self) -> Optional[JobState]:
        ...

    def save(self, state: JobState) -> None:
        ...


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SqlJobStateStore:
    """One ``autopilot_state`` row per scheduler key."""

    def __init__(self, session_factory, key: str = "default"):
        self.session_factory = session_factory
        self.key = key
        self._lock = threading.Lock()

    def load(self) -> Optional[JobState]:
        with self._lock:
            try:
                with self.session_factory() as db:
                    row = db.get(AutopilotState, self.key)
                    if row is None:
                        return None
                    return self._to_state(row)
            except SQLAlchemyError as e:
                logger.error(f"Loading autopilot state failed: {e}")
                raise PersistenceError(f"Could not load autopilot state: {e}") from e

    def save(self, state: JobState) -> None:
        with self._lock:
            try:
                with self.session_factory() as db:
                    row = db.get(AutopilotState, self.key)
                    if row is None:
                        row = AutopilotState(key=self.key)
                        db.add(row)
                    self._apply(row, state)
                    db.commit()
            except SQLAlchemyError as e:
                logger.error(f"Saving autopilot state failed: {e}")
                raise PersistenceError(f"Could not save autopilot state: {e}") from e

    @staticmethod
    def _apply(row: AutopilotState, state: JobState) -> None:
        data = state.model_dump(mode="json")
        row.schema_version = state.schema_version
        row.running = state.running
        row.run_state = state.run_state.value
        row.articles_per_day = state.articles_per_day
        row.articles_generated_today = state.articles_generated_today
        row.last_run_date = state.last_run_date.isoformat() if state.last_run_date else None
        row.next_run_at = _as_utc(state.next_run_at)
        row.settings = data["settings"]
        row.log_entries = data["log_entries"]

    @staticmethod
    def _to_state(row: AutopilotState) -> JobState:
        return JobState(
            schema_version=row.schema_version,
            running=row.running,
            run_state=row.run_state,
            articles_per_day=row.articles_per_day,
            articles_generated_today=row.articles_generated_today,
            last_run_date=date.fromisoformat(row.last_run_date) if row.last_run_date else None,
            next_run_at=_as_utc(row.next_run_at),
            settings=row.settings,
            log_entries=row.log_entries or [],
        )


class StateKeeper:
    """Serializes read-modify-persist-notify cycles on one JobState.

    ``mutate`` always re-reads the store, so callers never work from a copy
    that went stale across an ``await``.
    """

    def __init__(self, store: JobStateStore, events, max_log_entries: int):
        self.store = store
        self.events = events
        self.max_log_entries = max_log_entries
        self.lock = asyncio.Lock()
        self.last_known: Optional[JobState] = None

    def load(self) -> JobState:
        state = self.store.load() or JobState()
        self.last_known = state.model_copy(deep=True)
        return state

    async def mutate(self, fn: Callable[[JobState], Optional[bool]]) -> JobState:
        """Apply ``fn`` to a fresh copy, persist it and notify listeners.

        ``fn`` returning ``False`` leaves the stored state untouched.
        """
        async with self.lock:
            state = self.load()
            if fn(state) is False:
                return state
            state.trim_log(self.max_log_entries)
            self.store.save(state)
            self.last_known = state.model_copy(deep=True)
        self.events.notify(state)
        return state


def overwrite_state(target: JobState, source: JobState) -> None:
    """Copy every field of ``source`` onto ``target`` in place."""
    for name in JobState.model_fields:
        setattr(target, name, getattr(source, name))


class MemoryJobStateStore:
    """Process-local store; state is lost on restart."""

    def __init__(self, state: Optional[JobState] = None):
        self._state = state.model_copy(deep=True) if state else None
        self._lock = threading.Lock()

    def load(self) -> Optional[JobState]:
        with self._lock:
            return self._state.model_copy(deep=True) if self._state else None

    def save(self, state: JobState) -> None:
        with self._lock:
            self._state = state.model_copy(deep=True)
