"""
Publish/subscribe for autopilot state changes.
"""
import asyncio
import inspect
import logging
import threading
from typing import Awaitable, Callable, List, Union

from autoblog_backend.schemas.autopilot import JobState

logger = logging.getLogger(__name__)

Listener = Callable[[JobState], Union[None, Awaitable[None]]]


class EventBus:
    """Fan-out of JobState snapshots to any number of listeners.

    ``notify`` never raises: a failing listener is logged and skipped, and
    coroutine listeners are scheduled as tasks instead of awaited.
    """

    def __init__(self):
        self._listeners: List[Listener] = []
        self._lock = threading.Lock()
        self._tasks = set()

    def subscribe(self, callback: Listener) -> Callable[[], None]:
        """Register ``callback``; returns an idempotent unsubscribe function."""
        with self._lock:
            self._listeners.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                try:
                    self._listeners.remove(callback)
                except ValueError:
                    pass

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def notify(self, state: JobState) -> None:
        with self._lock:
            listeners = list(self._listeners)

        for listener in listeners:
            # Each listener gets its own copy so nobody mutates the scheduler's state
            snapshot = state.model_copy(deep=True)
            try:
                result = listener(snapshot)
                if inspect.isawaitable(result):
                    self._schedule(result)
            except Exception:  # noqa: BLE001
                logger.exception("Autopilot listener failed", extra={"listener": repr(listener)})

    def _schedule(self, awaitable) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Dropping async listener result, no running event loop")
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return

        task = asyncio.ensure_future(awaitable, loop=loop)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Async autopilot listener failed: %s", task.exception())
