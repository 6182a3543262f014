"""
Autopilot controller: the public start/stop/status/subscribe surface over a
``SchedulerHandle``.
"""
import logging
from datetime import timedelta
from typing import Callable, Optional

from autoblog_backend.core.config import settings as app_settings
from autoblog_backend.core.errors import PersistenceError
from autoblog_backend.schemas.autopilot import GenerationSettings, JobState, RunState
from autoblog_backend.services.events import Listener
from autoblog_backend.services.scheduler_service import SchedulerHandle
from autoblog_backend.services.state_store import overwrite_state

logger = logging.getLogger(__name__)


class AutopilotController:
    """Service for driving the daily-paced autopilot.

    None of the operations raise; failures end up in the returned state's
    ``run_state`` and log trail.
    """

    def __init__(self, handle: SchedulerHandle, initial_delay_s: Optional[float] = None):
        self.handle = handle
        self.initial_delay = timedelta(
            seconds=app_settings.AUTOPILOT_INITIAL_DELAY_S if initial_delay_s is None else initial_delay_s
        )

    async def start(self, gen: GenerationSettings) -> JobState:
        """Begin a fresh run; a no-op (apart from a log line) while a run or its last job is active."""
        now = self.handle.clock()
        in_flight = self.handle.job_in_flight
        started = {}

        def apply(state: JobState):
            if state.running:
                state.append_log("Autopilot is already running.", "info")
                return None
            if in_flight:
                # The stopped run's last job still owns this state
                state.append_log(
                    "The previous article is still being generated. Start again once it finishes.", "info"
                )
                return None

            fresh = JobState(
                running=True,
                run_state=RunState.WAITING,
                articles_per_day=gen.articles_per_day,
                articles_generated_today=0,
                last_run_date=None,
                next_run_at=now + self.initial_delay,
                settings=gen,
            )
            fresh.append_log(
                f"Autopilot started. Target: {gen.articles_per_day} articles per day.", "system"
            )
            overwrite_state(state, fresh)
            started["fresh"] = True
            return None

        try:
            state = await self.handle.keeper.mutate(apply)
        except PersistenceError as exc:
            return await self.handle.halt(exc)

        if not started:
            logger.info(
                "Autopilot start ignored, run or job still active",
                extra={"key": self.handle.key, "job_in_flight": in_flight},
            )
            return state

        logger.info(
            "Autopilot started",
            extra={"key": self.handle.key, "articles_per_day": gen.articles_per_day, "niche": gen.niche},
        )
        return await self.handle.arm() or state

    async def stop(self) -> JobState:
        """Clear the timer and mark the run stopped. An in-flight job still completes."""
        self.handle.disarm()
        in_flight = self.handle.job_in_flight

        def apply(state: JobState):
            state.running = False
            state.next_run_at = None
            if not in_flight:
                state.run_state = RunState.IDLE
            message = "Autopilot stopped."
            if in_flight:
                message += " The article in progress will still be completed."
            state.append_log(message, "system")

        try:
            state = await self.handle.keeper.mutate(apply)
        except PersistenceError as exc:
            return await self.handle.halt(exc)

        logger.info("Autopilot stopped", extra={"key": self.handle.key, "job_in_flight": in_flight})
        return state

    async def status(self) -> JobState:
        try:
            state = self.handle.keeper.store.load()
        except PersistenceError:
            logger.exception("Could not load autopilot status", extra={"key": self.handle.key})
            state = self.handle.keeper.last_known
        return state or JobState()

    def subscribe(self, callback: Listener) -> Callable[[], None]:
        return self.handle.events.subscribe(callback)
