"""
Single-session autopilot: generate ``articles_per_day`` posts back to back
with a short pause in between, entirely in process memory.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from autoblog_backend.core.config import settings as app_settings
from autoblog_backend.schemas.autopilot import GenerationSettings, JobStage, JobState, RunState
from autoblog_backend.services.events import EventBus, Listener
from autoblog_backend.services.scheduler_service import (
    STAGE_RUN_STATES,
    JobFactory,
    local_now,
    record_outcome,
)
from autoblog_backend.services.state_store import JobStateStore, MemoryJobStateStore, StateKeeper, overwrite_state

logger = logging.getLogger(__name__)


class SequenceRunner:
    """Same contract as ``AutopilotController``, without durable scheduling.

    Any job failure aborts the whole run (``ERROR``, then ``IDLE`` after the
    cool-down).
    """

    def __init__(
        self,
        job_factory: JobFactory,
        events: Optional[EventBus] = None,
        *,
        store: Optional[JobStateStore] = None,
        clock: Callable[[], datetime] = local_now,
        initial_delay_s: Optional[float] = None,
        pause_s: Optional[float] = None,
        cooldown_s: Optional[float] = None,
        max_log_entries: Optional[int] = None,
    ):
        self.job_factory = job_factory
        self.events = events or EventBus()
        self.clock = clock
        self.initial_delay_s = app_settings.AUTOPILOT_INITIAL_DELAY_S if initial_delay_s is None else initial_delay_s
        self.pause_s = app_settings.AUTOPILOT_SEQUENCE_PAUSE_S if pause_s is None else pause_s
        self.cooldown_s = app_settings.AUTOPILOT_COOLDOWN_S if cooldown_s is None else cooldown_s
        self.keeper = StateKeeper(
            store or MemoryJobStateStore(),
            self.events,
            max_log_entries or app_settings.AUTOPILOT_MAX_LOG_ENTRIES,
        )
        self._task: Optional[asyncio.Task] = None
        self._stopping: Optional[asyncio.Event] = None
        self._job_in_flight = False

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    async def start(self, gen: GenerationSettings) -> JobState:
        current = self.keeper.load()
        if current.running or self._job_in_flight:
            return await self.keeper.mutate(
                lambda state: state.append_log("The autopilot run is already in progress.", "info")
            )

        # A finished run may still be in its cool-down
        if self._task is not None and not self._task.done():
            self._task.cancel()

        now = self.clock()
        fresh = JobState(
            running=True,
            run_state=RunState.WAITING,
            articles_per_day=gen.articles_per_day,
            next_run_at=now + timedelta(seconds=self.initial_delay_s),
            settings=gen,
        )
        fresh.append_log(
            f"Autopilot run started. Target: {gen.articles_per_day} articles.", "system"
        )
        state = await self.keeper.mutate(lambda s: overwrite_state(s, fresh))

        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._run(gen, self._stopping))
        return state

    async def stop(self) -> JobState:
        if self._stopping is not None:
            self._stopping.set()
        in_flight = self._job_in_flight

        def apply(state: JobState):
            was_running = state.running
            state.running = False
            state.next_run_at = None
            if not in_flight:
                state.run_state = RunState.IDLE
            if was_running:
                state.append_log("Autopilot run stopped.", "system")

        return await self.keeper.mutate(apply)

    async def status(self) -> JobState:
        return self.keeper.load()

    def subscribe(self, callback: Listener) -> Callable[[], None]:
        return self.events.subscribe(callback)

    async def _pause(self, seconds: float, stopping: asyncio.Event) -> bool:
        """Sleep unless stopped first; returns True when stopped."""
        if seconds <= 0:
            return stopping.is_set()
        try:
            await asyncio.wait_for(stopping.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def _on_stage(self, stage: JobStage) -> None:
        run_state = STAGE_RUN_STATES.get(stage)
        if run_state is None:
            return

        def apply(state: JobState):
            state.run_state = run_state

        await self.keeper.mutate(apply)

    async def _run(self, gen: GenerationSettings, stopping: asyncio.Event) -> None:
        try:
            if await self._pause(self.initial_delay_s, stopping):
                return

            total = gen.articles_per_day
            for index in range(total):
                if stopping.is_set():
                    return

                await self.keeper.mutate(
                    lambda state: state.append_log(f"Generating article {index + 1} of {total}...", "system")
                )

                self._job_in_flight = True
                try:
                    outcome = await self.job_factory(self._on_stage).run(gen)
                finally:
                    self._job_in_flight = False

                today = self.clock().date()
                await self.keeper.mutate(lambda state: record_outcome(state, outcome, today))

                if index < total - 1 and not stopping.is_set():
                    pause_until = self.clock() + timedelta(seconds=self.pause_s)

                    def waiting(state: JobState):
                        state.run_state = RunState.WAITING
                        state.next_run_at = pause_until
                        state.append_log("Short pause before the next article...", "system")

                    await self.keeper.mutate(waiting)
                    if await self._pause(self.pause_s, stopping):
                        return

            if stopping.is_set():
                return

            def complete(state: JobState):
                state.running = False
                state.next_run_at = None
                state.run_state = RunState.COMPLETE
                state.append_log("Autopilot run completed.", "success")

            await self.keeper.mutate(complete)
            await self._cool_down(RunState.COMPLETE)

        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception("Autopilot run aborted")

            def failed(state: JobState):
                state.running = False
                state.next_run_at = None
                state.run_state = RunState.ERROR
                state.append_log(f"Error: {exc}", "error")

            await self.keeper.mutate(failed)
            await self._cool_down(RunState.ERROR)

        finally:
            if stopping.is_set():
                await self._settle_after_stop()

    async def _settle_after_stop(self) -> None:
        # Only a job that was in flight at stop time leaves a stage behind
        def apply(state: JobState):
            if state.running or state.run_state in (RunState.IDLE, RunState.COMPLETE, RunState.ERROR):
                return False
            state.run_state = RunState.IDLE

        await self.keeper.mutate(apply)

    async def _cool_down(self, from_state: RunState) -> None:
        await asyncio.sleep(self.cooldown_s)

        def apply(state: JobState):
            if state.running or state.run_state is not from_state:
                return False
            state.run_state = RunState.IDLE
            state.articles_generated_today = 0

        await self.keeper.mutate(apply)
