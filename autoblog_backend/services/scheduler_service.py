"""
Daily-paced autopilot scheduler.

A ``SchedulerHandle`` owns one APScheduler timer and the persisted JobState
for one scheduler key. Every arm re-derives the next fire time from the
stored state, so a restarted process picks the schedule up where it left
off.
"""
import logging
from datetime import date, datetime, time, timedelta
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.date import DateTrigger

from autoblog_backend.core.config import settings as app_settings
from autoblog_backend.core.errors import GenerationError, PersistenceError
from autoblog_backend.schemas.autopilot import GenerationSettings, JobStage, JobState, RunState
from autoblog_backend.services.events import EventBus
from autoblog_backend.services.generation_job import GenerationJob, JobOutcome, StageCallback
from autoblog_backend.services.state_store import JobStateStore, StateKeeper

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000

JobFactory = Callable[[StageCallback], GenerationJob]

STAGE_RUN_STATES = {
    JobStage.PICKING_TOPIC: RunState.PICKING_TOPIC,
    JobStage.WRITING: RunState.WRITING,
    JobStage.RENDERING_IMAGE: RunState.RENDERING_IMAGE,
    JobStage.PERSISTING: RunState.PERSISTING,
}


def local_now() -> datetime:
    """Current time in the autopilot's calendar zone."""
    if app_settings.AUTOPILOT_TIMEZONE:
        return datetime.now(ZoneInfo(app_settings.AUTOPILOT_TIMEZONE))
    return datetime.now().astimezone()


def interval_ms(articles_per_day: int) -> int:
    """Even spacing of ``articles_per_day`` jobs across 24 hours."""
    return DAY_MS // max(articles_per_day, 1)


def next_local_midnight(now: datetime) -> datetime:
    """Start of the next calendar day in ``now``'s zone, DST included."""
    next_day = now.date() + timedelta(days=1)
    if isinstance(now.tzinfo, ZoneInfo):
        return datetime.combine(next_day, time.min, tzinfo=now.tzinfo)
    midnight = datetime.combine(next_day, time.min)
    if now.utcoffset() == now.astimezone().utcoffset():
        # Fixed offset of the system zone: the offset at midnight may differ
        return midnight.astimezone()
    return midnight.replace(tzinfo=now.tzinfo)


def record_outcome(state: JobState, outcome: JobOutcome, today: date) -> None:
    """Count a finished job towards today's quota."""
    state.roll_over(today)
    state.articles_generated_today = min(state.articles_generated_today + 1, state.articles_per_day)
    state.last_run_date = today
    for warning in outcome.warnings:
        state.append_log(warning, "warning")
    verb = "Published" if outcome.post.status == "published" else "Saved draft"
    state.append_log(
        f"{verb}: {outcome.post.title} ({state.articles_generated_today}/{state.articles_per_day})",
        "success",
    )


class SchedulerHandle:
    """Timer and state owner for one autopilot schedule.

    Only one generation job runs at a time: ``fire`` is rejected while
    another job is in flight, and the in-flight job re-arms the timer when
    it finishes.
    """

    def __init__(
        self,
        store: JobStateStore,
        job_factory: JobFactory,
        events: EventBus,
        scheduler: BaseScheduler,
        *,
        key: str = "default",
        clock: Callable[[], datetime] = local_now,
        fire_soon_s: Optional[float] = None,
        midnight_margin_s: Optional[float] = None,
        cooldown_s: Optional[float] = None,
        max_log_entries: Optional[int] = None,
    ):
        self.job_factory = job_factory
        self.events = events
        self.scheduler = scheduler
        self.key = key
        self.clock = clock
        self.fire_soon = timedelta(seconds=app_settings.AUTOPILOT_FIRE_SOON_S if fire_soon_s is None else fire_soon_s)
        self.midnight_margin = timedelta(
            seconds=app_settings.AUTOPILOT_MIDNIGHT_MARGIN_S if midnight_margin_s is None else midnight_margin_s
        )
        self.cooldown = timedelta(seconds=app_settings.AUTOPILOT_COOLDOWN_S if cooldown_s is None else cooldown_s)
        self.keeper = StateKeeper(
            store, events, max_log_entries or app_settings.AUTOPILOT_MAX_LOG_ENTRIES
        )
        self.timer_id = f"autopilot:{key}"
        self.cooldown_id = f"autopilot:{key}:cooldown"
        self.next_fire_at: Optional[datetime] = None
        self._job_in_flight = False

    # -- timer -------------------------------------------------------------

    @property
    def armed(self) -> bool:
        return self.scheduler.get_job(self.timer_id) is not None

    @property
    def job_in_flight(self) -> bool:
        return self._job_in_flight

    def disarm(self) -> None:
        try:
            self.scheduler.remove_job(self.timer_id)
        except JobLookupError:
            pass
        self.next_fire_at = None

    def _set_timer(self, func, run_at: datetime) -> None:
        # A negative delay (overdue slot, clock skew) fires right away
        run_at = max(run_at, self.clock())
        self.disarm()
        self.scheduler.add_job(
            func,
            trigger=DateTrigger(run_date=run_at),
            id=self.timer_id,
            name=f"Autopilot {self.key}",
            replace_existing=True,
            misfire_grace_time=None,
        )
        self.next_fire_at = run_at
        logger.info("Autopilot timer armed", extra={"key": self.key, "run_at": run_at.isoformat(), "func": func.__name__})

    # -- scheduling --------------------------------------------------------

    async def arm(self) -> Optional[JobState]:
        """Re-derive the next fire time from the stored state and arm the timer."""
        try:
            return await self._arm()
        except PersistenceError as exc:
            return await self.halt(exc)

    async def _arm(self) -> JobState:
        now = self.clock()
        plan = {}

        def apply(state: JobState):
            if not state.running:
                return False

            state.roll_over(now.date())
            if state.quota_reached:
                state.next_run_at = next_local_midnight(now)
                state.run_state = RunState.COMPLETE
                plan["run_at"] = state.next_run_at + self.midnight_margin
                plan["func"] = self.arm
                return None

            if state.next_run_at is None:
                state.next_run_at = now + self.fire_soon
            elif state.next_run_at < now:
                # Overdue slot, e.g. after a restart: fire immediately
                state.next_run_at = now
            if not self._job_in_flight:
                state.run_state = RunState.WAITING
            plan["run_at"] = state.next_run_at
            plan["func"] = self.fire
            return None

        state = await self.keeper.mutate(apply)
        if not plan:
            self.disarm()
            return state

        self._set_timer(plan["func"], plan["run_at"])
        return state

    async def resume(self) -> Optional[JobState]:
        """Re-arm after process start when the stored run is still active."""
        try:
            state = self.keeper.store.load()
        except PersistenceError:
            logger.exception("Could not load autopilot state on startup", extra={"key": self.key})
            return None

        if state is None or not state.running:
            return state

        logger.info(
            "Resuming autopilot",
            extra={
                "key": self.key,
                "generated_today": state.articles_generated_today,
                "next_run_at": state.next_run_at.isoformat() if state.next_run_at else None,
            },
        )
        return await self.arm()

    # -- job execution -----------------------------------------------------

    async def fire(self) -> Optional[JobOutcome]:
        """Timer callback: run one generation job, then re-arm."""
        if self._job_in_flight:
            logger.warning("Generation job already in flight, ignoring timer", extra={"key": self.key})
            return None

        self._job_in_flight = True
        try:
            outcome = await self._run_job()
        except PersistenceError as exc:
            await self.halt(exc)
            return None
        finally:
            self._job_in_flight = False

        await self.arm()
        return outcome

    async def _run_job(self) -> Optional[JobOutcome]:
        state = self.keeper.load()
        if not state.running:
            return None
        state.roll_over(self.clock().date())
        if state.quota_reached:
            return None

        gen = state.settings or GenerationSettings(articles_per_day=state.articles_per_day)
        position = state.articles_generated_today + 1
        logger.info("Starting generation job", extra={"key": self.key, "position": position})

        outcome = None
        error = None
        try:
            outcome = await self.job_factory(self._on_stage).run(gen)
        except GenerationError as exc:
            logger.error(f"Autopilot job failed: {exc}", extra={"key": self.key})
            error = exc
        except PersistenceError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected error in autopilot job", extra={"key": self.key})
            error = exc

        completed_at = self.clock()

        def apply(current: JobState):
            if outcome is not None:
                record_outcome(current, outcome, completed_at.date())
            else:
                current.append_log(f"Generation failed: {error}", "error")

            if current.running:
                current.next_run_at = completed_at + timedelta(milliseconds=interval_ms(current.articles_per_day))
                current.run_state = RunState.WAITING
            else:
                # Stopped while the job was in flight
                current.next_run_at = None
                current.run_state = RunState.IDLE

        await self.keeper.mutate(apply)
        return outcome

    async def _on_stage(self, stage: JobStage) -> None:
        run_state = STAGE_RUN_STATES.get(stage)
        if run_state is None:
            return

        def apply(state: JobState):
            state.run_state = run_state
            if stage is JobStage.PICKING_TOPIC:
                state.append_log(
                    f"Generating article {state.articles_generated_today + 1} of {state.articles_per_day}...",
                    "system",
                )

        await self.keeper.mutate(apply)

    # -- failure handling --------------------------------------------------

    async def halt(self, exc: Exception) -> JobState:
        """Stop the schedule after a persistence failure."""
        logger.error(f"Autopilot halted: {exc}", extra={"key": self.key})
        self.disarm()

        state = (self.keeper.last_known or JobState()).model_copy(deep=True)
        state.running = False
        state.next_run_at = None
        state.run_state = RunState.ERROR
        state.append_log(f"Autopilot halted: {exc}", "error")
        state.trim_log(self.keeper.max_log_entries)
        try:
            self.keeper.store.save(state)
        except PersistenceError:
            logger.exception("Could not record halted autopilot state", extra={"key": self.key})
        self.keeper.last_known = state.model_copy(deep=True)
        self.events.notify(state)

        try:
            self.scheduler.remove_job(self.cooldown_id)
        except JobLookupError:
            pass
        self.scheduler.add_job(
            self._end_cooldown,
            trigger=DateTrigger(run_date=self.clock() + self.cooldown),
            id=self.cooldown_id,
            replace_existing=True,
            misfire_grace_time=None,
        )
        return state

    async def _end_cooldown(self) -> None:
        def apply(state: JobState):
            if state.running or state.run_state is not RunState.ERROR:
                return False
            state.run_state = RunState.IDLE

        try:
            await self.keeper.mutate(apply)
        except PersistenceError:
            logger.exception("Could not clear autopilot error state", extra={"key": self.key})
