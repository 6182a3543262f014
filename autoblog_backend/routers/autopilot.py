"""
Autopilot endpoints: the daily-paced scheduler and the single-session run.
"""
import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import StreamingResponse

from autoblog_backend.core.errors import PersistenceError
from autoblog_backend.db.session import get_session_factory
from autoblog_backend.schemas.autopilot import AutopilotResponse, GenerationSettings, JobState
from autoblog_backend.services.settings_repository import SettingsRepository

logger = logging.getLogger(__name__)

router = APIRouter()

KEEPALIVE_S = 15


def get_autopilot(request: Request):
    return request.app.state.autopilot


def get_session_runner(request: Request):
    return request.app.state.session_runner


def _resolve_settings(body: Optional[GenerationSettings], session_factory) -> GenerationSettings:
    if body is not None:
        return body
    try:
        saved = SettingsRepository(session_factory).load()
    except PersistenceError:
        logger.exception("Could not load saved settings, using defaults")
        saved = None
    return saved or GenerationSettings()


def _event_stream(request: Request, service) -> StreamingResponse:
    """Server-Sent Events feed of JobState snapshots."""
    queue: asyncio.Queue = asyncio.Queue(maxsize=100)

    def push(state: JobState) -> None:
        try:
            queue.put_nowait(state)
        except asyncio.QueueFull:
            logger.warning("Dropping autopilot event for slow client")

    async def stream():
        unsubscribe = service.subscribe(push)
        try:
            current = await service.status()
            yield f"data: {current.model_dump_json(by_alias=True)}\n\n"
            while not await request.is_disconnected():
                try:
                    state = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_S)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                yield f"data: {state.model_dump_json(by_alias=True)}\n\n"
        finally:
            unsubscribe()

    return StreamingResponse(stream(), media_type="text/event-stream")


# -- daily-paced autopilot -------------------------------------------------

@router.post("/start", response_model=AutopilotResponse)
async def start_autopilot(
    body: Optional[GenerationSettings] = Body(None),
    autopilot=Depends(get_autopilot),
    session_factory=Depends(get_session_factory),
):
    """Start the daily-paced autopilot with the given (or saved) settings."""
    was_running = (await autopilot.status()).running
    state = await autopilot.start(_resolve_settings(body, session_factory))
    if was_running:
        message = "Autopilot already running"
    elif state.running:
        message = "Autopilot started"
    else:
        message = "Previous article still in progress"
    return AutopilotResponse(success=state.running, message=message, state=state)


@router.post("/stop", response_model=AutopilotResponse)
async def stop_autopilot(autopilot=Depends(get_autopilot)):
    """Stop the autopilot; an article in progress is still completed."""
    state = await autopilot.stop()
    return AutopilotResponse(success=True, message="Autopilot stopped", state=state)


@router.get("/status", response_model=AutopilotResponse)
async def autopilot_status(autopilot=Depends(get_autopilot)):
    return AutopilotResponse(success=True, state=await autopilot.status())


@router.get("/events")
async def autopilot_events(request: Request, autopilot=Depends(get_autopilot)):
    return _event_stream(request, autopilot)


# -- single-session run ----------------------------------------------------

@router.post("/session/start", response_model=AutopilotResponse)
async def start_session(
    body: Optional[GenerationSettings] = Body(None),
    runner=Depends(get_session_runner),
    session_factory=Depends(get_session_factory),
):
    """Generate one batch of articles right away, paced by a short pause."""
    was_running = (await runner.status()).running
    state = await runner.start(_resolve_settings(body, session_factory))
    return AutopilotResponse(
        success=state.running,
        message="Run already in progress" if was_running else "Run started",
        state=state,
    )


@router.post("/session/stop", response_model=AutopilotResponse)
async def stop_session(runner=Depends(get_session_runner)):
    state = await runner.stop()
    return AutopilotResponse(success=True, message="Run stopped", state=state)


@router.get("/session/status", response_model=AutopilotResponse)
async def session_status(runner=Depends(get_session_runner)):
    return AutopilotResponse(success=True, state=await runner.status())


@router.get("/session/events")
async def session_events(request: Request, runner=Depends(get_session_runner)):
    return _event_stream(request, runner)
