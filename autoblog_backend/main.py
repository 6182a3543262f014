"""
FastAPI main application for the AutoBlog backend.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from apscheduler.schedulers.asyncio import AsyncIOScheduler
import logging

from autoblog_backend.core.config import settings
from autoblog_backend.core.errors import PersistenceError
from autoblog_backend.core.logging_config import configure_logging
from autoblog_backend.db.init_db import init_db
from autoblog_backend.db.session import SessionLocal
from autoblog_backend.routers import autopilot, posts, settings as settings_router
from autoblog_backend.services.autopilot_service import AutopilotController
from autoblog_backend.services.content_client import OpenAIContentClient
from autoblog_backend.services.events import EventBus
from autoblog_backend.services.generation_job import GenerationJob
from autoblog_backend.services.post_repository import PostRepository
from autoblog_backend.services.scheduler_service import SchedulerHandle
from autoblog_backend.services.sequence_runner import SequenceRunner
from autoblog_backend.services.state_store import SqlJobStateStore

logger = logging.getLogger(__name__)

# Renamed to avoid conflict with the settings router module
job_scheduler = AsyncIOScheduler()

app = FastAPI(
    title="AutoBlog Backend API",
    description="Posts, settings and the AI autopilot for the AutoBlog dashboard",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(posts.router, prefix="/v1/posts", tags=["posts"])
app.include_router(settings_router.router, prefix="/v1/settings", tags=["settings"])
app.include_router(autopilot.router, prefix="/v1/autopilot", tags=["autopilot"])


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError):
    logger.error(f"Persistence error on {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"success": False, "message": str(exc)})


def build_autopilot(session_factory, scheduler, client=None):
    """Wire the durable controller and the single-session runner."""
    client = client or OpenAIContentClient()
    post_repository = PostRepository(session_factory)

    def job_factory(on_stage):
        return GenerationJob(client, post_repository, on_stage=on_stage)

    handle = SchedulerHandle(
        SqlJobStateStore(session_factory),
        job_factory,
        EventBus(),
        scheduler,
    )
    runner = SequenceRunner(job_factory, EventBus())
    return AutopilotController(handle), runner


@app.on_event("startup")
async def startup_event():
    """Initialize database, scheduler and resume a running autopilot."""
    configure_logging()
    init_db()

    job_scheduler.start()
    logger.info("APScheduler started")

    controller, runner = build_autopilot(SessionLocal, job_scheduler)
    app.state.autopilot = controller
    app.state.session_runner = runner

    state = await controller.handle.resume()
    if state is not None and state.running:
        logger.info(f"Autopilot resumed, next run at {state.next_run_at}")


@app.on_event("shutdown")
async def shutdown_event():
    """Shutdown scheduler on application shutdown."""
    job_scheduler.shutdown(wait=False)
    logger.info("APScheduler stopped")


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": "AutoBlog Backend API", "version": "1.0.0"}


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
