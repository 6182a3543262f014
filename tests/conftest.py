"""
Shared fixtures: in-memory database, fake content service, controllable clock.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from autoblog_backend.db.init_db import init_db
from autoblog_backend.schemas.autopilot import ArticleDraft, GenerationSettings, TopicResult
from autoblog_backend.services.events import EventBus
from autoblog_backend.services.generation_job import GenerationJob
from autoblog_backend.services.post_repository import PostRepository
from autoblog_backend.services.scheduler_service import SchedulerHandle
from autoblog_backend.services.state_store import SqlJobStateStore


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now

    def set(self, value: datetime) -> datetime:
        self.now = value
        return self.now


class FakeContentClient:
    """In-process stand-in for the AI content service.

    Queue exceptions in ``topic_errors`` / ``article_errors`` to fail the next
    calls; set ``gate`` to hold ``analyze_topic`` until the event is set.
    """

    def __init__(self):
        self.topic_errors: List[Exception] = []
        self.article_errors: List[Exception] = []
        self.image_error: Optional[Exception] = None
        self.image_url = "https://images.example.com/cover.png"
        self.gate: Optional[asyncio.Event] = None
        self.calls: List[str] = []
        self._topics = 0

    async def analyze_topic(self, settings: GenerationSettings) -> TopicResult:
        self.calls.append("topic")
        if self.gate is not None:
            await self.gate.wait()
        if self.topic_errors:
            raise self.topic_errors.pop(0)
        self._topics += 1
        return TopicResult(topic=f"{settings.niche} #{self._topics}", analysis="trending")

    async def write_article(self, topic: str, settings: GenerationSettings) -> ArticleDraft:
        self.calls.append("article")
        if self.article_errors:
            raise self.article_errors.pop(0)
        return ArticleDraft(
            title=f"مقال عن {topic}",
            content=f"<h2>{topic}</h2><p>...</p>",
            excerpt="ملخص",
            tags=["ai", "tech"],
            category="التكنولوجيا",
            image_prompt=f"A cinematic shot of {topic}",
        )

    async def render_image(self, image_prompt: str, quality_hint: str) -> str:
        self.calls.append("image")
        if self.image_error is not None:
            raise self.image_error
        return self.image_url


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def posts(session_factory):
    return PostRepository(session_factory)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def content_client():
    return FakeContentClient()


@pytest.fixture
def scheduler():
    # Never started: armed timers stay pending so tests can inspect them
    return AsyncIOScheduler()


@pytest.fixture
def make_handle(session_factory, posts, content_client, clock, scheduler):
    def factory(store=None, post_repository=None, key="default"):
        repo = post_repository or posts

        def job_factory(on_stage):
            return GenerationJob(content_client, repo, on_stage=on_stage, clock=clock)

        return SchedulerHandle(
            store or SqlJobStateStore(session_factory, key=key),
            job_factory,
            EventBus(),
            scheduler,
            key=key,
            clock=clock,
            fire_soon_s=5,
            midnight_margin_s=1,
            cooldown_s=8,
            max_log_entries=50,
        )

    return factory


@pytest.fixture
def wait_until():
    async def wait(predicate, timeout: float = 2.0) -> None:
        async def poll():
            while not predicate():
                await asyncio.sleep(0.001)

        await asyncio.wait_for(poll(), timeout)

    return wait
