"""
HTTP tests for the posts, settings and autopilot endpoints.
"""
import asyncio
import json

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from autoblog_backend.core.errors import PersistenceError
from autoblog_backend.db.session import get_session_factory
from autoblog_backend.main import app as main_app, build_autopilot, persistence_error_handler
from autoblog_backend.routers import autopilot, posts, settings as settings_router
from autoblog_backend.routers.posts import get_post_repository
from autoblog_backend.schemas.autopilot import GenerationSettings
from autoblog_backend.services.autopilot_service import AutopilotController
from autoblog_backend.services.generation_job import GenerationJob
from autoblog_backend.services.sequence_runner import SequenceRunner


@pytest.fixture
def app(session_factory, content_client, scheduler):
    app = FastAPI()
    app.include_router(posts.router, prefix="/v1/posts")
    app.include_router(settings_router.router, prefix="/v1/settings")
    app.include_router(autopilot.router, prefix="/v1/autopilot")
    app.add_exception_handler(PersistenceError, persistence_error_handler)
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    controller, runner = build_autopilot(session_factory, scheduler, client=content_client)
    app.state.autopilot = controller
    app.state.session_runner = runner
    return app


@pytest.fixture
def http(app):
    with TestClient(app) as client:
        yield client


def test_post_lifecycle(http):
    created = http.post("/v1/posts", json={
        "title": "دليل المبتدئين",
        "content": "<p>مرحبا</p>",
        "imageUrl": "https://images.example.com/a.png",
        "status": "published",
    })
    assert created.status_code == 201
    post = created.json()["post"]
    assert post["imageUrl"] == "https://images.example.com/a.png"
    assert post["author"] == "admin"
    assert post["views"] == 0

    listed = http.get("/v1/posts").json()["posts"]
    assert [p["id"] for p in listed] == [post["id"]]
    assert http.get("/v1/posts", params={"status": "draft"}).json()["posts"] == []

    updated = http.put(f"/v1/posts/{post['id']}", json={"title": "دليل محدث", "status": "draft"})
    assert updated.status_code == 200
    assert updated.json()["post"]["title"] == "دليل محدث"
    assert updated.json()["post"]["content"] == "<p>مرحبا</p>"

    assert http.delete(f"/v1/posts/{post['id']}").status_code == 200
    assert http.get(f"/v1/posts/{post['id']}").status_code == 404
    assert http.delete(f"/v1/posts/{post['id']}").status_code == 404


def test_unknown_post_update_is_404(http):
    assert http.put("/v1/posts/missing", json={"title": "x"}).status_code == 404


def test_persistence_errors_become_500(app, http):
    class BrokenRepository:
        def list(self, status=None):
            raise PersistenceError("database is locked")

    app.dependency_overrides[get_post_repository] = lambda: BrokenRepository()

    response = http.get("/v1/posts")

    assert response.status_code == 500
    assert response.json() == {"success": False, "message": "database is locked"}


def test_settings_round_trip(http):
    assert http.get("/v1/settings").json()["settings"] is None

    saved = http.post("/v1/settings", json={"niche": "السياحة", "articlesPerDay": 4, "imageQuality": "2K"})
    assert saved.status_code == 200

    loaded = http.get("/v1/settings").json()["settings"]
    assert loaded["niche"] == "السياحة"
    assert loaded["articlesPerDay"] == 4
    assert loaded["imageQuality"] == "2K"


def test_settings_validation(http):
    assert http.post("/v1/settings", json={"articlesPerDay": 0}).status_code == 422


def test_autopilot_start_uses_saved_settings(http):
    http.post("/v1/settings", json={"niche": "الرياضة", "articlesPerDay": 4})

    started = http.post("/v1/autopilot/start").json()
    assert started["success"]
    assert started["message"] == "Autopilot started"
    assert started["state"]["running"]
    assert started["state"]["articles_per_day"] == 4
    assert started["state"]["settings"]["niche"] == "الرياضة"

    again = http.post("/v1/autopilot/start", json={"articlesPerDay": 10}).json()
    assert again["message"] == "Autopilot already running"
    assert again["state"]["articles_per_day"] == 4

    stopped = http.post("/v1/autopilot/stop").json()
    assert not stopped["state"]["running"]
    assert stopped["state"]["run_state"] == "IDLE"

    status = http.get("/v1/autopilot/status").json()
    assert not status["state"]["running"]


def test_session_run_start_and_stop(http):
    started = http.post("/v1/autopilot/session/start", json={"articlesPerDay": 2}).json()
    assert started["success"]
    assert started["state"]["articles_per_day"] == 2

    stopped = http.post("/v1/autopilot/session/stop").json()
    assert not stopped["state"]["running"]
    assert http.get("/v1/autopilot/session/status").json()["state"]["run_state"] == "IDLE"


def test_health_endpoints():
    # No context manager: startup hooks stay untouched
    client = TestClient(main_app)

    assert client.get("/health").json() == {"status": "healthy"}
    assert client.get("/").json()["version"] == "1.0.0"


class DisconnectingRequest:
    def __init__(self):
        self.disconnected = False

    async def is_disconnected(self):
        return self.disconnected


def _payload(frame):
    assert frame.startswith("data: ")
    return json.loads(frame[len("data: "):])


async def test_event_stream_sends_current_state_then_changes(make_handle):
    controller = AutopilotController(make_handle(), initial_delay_s=0)
    request = DisconnectingRequest()
    frames = autopilot._event_stream(request, controller).body_iterator

    assert _payload(await frames.__anext__())["running"] is False
    assert controller.handle.events.listener_count == 1

    pending = asyncio.ensure_future(frames.__anext__())
    await controller.start(GenerationSettings(articles_per_day=2, niche="الفضاء"))
    update = _payload(await asyncio.wait_for(pending, 1))
    assert update["running"] is True
    assert update["settings"]["articlesPerDay"] == 2

    request.disconnected = True
    await frames.aclose()
    assert controller.handle.events.listener_count == 0


async def test_session_event_stream_starts_with_idle_state(content_client, posts):
    runner = SequenceRunner(lambda on_stage: GenerationJob(content_client, posts, on_stage=on_stage))
    frames = autopilot._event_stream(DisconnectingRequest(), runner).body_iterator

    first = _payload(await frames.__anext__())

    assert first["run_state"] == "IDLE"
    await frames.aclose()
    assert runner.events.listener_count == 0
