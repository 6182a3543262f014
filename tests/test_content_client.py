"""
Tests for response normalization and the OpenAI-backed content client.
"""
import pytest

from autoblog_backend.core.config import settings
from autoblog_backend.core.errors import ConfigurationError, ImageRenderingError, TopicAnalysisError
from autoblog_backend.core.openai_client import validate_json_response
from autoblog_backend.schemas.autopilot import GenerationSettings
from autoblog_backend.services import content_client
from autoblog_backend.services.content_client import (
    DEFAULT_CATEGORY,
    DEFAULT_EXCERPT,
    OpenAIContentClient,
    _normalize_article,
    _normalize_topic,
)


def test_validate_json_strips_code_fences():
    raw = 'Here you go:\n```json\n{"topic": "الطاقة الشمسية", "analysis": "..."}\n```'

    assert validate_json_response(raw, "topic")["topic"] == "الطاقة الشمسية"


def test_validate_json_finds_object_inside_prose():
    raw = 'Sure! {"title": "T", "content": "<p>x</p>"} Hope this helps.'

    assert validate_json_response(raw)["title"] == "T"


def test_validate_json_rejects_non_objects():
    with pytest.raises(ValueError):
        validate_json_response('["a", "b"]', "tags")
    with pytest.raises(ValueError):
        validate_json_response("", "empty")


def test_topic_falls_back_to_niche():
    gen = GenerationSettings(niche="الأمن السيبراني")

    assert _normalize_topic({"topic": "  "}, gen).topic == "الأمن السيبراني"
    assert _normalize_topic({"topic": "هجمات الفدية", "analysis": 3}, gen).analysis == ""


def test_article_keys_are_matched_case_insensitively():
    raw = {
        "article": {
            "Title": "مستقبل العمل",
            "CONTENT": "<h1>مقدمة</h1><p>نص</p>",
            "Tags": "عمل, تقنية ,",
            "Category": "الاقتصاد",
            "ImagePrompt": "Office of the future",
        }
    }

    draft = _normalize_article(raw, "topic", GenerationSettings())

    assert draft.title == "مستقبل العمل"
    assert draft.content == "<h2>مقدمة</h2><p>نص</p>"
    assert draft.tags == ["عمل", "تقنية"]
    assert draft.category == "الاقتصاد"
    assert draft.image_prompt == "Office of the future"
    assert draft.excerpt == DEFAULT_EXCERPT


def test_article_defaults_fill_missing_fields():
    draft = _normalize_article({}, "الروبوتات", GenerationSettings())

    assert draft.title == "الروبوتات"
    assert draft.content == "<p>الروبوتات</p>"
    assert draft.tags == [DEFAULT_CATEGORY]
    assert draft.category == DEFAULT_CATEGORY
    assert "الروبوتات" in draft.image_prompt


async def test_analyze_topic_wraps_service_errors(monkeypatch):
    async def failing(*args, **kwargs):
        raise RuntimeError("502 Bad Gateway")

    monkeypatch.setattr(content_client, "run_text_structured", failing)

    with pytest.raises(TopicAnalysisError, match="502"):
        await OpenAIContentClient(timeout_s=1).analyze_topic(GenerationSettings())


async def test_missing_api_key_is_not_wrapped(monkeypatch):
    async def unconfigured(*args, **kwargs):
        raise ConfigurationError("OPENAI_API_KEY is not set")

    monkeypatch.setattr(content_client, "run_text_structured", unconfigured)

    with pytest.raises(ConfigurationError):
        await OpenAIContentClient(timeout_s=1).write_article("x", GenerationSettings())


async def test_render_image_uses_requested_quality(monkeypatch):
    calls = {}

    async def fake_gen_image(prompt, size, quality):
        calls.update(size=size, quality=quality)
        return "https://cdn.example.com/img.png"

    monkeypatch.setattr(content_client, "gen_image", fake_gen_image)

    url = await OpenAIContentClient(timeout_s=1).render_image("prompt", "4K")

    assert url == "https://cdn.example.com/img.png"
    assert calls == {"size": "1792x1024", "quality": "hd"}


async def test_render_image_falls_back_to_pexels(monkeypatch):
    async def failing_gen_image(*args, **kwargs):
        raise RuntimeError("content policy")

    async def fake_run_text(messages, **opts):
        return '"solar panels"'

    searched = []

    def fake_pexels(keyword):
        searched.append(keyword)
        return "https://images.pexels.com/photos/1.jpeg"

    monkeypatch.setattr(content_client, "gen_image", failing_gen_image)
    monkeypatch.setattr(content_client, "run_text", fake_run_text)
    monkeypatch.setattr(content_client, "get_image_from_pexels", fake_pexels)
    monkeypatch.setattr(settings, "PEXELS_API_KEY", "pexels-key")

    url = await OpenAIContentClient(timeout_s=1).render_image("Solar panels on a roof", "1K")

    assert url == "https://images.pexels.com/photos/1.jpeg"
    assert searched == ["solar panels"]


async def test_render_image_raises_without_fallback(monkeypatch):
    async def failing_gen_image(*args, **kwargs):
        raise RuntimeError("content policy")

    monkeypatch.setattr(content_client, "gen_image", failing_gen_image)
    monkeypatch.setattr(settings, "PEXELS_API_KEY", "")

    with pytest.raises(ImageRenderingError):
        await OpenAIContentClient(timeout_s=1).render_image("prompt", "1K")
