"""
Content generation client: topic analysis, article writing and image
rendering over the OpenAI helpers in ``core.openai_client``.
"""
from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional, Protocol

import requests

from autoblog_backend.core.config import settings
from autoblog_backend.core.errors import (
    ArticleWritingError,
    ConfigurationError,
    ImageRenderingError,
    TopicAnalysisError,
)
from autoblog_backend.core.openai_client import gen_image, run_text, run_text_structured
from autoblog_backend.schemas.autopilot import ArticleDraft, GenerationSettings, TopicResult

logger = logging.getLogger(__name__)


CATEGORIES = ["التكنولوجيا", "الذكاء الاصطناعي", "الاقتصاد", "الصحة", "نمط الحياة", "عام"]
DEFAULT_CATEGORY = "عام"
DEFAULT_EXCERPT = "ملخص المقال غير متوفر."
DEFAULT_IMAGE_STYLE = "Professional, cinematic, photorealistic"

# quality hint -> (size, quality)
IMAGE_QUALITY_MAP = {
    "1K": ("1024x1024", "standard"),
    "2K": ("1792x1024", "hd"),
    "4K": ("1792x1024", "hd"),
}


class ContentGenerationClient(Protocol):
    async def analyze_topic(self, settings: GenerationSettings) -> TopicResult:
        ...

    async def write_article(self, topic: str, settings: GenerationSettings) -> ArticleDraft:
        ...

    async def render_image(self, image_prompt: str, quality_hint: str) -> str:
        ...


def _build_topic_messages(gen: GenerationSettings) -> List[Dict[str, str]]:
    prompt = f"""
Act as a professional SEO trend analyst.
Analyze current trends related to the niche: "{gen.niche}".
You MUST incorporate insights from the following specific keywords: "{gen.keywords}".

Task:
1. Identify a specific, high-engagement trending topic suitable for a long-form blog post.
2. Provide a brief analysis (2-3 sentences) explaining why this topic is trending.

Output Language: {gen.language}.

Return JSON only: {{"topic": "...", "analysis": "..."}}
"""
    return [
        {"role": "system", "content": "You are an SEO trend analyst. Answer with a single JSON object."},
        {"role": "user", "content": prompt},
    ]


def _build_article_messages(topic: str, gen: GenerationSettings) -> List[Dict[str, str]]:
    categories = ", ".join(f"'{c}'" for c in CATEGORIES)
    style = gen.image_style or DEFAULT_IMAGE_STYLE
    prompt = f"""
Write a comprehensive, professional blog post about: "{topic}".

Requirements:
1. Language: {gen.language}.
2. Tone: Professional, engaging, and authoritative.
3. Structure:
   - Use HTML tags for formatting.
   - Do NOT use <h1> tags in the content. The title is already the H1. Start with <h2>, then <h3>.
   - Use <ul> and <li> for lists and <p> for paragraphs.
4. Length: Long-form, detailed (at least 800 words).
5. Include a short excerpt (meta description style summary) and a list of 3-5 relevant tags.
6. Classify this article into one of these categories: {categories}.
7. Generate a detailed AI image generation prompt (IN ENGLISH) that visually represents the content.
   The image style must be: "{style}".

Return JSON only with this structure:
{{
  "title": "The Title",
  "content": "<h2>Introduction</h2><p>Content...</p>",
  "excerpt": "The summary...",
  "tags": ["tag1", "tag2"],
  "category": "Category Name",
  "imagePrompt": "A cinematic shot of..."
}}
"""
    return [
        {"role": "system", "content": "You are a senior blog editor. Answer with a single JSON object."},
        {"role": "user", "content": prompt},
    ]


def _normalize_topic(raw: Dict[str, Any], gen: GenerationSettings) -> TopicResult:
    topic = raw.get("topic")
    if not isinstance(topic, str) or not topic.strip():
        topic = gen.niche
    analysis = raw.get("analysis")
    return TopicResult(topic=topic.strip(), analysis=analysis if isinstance(analysis, str) else "")


def _normalize_article(raw: Dict[str, Any], topic: str, gen: GenerationSettings) -> ArticleDraft:
    candidate = raw
    for wrap in ("article", "result", "data", "post"):
        if isinstance(candidate.get(wrap), dict):
            candidate = candidate[wrap]
            break

    lower_map = {k.lower(): k for k in candidate.keys()}

    def get_ci(*names: str) -> Optional[Any]:
        for name in names:
            key = lower_map.get(name.lower())
            if key is not None and candidate[key] not in (None, ""):
                return candidate[key]
        return None

    content = get_ci("content", "html", "article_html", "body")
    if not isinstance(content, str) or not content.strip():
        content = f"<p>{topic}</p>"
    # The page template renders the title as H1
    content = re.sub(r"<(/?)h1([^>]*)>", r"<\1h2\2>", content, flags=re.I)

    tags = get_ci("tags", "keywords")
    if isinstance(tags, str):
        tags = [t.strip() for t in tags.split(",") if t.strip()]
    elif isinstance(tags, list):
        tags = [str(t).strip() for t in tags if str(t).strip()]
    else:
        tags = [DEFAULT_CATEGORY]

    image_prompt = get_ci("imagePrompt", "image_prompt")
    if not isinstance(image_prompt, str):
        image_prompt = f"A professional, cinematic image representing {topic}, style: {gen.image_style}"

    return ArticleDraft(
        title=str(get_ci("title", "headline") or topic),
        content=content,
        excerpt=str(get_ci("excerpt", "summary", "description") or DEFAULT_EXCERPT),
        tags=tags,
        category=str(get_ci("category") or DEFAULT_CATEGORY),
        image_prompt=image_prompt,
    )


def get_image_from_pexels(keyword: str) -> Optional[str]:
    """Fetch a representative image URL from Pexels."""
    url = "https://api.pexels.com/v1/search"
    params = {"query": keyword, "per_page": 1, "orientation": "landscape"}
    headers = {"Authorization": settings.PEXELS_API_KEY}

    try:
        response = requests.get(url, headers=headers, params=params, timeout=10)
        if response.status_code != 200:
            logger.warning(
                "Pexels request failed",
                extra={"keyword": keyword, "status": response.status_code, "body": response.text[:200]},
            )
            return None

        photos = response.json().get("photos") or []
        if not photos:
            logger.info("Pexels returned no photos", extra={"keyword": keyword})
            return None

        src = photos[0].get("src", {})
        return src.get("landscape") or src.get("large") or src.get("original")

    except requests.RequestException as exc:
        logger.warning("Error fetching image from Pexels", extra={"keyword": keyword, "error": str(exc)})
        return None


class OpenAIContentClient:
    """OpenAI-backed implementation of :class:`ContentGenerationClient`.

    Every call is bounded by ``GENERATION_TIMEOUT_S``; failures are raised as
    the step's ``GenerationError`` subclass.
    """

    def __init__(self, timeout_s: Optional[float] = None):
        self.timeout_s = timeout_s or settings.GENERATION_TIMEOUT_S

    async def analyze_topic(self, gen: GenerationSettings) -> TopicResult:
        try:
            raw = await asyncio.wait_for(
                run_text_structured(_build_topic_messages(gen), context="topic analysis", temperature=0.9),
                self.timeout_s,
            )
        except ConfigurationError:
            raise
        except asyncio.TimeoutError as exc:
            raise TopicAnalysisError(f"Topic analysis timed out after {self.timeout_s}s") from exc
        except Exception as exc:  # noqa: BLE001
            raise TopicAnalysisError(f"Topic analysis failed: {exc}") from exc

        result = _normalize_topic(raw, gen)
        logger.info("Topic picked", extra={"topic": result.topic, "niche": gen.niche})
        return result

    async def write_article(self, topic: str, gen: GenerationSettings) -> ArticleDraft:
        try:
            raw = await asyncio.wait_for(
                run_text_structured(_build_article_messages(topic, gen), context="article"),
                self.timeout_s,
            )
        except ConfigurationError:
            raise
        except asyncio.TimeoutError as exc:
            raise ArticleWritingError(f"Article writing timed out after {self.timeout_s}s") from exc
        except Exception as exc:  # noqa: BLE001
            raise ArticleWritingError(f"Article writing failed: {exc}") from exc

        draft = _normalize_article(raw, topic, gen)
        logger.info("Article written", extra={"topic": topic, "title": draft.title})
        return draft

    async def render_image(self, image_prompt: str, quality_hint: str) -> str:
        size, quality = IMAGE_QUALITY_MAP.get(quality_hint, IMAGE_QUALITY_MAP["1K"])
        try:
            return await asyncio.wait_for(gen_image(image_prompt, size=size, quality=quality), self.timeout_s)
        except Exception as exc:  # noqa: BLE001
            logger.warning("OpenAI image generation failed", extra={"error": str(exc)})
            error = exc

        if settings.PEXELS_API_KEY:
            keyword = await self._image_keyword(image_prompt)
            pexels_url = await asyncio.to_thread(get_image_from_pexels, keyword)
            if pexels_url:
                logger.info("Fetched image from Pexels", extra={"keyword": keyword})
                return pexels_url

        raise ImageRenderingError(f"Image rendering failed: {error}") from error

    async def _image_keyword(self, image_prompt: str) -> str:
        """Derive a short search phrase for stock photo lookup."""
        messages = [
            {
                "role": "system",
                "content": (
                    "Given an image description, respond with a short English phrase (2-4 words) "
                    "suitable for a stock photo search. Respond with only the phrase."
                ),
            },
            {"role": "user", "content": image_prompt},
        ]
        try:
            response = await asyncio.wait_for(run_text(messages, temperature=0.4), self.timeout_s)
            return response.strip().strip('"').strip("'") or image_prompt[:60]
        except Exception as exc:  # noqa: BLE001
            logger.warning("Falling back to raw prompt for image search", extra={"error": str(exc)})
            return image_prompt[:60]
