"""
One autopilot generation job: topic -> article -> image -> stored post.
"""
import hashlib
import inspect
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Union

from autoblog_backend.core.config import settings as app_settings
from autoblog_backend.core.errors import ArticleWritingError, GenerationError, TopicAnalysisError
from autoblog_backend.schemas.autopilot import GenerationSettings, JobStage
from autoblog_backend.schemas.post import GeneratedPost
from autoblog_backend.services.content_client import ContentGenerationClient
from autoblog_backend.services.post_repository import PostRepository

logger = logging.getLogger(__name__)

StageCallback = Callable[[JobStage], Union[None, Awaitable[None]]]


def placeholder_image_url(seed_source: str) -> str:
    """Deterministic placeholder for a given image prompt."""
    seed = hashlib.sha1(seed_source.encode("utf-8")).hexdigest()[:12]
    return app_settings.PLACEHOLDER_IMAGE_URL.format(seed=seed)


@dataclass
class JobOutcome:
    """Result of a completed job."""
    post: GeneratedPost
    topic: str
    warnings: List[str] = field(default_factory=list)

    @property
    def used_placeholder(self) -> bool:
        return bool(self.warnings)


class GenerationJob:
    """Produces exactly one post per ``run`` call.

    Topic and article failures end the job in ``ERROR`` and propagate. An
    image failure is replaced by a placeholder. The job does not touch the
    autopilot state; progress accounting is up to the caller.
    """

    def __init__(
        self,
        client: ContentGenerationClient,
        posts: PostRepository,
        *,
        author: Optional[str] = None,
        on_stage: Optional[StageCallback] = None,
        clock: Callable[[], datetime] = None,
    ):
        self.client = client
        self.posts = posts
        self.author = author or app_settings.AUTOPILOT_AUTHOR
        self.on_stage = on_stage
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.stage: Optional[JobStage] = None

    async def _enter(self, stage: JobStage) -> None:
        self.stage = stage
        if self.on_stage is not None:
            result = self.on_stage(stage)
            if inspect.isawaitable(result):
                await result

    async def run(self, gen: GenerationSettings) -> JobOutcome:
        warnings: List[str] = []

        await self._enter(JobStage.PICKING_TOPIC)
        try:
            topic = await self.client.analyze_topic(gen)
        except Exception as exc:
            await self._enter(JobStage.ERROR)
            if isinstance(exc, GenerationError):
                raise
            raise TopicAnalysisError(str(exc)) from exc

        await self._enter(JobStage.WRITING)
        try:
            article = await self.client.write_article(topic.topic, gen)
        except Exception as exc:
            await self._enter(JobStage.ERROR)
            if isinstance(exc, GenerationError):
                raise
            raise ArticleWritingError(str(exc)) from exc

        await self._enter(JobStage.RENDERING_IMAGE)
        image_prompt = article.image_prompt or article.title
        try:
            image_url = await self.client.render_image(image_prompt, gen.image_quality)
            if not image_url:
                raise GenerationError("Image service returned an empty reference")
        except Exception as exc:  # noqa: BLE001
            image_url = placeholder_image_url(image_prompt)
            warnings.append(f"Image generation failed, using placeholder: {exc}")
            logger.warning("Image generation failed, using placeholder", extra={"error": str(exc)})

        await self._enter(JobStage.PERSISTING)
        post = GeneratedPost(
            id=uuid.uuid4().hex,
            title=article.title or topic.topic,
            excerpt=article.excerpt,
            content=article.content or f"<p>{topic.topic}</p>",
            image_url=image_url,
            author=self.author,
            category=article.category,
            tags=article.tags,
            status="published" if gen.auto_publish else "draft",
            created_at=self.clock(),
        )
        # PersistenceError propagates to the scheduler
        self.posts.save(post)

        await self._enter(JobStage.DONE)
        logger.info("Generation job finished", extra={"post_id": post.id, "title": post.title})
        return JobOutcome(post=post, topic=topic.topic, warnings=warnings)
