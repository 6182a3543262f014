"""
Post storage service.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from autoblog_backend.core.errors import PersistenceError
from autoblog_backend.db.base import Post
from autoblog_backend.schemas.post import GeneratedPost, PostCreate

logger = logging.getLogger(__name__)


def _to_schema(row: Post) -> GeneratedPost:
    created_at = row.created_at
    if created_at is not None and created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return GeneratedPost(
        id=row.id,
        title=row.title,
        excerpt=row.excerpt or "",
        content=row.content or "",
        image_url=row.image_url or "",
        author=row.author,
        category=row.category,
        tags=row.tags or [],
        status=row.status,
        views=row.views or 0,
        comments=row.comments or [],
        traffic_sources=row.traffic_sources or {},
        created_at=created_at,
    )


class PostRepository:
    """CRUD over the ``posts`` table; every call runs in its own session."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def save(self, post: GeneratedPost) -> GeneratedPost:
        """Insert or replace a post."""
        try:
            with self.session_factory() as db:
                row = db.get(Post, post.id) or Post(id=post.id)
                row.title = post.title
                row.excerpt = post.excerpt
                row.content = post.content
                row.image_url = post.image_url
                row.author = post.author
                row.category = post.category
                row.tags = list(post.tags)
                row.status = post.status
                row.views = post.views
                row.comments = list(post.comments)
                row.traffic_sources = dict(post.traffic_sources)
                row.created_at = post.created_at
                db.add(row)
                db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Saving post {post.id} failed: {e}")
            raise PersistenceError(f"Could not save post {post.id}: {e}") from e

        logger.info("Post saved", extra={"post_id": post.id, "status": post.status})
        return post

    def create(self, data: PostCreate, default_author: str) -> GeneratedPost:
        post = GeneratedPost(
            id=data.id or uuid.uuid4().hex,
            title=data.title,
            excerpt=data.excerpt,
            content=data.content,
            image_url=data.image_url,
            author=data.author or default_author,
            category=data.category,
            tags=data.tags,
            status=data.status,
            created_at=datetime.now(timezone.utc),
        )
        return self.save(post)

    def get(self, post_id: str) -> Optional[GeneratedPost]:
        try:
            with self.session_factory() as db:
                row = db.get(Post, post_id)
                return _to_schema(row) if row else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not load post {post_id}: {e}") from e

    def list(self, status: Optional[str] = None) -> List[GeneratedPost]:
        """All posts, newest first."""
        try:
            with self.session_factory() as db:
                query = db.query(Post)
                if status:
                    query = query.filter(Post.status == status)
                return [_to_schema(row) for row in query.order_by(Post.created_at.desc()).all()]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not list posts: {e}") from e

    def update(self, post_id: str, changes: Dict[str, Any]) -> Optional[GeneratedPost]:
        try:
            with self.session_factory() as db:
                row = db.get(Post, post_id)
                if row is None:
                    return None
                for field, value in changes.items():
                    setattr(row, field, value)
                db.commit()
                db.refresh(row)
                return _to_schema(row)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not update post {post_id}: {e}") from e

    def delete(self, post_id: str) -> bool:
        try:
            with self.session_factory() as db:
                row = db.get(Post, post_id)
                if row is None:
                    return False
                db.delete(row)
                db.commit()
                return True
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not delete post {post_id}: {e}") from e
