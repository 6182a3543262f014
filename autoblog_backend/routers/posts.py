"""
Post management endpoints.
"""
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException

from autoblog_backend.db.session import get_session_factory
from autoblog_backend.schemas.post import PostCreate, PostListResponse, PostResponse, PostUpdate, GeneratedPost
from autoblog_backend.services.post_repository import PostRepository

router = APIRouter()

MANUAL_AUTHOR = "admin"


def get_post_repository(session_factory=Depends(get_session_factory)) -> PostRepository:
    return PostRepository(session_factory)


@router.get("", response_model=PostListResponse)
async def list_posts(
    status: Optional[Literal["published", "draft"]] = None,
    repo: PostRepository = Depends(get_post_repository),
):
    """List posts, newest first."""
    return PostListResponse(success=True, posts=repo.list(status=status))


@router.get("/{post_id}", response_model=GeneratedPost)
async def get_post(post_id: str, repo: PostRepository = Depends(get_post_repository)):
    post = repo.get(post_id)
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    return post


@router.post("", response_model=PostResponse, status_code=201)
async def create_post(request: PostCreate, repo: PostRepository = Depends(get_post_repository)):
    """Publish a manually written post."""
    post = repo.create(request, default_author=MANUAL_AUTHOR)
    return PostResponse(success=True, message="Saved", post=post)


@router.put("/{post_id}", response_model=PostResponse)
async def update_post(post_id: str, request: PostUpdate, repo: PostRepository = Depends(get_post_repository)):
    changes = request.model_dump(exclude_unset=True)
    post = repo.update(post_id, changes)
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    return PostResponse(success=True, message="Updated", post=post)


@router.delete("/{post_id}", response_model=PostResponse)
async def delete_post(post_id: str, repo: PostRepository = Depends(get_post_repository)):
    if not repo.delete(post_id):
        raise HTTPException(status_code=404, detail="Post not found")
    return PostResponse(success=True, message="Deleted")
