"""
Post-related Pydantic schemas.
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Literal, Optional
from datetime import datetime


def _zero_traffic() -> Dict[str, int]:
    return {"search": 0, "social": 0, "direct": 0, "referral": 0}


class PostBase(BaseModel):
    """Fields shared by manual and generated posts."""
    model_config = ConfigDict(populate_by_name=True)

    title: str
    excerpt: str = ""
    content: str = ""  # HTML
    image_url: str = Field("", alias="imageUrl")
    category: str = "عام"
    tags: List[str] = []
    status: Literal["published", "draft"] = "draft"


class PostCreate(PostBase):
    """Request schema for a manually written post."""
    id: Optional[str] = None
    author: Optional[str] = None


class PostUpdate(BaseModel):
    """Partial update; only the fields that are set are applied."""
    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = None
    excerpt: Optional[str] = None
    content: Optional[str] = None
    image_url: Optional[str] = Field(None, alias="imageUrl")
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    status: Optional[Literal["published", "draft"]] = None


class GeneratedPost(PostBase):
    """A stored post. Autopilot output starts with zeroed counters."""
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: str
    author: str
    created_at: datetime
    views: int = 0
    comments: List[Dict[str, Any]] = []
    traffic_sources: Dict[str, int] = Field(default_factory=_zero_traffic)


class PostListResponse(BaseModel):
    """Response schema for the post listing."""
    success: bool
    posts: List[GeneratedPost]


class PostResponse(BaseModel):
    """Generic post mutation response."""
    success: bool
    message: Optional[str] = None
    post: Optional[GeneratedPost] = None
