"""
Database models for posts, dashboard settings and the autopilot state.
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, Text, JSON
from sqlalchemy.sql import func
from autoblog_backend.db.session import Base


class Post(Base):
    """Blog post, written manually or by the autopilot."""
    __tablename__ = "posts"

    id = Column(String, primary_key=True, index=True)
    title = Column(String, nullable=False)
    excerpt = Column(Text, nullable=False, default="")
    content = Column(Text, nullable=False, default="")  # HTML
    image_url = Column(Text, nullable=False, default="")  # URL or data URI
    author = Column(String, nullable=False)
    category = Column(String, nullable=False, default="عام")
    tags = Column(JSON, nullable=False, default=list)
    status = Column(String, nullable=False, default="draft")  # published, draft
    views = Column(Integer, nullable=False, default=0)
    comments = Column(JSON, nullable=False, default=list)
    traffic_sources = Column(JSON, nullable=False, default=dict)  # search, social, direct, referral
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)


class SiteSettings(Base):
    """Generation settings last saved from the dashboard (single row)."""
    __tablename__ = "settings"

    id = Column(Integer, primary_key=True)
    data = Column(JSON, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class AutopilotState(Base):
    """Persisted autopilot run, one row per scheduler key."""
    __tablename__ = "autopilot_state"

    key = Column(String, primary_key=True, default="default")
    schema_version = Column(Integer, nullable=False, default=1)
    running = Column(Boolean, nullable=False, default=False)
    run_state = Column(String, nullable=False, default="IDLE")
    articles_per_day = Column(Integer, nullable=False, default=1)
    articles_generated_today = Column(Integer, nullable=False, default=0)
    last_run_date = Column(String(10), nullable=True)  # ISO-8601 date, local calendar
    next_run_at = Column(DateTime(timezone=True), nullable=True)
    settings = Column(JSON, nullable=True)
    log_entries = Column(JSON, nullable=False, default=list)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
