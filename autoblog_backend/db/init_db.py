"""
Initialize database tables.
"""
from autoblog_backend.db.session import engine
from autoblog_backend.db.base import Base  # Import all models


def init_db(bind=None) -> None:
    """Initialize database tables."""
    Base.metadata.create_all(bind=bind or engine)
