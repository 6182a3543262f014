"""
Dashboard settings storage.
"""
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from autoblog_backend.core.errors import PersistenceError
from autoblog_backend.db.base import SiteSettings
from autoblog_backend.schemas.autopilot import GenerationSettings

SETTINGS_ROW_ID = 1


class SettingsRepository:
    """Single-row store for the generation settings."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def load(self) -> Optional[GenerationSettings]:
        try:
            with self.session_factory() as db:
                row = db.get(SiteSettings, SETTINGS_ROW_ID)
                return GenerationSettings.model_validate(row.data) if row else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not load settings: {e}") from e

    def save(self, settings: GenerationSettings) -> GenerationSettings:
        try:
            with self.session_factory() as db:
                row = db.get(SiteSettings, SETTINGS_ROW_ID)
                if row is None:
                    row = SiteSettings(id=SETTINGS_ROW_ID)
                    db.add(row)
                row.data = settings.model_dump(mode="json")
                db.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not save settings: {e}") from e
        return settings
