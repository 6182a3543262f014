"""
Dashboard settings endpoints.
"""
from fastapi import APIRouter, Depends

from autoblog_backend.db.session import get_session_factory
from autoblog_backend.schemas.autopilot import GenerationSettings, SettingsResponse
from autoblog_backend.services.settings_repository import SettingsRepository

router = APIRouter()


def get_settings_repository(session_factory=Depends(get_session_factory)) -> SettingsRepository:
    return SettingsRepository(session_factory)


@router.get("", response_model=SettingsResponse)
async def read_settings(repo: SettingsRepository = Depends(get_settings_repository)):
    """Return the saved generation settings (``null`` before the first save)."""
    return SettingsResponse(success=True, settings=repo.load())


@router.post("", response_model=SettingsResponse)
async def save_settings(request: GenerationSettings, repo: SettingsRepository = Depends(get_settings_repository)):
    """Save generation settings. A running autopilot keeps the settings it was started with."""
    return SettingsResponse(success=True, message="Saved", settings=repo.save(request))
