"""
Autopilot-related Pydantic schemas.
"""
import enum
from datetime import date, datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

JOB_STATE_SCHEMA_VERSION = 1


class RunState(str, enum.Enum):
    """Coarse run-level state exposed to the dashboard."""
    IDLE = "IDLE"
    PICKING_TOPIC = "PICKING_TOPIC"
    WRITING = "WRITING"
    RENDERING_IMAGE = "RENDERING_IMAGE"
    PERSISTING = "PERSISTING"
    WAITING = "WAITING"  # between articles
    COMPLETE = "COMPLETE"  # quota reached
    ERROR = "ERROR"


class JobStage(str, enum.Enum):
    """Stage of a single generation job."""
    PICKING_TOPIC = "PICKING_TOPIC"
    WRITING = "WRITING"
    RENDERING_IMAGE = "RENDERING_IMAGE"
    PERSISTING = "PERSISTING"
    DONE = "DONE"
    ERROR = "ERROR"


LogType = Literal["info", "success", "warning", "error", "system"]


class GenerationSettings(BaseModel):
    """Settings snapshot used by an autopilot run.

    Accepts the dashboard's camelCase keys as well as snake_case.
    """
    model_config = ConfigDict(populate_by_name=True)

    niche: str = "الذكاء الاصطناعي"
    keywords: str = ""
    articles_per_day: int = Field(3, ge=1, le=288, alias="articlesPerDay")
    image_quality: Literal["1K", "2K", "4K"] = Field("1K", alias="imageQuality")
    language: Literal["Arabic", "English"] = "Arabic"
    image_style: str = Field(
        "صورة واقعية سينمائية، إضاءة احترافية، دقة عالية", alias="imageStyle"
    )
    auto_publish: bool = Field(True, alias="autoPublish")


class LogEntry(BaseModel):
    """One line of the autopilot audit trail."""
    timestamp: datetime
    message: str
    type: LogType = "info"


class JobState(BaseModel):
    """The persisted record of one autopilot run."""
    schema_version: int = JOB_STATE_SCHEMA_VERSION
    running: bool = False
    run_state: RunState = RunState.IDLE
    articles_per_day: int = Field(1, ge=1)
    articles_generated_today: int = Field(0, ge=0)
    last_run_date: Optional[date] = None
    next_run_at: Optional[datetime] = None
    settings: Optional[GenerationSettings] = None
    log_entries: List[LogEntry] = []

    def append_log(self, message: str, type: LogType = "info", now: Optional[datetime] = None) -> LogEntry:
        entry = LogEntry(timestamp=now or datetime.now(timezone.utc), message=message, type=type)
        self.log_entries.append(entry)
        return entry

    def trim_log(self, limit: int) -> None:
        """Drop the oldest entries beyond ``limit``."""
        if len(self.log_entries) > limit:
            del self.log_entries[:len(self.log_entries) - limit]

    def roll_over(self, today: date) -> bool:
        """Reset the daily counter when progress last advanced on another day."""
        if self.last_run_date != today and self.articles_generated_today:
            self.articles_generated_today = 0
            return True
        return False

    @property
    def quota_reached(self) -> bool:
        return self.articles_generated_today >= self.articles_per_day


class TopicResult(BaseModel):
    """Topic picked by trend analysis."""
    topic: str
    analysis: str = ""


class ArticleDraft(BaseModel):
    """Structured article returned by the writer."""
    title: str
    content: str
    excerpt: str = ""
    tags: List[str] = []
    category: str = "عام"
    image_prompt: str = ""


class AutopilotResponse(BaseModel):
    """Response schema for the autopilot endpoints."""
    success: bool
    message: Optional[str] = None
    state: JobState


class SettingsResponse(BaseModel):
    """Response schema for the settings endpoints."""
    success: bool
    message: Optional[str] = None
    settings: Optional[GenerationSettings] = None
