"""
Exception types shared by the autopilot services.

Generation errors are split per step so the job can decide which failures
abort an iteration and which ones degrade gracefully.
"""


class AutoBlogError(Exception):
    """Base class for all backend errors."""


class ConfigurationError(AutoBlogError):
    """Required configuration (API keys, URLs) is missing."""


class GenerationError(AutoBlogError):
    """A call to the content generation service failed."""


class TopicAnalysisError(GenerationError):
    pass


class ArticleWritingError(GenerationError):
    pass


class ImageRenderingError(GenerationError):
    pass


class PersistenceError(AutoBlogError):
    """Saving or loading a post, settings or the autopilot state failed."""
