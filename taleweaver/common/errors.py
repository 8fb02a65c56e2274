"""
Error taxonomy shared by the TaleWeaver generation pipeline.
"""

from __future__ import annotations


class TaleWeaverError(Exception):
    """Base class for every error raised by TaleWeaver."""


class ValidationError(TaleWeaverError, ValueError):
    """Rejected input; raised before a job ever starts."""


class UpstreamGenerationError(TaleWeaverError, RuntimeError):
    """The text or image model failed or returned something unusable."""


class PublishError(TaleWeaverError, RuntimeError):
    """The asset store could not publish a file."""


class PersistenceError(TaleWeaverError, RuntimeError):
    """The storybook repository failed to read or write a record."""


class NotFoundError(TaleWeaverError, LookupError):
    """Unknown or expired job id, storybook, or page."""


class PermissionDeniedError(TaleWeaverError, PermissionError):
    """The requester does not own the storybook they are trying to modify."""
