"""
TaleWeaver package exposing storybook generation, progress tracking, and storage.
"""

from .common import NotFoundError, TaleWeaverError, ValidationError
from .pipeline import (
    GenerationJob,
    GenerationStep,
    ProgressRecord,
    ProgressStore,
    StorybookOrchestrator,
)
from .storage import Storybook, StorybookPage

__all__ = [
    "GenerationJob",
    "GenerationStep",
    "ProgressRecord",
    "ProgressStore",
    "StorybookOrchestrator",
    "Storybook",
    "StorybookPage",
    "TaleWeaverError",
    "ValidationError",
    "NotFoundError",
]
