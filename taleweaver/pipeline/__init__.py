"""
End-to-end orchestration for TaleWeaver storybook generation.
"""

from .job import (
    DEFAULT_ART_STYLE,
    DEFAULT_PAGE_COUNT,
    MAX_REFERENCE_IMAGES,
    MIN_PROMPT_LENGTH,
    PAGE_COUNT_RANGE,
    GenerationJob,
)
from .pipeline import IllustrationClient, StorybookOrchestrator, TextGenerationClient
from .progress import GenerationStep, JobProgressReporter, ProgressRecord, ProgressStore
from .references import ImageKind, build_references

__all__ = [
    "DEFAULT_ART_STYLE",
    "DEFAULT_PAGE_COUNT",
    "MAX_REFERENCE_IMAGES",
    "MIN_PROMPT_LENGTH",
    "PAGE_COUNT_RANGE",
    "GenerationJob",
    "GenerationStep",
    "ProgressRecord",
    "ProgressStore",
    "JobProgressReporter",
    "ImageKind",
    "build_references",
    "StorybookOrchestrator",
    "TextGenerationClient",
    "IllustrationClient",
]
