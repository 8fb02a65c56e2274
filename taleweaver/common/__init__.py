"""
Common utilities shared across TaleWeaver modules.
"""

from .errors import (
    NotFoundError,
    PermissionDeniedError,
    PersistenceError,
    PublishError,
    TaleWeaverError,
    UpstreamGenerationError,
    ValidationError,
)
from .llm import ChatResult, CompletionCallable, call_chat_completion, image_to_data_url

__all__ = [
    "ChatResult",
    "CompletionCallable",
    "call_chat_completion",
    "image_to_data_url",
    "TaleWeaverError",
    "ValidationError",
    "UpstreamGenerationError",
    "PublishError",
    "PersistenceError",
    "NotFoundError",
    "PermissionDeniedError",
]
