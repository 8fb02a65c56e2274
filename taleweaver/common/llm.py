"""
Chat completion seam shared by the text generation clients.
"""

from __future__ import annotations

import base64
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping, Sequence

from litellm import completion

from .errors import UpstreamGenerationError

ChatMessage = Mapping[str, Any]


@dataclass
class ChatResult:
    """
    Text of the first choice plus the provider response it came from.
    """

    text: str
    raw: Any


CompletionCallable = Callable[..., ChatResult]


def call_chat_completion(
    *,
    model: str,
    messages: Sequence[ChatMessage],
    temperature: float | None = None,
    max_tokens: int | None = None,
    api_key: str | None = None,
    **extra_kwargs: Any,
) -> ChatResult:
    """
    Run one LiteLLM ``completion`` call and return the first choice's text.

    Optional arguments left as ``None`` are not sent, so provider defaults apply.

    Raises
    ------
    UpstreamGenerationError
        When the provider call fails or the response has no first choice.
    """
    options = {"temperature": temperature, "max_tokens": max_tokens, "api_key": api_key}
    payload: dict[str, Any] = {"model": model, "messages": list(messages)}
    payload.update({key: value for key, value in options.items() if value is not None})
    payload.update(extra_kwargs)

    try:
        response = completion(**payload)
    except Exception as exc:
        raise UpstreamGenerationError(f"Chat completion with {model} failed: {exc}") from exc

    try:
        content = response["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise UpstreamGenerationError(f"Unexpected response format from {model}.") from exc

    return ChatResult(text=_content_text(content), raw=response)


def _content_text(content: Any) -> str:
    # Some providers answer with a list of typed parts instead of a string.
    if isinstance(content, list):
        parts = [
            str(part.get("text") or "")
            for part in content
            if isinstance(part, Mapping) and part.get("type", "text") == "text"
        ]
        return "".join(parts).strip()
    return str(content or "").strip()


def image_to_data_url(image: str | Path) -> str:
    """
    Return a URL a multimodal chat model can consume for a local photo or remote image.
    """
    candidate = str(image)
    if candidate.lower().startswith(("http://", "https://", "data:")):
        return candidate

    image_path = Path(image).expanduser()
    data = image_path.read_bytes()
    mime_type, _ = mimetypes.guess_type(image_path.name)
    base64_data = base64.b64encode(data).decode("ascii")
    return f"data:{mime_type or 'image/jpeg'};base64,{base64_data}"
