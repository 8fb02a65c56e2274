"""
Integration with Replicate for storybook illustration rendering.
"""

from __future__ import annotations

import logging
import os
import time
from contextlib import ExitStack
from pathlib import Path
from typing import Any, BinaryIO, Callable, Sequence

import replicate
import requests

from taleweaver.common import UpstreamGenerationError

from .optimize import OPTIMIZED_SUFFIX, optimize_image_for_web
from .prompting import StorybookPrompt, build_render_prompt

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "google/nano-banana"

ImageInput = str | BinaryIO


def _build_nano_banana_input(
    *,
    prompt: StorybookPrompt,
    image_inputs: Sequence[ImageInput],
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "prompt": prompt.positive,
        "output_format": "png",
    }
    if image_inputs:
        payload["image_input"] = list(image_inputs)
    return payload


def _build_flux_kontext_input(
    *,
    prompt: StorybookPrompt,
    image_inputs: Sequence[ImageInput],
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "prompt": prompt.positive,
        "output_format": "png",
        "safety_tolerance": 2,
        "aspect_ratio": "1:1",
    }
    if image_inputs:
        # Kontext takes one image; the raw photo comes first in every reference chain.
        payload["input_image"] = image_inputs[0]
    return payload


def _build_text_to_image_input(
    *,
    prompt: StorybookPrompt,
    image_inputs: Sequence[ImageInput],
) -> dict[str, Any]:
    return {
        "prompt": prompt.positive,
        "negative_prompt": prompt.negative,
        "output_format": "png",
        "aspect_ratio": "1:1",
    }


_MODEL_INPUT_BUILDERS: dict[str, Callable[..., dict[str, Any]]] = {
    "google/nano-banana": _build_nano_banana_input,
    "black-forest-labs/flux-kontext-pro": _build_flux_kontext_input,
    "black-forest-labs/flux-1.1-pro": _build_text_to_image_input,
}


def _build_replicate_input_payload(
    *,
    model_identifier: str,
    prompt: StorybookPrompt,
    image_inputs: Sequence[ImageInput],
) -> dict[str, Any]:
    normalized_identifier = model_identifier.strip().lower()
    builder = _MODEL_INPUT_BUILDERS.get(normalized_identifier)
    if builder is None and ":" in normalized_identifier:
        base_identifier = normalized_identifier.split(":", maxsplit=1)[0]
        builder = _MODEL_INPUT_BUILDERS.get(base_identifier)
    if builder is None:
        supported_models = ", ".join(sorted(set(_MODEL_INPUT_BUILDERS)))
        raise ValueError(
            "Model identifier "
            f"'{model_identifier}' is not configured with a default input payload. "
            f"Supported models: {supported_models}."
        )

    return builder(prompt=prompt, image_inputs=image_inputs)


def _is_rate_limited(exc: Exception) -> bool:
    if getattr(exc, "status", None) == 429:
        return True
    message = str(exc).lower()
    return "429" in message or "rate limit" in message or "resource_exhausted" in message


class ReplicateIllustrator:
    """
    Illustration Generation Client backed by Replicate.

    Parameters
    ----------
    api_token:
        Replicate API token. Falls back to ``REPLICATE_API_TOKEN`` environment variable.
    model_identifier:
        Model string in the ``owner/model[:version]`` format. Falls back to
        ``TALEWEAVER_IMAGE_MODEL``, then ``REPLICATE_MODEL``, then ``google/nano-banana``.
    client:
        Optional pre-configured :class:`replicate.Client`. Mainly useful for testing.
    timeout:
        Seconds allowed for each HTTP call. Falls back to ``TALEWEAVER_IMAGE_TIMEOUT``
        (default 300).
    max_attempts:
        Total attempts for a render that keeps hitting rate limits. Other errors
        are never retried.
    initial_backoff:
        Delay before the first retry; doubled after every rate-limited attempt.
    """

    def __init__(
        self,
        *,
        api_token: str | None = None,
        model_identifier: str | None = None,
        client: replicate.Client | None = None,
        timeout: float | None = None,
        max_attempts: int = 3,
        initial_backoff: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
        http_session: requests.Session | None = None,
    ) -> None:
        self._api_token = api_token or os.getenv("REPLICATE_API_TOKEN")
        if not self._api_token and not client:
            raise ValueError(
                "Replicate API token is required. Set REPLICATE_API_TOKEN or pass api_token."
            )

        self._model_identifier = (
            model_identifier
            or os.getenv("TALEWEAVER_IMAGE_MODEL")
            or os.getenv("REPLICATE_MODEL")
            or DEFAULT_MODEL
        )
        self._timeout = timeout or float(os.getenv("TALEWEAVER_IMAGE_TIMEOUT", "300"))
        self._client = client or replicate.Client(api_token=self._api_token, timeout=self._timeout)
        self._max_attempts = max(1, max_attempts)
        self._initial_backoff = initial_backoff
        self._sleep = sleep
        self._http = http_session or requests.Session()

    @property
    def model_identifier(self) -> str:
        """Return the model identifier currently used."""
        return self._model_identifier

    def render(
        self,
        image_prompt: str,
        reference_image_paths: Sequence[str | Path],
        art_style: str | None,
        *,
        output_path: str | Path,
    ) -> Path:
        """
        Render one illustration and write it next to ``output_path``.

        The model output is re-encoded for the web, so the returned path carries
        a ``.jpg`` suffix whatever suffix ``output_path`` had.

        ``reference_image_paths`` is forwarded to the model in order; entries may
        be local files or ``http(s)`` URLs.

        Raises
        ------
        UpstreamGenerationError
            When the model fails, keeps hitting rate limits, or returns no image.
        """
        prompt = build_render_prompt(
            image_prompt,
            art_style=art_style,
            has_references=bool(reference_image_paths),
        )
        logger.info(
            "Rendering illustration with %d reference image(s) via %s",
            len(reference_image_paths),
            self._model_identifier,
        )

        output = self._run_with_retries(prompt, reference_image_paths)
        image_bytes = optimize_image_for_web(self._extract_image_bytes(output))

        destination = Path(output_path).with_suffix(OPTIMIZED_SUFFIX)
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(image_bytes)
        return destination

    def _run_with_retries(
        self,
        prompt: StorybookPrompt,
        reference_image_paths: Sequence[str | Path],
    ) -> Any:
        wait_time = self._initial_backoff
        for attempt in range(1, self._max_attempts + 1):
            try:
                with ExitStack() as stack:
                    image_inputs = [
                        _prepare_image_input(item, stack=stack) for item in reference_image_paths
                    ]
                    replicate_input = _build_replicate_input_payload(
                        model_identifier=self._model_identifier,
                        prompt=prompt,
                        image_inputs=image_inputs,
                    )
                    output = self._client.run(self._model_identifier, input=replicate_input)
                    # File outputs must be read while the inputs are still open.
                    return _materialize_output(output)
            except (ValueError, FileNotFoundError) as exc:
                raise UpstreamGenerationError(f"Image generation failed: {exc}") from exc
            except Exception as exc:
                if attempt < self._max_attempts and _is_rate_limited(exc):
                    logger.warning(
                        "Rate limit hit. Retrying in %.1fs... (%d attempt(s) left)",
                        wait_time,
                        self._max_attempts - attempt,
                    )
                    self._sleep(wait_time)
                    wait_time *= 2
                    continue
                if _is_rate_limited(exc):
                    raise UpstreamGenerationError(
                        "Image generation failed due to the provider's rate limit or quota."
                    ) from exc
                raise UpstreamGenerationError(
                    f"Image generation failed. The AI service may be temporarily unavailable: {exc}"
                ) from exc

        raise UpstreamGenerationError("Image generation failed after all retries.")

    def _extract_image_bytes(self, output: Any) -> bytes:
        candidates = output if isinstance(output, list) else [output]
        for item in candidates:
            if isinstance(item, bytes) and item:
                return item
            if item is None:
                continue
            url = str(item).strip()
            if url.lower().startswith(("http://", "https://")):
                try:
                    response = self._http.get(url, timeout=self._timeout)
                    response.raise_for_status()
                except requests.RequestException as exc:
                    raise UpstreamGenerationError(f"Failed to download rendered image: {exc}") from exc
                return response.content

        raise UpstreamGenerationError("Image generation failed to return an image.")


def _materialize_output(output: Any) -> Any:
    """
    Turn Replicate output into a list of raw bytes or URL strings.
    """
    if output is None:
        return []
    if hasattr(output, "read") or isinstance(output, (str, bytes)):
        items = [output]
    else:
        try:
            items = list(output)
        except TypeError:
            items = [output]

    materialized: list[Any] = []
    for item in items:
        if hasattr(item, "read"):
            materialized.append(item.read())
        elif item is not None:
            materialized.append(item)
    return materialized


def _prepare_image_input(
    input_image: str | Path | BinaryIO,
    *,
    stack: ExitStack,
) -> str | BinaryIO:
    """
    Normalize the image input so Replicate can consume it, keeping resources open via ExitStack.
    """
    if hasattr(input_image, "read"):
        # Assume file-like object, rely on caller to manage its lifecycle.
        return input_image  # type: ignore[return-value]

    if isinstance(input_image, Path):
        input_path = input_image.expanduser()
    else:
        input_candidate = str(input_image)
        input_path = Path(input_candidate).expanduser()
        if input_candidate.lower().startswith(("http://", "https://")):
            return input_candidate

    if not input_path.exists():
        raise FileNotFoundError(f"Input image not found at '{input_path}'.")

    file_handle = stack.enter_context(input_path.open("rb"))
    return file_handle
