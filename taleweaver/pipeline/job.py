"""
Validated generation requests.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Sequence

from taleweaver.common import ValidationError

MIN_PROMPT_LENGTH = 10
MAX_REFERENCE_IMAGES = 5
PAGE_COUNT_RANGE = (1, 12)
DEFAULT_PAGE_COUNT = 3
DEFAULT_ART_STYLE = "vibrant and colorful children's book illustration"


def _new_job_id() -> str:
    return uuid.uuid4().hex


def _coerce_page_count(value: Any) -> int:
    if value is None or value == "":
        return DEFAULT_PAGE_COUNT
    try:
        count = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"page_count must be an integer, got {value!r}.") from exc
    lower, upper = PAGE_COUNT_RANGE
    return max(lower, min(upper, count))


def _coerce_optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Expected an integer-compatible value for age, got {value!r}.") from exc


def _coerce_optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class GenerationJob:
    """
    One storybook request. Build it with :meth:`create`, which validates and clamps.

    Attributes
    ----------
    prompt:
        Free-text story idea.
    reference_images:
        Local photos, in submission order, used for character likeness.
    page_count:
        Number of story pages, clamped into ``PAGE_COUNT_RANGE``.
    art_style:
        Illustration style applied to every image of the book.
    requester_id:
        Owner of the resulting storybook; ``None`` for anonymous requests.
    cleanup_inputs:
        Delete the caller's reference files once the job ends (upload temp files).
    """

    prompt: str
    reference_images: tuple[Path, ...] = ()
    page_count: int = DEFAULT_PAGE_COUNT
    art_style: str = DEFAULT_ART_STYLE
    requester_id: str | None = None
    author: str | None = None
    age: int | None = None
    cleanup_inputs: bool = False
    job_id: str = field(default_factory=_new_job_id)

    @classmethod
    def create(
        cls,
        prompt: str,
        *,
        reference_images: Sequence[str | Path] = (),
        page_count: Any = None,
        art_style: str | None = None,
        requester_id: str | None = None,
        author: str | None = None,
        age: Any = None,
        cleanup_inputs: bool = False,
    ) -> "GenerationJob":
        """
        Validate raw submission values.

        Raises
        ------
        ValidationError
            For a too-short prompt, too many or missing reference images, or
            non-numeric page count / age.
        """
        text = (prompt or "").strip()
        if len(text) < MIN_PROMPT_LENGTH:
            raise ValidationError(
                f"Story prompt must be at least {MIN_PROMPT_LENGTH} characters."
            )

        images = tuple(Path(item).expanduser() for item in reference_images)
        if len(images) > MAX_REFERENCE_IMAGES:
            raise ValidationError(f"Maximum {MAX_REFERENCE_IMAGES} images allowed.")
        for image in images:
            if not image.is_file():
                raise ValidationError(f"Reference image not found at '{image}'.")

        return cls(
            prompt=text,
            reference_images=images,
            page_count=_coerce_page_count(page_count),
            art_style=_coerce_optional_str(art_style) or DEFAULT_ART_STYLE,
            requester_id=_coerce_optional_str(requester_id),
            author=_coerce_optional_str(author),
            age=_coerce_optional_int(age),
            cleanup_inputs=cleanup_inputs,
        )

    @property
    def image_operations(self) -> int:
        """Cover, every page, and the back cover."""
        return self.page_count + 2
