"""
Prompt construction utilities for TaleWeaver illustration generation.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

DEFAULT_STYLE_SUFFIX = ", in the style of a vibrant and colorful illustrated storybook"

NEGATIVE_PROMPT = (
    "identity drift, age change, plastic skin, uncanny valley, harsh shadows, blown highlights, "
    "obscured face, cluttered background, watermark, logo"
)

REFERENCE_PREFIX = (
    "Reference images provided for character inspiration. IMPORTANT: Maintain the actual age and "
    "appearance of people from the reference photos - if an adult is shown, keep them as an adult "
    "with appropriate adult features and proportions; if a child is shown, keep them as a child. "
    "When an earlier illustration from this book is among the references, match its art style, "
    "palette and character design exactly.\n\n"
)

_SCENE_CLOTHING_PATTERN = re.compile(
    r"wearing\s+|wears\s+|dressed\s+in|"
    r"in\s+(?:a|an|their)\s+(?:\w+\s+)?(?:pajamas|swimsuit|uniform|suit|dress|coat|outfit)",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class StorybookPrompt:
    """Container for the positive and negative prompts passed to the image model."""

    positive: str
    negative: str = NEGATIVE_PROMPT


def scene_mentions_clothing(scene_prompt: str) -> bool:
    return bool(_SCENE_CLOTHING_PATTERN.search(scene_prompt))


def build_image_prompt(
    scene_prompt: str,
    *,
    character_description: str | None = None,
    default_clothing: str | None = None,
) -> str:
    """
    Prefix a scene prompt with the shared character description and default clothing.

    Default clothing is dropped when the scene already dresses the character
    (e.g. "wearing pajamas") so the two never contradict each other.
    """
    if not scene_prompt or not scene_prompt.strip():
        raise ValueError("scene_prompt must be a non-empty string.")

    character = (character_description or "").strip()
    clothing = (default_clothing or "").strip()
    if scene_mentions_clothing(scene_prompt):
        clothing = ""

    if character and clothing:
        prefix = f"{character}, {clothing}. "
    elif character:
        prefix = f"{character}. "
    elif clothing:
        prefix = f"{clothing}. "
    else:
        prefix = ""

    return prefix + scene_prompt.strip()


def build_render_prompt(
    image_prompt: str,
    *,
    art_style: str | None = None,
    has_references: bool = False,
) -> StorybookPrompt:
    """
    Build the final text sent to the image model: reference guidance, scene, then style.

    The style directive is identical for every image of a book, which keeps the
    look stable even for models that ignore reference images.
    """
    if not image_prompt or not image_prompt.strip():
        raise ValueError("image_prompt must be a non-empty string.")

    prefix = REFERENCE_PREFIX if has_references else ""
    style = art_style.strip() if art_style else ""
    style_directive = f"\n\nSTYLE: {style}" if style else DEFAULT_STYLE_SUFFIX
    return StorybookPrompt(positive=prefix + image_prompt.strip() + style_directive)
