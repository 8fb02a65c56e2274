"""
Structured story data returned by the text generation model.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Sequence

from taleweaver.common import UpstreamGenerationError

DEFAULT_AUTHOR = "AI Storyteller"

DEFAULT_BACK_COVER_PROMPT = (
    "A quiet closing scene from the story, the main character waving goodbye, "
    "soft background with room for a blurb"
)

# Page moods drive background audio selection.
PAGE_MOODS = ("calm", "adventure", "mystery", "happy", "suspense", "dramatic")
DEFAULT_MOOD = "calm"


@dataclass(frozen=True)
class StoryPage:
    """
    A single illustrated page of a generated story.
    """

    page_number: int
    text: str
    image_prompt: str
    main_action: str | None = None
    setting: str | None = None
    key_objects: tuple[str, ...] = ()
    emotional_tone: str | None = None
    mood: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "page_number": self.page_number,
            "text": self.text,
            "image_prompt": self.image_prompt,
            "main_action": self.main_action,
            "setting": self.setting,
            "key_objects": list(self.key_objects),
            "emotional_tone": self.emotional_tone,
            "mood": self.mood,
        }


@dataclass(frozen=True)
class GeneratedStory:
    """
    Ephemeral story produced by the text model, before any image exists.

    Attributes
    ----------
    title:
        Story title, also painted onto the cover illustration.
    author:
        Author credit; defaults to ``DEFAULT_AUTHOR`` when the model omits it.
    pages:
        Pages numbered contiguously from 1.
    cover_image_prompt / back_cover_image_prompt:
        Scene descriptions for the two cover illustrations.
    main_character_description / default_clothing:
        Shared character notes prepended to every image prompt so the hero
        looks the same on every page.
    story_arc:
        One paragraph summary, reused when a single page is rewritten later.
    art_style_hint:
        Illustration style requested by the user.
    """

    title: str
    pages: tuple[StoryPage, ...]
    cover_image_prompt: str
    back_cover_image_prompt: str = DEFAULT_BACK_COVER_PROMPT
    author: str = DEFAULT_AUTHOR
    main_character_description: str = ""
    default_clothing: str = ""
    story_arc: str = ""
    art_style_hint: str | None = None
    extras: Mapping[str, Any] = field(default_factory=dict)

    @property
    def page_count(self) -> int:
        return len(self.pages)


def parse_story_json(
    raw_text: str,
    *,
    expected_pages: int,
    art_style: str | None = None,
    author: str | None = None,
) -> GeneratedStory:
    """
    Parse and validate the JSON story emitted by the model.
    """
    payload = _load_json_object(raw_text)

    title = _require_text(payload, "title")
    cover_prompt = _require_text(payload, "cover_image_prompt", "coverImagePrompt")
    back_cover_prompt = (
        _optional_text(payload, "back_cover_image_prompt", "backCoverImagePrompt")
        or DEFAULT_BACK_COVER_PROMPT
    )

    pages_data = payload.get("pages")
    if not isinstance(pages_data, list):
        raise UpstreamGenerationError("Story JSON must contain a 'pages' list.")

    pages = convert_pages(pages_data)
    validate_page_sequence(pages, expected_pages)

    return GeneratedStory(
        title=title,
        pages=tuple(pages),
        cover_image_prompt=cover_prompt,
        back_cover_image_prompt=back_cover_prompt,
        author=(author or _optional_text(payload, "author") or DEFAULT_AUTHOR),
        main_character_description=_optional_text(
            payload, "main_character_description", "mainCharacterDescription"
        )
        or "",
        default_clothing=_optional_text(payload, "default_clothing", "defaultClothing") or "",
        story_arc=_optional_text(payload, "story_arc", "storyArc") or "",
        art_style_hint=art_style,
    )


def parse_page_json(raw_text: str, *, page_number: int) -> StoryPage:
    """
    Parse a single rewritten page; the page number always comes from the caller.
    """
    payload = _load_json_object(raw_text)
    return _convert_page(dict(payload, page_number=page_number))


def convert_pages(pages_data: Iterable[Any]) -> list[StoryPage]:
    pages: list[StoryPage] = []
    for item in pages_data:
        if not isinstance(item, Mapping):
            raise UpstreamGenerationError(f"Invalid page payload: {item!r}")
        pages.append(_convert_page(item))
    return pages


def validate_page_sequence(pages: Sequence[StoryPage], expected_pages: int) -> None:
    if len(pages) != expected_pages:
        raise UpstreamGenerationError(
            f"Expected {expected_pages} pages, received {len(pages)}."
        )

    for expected, page in enumerate(pages, start=1):
        if page.page_number != expected:
            raise UpstreamGenerationError("Page numbers must be sequential starting from 1.")


def _convert_page(item: Mapping[str, Any]) -> StoryPage:
    try:
        number = int(item.get("page_number", item.get("pageNumber")))
        text = str(item["text"]).strip()
        image_prompt = str(item.get("image_prompt") or item.get("imagePrompt") or "").strip()
    except (KeyError, TypeError, ValueError) as exc:
        raise UpstreamGenerationError(f"Invalid page payload: {item}") from exc

    if not text or not image_prompt:
        raise UpstreamGenerationError(f"Page {number} is missing text or image_prompt content.")

    raw_objects = item.get("key_objects") or ()
    if isinstance(raw_objects, str):
        raw_objects = [raw_objects]
    key_objects = tuple(str(obj).strip() for obj in raw_objects if str(obj).strip())

    return StoryPage(
        page_number=number,
        text=text,
        image_prompt=image_prompt,
        main_action=_optional_text(item, "main_action"),
        setting=_optional_text(item, "setting"),
        key_objects=key_objects,
        emotional_tone=_optional_text(item, "emotional_tone"),
    )


def _load_json_object(raw_text: str) -> Mapping[str, Any]:
    text = (raw_text or "").strip()
    if text.startswith("```"):
        # Models occasionally wrap JSON in a Markdown fence despite instructions.
        text = text.strip("`")
        if text.lower().startswith("json"):
            text = text[4:]
        text = text.strip()

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as exc:
        raise UpstreamGenerationError("Failed to parse story response as JSON.") from exc

    if not isinstance(parsed, Mapping):
        raise UpstreamGenerationError("Story response JSON must be an object.")
    return parsed


def _require_text(payload: Mapping[str, Any], *keys: str) -> str:
    value = _optional_text(payload, *keys)
    if not value:
        raise UpstreamGenerationError(f"Story JSON is missing '{keys[0]}'.")
    return value


def _optional_text(payload: Mapping[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = payload.get(key)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return None
