"""
Service layer for producing illustrated stories via LiteLLM-compatible models.
"""

from __future__ import annotations

import dataclasses
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any, Sequence

from taleweaver.common import (
    ChatResult,
    CompletionCallable,
    UpstreamGenerationError,
    call_chat_completion,
    image_to_data_url,
)

from .models import (
    DEFAULT_MOOD,
    PAGE_MOODS,
    GeneratedStory,
    StoryPage,
    parse_page_json,
    parse_story_json,
)
from .prompting import (
    StoryPrompt,
    build_mood_prompt,
    build_page_rewrite_prompt,
    build_story_prompt,
)

if TYPE_CHECKING:
    from taleweaver.storage.models import Storybook

logger = logging.getLogger(__name__)


class StoryGenerator:
    """
    Text Generation Client: turns a prompt and reference photos into a structured story.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        completion_fn: CompletionCallable | None = None,
        temperature: float = 0.8,
        max_output_tokens: int = 6000,
        mood_model: str | None = None,
        detect_moods: bool = True,
    ) -> None:
        self._api_key = api_key or os.getenv("OPENAI_API_KEY") or os.getenv("LITELLM_API_KEY")
        self._model = (
            model
            or os.getenv("TALEWEAVER_STORY_MODEL")
            or os.getenv("LITELLM_STORY_MODEL")
            or os.getenv("LITELLM_MODEL")
            or "gpt-4.1-mini"
        )
        self._completion_fn: CompletionCallable = completion_fn or call_chat_completion
        self._temperature = temperature
        self._max_output_tokens = max_output_tokens
        self._mood_model = mood_model or os.getenv("TALEWEAVER_MOOD_MODEL") or self._model
        self._detect_moods = detect_moods

    @property
    def model(self) -> str:
        """Return the model identifier in use."""
        return self._model

    def generate_story(
        self,
        prompt: str,
        reference_image_paths: Sequence[str | Path],
        page_count: int,
        art_style: str,
        *,
        age: int | None = None,
        author: str | None = None,
    ) -> GeneratedStory:
        """
        Generate title, pages and character notes for a new storybook.

        Raises
        ------
        UpstreamGenerationError
            On any model failure or when the response does not describe exactly
            ``page_count`` sequential pages.
        """
        story_prompt = build_story_prompt(
            prompt,
            page_count=page_count,
            art_style=art_style,
            has_reference_images=bool(reference_image_paths),
            age=age,
            author=author,
        )

        image_parts: list[dict[str, Any]] = []
        for image_path in reference_image_paths:
            try:
                image_parts.append(
                    {"type": "image_url", "image_url": {"url": image_to_data_url(image_path)}}
                )
            except OSError:
                logger.warning("Skipping unreadable reference image %s", image_path)

        user_content: list[dict[str, Any]] = [*image_parts, {"type": "text", "text": story_prompt.user}]
        raw_text = self._complete(story_prompt, user_content)
        story = parse_story_json(
            raw_text,
            expected_pages=page_count,
            art_style=art_style,
            author=author,
        )
        if self._detect_moods:
            pages = tuple(
                dataclasses.replace(page, mood=self.detect_page_mood(page.text))
                for page in story.pages
            )
            story = dataclasses.replace(story, pages=pages)
        logger.info("Generated story %r with %d pages", story.title, story.page_count)
        return story

    def detect_page_mood(self, page_text: str) -> str:
        """
        Classify ``page_text`` into one of ``PAGE_MOODS``.

        An unknown answer or a model error yields ``DEFAULT_MOOD``.
        """
        mood_prompt = build_mood_prompt(page_text, PAGE_MOODS)
        try:
            result = self._completion_fn(
                model=self._mood_model,
                messages=[
                    {"role": "system", "content": mood_prompt.system},
                    {"role": "user", "content": mood_prompt.user},
                ],
                temperature=0.0,
                max_tokens=10,
                api_key=self._api_key,
            )
        except Exception:
            logger.warning("Failed to detect page mood; using %s", DEFAULT_MOOD, exc_info=True)
            return DEFAULT_MOOD

        mood = result.text.strip().strip(".").lower()
        if mood in PAGE_MOODS:
            return mood
        logger.debug("Model answered unknown mood %r; using %s", result.text, DEFAULT_MOOD)
        return DEFAULT_MOOD

    def regenerate_page(self, storybook: "Storybook", page_number: int) -> StoryPage:
        """
        Rewrite a single page of an existing storybook, keeping it in step with its neighbours.
        """
        story_prompt: StoryPrompt = build_page_rewrite_prompt(
            title=storybook.title,
            story_arc=storybook.story_arc,
            pages=[page.to_dict() for page in storybook.pages],
            page_number=page_number,
        )
        raw_text = self._complete(story_prompt, story_prompt.user)
        return parse_page_json(raw_text, page_number=page_number)

    def _complete(self, story_prompt: StoryPrompt, user_content: Any) -> str:
        messages = [
            {"role": "system", "content": story_prompt.system},
            {"role": "user", "content": user_content},
        ]

        try:
            result: ChatResult = self._completion_fn(
                model=self._model,
                messages=messages,
                temperature=self._temperature,
                max_tokens=self._max_output_tokens,
                api_key=self._api_key,
                response_format={"type": "json_object"},
            )
        except UpstreamGenerationError:
            raise
        except Exception as exc:
            raise UpstreamGenerationError(f"Failed to generate story: {exc}") from exc

        if not result.text:
            raise UpstreamGenerationError("LLM response did not contain any text content.")

        return result.text
