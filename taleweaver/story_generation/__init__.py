"""
Story generation utilities for crafting TaleWeaver narratives.
"""

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
from .story_service import StoryGenerator

__all__ = [
    "GeneratedStory",
    "StoryPage",
    "parse_story_json",
    "parse_page_json",
    "PAGE_MOODS",
    "DEFAULT_MOOD",
    "StoryPrompt",
    "build_story_prompt",
    "build_page_rewrite_prompt",
    "build_mood_prompt",
    "StoryGenerator",
]
