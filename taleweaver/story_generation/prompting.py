"""
Prompt construction utilities for the TaleWeaver story generation workflow.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Sequence

STORY_JSON_SCHEMA = """{
  "title": "string, the story title",
  "author": "string, the author credit",
  "main_character_description": "string, detailed physical description of the main character",
  "default_clothing": "string, the character's typical outfit",
  "story_arc": "string, 2-3 sentence summary of the arc",
  "cover_image_prompt": "string, cover scene; the title must appear at the top and the author at the bottom as decorative lettering",
  "back_cover_image_prompt": "string, a calm closing scene for the back cover, no text",
  "pages": [
    {
      "page_number": 1,
      "text": "string, 100-150 words of narrative",
      "main_action": "string, the primary action in the scene",
      "setting": "string, the specific location with details",
      "key_objects": ["string, important objects or secondary characters"],
      "emotional_tone": "string, the emotional atmosphere",
      "image_prompt": "string, '[main_action] in [setting], featuring [key_objects]. [emotional_tone] atmosphere.'"
    }
  ]
}"""

PAGE_JSON_SCHEMA = """{
  "text": "string, 100-150 words of narrative",
  "main_action": "string",
  "setting": "string",
  "key_objects": ["string"],
  "emotional_tone": "string",
  "image_prompt": "string, '[main_action] in [setting], featuring [key_objects]. [emotional_tone] atmosphere.'"
}"""


@dataclass(frozen=True)
class StoryPrompt:
    """
    Container for the system and user prompts passed to the chat model.
    """

    system: str
    user: str


def act_breakdown(page_count: int) -> tuple[int, int, int]:
    """
    Split ``page_count`` into (beginning, middle, end) page counts.

    Books of three or more pages give every act at least one page, with roughly
    a quarter each for the beginning and the end.
    """
    if page_count <= 2:
        return 1, 0, max(0, page_count - 1)

    beginning = max(1, round(page_count * 0.25))
    end = max(1, round(page_count * 0.25))
    middle = page_count - beginning - end
    if middle < 1:
        middle = 1
        if beginning > 1:
            beginning -= 1
        elif end > 1:
            end -= 1
    return beginning, middle, end


def narrative_structure(page_count: int) -> str:
    if page_count == 1:
        return "a single page: combine introduction, challenge, and resolution into one cohesive scene."
    if page_count == 2:
        return (
            "a two-page format:\n"
            "   - Page 1: introduce the character and present the challenge or adventure\n"
            "   - Page 2: show the resolution and what was learned"
        )

    beginning, middle, _ = act_breakdown(page_count)
    return (
        "a three-act structure:\n"
        f"   - BEGINNING (pages 1-{beginning}): introduce the main character, setting, and normal world\n"
        f"   - MIDDLE (pages {beginning + 1}-{beginning + middle}): present the conflict, show struggles "
        "and attempts to overcome obstacles\n"
        f"   - END (pages {beginning + middle + 1}-{page_count}): resolve the conflict, show growth, "
        "provide closure"
    )


def build_story_prompt(
    prompt: str,
    *,
    page_count: int,
    art_style: str,
    has_reference_images: bool = False,
    age: int | None = None,
    author: str | None = None,
) -> StoryPrompt:
    """
    Build the prompt pair used to solicit a complete illustrated story from the LLM.
    """
    photo_clause = ""
    if has_reference_images:
        photo_clause = (
            " using the provided reference photos for character inspiration. IMPORTANT: maintain the "
            "actual age and appearance of people from the reference photos - if an adult is shown, keep "
            "them as an adult; if a child is shown, keep them as a child"
        )

    audience_clause = ""
    if age is not None:
        audience_clause = f"\n- Write for a reader who is {age} years old; pick vocabulary and sentence length accordingly."

    system_prompt = f"""You are a storybook author creating a {page_count}-page illustrated story{photo_clause}.

Create a cohesive story following {narrative_structure(page_count)}

Writing directives:
- Keep the main character central in every scene and consistent from page to page.
- Describe the main character's physical appearance and default clothing once in the dedicated fields;
  do NOT repeat them inside image prompts, they are added automatically.
- Only mention different clothing in an image prompt when the scene requires it (e.g. pajamas at bedtime).
- Illustrations will be rendered in this style: {art_style}.{audience_clause}
- Keep the story warm, safe, and kind for children.

Respond with valid JSON matching this schema, with exactly {page_count} pages numbered from 1:
{STORY_JSON_SCHEMA}

Do not include commentary outside the JSON."""

    author_line = f"\nAuthor credit: {author}" if author else ""
    user_prompt = f"Here is the story idea: {prompt}{author_line}"

    return StoryPrompt(system=system_prompt, user=user_prompt)


def build_page_rewrite_prompt(
    *,
    title: str,
    story_arc: str,
    pages: Sequence[Mapping[str, object]],
    page_number: int,
) -> StoryPrompt:
    """
    Build the prompt pair for rewriting one page so it still fits between its neighbours.
    """
    total_pages = len(pages)
    by_number = {int(page["page_number"]): page for page in pages}  # type: ignore[arg-type]

    context_lines: list[str] = []
    previous_page = by_number.get(page_number - 1)
    if previous_page is not None:
        context_lines.append(f"Previous page ({page_number - 1}): {previous_page['text']}")
    next_page = by_number.get(page_number + 1)
    if next_page is not None:
        context_lines.append(f"Next page ({page_number + 1}): {next_page['text']}")
    context = "\n\n".join(context_lines) or "This book has no neighbouring pages."

    system_prompt = f"""You are regenerating page {page_number} of a {total_pages}-page storybook titled "{title}".

Requirements:
1. The regenerated page must fit naturally between the surrounding pages.
2. Keep the existing character; appearance and default clothing are added to image prompts automatically.
3. Follow the established story arc: {story_arc or "(not recorded)"}
4. Keep the text to 100-150 words in the same tone as the rest of the book.

Respond with valid JSON matching this schema:
{PAGE_JSON_SCHEMA}

Do not include commentary outside the JSON."""

    user_prompt = f"{context}\n\nGenerate a new version of page {page_number}."
    return StoryPrompt(system=system_prompt, user=user_prompt)


def build_mood_prompt(page_text: str, moods: Sequence[str]) -> StoryPrompt:
    """
    Build the prompt pair asking for the single mood word that fits ``page_text``.
    """
    descriptions = {
        "calm": "Peaceful, serene, gentle, relaxing scenes",
        "adventure": "Exciting, energetic, action-filled, exploring",
        "mystery": "Curious, intriguing, puzzling, discovering",
        "happy": "Joyful, cheerful, fun, celebrating",
        "suspense": "Tense, uncertain, anticipating, nerve-wracking",
        "dramatic": "Intense, powerful, climactic, emotional",
    }
    options = "\n".join(
        f"- {mood}: {descriptions[mood]}" if mood in descriptions else f"- {mood}"
        for mood in moods
    )
    system_prompt = f"""You are an emotion and mood analyzer. Determine the overall mood of the given text.

Choose ONLY ONE of these moods:
{options}

Return ONLY the single mood word that best matches the text."""

    return StoryPrompt(system=system_prompt, user=f"Analyze this text and return the mood: {page_text}")
