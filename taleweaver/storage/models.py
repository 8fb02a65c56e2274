"""
Durable storybook records.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Mapping

import yaml

from taleweaver.common import NotFoundError, ValidationError

PAGE_UPDATE_FIELDS = frozenset({"text", "image_url", "image_prompt"})


@dataclass(frozen=True)
class StorybookPage:
    """One persisted page: narrative text plus its published illustration."""

    page_number: int
    text: str
    image_url: str
    image_prompt: str
    mood: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "page_number": self.page_number,
            "text": self.text,
            "image_url": self.image_url,
            "image_prompt": self.image_prompt,
            "mood": self.mood,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "StorybookPage":
        try:
            return cls(
                page_number=int(payload["page_number"]),
                text=str(payload["text"]),
                image_url=str(payload["image_url"]),
                image_prompt=str(payload.get("image_prompt", "")),
                mood=payload.get("mood"),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"Invalid page entry: {payload}") from exc


@dataclass(frozen=True)
class Storybook:
    """
    A finished storybook.

    The character and style fields are carried over from the generated story so
    a page regenerated later still matches the rest of the book.
    """

    title: str
    pages: tuple[StorybookPage, ...]
    cover_image_url: str
    back_cover_image_url: str
    owner_id: str | None = None
    prompt: str = ""
    author: str = ""
    art_style: str = ""
    main_character_description: str = ""
    default_clothing: str = ""
    story_arc: str = ""
    inspiration_image_urls: tuple[str, ...] = ()
    id: str | None = None
    created_at: datetime | None = None

    def page(self, page_number: int) -> StorybookPage:
        for page in self.pages:
            if page.page_number == page_number:
                return page
        raise NotFoundError(f"Storybook {self.id} has no page {page_number}.")

    def with_page(self, page_number: int, **fields: Any) -> "Storybook":
        """
        Return a copy where only page ``page_number`` has its ``fields`` replaced.
        """
        unknown = set(fields) - PAGE_UPDATE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update page fields: {', '.join(sorted(unknown))}.")

        self.page(page_number)
        pages = tuple(
            dataclasses.replace(page, **fields) if page.page_number == page_number else page
            for page in self.pages
        )
        return dataclasses.replace(self, pages=pages)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "owner_id": self.owner_id,
            "prompt": self.prompt,
            "author": self.author,
            "art_style": self.art_style,
            "cover_image_url": self.cover_image_url,
            "back_cover_image_url": self.back_cover_image_url,
            "main_character_description": self.main_character_description,
            "default_clothing": self.default_clothing,
            "story_arc": self.story_arc,
            "inspiration_image_urls": list(self.inspiration_image_urls),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "pages": [page.to_dict() for page in self.pages],
        }

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False, allow_unicode=True)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Storybook":
        if "title" not in payload:
            raise ValueError("Storybook payload must include 'title'.")
        if "pages" not in payload:
            raise ValueError("Storybook payload must include 'pages'.")

        created_at = payload.get("created_at")
        if isinstance(created_at, str):
            created_at = datetime.fromisoformat(created_at)

        return cls(
            id=payload.get("id"),
            title=str(payload["title"]),
            owner_id=payload.get("owner_id"),
            prompt=str(payload.get("prompt") or ""),
            author=str(payload.get("author") or ""),
            art_style=str(payload.get("art_style") or ""),
            cover_image_url=str(payload.get("cover_image_url") or ""),
            back_cover_image_url=str(payload.get("back_cover_image_url") or ""),
            main_character_description=str(payload.get("main_character_description") or ""),
            default_clothing=str(payload.get("default_clothing") or ""),
            story_arc=str(payload.get("story_arc") or ""),
            inspiration_image_urls=tuple(payload.get("inspiration_image_urls") or ()),
            created_at=created_at,
            pages=tuple(StorybookPage.from_dict(entry) for entry in payload["pages"]),
        )

    @classmethod
    def from_yaml(cls, source: str | Path) -> "Storybook":
        path = Path(source)
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
        if not isinstance(data, Mapping):
            raise ValueError("Storybook YAML must deserialize to a mapping.")
        return cls.from_dict(data)
