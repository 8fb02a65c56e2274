"""
Reference chain selection that keeps illustrations consistent across pages.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Sequence

ImageHandle = str | Path


class ImageKind(str, Enum):
    COVER = "cover"
    PAGE = "page"
    BACK_COVER = "back_cover"


def is_remote(handle: ImageHandle) -> bool:
    return isinstance(handle, str) and handle.lower().startswith(("http://", "https://"))


def is_available(handle: ImageHandle | None) -> bool:
    """A URL is always usable; a local file only once it exists on disk."""
    if handle is None:
        return False
    if is_remote(handle):
        return True
    return Path(handle).is_file()


def build_references(
    kind: ImageKind,
    inspiration_images: Sequence[ImageHandle],
    cover_image: ImageHandle | None = None,
) -> list[ImageHandle]:
    """
    Return the ordered reference images for one illustration call.

    The cover is rendered from the inspiration photos alone. Every page and the
    back cover get the photos followed by the rendered cover, which locks in
    the book's art style and character design. The photos always come first so
    the real likeness is never outranked by a rendering of it.
    """
    references: list[ImageHandle] = list(inspiration_images)
    if kind is ImageKind.COVER:
        return references

    if is_available(cover_image):
        references.append(cover_image)  # type: ignore[arg-type]
    return references
