"""
Storybook repositories.
"""

from __future__ import annotations

import dataclasses
import os
import tempfile
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Protocol

import yaml

from taleweaver.common import NotFoundError, PersistenceError

from .models import Storybook


class StorybookRepository(Protocol):
    def create(self, storybook: Storybook) -> Storybook:
        ...

    def get(self, storybook_id: str) -> Storybook:
        ...

    def update_page(
        self, storybook_id: str, page_number: int, fields: Mapping[str, Any]
    ) -> Storybook:
        ...


def _assign_identity(storybook: Storybook) -> Storybook:
    return dataclasses.replace(
        storybook,
        id=uuid.uuid4().hex,
        created_at=datetime.now(timezone.utc),
    )


class InMemoryStorybookRepository:
    """Process-local repository; the default for tests and the CLI."""

    def __init__(self) -> None:
        self._storybooks: dict[str, Storybook] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._storybooks)

    def create(self, storybook: Storybook) -> Storybook:
        stored = _assign_identity(storybook)
        with self._lock:
            self._storybooks[stored.id] = stored
        return stored

    def get(self, storybook_id: str) -> Storybook:
        with self._lock:
            try:
                return self._storybooks[storybook_id]
            except KeyError:
                raise NotFoundError(f"Storybook {storybook_id} not found.") from None

    def update_page(
        self, storybook_id: str, page_number: int, fields: Mapping[str, Any]
    ) -> Storybook:
        with self._lock:
            current = self._storybooks.get(storybook_id)
            if current is None:
                raise NotFoundError(f"Storybook {storybook_id} not found.")
            updated = current.with_page(page_number, **dict(fields))
            self._storybooks[storybook_id] = updated
            return updated

    def all(self) -> list[Storybook]:
        with self._lock:
            return list(self._storybooks.values())


class YamlStorybookRepository:
    """
    Stores each storybook as ``<directory>/<id>.yaml``.

    Writes go to a temporary file in the same directory and are moved into
    place with :func:`os.replace`, so readers never see a half-written record.
    """

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)
        self._directory.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _path(self, storybook_id: str) -> Path:
        if not storybook_id or Path(storybook_id).name != storybook_id:
            raise NotFoundError(f"Storybook {storybook_id!r} not found.")
        return self._directory / f"{storybook_id}.yaml"

    def create(self, storybook: Storybook) -> Storybook:
        stored = _assign_identity(storybook)
        with self._lock:
            self._write(stored)
        return stored

    def get(self, storybook_id: str) -> Storybook:
        path = self._path(storybook_id)
        if not path.exists():
            raise NotFoundError(f"Storybook {storybook_id} not found.")
        try:
            return Storybook.from_yaml(path)
        except (OSError, ValueError, yaml.YAMLError) as exc:
            raise PersistenceError(f"Failed to read storybook {storybook_id}: {exc}") from exc

    def update_page(
        self, storybook_id: str, page_number: int, fields: Mapping[str, Any]
    ) -> Storybook:
        with self._lock:
            updated = self.get(storybook_id).with_page(page_number, **dict(fields))
            self._write(updated)
            return updated

    def _write(self, storybook: Storybook) -> None:
        path = self._path(storybook.id or "")
        try:
            fd, temp_name = tempfile.mkstemp(
                dir=self._directory, prefix=f".{storybook.id}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(storybook.to_yaml())
                os.replace(temp_name, path)
            except BaseException:
                Path(temp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise PersistenceError(f"Failed to write storybook {storybook.id}: {exc}") from exc
