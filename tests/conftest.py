"""Shared fixtures and fake collaborators for the TaleWeaver test suite."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Sequence

import pytest

from taleweaver.common import UpstreamGenerationError
from taleweaver.pipeline import ProgressRecord, ProgressStore, StorybookOrchestrator
from taleweaver.storage import InMemoryStorybookRepository, LocalAssetPublisher, Storybook
from taleweaver.story_generation import GeneratedStory, StoryPage


def make_story(page_count: int, *, art_style: str | None = None) -> GeneratedStory:
    return GeneratedStory(
        title="The Brave Rabbit",
        pages=tuple(
            StoryPage(
                page_number=number,
                text=f"Page {number} text.",
                image_prompt=f"the rabbit on page {number}",
                mood="adventure",
            )
            for number in range(1, page_count + 1)
        ),
        cover_image_prompt="the rabbit under a title banner",
        back_cover_image_prompt="the rabbit waving goodbye",
        author="Test Author",
        main_character_description="a small white rabbit with a blue scarf",
        default_clothing="a red vest",
        story_arc="A rabbit overcomes its fear of water.",
        art_style_hint=art_style,
    )


class FakeStoryGenerator:
    def __init__(self, *, error: Exception | None = None) -> None:
        self.error = error
        self.calls: list[dict[str, Any]] = []
        self.regenerate_calls: list[tuple[str | None, int]] = []

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
        self.calls.append(
            {
                "prompt": prompt,
                "references": list(reference_image_paths),
                "page_count": page_count,
                "art_style": art_style,
                "age": age,
                "author": author,
            }
        )
        if self.error is not None:
            raise self.error
        return make_story(page_count, art_style=art_style)

    def regenerate_page(self, storybook: Storybook, page_number: int) -> StoryPage:
        self.regenerate_calls.append((storybook.id, page_number))
        return StoryPage(
            page_number=page_number,
            text=f"Rewritten page {page_number}.",
            image_prompt=f"the rabbit splashing on page {page_number}",
        )


class FakeIllustrator:
    """Writes a tiny file per render and records what it was asked to draw."""

    def __init__(self, *, fail_on_call: int | None = None) -> None:
        self.fail_on_call = fail_on_call
        self.calls: list[dict[str, Any]] = []

    def render(
        self,
        image_prompt: str,
        reference_image_paths: Sequence[str | Path],
        art_style: str | None,
        *,
        output_path: str | Path,
    ) -> Path:
        references = list(reference_image_paths)
        self.calls.append(
            {
                "image_prompt": image_prompt,
                "references": references,
                "references_exist": [Path(item).exists() for item in references],
                "art_style": art_style,
                "output_path": Path(output_path),
            }
        )
        if self.fail_on_call is not None and len(self.calls) == self.fail_on_call:
            raise UpstreamGenerationError("image model is overloaded")
        destination = Path(output_path)
        destination.write_bytes(f"image {len(self.calls)}".encode("utf-8"))
        return destination


class RecordingProgressStore(ProgressStore):
    def __init__(self) -> None:
        super().__init__(ttl_seconds=None)
        self.history: list[tuple[str, ProgressRecord]] = []

    def set(self, job_id: str, record: ProgressRecord) -> None:
        self.history.append((job_id, record))
        super().set(job_id, record)

    def records_for(self, job_id: str) -> list[ProgressRecord]:
        return [record for key, record in self.history if key == job_id]


@pytest.fixture
def story_generator() -> FakeStoryGenerator:
    return FakeStoryGenerator()


@pytest.fixture
def illustrator() -> FakeIllustrator:
    return FakeIllustrator()


@pytest.fixture
def publisher(tmp_path: Path) -> LocalAssetPublisher:
    return LocalAssetPublisher(tmp_path / "assets")


@pytest.fixture
def repository() -> InMemoryStorybookRepository:
    return InMemoryStorybookRepository()


@pytest.fixture
def progress_store() -> RecordingProgressStore:
    return RecordingProgressStore()


@pytest.fixture
def work_dir(tmp_path: Path) -> Path:
    return tmp_path / "work"


@pytest.fixture
def make_orchestrator(
    story_generator: FakeStoryGenerator,
    illustrator: FakeIllustrator,
    publisher: LocalAssetPublisher,
    repository: InMemoryStorybookRepository,
    progress_store: RecordingProgressStore,
    work_dir: Path,
):
    """Build an orchestrator from the default fakes, overriding any collaborator by keyword."""
    created: list[StorybookOrchestrator] = []

    def factory(**overrides: Any) -> StorybookOrchestrator:
        options: dict[str, Any] = {
            "story_generator": story_generator,
            "illustrator": illustrator,
            "publisher": publisher,
            "repository": repository,
            "progress_store": progress_store,
            "max_workers": 2,
            "work_dir": work_dir,
        }
        options.update(overrides)
        instance = StorybookOrchestrator(**options)
        created.append(instance)
        return instance

    yield factory
    for instance in created:
        instance.shutdown(wait=True)


@pytest.fixture
def orchestrator(make_orchestrator) -> StorybookOrchestrator:
    return make_orchestrator()


@pytest.fixture
def photos(tmp_path: Path) -> list[Path]:
    paths = []
    for index in (1, 2):
        path = tmp_path / "uploads" / f"photo{index}.jpg"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(f"photo {index}".encode("utf-8"))
        paths.append(path)
    return paths
