"""
Orchestrates storybook generation from a prompt to a persisted, illustrated book.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from pathlib import Path
from typing import Any, Protocol, Sequence

from taleweaver.ai_generation import ReplicateIllustrator, build_image_prompt
from taleweaver.common import (
    PermissionDeniedError,
    PersistenceError,
    PublishError,
    TaleWeaverError,
    UpstreamGenerationError,
)
from taleweaver.storage import (
    AssetPublisher,
    InMemoryStorybookRepository,
    LocalAssetPublisher,
    Storybook,
    StorybookPage,
    StorybookRepository,
)
from taleweaver.story_generation import GeneratedStory, StoryGenerator, StoryPage

from .job import GenerationJob
from .progress import GenerationStep, JobProgressReporter, ProgressRecord, ProgressStore
from .references import ImageHandle, ImageKind, build_references

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT_JOBS = 20

# Stage percents; illustrations interpolate linearly between start and end.
PROCESSING_IMAGES_PERCENT = 10
GENERATING_STORY_PERCENT = 30
ILLUSTRATIONS_START_PERCENT = 50
ILLUSTRATIONS_END_PERCENT = 92
FINALIZING_PERCENT = 95


class TextGenerationClient(Protocol):
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
        ...

    def regenerate_page(self, storybook: Storybook, page_number: int) -> StoryPage:
        ...


class IllustrationClient(Protocol):
    def render(
        self,
        image_prompt: str,
        reference_image_paths: Sequence[str | Path],
        art_style: str | None,
        *,
        output_path: str | Path,
    ) -> Path:
        ...


class _JobWorkspace:
    """
    Per-job scratch directory that remembers every file it hands out.
    """

    def __init__(self, job: GenerationJob, base_dir: Path | None) -> None:
        self._job = job
        if base_dir is not None:
            base_dir.mkdir(parents=True, exist_ok=True)
        self.directory = Path(
            tempfile.mkdtemp(prefix=f"taleweaver-{job.job_id}-", dir=base_dir)
        )
        self._files: list[Path] = []

    def path(self, name: str) -> Path:
        return self.directory / name

    def track(self, path: Path) -> Path:
        if path not in self._files:
            self._files.append(path)
        return path

    def discard(self, path: Path) -> None:
        _remove_file(path)

    def cleanup(self) -> None:
        for path in self._files:
            _remove_file(path)
        if self._job.cleanup_inputs:
            for path in self._job.reference_images:
                _remove_file(path)
        try:
            shutil.rmtree(self.directory)
        except FileNotFoundError:
            pass
        except OSError:
            logger.warning("Failed to remove work directory %s", self.directory, exc_info=True)


def _asset_suffix(path: Path) -> str:
    return path.suffix.lower() or ".png"


def _remove_file(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError:
        logger.warning("Failed to delete temporary file %s", path, exc_info=True)


class StorybookOrchestrator:
    """
    Runs generation jobs in the background and answers progress polls.

    Each job is a single task on a bounded thread pool. Inside a job every
    stage and every image is sequential: pages use the rendered cover as a
    reference, so the cover must exist before any page is drawn.
    """

    def __init__(
        self,
        *,
        story_generator: TextGenerationClient | None = None,
        illustrator: IllustrationClient | None = None,
        publisher: AssetPublisher | None = None,
        repository: StorybookRepository | None = None,
        progress_store: ProgressStore | None = None,
        max_workers: int | None = None,
        work_dir: str | Path | None = None,
    ) -> None:
        self._story_generator = story_generator or StoryGenerator()
        self._illustrator = illustrator or ReplicateIllustrator()
        self._publisher = publisher or LocalAssetPublisher(
            os.getenv("TALEWEAVER_ASSET_DIR", "generated")
        )
        # Both collaborators define __len__, so an empty instance is falsy.
        self._repository = repository if repository is not None else InMemoryStorybookRepository()
        self._progress_store = (
            progress_store if progress_store is not None else ProgressStore.from_env()
        )
        self._work_dir = Path(work_dir) if work_dir is not None else None

        workers = max_workers or int(
            os.getenv("TALEWEAVER_MAX_CONCURRENT_JOBS", str(DEFAULT_MAX_CONCURRENT_JOBS))
        )
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, workers), thread_name_prefix="taleweaver-job"
        )
        self._jobs: dict[str, Future[None]] = {}
        self._jobs_lock = threading.Lock()

    @property
    def progress_store(self) -> ProgressStore:
        return self._progress_store

    @property
    def repository(self) -> StorybookRepository:
        return self._repository

    def __enter__(self) -> "StorybookOrchestrator":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.shutdown(wait=True)

    def start_generation(self, job: GenerationJob) -> str:
        """
        Queue ``job`` and return its id immediately; poll :meth:`get_progress` for the outcome.
        """
        reporter = JobProgressReporter(self._progress_store, job.job_id)
        reporter.update(GenerationStep.SUBMITTED, 0, "Queued for generation...")

        try:
            future = self._executor.submit(self._run_job, job, reporter)
        except RuntimeError:
            # No task will ever finish this job once the pool is shut down.
            self._progress_store.clear(job.job_id)
            raise
        with self._jobs_lock:
            self._jobs[job.job_id] = future
        future.add_done_callback(lambda _: self._forget(job.job_id))
        return job.job_id

    def get_progress(self, job_id: str) -> ProgressRecord:
        """
        Return the latest progress record; raises ``NotFoundError`` for unknown or expired jobs.
        """
        return self._progress_store.get(job_id)

    def wait(self, job_id: str, timeout: float | None = None) -> ProgressRecord:
        """
        Block until the job's task finishes (or ``timeout`` elapses) and return its latest record.

        On timeout the record of the still running job is returned.
        """
        with self._jobs_lock:
            future = self._jobs.get(job_id)
        if future is not None:
            try:
                future.result(timeout=timeout)
            except FutureTimeoutError:
                logger.debug("Job %s still running after %.1fs", job_id, timeout or 0.0)
        return self.get_progress(job_id)

    def active_jobs(self) -> list[str]:
        with self._jobs_lock:
            return [job_id for job_id, future in self._jobs.items() if not future.done()]

    def shutdown(self, *, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _forget(self, job_id: str) -> None:
        with self._jobs_lock:
            self._jobs.pop(job_id, None)

    def _run_job(self, job: GenerationJob, reporter: JobProgressReporter) -> None:
        workspace: _JobWorkspace | None = None
        try:
            workspace = _JobWorkspace(job, self._work_dir)
            self._generate(job, reporter, workspace)
        except Exception as exc:
            logger.exception("Storybook generation failed for job %s", job.job_id)
            reporter.failed(
                f"Generation failed: {exc}",
                error_detail=f"{type(exc).__name__}: {exc}",
            )
        finally:
            if workspace is not None:
                workspace.cleanup()

    def _generate(
        self,
        job: GenerationJob,
        reporter: JobProgressReporter,
        workspace: _JobWorkspace,
    ) -> Storybook:
        reporter.update(
            GenerationStep.PROCESSING_IMAGES,
            PROCESSING_IMAGES_PERCENT,
            "Processing inspiration images...",
        )
        inspiration = list(job.reference_images)
        for image in inspiration:
            if not image.is_file():
                raise FileNotFoundError(f"Reference image not found at '{image}'.")

        reporter.update(
            GenerationStep.GENERATING_STORY,
            GENERATING_STORY_PERCENT,
            "Generating story outline...",
        )
        story = self._generate_story(job, inspiration)

        reporter.update(
            GenerationStep.GENERATING_ILLUSTRATIONS,
            ILLUSTRATIONS_START_PERCENT,
            "Creating beautiful illustrations...",
        )
        total = job.image_operations
        completed = 0

        def advance(label: str) -> None:
            nonlocal completed
            completed += 1
            span = ILLUSTRATIONS_END_PERCENT - ILLUSTRATIONS_START_PERCENT
            reporter.update(
                GenerationStep.GENERATING_ILLUSTRATIONS,
                ILLUSTRATIONS_START_PERCENT + span * completed / total,
                f"Generated {label} ({completed} of {total} illustrations)",
            )

        art_style = story.art_style_hint or job.art_style

        cover_url, cover_path = self._illustrate(
            workspace,
            kind=ImageKind.COVER,
            image_prompt=self._character_prompt(story, story.cover_image_prompt),
            inspiration=inspiration,
            cover=None,
            art_style=art_style,
            output_path=workspace.path("cover.png"),
            logical_name=f"{job.job_id}_cover",
            keep_local=True,
        )
        advance("cover illustration")

        pages: list[StorybookPage] = []
        for page in story.pages:
            image_prompt = self._character_prompt(story, page.image_prompt)
            image_url, _ = self._illustrate(
                workspace,
                kind=ImageKind.PAGE,
                image_prompt=image_prompt,
                inspiration=inspiration,
                cover=cover_path,
                art_style=art_style,
                output_path=workspace.path(f"page_{page.page_number}.png"),
                logical_name=f"{job.job_id}_page_{page.page_number}",
            )
            pages.append(
                StorybookPage(
                    page_number=page.page_number,
                    text=page.text,
                    image_url=image_url,
                    image_prompt=image_prompt,
                    mood=page.mood,
                )
            )
            advance(f"illustration for page {page.page_number}")

        back_cover_url, _ = self._illustrate(
            workspace,
            kind=ImageKind.BACK_COVER,
            image_prompt=self._character_prompt(story, story.back_cover_image_prompt),
            inspiration=inspiration,
            cover=cover_path,
            art_style=art_style,
            output_path=workspace.path("back_cover.png"),
            logical_name=f"{job.job_id}_back_cover",
        )
        advance("back cover illustration")

        reporter.update(
            GenerationStep.FINALIZING,
            FINALIZING_PERCENT,
            "Finalizing your storybook...",
        )
        inspiration_urls = tuple(
            self._publish(image, f"{job.job_id}_inspiration_{index}{image.suffix.lower() or '.jpg'}")
            for index, image in enumerate(inspiration, start=1)
        )

        storybook = Storybook(
            title=story.title,
            pages=tuple(pages),
            cover_image_url=cover_url,
            back_cover_image_url=back_cover_url,
            owner_id=job.requester_id,
            prompt=job.prompt,
            author=story.author,
            art_style=art_style,
            main_character_description=story.main_character_description,
            default_clothing=story.default_clothing,
            story_arc=story.story_arc,
            inspiration_image_urls=inspiration_urls,
        )
        stored = self._persist(storybook)
        reporter.done(
            stored.id or "",
            f'Complete! Your storybook "{stored.title}" is ready.',
        )
        logger.info("Job %s produced storybook %s", job.job_id, stored.id)
        return stored

    def regenerate_page(
        self,
        storybook_id: str,
        page_number: int,
        *,
        requester_id: str | None = None,
    ) -> StorybookPage:
        """
        Rewrite and redraw one page of an existing storybook.

        References are anchored on the book's first inspiration photo and its
        published cover, so the new page keeps the established look. Only the
        page's ``text``, ``image_url`` and ``image_prompt`` change.

        Raises
        ------
        NotFoundError
            Unknown storybook or page number.
        PermissionDeniedError
            The storybook has an owner other than ``requester_id``.
        """
        storybook = self._repository.get(storybook_id)
        if storybook.owner_id is not None and storybook.owner_id != requester_id:
            raise PermissionDeniedError(
                f"User {requester_id} may not modify storybook {storybook_id}."
            )
        storybook.page(page_number)

        try:
            draft = self._story_generator.regenerate_page(storybook, page_number)
        except TaleWeaverError:
            raise
        except Exception as exc:
            raise UpstreamGenerationError(f"Failed to regenerate page: {exc}") from exc

        image_prompt = build_image_prompt(
            draft.image_prompt,
            character_description=storybook.main_character_description,
            default_clothing=storybook.default_clothing,
        )
        inspiration = [
            self._publisher.resolve(url) for url in storybook.inspiration_image_urls[:1]
        ]
        cover = (
            self._publisher.resolve(storybook.cover_image_url)
            if storybook.cover_image_url
            else None
        )
        references = build_references(ImageKind.PAGE, inspiration, cover)

        if self._work_dir is not None:
            self._work_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(prefix="taleweaver-regen-", dir=self._work_dir) as scratch:
            rendered = self._render(
                image_prompt,
                references,
                storybook.art_style,
                Path(scratch) / f"page_{page_number}.png",
            )
            logical_name = (
                f"{storybook_id}_page_{page_number}_{uuid.uuid4().hex[:8]}{_asset_suffix(rendered)}"
            )
            image_url = self._publish(rendered, logical_name)

        fields = {"text": draft.text, "image_url": image_url, "image_prompt": image_prompt}
        try:
            updated = self._repository.update_page(storybook_id, page_number, fields)
        except Exception as exc:
            # Nothing references the new image if the update did not land.
            self._publisher.delete(logical_name)
            if isinstance(exc, TaleWeaverError):
                raise
            raise PersistenceError(f"Failed to update storybook {storybook_id}: {exc}") from exc

        logger.info("Regenerated page %d of storybook %s", page_number, storybook_id)
        return updated.page(page_number)

    def get_storybook(self, storybook_id: str) -> Storybook:
        return self._repository.get(storybook_id)

    def _generate_story(self, job: GenerationJob, inspiration: Sequence[Path]) -> GeneratedStory:
        try:
            return self._story_generator.generate_story(
                job.prompt,
                list(inspiration),
                job.page_count,
                job.art_style,
                age=job.age,
                author=job.author,
            )
        except TaleWeaverError:
            raise
        except Exception as exc:
            raise UpstreamGenerationError(f"Failed to generate story: {exc}") from exc

    @staticmethod
    def _character_prompt(story: GeneratedStory, scene_prompt: str) -> str:
        return build_image_prompt(
            scene_prompt,
            character_description=story.main_character_description,
            default_clothing=story.default_clothing,
        )

    def _illustrate(
        self,
        workspace: _JobWorkspace,
        *,
        kind: ImageKind,
        image_prompt: str,
        inspiration: Sequence[ImageHandle],
        cover: ImageHandle | None,
        art_style: str,
        output_path: Path,
        logical_name: str,
        keep_local: bool = False,
    ) -> tuple[str, Path]:
        """
        Render, publish and return ``(url, rendered_path)``.

        ``logical_name`` is a stem; the suffix comes from the file the client
        actually wrote, which may differ from ``output_path``.
        """
        references = build_references(kind, inspiration, cover)
        workspace.track(output_path)
        rendered = workspace.track(self._render(image_prompt, references, art_style, output_path))
        url = self._publish(rendered, f"{logical_name}{_asset_suffix(rendered)}")
        if not keep_local:
            workspace.discard(rendered)
        return url, rendered

    def _render(
        self,
        image_prompt: str,
        references: Sequence[ImageHandle],
        art_style: str,
        output_path: Path,
    ) -> Path:
        try:
            return Path(
                self._illustrator.render(
                    image_prompt,
                    list(references),
                    art_style,
                    output_path=output_path,
                )
            )
        except TaleWeaverError:
            raise
        except Exception as exc:
            raise UpstreamGenerationError(f"Image generation failed: {exc}") from exc

    def _publish(self, local_path: Path, logical_name: str) -> str:
        try:
            return self._publisher.publish(local_path, logical_name)
        except TaleWeaverError:
            raise
        except Exception as exc:
            raise PublishError(f"Failed to publish {logical_name}: {exc}") from exc

    def _persist(self, storybook: Storybook) -> Storybook:
        try:
            return self._repository.create(storybook)
        except TaleWeaverError:
            raise
        except Exception as exc:
            raise PersistenceError(f"Failed to save storybook: {exc}") from exc
