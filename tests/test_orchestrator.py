from __future__ import annotations

import threading
from pathlib import Path

import pytest

from taleweaver.common import NotFoundError
from taleweaver.pipeline import GenerationJob, GenerationStep

from conftest import FakeIllustrator, FakeStoryGenerator

PROMPT = "A brave rabbit who learns to swim"


def run_to_completion(orchestrator, job: GenerationJob):
    job_id = orchestrator.start_generation(job)
    return job_id, orchestrator.wait(job_id, timeout=30)


def test_start_generation_returns_job_id_and_queued_record(orchestrator, progress_store):
    job = GenerationJob.create(PROMPT)

    job_id = orchestrator.start_generation(job)
    orchestrator.wait(job_id, timeout=30)

    assert job_id == job.job_id
    first = progress_store.records_for(job_id)[0]
    assert first.step is GenerationStep.SUBMITTED
    assert first.percent == 0


def test_text_only_job_produces_storybook(orchestrator, repository, illustrator):
    job = GenerationJob.create(PROMPT, page_count=3, requester_id="user-1")

    job_id, record = run_to_completion(orchestrator, job)

    assert record.step is GenerationStep.DONE
    assert record.percent == 100
    assert record.storybook_id is not None
    assert "The Brave Rabbit" in record.message

    storybook = orchestrator.get_storybook(record.storybook_id)
    assert len(repository) == 1
    assert storybook.owner_id == "user-1"
    assert storybook.prompt == PROMPT
    assert storybook.author == "Test Author"
    assert [page.page_number for page in storybook.pages] == [1, 2, 3]
    assert storybook.cover_image_url == f"/api/storage/{job_id}_cover.png"
    assert storybook.back_cover_image_url == f"/api/storage/{job_id}_back_cover.png"
    assert storybook.pages[1].image_url == f"/api/storage/{job_id}_page_2.png"
    assert storybook.pages[0].text == "Page 1 text."
    assert storybook.pages[0].mood == "adventure"
    assert storybook.pages[0].image_prompt == (
        "a small white rabbit with a blue scarf, a red vest. the rabbit on page 1"
    )
    assert storybook.inspiration_image_urls == ()

    assert len(illustrator.calls) == job.image_operations
    cover_call, *page_calls, back_call = illustrator.calls
    assert cover_call["references"] == []
    for call in page_calls + [back_call]:
        assert [Path(item).name for item in call["references"]] == ["cover.png"]
        assert call["references_exist"] == [True]


def test_published_assets_exist(orchestrator, publisher):
    _, record = run_to_completion(orchestrator, GenerationJob.create(PROMPT, page_count=2))

    storybook = orchestrator.get_storybook(record.storybook_id)
    urls = [storybook.cover_image_url, storybook.back_cover_image_url]
    urls += [page.image_url for page in storybook.pages]
    for url in urls:
        assert Path(publisher.resolve(url)).is_file()


def test_reference_chain_uses_photos_then_cover(orchestrator, illustrator, photos, story_generator):
    job = GenerationJob.create(PROMPT, reference_images=photos, page_count=2)

    job_id, record = run_to_completion(orchestrator, job)

    assert record.step is GenerationStep.DONE
    assert story_generator.calls[0]["references"] == photos

    cover_call, *rest = illustrator.calls
    assert cover_call["references"] == photos
    for call in rest:
        assert call["references"][:2] == photos
        assert Path(call["references"][2]).name == "cover.png"
        assert call["references_exist"] == [True, True, True]

    storybook = orchestrator.get_storybook(record.storybook_id)
    assert storybook.inspiration_image_urls == (
        f"/api/storage/{job_id}_inspiration_1.jpg",
        f"/api/storage/{job_id}_inspiration_2.jpg",
    )


def test_progress_is_monotonic_and_ends_done(orchestrator, progress_store):
    job_id, _ = run_to_completion(orchestrator, GenerationJob.create(PROMPT, page_count=4))

    records = progress_store.records_for(job_id)
    percents = [record.percent for record in records]
    assert percents == sorted(percents)
    assert all(0 <= percent <= 100 for percent in percents)

    steps = [record.step for record in records]
    assert steps[0] is GenerationStep.SUBMITTED
    assert steps[-1] is GenerationStep.DONE
    assert steps.count(GenerationStep.DONE) == 1
    for expected in (
        GenerationStep.PROCESSING_IMAGES,
        GenerationStep.GENERATING_STORY,
        GenerationStep.GENERATING_ILLUSTRATIONS,
        GenerationStep.FINALIZING,
    ):
        assert expected in steps
    assert [record for record in records if record.is_terminal] == [records[-1]]


def test_story_failure_reports_failed_without_side_effects(
    make_orchestrator, repository, illustrator, publisher
):
    orchestrator = make_orchestrator(
        story_generator=FakeStoryGenerator(error=RuntimeError("quota exhausted"))
    )

    _, record = run_to_completion(orchestrator, GenerationJob.create(PROMPT))

    assert record.step is GenerationStep.FAILED
    assert record.message.startswith("Generation failed:")
    assert "quota exhausted" in record.error_detail
    assert record.percent == 30
    assert record.storybook_id is None
    assert illustrator.calls == []
    assert len(repository) == 0


def test_image_failure_midway_fails_job(make_orchestrator, repository, progress_store):
    orchestrator = make_orchestrator(illustrator=FakeIllustrator(fail_on_call=3))

    job_id, record = run_to_completion(orchestrator, GenerationJob.create(PROMPT, page_count=3))

    assert record.step is GenerationStep.FAILED
    assert "UpstreamGenerationError" in record.error_detail
    assert len(repository) == 0
    percents = [item.percent for item in progress_store.records_for(job_id)]
    assert percents == sorted(percents)


def test_publish_failure_fails_job(make_orchestrator, publisher, repository):
    class BrokenPublisher:
        def __init__(self) -> None:
            self.calls = 0

        def publish(self, local_path, logical_name):
            self.calls += 1
            if self.calls == 2:
                raise OSError("disk full")
            return publisher.publish(local_path, logical_name)

        def delete(self, logical_name):
            publisher.delete(logical_name)

        def resolve(self, url):
            return publisher.resolve(url)

    orchestrator = make_orchestrator(publisher=BrokenPublisher())

    _, record = run_to_completion(orchestrator, GenerationJob.create(PROMPT))

    assert record.step is GenerationStep.FAILED
    assert record.error_detail.startswith("PublishError")
    assert len(repository) == 0


def test_persistence_failure_fails_job(make_orchestrator):
    class BrokenRepository:
        def create(self, storybook):
            raise RuntimeError("database unavailable")

        def get(self, storybook_id):
            raise NotFoundError(storybook_id)

        def update_page(self, storybook_id, page_number, fields):
            raise NotFoundError(storybook_id)

    orchestrator = make_orchestrator(repository=BrokenRepository())

    _, record = run_to_completion(orchestrator, GenerationJob.create(PROMPT))

    assert record.step is GenerationStep.FAILED
    assert record.error_detail.startswith("PersistenceError")
    assert "database unavailable" in record.message


def test_temporary_files_removed_after_success(orchestrator, work_dir, photos):
    run_to_completion(orchestrator, GenerationJob.create(PROMPT, reference_images=photos))

    assert list(work_dir.iterdir()) == []
    assert all(photo.exists() for photo in photos)


def test_temporary_files_removed_after_failure(make_orchestrator, work_dir):
    orchestrator = make_orchestrator(illustrator=FakeIllustrator(fail_on_call=2))

    run_to_completion(orchestrator, GenerationJob.create(PROMPT))

    assert list(work_dir.iterdir()) == []


def test_cleanup_inputs_deletes_uploaded_photos(orchestrator, photos):
    job = GenerationJob.create(PROMPT, reference_images=photos, cleanup_inputs=True)

    run_to_completion(orchestrator, job)

    assert not any(photo.exists() for photo in photos)


def test_concurrent_jobs_are_isolated(make_orchestrator, repository):
    failing = FakeStoryGenerator(error=RuntimeError("boom"))
    broken = make_orchestrator(story_generator=failing, repository=repository)
    healthy = make_orchestrator(repository=repository)

    bad_id = broken.start_generation(GenerationJob.create(PROMPT))
    good_ids = [healthy.start_generation(GenerationJob.create(PROMPT)) for _ in range(3)]

    assert broken.wait(bad_id, timeout=30).step is GenerationStep.FAILED
    good_records = [healthy.wait(job_id, timeout=30) for job_id in good_ids]
    assert all(record.step is GenerationStep.DONE for record in good_records)
    assert len({record.storybook_id for record in good_records}) == 3
    assert len(repository) == 3


def test_unknown_job_progress_raises(orchestrator):
    with pytest.raises(NotFoundError):
        orchestrator.get_progress("no-such-job")


def test_wait_after_completion_returns_terminal_record(orchestrator):
    job_id, first = run_to_completion(orchestrator, GenerationJob.create(PROMPT))

    assert orchestrator.wait(job_id) == first
    assert orchestrator.active_jobs() == []


class ReencodingIllustrator(FakeIllustrator):
    """Writes a ``.jpg`` beside the requested path, like the web-optimising client does."""

    def render(self, image_prompt, reference_image_paths, art_style, *, output_path):
        written = super().render(
            image_prompt, reference_image_paths, art_style, output_path=output_path
        )
        relocated = written.with_suffix(".jpg")
        written.rename(relocated)
        return relocated


def test_cover_reference_follows_returned_render_path(make_orchestrator):
    illustrator = ReencodingIllustrator()
    orchestrator = make_orchestrator(illustrator=illustrator)

    job_id, record = run_to_completion(orchestrator, GenerationJob.create(PROMPT, page_count=1))

    assert record.step is GenerationStep.DONE
    _, page_call, back_call = illustrator.calls
    for call in (page_call, back_call):
        assert [Path(item).name for item in call["references"]] == ["cover.jpg"]
        assert call["references_exist"] == [True]

    storybook = orchestrator.get_storybook(record.storybook_id)
    assert storybook.cover_image_url == f"/api/storage/{job_id}_cover.jpg"
    assert storybook.pages[0].image_url == f"/api/storage/{job_id}_page_1.jpg"


class GatedIllustrator(FakeIllustrator):
    def __init__(self) -> None:
        super().__init__()
        self.started = threading.Event()
        self.release = threading.Event()

    def render(self, image_prompt, reference_image_paths, art_style, *, output_path):
        self.started.set()
        assert self.release.wait(timeout=30)
        return super().render(
            image_prompt, reference_image_paths, art_style, output_path=output_path
        )


def test_wait_timeout_returns_running_record(make_orchestrator):
    illustrator = GatedIllustrator()
    orchestrator = make_orchestrator(illustrator=illustrator)
    job_id = orchestrator.start_generation(GenerationJob.create(PROMPT))
    assert illustrator.started.wait(timeout=30)

    try:
        record = orchestrator.wait(job_id, timeout=0.05)

        assert record.step is GenerationStep.GENERATING_ILLUSTRATIONS
        assert not record.is_terminal
        assert orchestrator.active_jobs() == [job_id]
    finally:
        illustrator.release.set()

    assert orchestrator.wait(job_id, timeout=30).step is GenerationStep.DONE


def test_start_after_shutdown_leaves_no_record(orchestrator, progress_store):
    orchestrator.shutdown()
    job = GenerationJob.create(PROMPT)

    with pytest.raises(RuntimeError):
        orchestrator.start_generation(job)

    assert job.job_id not in progress_store
    with pytest.raises(NotFoundError):
        orchestrator.get_progress(job.job_id)
