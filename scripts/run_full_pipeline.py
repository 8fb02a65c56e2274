"""
CLI example to run the complete TaleWeaver pipeline end-to-end.

Usage:
    python scripts/run_full_pipeline.py \
        --prompt "A brave rabbit who learns to swim" \
        --reference-image example_images/rabbit.jpg \
        --pages 5 \
        --output storybook.yaml
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path

from tqdm.auto import tqdm

# Ensure project root is on the Python path when running as a script.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from taleweaver import (
    GenerationJob,
    GenerationStep,
    ProgressRecord,
    StorybookOrchestrator,
    TaleWeaverError,
)
from taleweaver.storage import LocalAssetPublisher, YamlStorybookRepository


class ProgressTracker:
    """
    Renders polled progress records as a single command-line progress bar.
    """

    def __init__(self) -> None:
        self._bar = tqdm(total=100, unit="%", bar_format="{l_bar}{bar}| {n:.0f}/{total:.0f}%")
        self._last_step: GenerationStep | None = None

    def __call__(self, record: ProgressRecord) -> None:
        if record.step is not self._last_step:
            self._write(f"[{record.step.value}] {record.message}")
            self._last_step = record.step
        self._bar.set_description(record.message[:48])
        self._bar.update(max(0.0, record.percent - self._bar.n))

    def close(self) -> None:
        self._bar.close()

    @staticmethod
    def _write(message: str) -> None:
        tqdm.write(message)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the full TaleWeaver generation pipeline.")
    parser.add_argument("--prompt", required=True, help="Story idea for the book.")
    parser.add_argument(
        "--reference-image",
        action="append",
        default=[],
        help="Path to an inspiration photo (repeatable, up to 5).",
    )
    parser.add_argument("--pages", type=int, default=None, help="Number of story pages (1-12).")
    parser.add_argument("--art-style", default=None, help="Illustration style for every image.")
    parser.add_argument("--author", default=None, help="Author credit for the cover.")
    parser.add_argument("--age", default=None, help="Reader age used to pitch the vocabulary.")
    parser.add_argument(
        "--asset-dir",
        default="generated",
        help="Directory where published illustrations are stored.",
    )
    parser.add_argument(
        "--library-dir",
        default="library",
        help="Directory of persisted storybook YAML records.",
    )
    parser.add_argument(
        "--output",
        default=None,
        help="Optional extra YAML file to write the finished storybook to.",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=1.0,
        help="Seconds between progress polls.",
    )
    parser.add_argument("--log-level", default="WARNING", help="Python logging level.")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        job = GenerationJob.create(
            args.prompt,
            reference_images=args.reference_image,
            page_count=args.pages,
            art_style=args.art_style,
            author=args.author,
            age=args.age,
        )
    except TaleWeaverError as exc:
        print(f"Invalid request: {exc}", file=sys.stderr)
        return 2

    orchestrator = StorybookOrchestrator(
        publisher=LocalAssetPublisher(args.asset_dir),
        repository=YamlStorybookRepository(args.library_dir),
    )
    tracker = ProgressTracker()

    try:
        job_id = orchestrator.start_generation(job)
        record = orchestrator.get_progress(job_id)
        while not record.is_terminal:
            tracker(record)
            time.sleep(args.poll_interval)
            record = orchestrator.get_progress(job_id)
        tracker(record)
    finally:
        tracker.close()
        orchestrator.shutdown(wait=True)

    if record.step is GenerationStep.FAILED:
        print(f"{record.message}\n{record.error_detail or ''}".rstrip(), file=sys.stderr)
        return 1

    storybook = orchestrator.get_storybook(record.storybook_id or "")
    print(f"Storybook {storybook.id} saved to {Path(args.library_dir) / f'{storybook.id}.yaml'}")
    if args.output:
        output_path = Path(args.output)
        output_path.write_text(storybook.to_yaml(), encoding="utf-8")
        print(f"Saved storybook to {output_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
