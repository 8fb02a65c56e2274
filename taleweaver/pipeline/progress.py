"""
Progress records and the keyed store pollers read them from.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from taleweaver.common import NotFoundError

logger = logging.getLogger(__name__)

DEFAULT_PROGRESS_TTL = 3600.0


class GenerationStep(str, Enum):
    SUBMITTED = "submitted"
    PROCESSING_IMAGES = "processing_images"
    GENERATING_STORY = "generating_story"
    GENERATING_ILLUSTRATIONS = "generating_illustrations"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (GenerationStep.DONE, GenerationStep.FAILED)


@dataclass(frozen=True)
class ProgressRecord:
    """
    Latest known state of one generation job.

    ``storybook_id`` is only set on a ``done`` record and ``error_detail`` only
    on a ``failed`` one; ``message`` is always human readable.
    """

    step: GenerationStep
    percent: float
    message: str
    error_detail: str | None = None
    storybook_id: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.step.is_terminal

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "step": self.step.value,
            "percent": self.percent,
            "message": self.message,
        }
        if self.error_detail is not None:
            payload["error_detail"] = self.error_detail
        if self.storybook_id is not None:
            payload["storybook_id"] = self.storybook_id
        return payload


class ProgressStore:
    """
    Thread-safe, in-memory map from job id to its latest :class:`ProgressRecord`.

    Entries expire ``ttl_seconds`` after their last write so finished jobs do
    not pile up; pass ``ttl_seconds=None`` to keep them until cleared. Nothing
    survives a process restart.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float | None = DEFAULT_PROGRESS_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds is not None and ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive or None.")
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[ProgressRecord, float]] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_env(cls) -> "ProgressStore":
        raw_ttl = os.getenv("TALEWEAVER_PROGRESS_TTL")
        if raw_ttl is None:
            return cls()
        ttl = float(raw_ttl)
        return cls(ttl_seconds=ttl if ttl > 0 else None)

    def set(self, job_id: str, record: ProgressRecord) -> None:
        with self._lock:
            self._purge_locked()
            self._entries[job_id] = (record, self._clock())

    def get(self, job_id: str) -> ProgressRecord:
        with self._lock:
            self._purge_locked()
            try:
                record, _ = self._entries[job_id]
            except KeyError:
                raise NotFoundError(f"Generation job {job_id} not found.") from None
            return record

    def clear(self, job_id: str) -> None:
        with self._lock:
            self._entries.pop(job_id, None)

    def purge_expired(self) -> int:
        with self._lock:
            return self._purge_locked()

    def __contains__(self, job_id: object) -> bool:
        with self._lock:
            self._purge_locked()
            return job_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            self._purge_locked()
            return len(self._entries)

    def _purge_locked(self) -> int:
        if self._ttl is None:
            return 0
        cutoff = self._clock() - self._ttl
        expired = [job_id for job_id, (_, written) in self._entries.items() if written <= cutoff]
        for job_id in expired:
            del self._entries[job_id]
        if expired:
            logger.debug("Evicted %d expired progress record(s)", len(expired))
        return len(expired)


class JobProgressReporter:
    """
    Single writer for one job's progress entry; never lets ``percent`` go backwards.
    """

    def __init__(self, store: ProgressStore, job_id: str) -> None:
        self._store = store
        self._job_id = job_id
        self._percent = 0.0

    @property
    def percent(self) -> float:
        return self._percent

    def update(self, step: GenerationStep, percent: float, message: str) -> ProgressRecord:
        self._percent = max(self._percent, min(100.0, float(percent)))
        record = ProgressRecord(step=step, percent=self._percent, message=message)
        self._store.set(self._job_id, record)
        logger.info("Job %s: %s (%.0f%%) %s", self._job_id, step.value, self._percent, message)
        return record

    def done(self, storybook_id: str, message: str) -> ProgressRecord:
        self._percent = 100.0
        record = ProgressRecord(
            step=GenerationStep.DONE,
            percent=self._percent,
            message=message,
            storybook_id=storybook_id,
        )
        self._store.set(self._job_id, record)
        return record

    def failed(self, message: str, error_detail: str) -> ProgressRecord:
        record = ProgressRecord(
            step=GenerationStep.FAILED,
            percent=self._percent,
            message=message,
            error_detail=error_detail,
        )
        self._store.set(self._job_id, record)
        return record
