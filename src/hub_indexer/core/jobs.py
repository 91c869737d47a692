"""Job registry: one active run per hub and per corpus.

Each entry holds the run's abort token and its ``IndexingJob`` counters.
Composer and coordinator receive the registry explicitly; nothing keeps job
state in module globals.
"""

import threading
from dataclasses import dataclass
from enum import StrEnum

from loguru import logger
from pydantic import BaseModel

from .cancellation import AbortToken


class JobStatus(StrEnum):
    IDLE = "idle"
    STARTED = "started"
    PROGRESS = "progress"
    COMPLETED = "completed"
    ERROR = "error"
    ABORTED = "aborted"


ACTIVE_STATUSES = frozenset({JobStatus.STARTED, JobStatus.PROGRESS})
TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.ERROR, JobStatus.ABORTED})


class IndexingJob(BaseModel):
    """Counters of one background run."""

    total: int = 0
    processed: int = 0
    error_count: int = 0
    status: JobStatus = JobStatus.IDLE
    message: str | None = None


@dataclass
class JobEntry:
    key: str
    token: AbortToken
    job: IndexingJob


def hub_key(hub_id: str) -> str:
    return f"hub:{hub_id}"


def corpus_key(name: str) -> str:
    return f"corpus:{name}"


class JobRegistry:
    """Keyed registry of in-flight runs."""

    def __init__(self) -> None:
        self._entries: dict[str, JobEntry] = {}
        self._lock = threading.Lock()

    def acquire(self, key: str, total: int = 0) -> JobEntry | None:
        """Register a new run under ``key``.

        Returns:
            The new entry (status ``started``), or ``None`` if a run is
            already registered under that key
        """
        with self._lock:
            if key in self._entries:
                logger.debug(f"Run already registered for {key}")
                return None
            entry = JobEntry(
                key=key,
                token=AbortToken(),
                job=IndexingJob(total=total, status=JobStatus.STARTED),
            )
            self._entries[key] = entry
            return entry

    def get(self, key: str) -> JobEntry | None:
        return self._entries.get(key)

    def is_active(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.job.status in ACTIVE_STATUSES

    def snapshot(self, key: str) -> IndexingJob:
        """Copy of the job counters (``idle`` when nothing is registered)."""
        entry = self._entries.get(key)
        if entry is None:
            return IndexingJob()
        return entry.job.model_copy()

    def update(self, key: str, **fields) -> IndexingJob:
        """Replace fields of a registered job and return the new counters."""
        with self._lock:
            entry = self._entries[key]
            entry.job = entry.job.model_copy(update=fields)
            return entry.job.model_copy()

    def abort(self, key: str) -> bool:
        """Set the abort token of the run registered under ``key``."""
        entry = self._entries.get(key)
        if entry is None:
            return False
        entry.token.set()
        logger.info(f"Abort requested for {key}")
        return True

    def release(self, key: str) -> None:
        """Drop the entry and clear its token so the key is idle again."""
        with self._lock:
            entry = self._entries.pop(key, None)
        if entry is not None:
            entry.token.clear()
            logger.debug(f"Released {key} ({entry.job.status})")

    def keys(self) -> list[str]:
        return list(self._entries)
