"""Queueing of jobs for workers and tracking of where artifacts live."""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field

from distbuild.messages import JobResult, JobSpec

_POLL_INTERVAL = 0.05


class BlockingQueue:
    """A FIFO queue whose ``take`` blocks until an item arrives or the queue closes."""

    def __init__(self) -> None:
        self._condition = threading.Condition()
        self._items: deque[PendingJob] = deque()
        self._closed = False

    def put(self, job: PendingJob) -> None:
        """Append a job; jobs put after the queue is closed are dropped."""
        with self._condition:
            if self._closed:
                return
            self._items.append(job)
            self._condition.notify_all()

    def take(self) -> PendingJob | None:
        """Remove and return the oldest job, or None once the queue is closed and empty."""
        return self._take(None)

    def _take(self, cancel: threading.Event | None) -> PendingJob | None:
        with self._condition:
            while True:
                if cancel is not None and cancel.is_set():
                    return None
                if self._items:
                    return self._items.popleft()
                if self._closed:
                    return None
                self._condition.wait(None if cancel is None else _POLL_INTERVAL)

    def close(self) -> None:
        """Close the queue and wake every waiting consumer."""
        with self._condition:
            self._closed = True
            self._condition.notify_all()


@dataclass
class PendingJob:
    """A scheduled job; ``finished`` is set once ``result`` is known."""

    job: JobSpec
    finished: threading.Event = field(default_factory=threading.Event)
    result: JobResult | None = None


@dataclass
class SchedulerConfig:
    """Timeouts, in seconds, for waiting on cached results and on dependencies."""

    cache_timeout: float = 0.0
    deps_timeout: float = 0.0


class Scheduler:
    """Hands scheduled jobs to workers and remembers which worker built what."""

    def __init__(self, config: SchedulerConfig) -> None:
        self.config = config
        self._queue = BlockingQueue()
        self._lock = threading.Lock()
        self._artifacts: dict[str, str] = {}
        self._jobs: dict[str, PendingJob] = {}

    def locate_artifact(self, artifact_id: str) -> str | None:
        """Return the worker holding ``artifact_id``, or None if it is unknown."""
        with self._lock:
            return self._artifacts.get(artifact_id)

    def on_job_complete(self, worker_id: str, job_id: str, result: JobResult) -> bool:
        """Record the result of a scheduled job and wake those waiting for it."""
        with self._lock:
            try:
                pending = self._jobs[job_id]
            except KeyError:
                raise KeyError(f"job was never scheduled: {job_id}") from None
            pending.result = result
            pending.finished.set()
        return True

    def schedule_job(self, job: JobSpec) -> PendingJob:
        """Queue a job, or return the pending job already scheduled under its id."""
        with self._lock:
            existing = self._jobs.get(job.id)
            if existing is not None:
                return existing
            pending = PendingJob(job=job)
            self._jobs[job.id] = pending
            self._queue.put(pending)
            return pending

    def pick_job(self, worker_id: str, cancel: threading.Event | None = None) -> PendingJob | None:
        """Wait for a job for ``worker_id``; None if cancelled or the scheduler stopped."""
        pending = self._queue._take(cancel)
        if pending is None:
            return None
        with self._lock:
            self._artifacts[pending.job.id] = worker_id
        return pending

    def stop(self) -> None:
        """Stop handing out jobs and release every waiting worker."""
        self._queue.close()