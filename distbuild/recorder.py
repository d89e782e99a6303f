"""A build listener that collects job output and outcomes in memory."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class RecordedJob:
    """What was seen of one job; ``code`` stays None until the job ends."""

    stdout: str = ""
    stderr: str = ""
    code: int | None = None
    error: str = ""


@dataclass
class Recorder:
    """Collects the output and result of every job reported to it."""

    jobs: dict[str, RecordedJob] = field(default_factory=dict)

    def __init__(self) -> None:
        self.jobs = {}

    def _job(self, job_id: str) -> RecordedJob:
        return self.jobs.setdefault(job_id, RecordedJob())

    def on_job_stdout(self, job_id: str, stdout: bytes) -> None:
        self._job(job_id).stdout += stdout.decode("utf-8", errors="replace")

    def on_job_stderr(self, job_id: str, stderr: bytes) -> None:
        self._job(job_id).stderr += stderr.decode("utf-8", errors="replace")

    def on_job_finished(self, job_id: str) -> None:
        self._job(job_id).code = 0

    def on_job_failed(self, job_id: str, code: int, error: str) -> None:
        job = self._job(job_id)
        job.code = code
        job.error = error