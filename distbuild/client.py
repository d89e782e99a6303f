"""Client that submits a build graph, uploads missing sources and reports results."""

from __future__ import annotations

import os
from typing import Any, Protocol

from distbuild.build_api import BuildClient
from distbuild.filecache_transfer import FileCacheClient
from distbuild.messages import BuildRequest, SignalRequest, StatusUpdate, UploadDone


class BuildListener(Protocol):
    """Receives the results of the jobs of a build."""

    def on_job_stdout(self, job_id: str, stdout: bytes) -> None: ...

    def on_job_stderr(self, job_id: str, stderr: bytes) -> None: ...

    def on_job_finished(self, job_id: str) -> None: ...

    def on_job_failed(self, job_id: str, code: int, error: str) -> None: ...


def _dispatch(update: StatusUpdate, listener: BuildListener) -> None:
    job = update.job_finished
    if job is None:
        return
    if update.build_failed is not None:
        listener.on_job_failed(job.id, job.exit_code, update.build_failed.error)
    if update.build_finished is not None:
        listener.on_job_finished(job.id)
    if job.stdout is not None:
        listener.on_job_stdout(job.id, job.stdout)
    if job.stderr is not None:
        listener.on_job_stderr(job.id, job.stderr)


class Client:
    """Runs builds on a coordinator, taking source files from ``source_dir``."""

    def __init__(self, endpoint: str, source_dir: str | os.PathLike[str]) -> None:
        self._builds = BuildClient(endpoint)
        self._files = FileCacheClient(endpoint)
        self._source_dir = os.fspath(source_dir)

    def build(self, graph: dict[str, Any], listener: BuildListener) -> None:
        """Run ``graph`` and report each finished job to ``listener``."""
        started, reader = self._builds.start_build(BuildRequest(graph=graph))
        with reader:
            source_files = graph.get("SourceFiles") or {}
            for file_id in started.missing_files:
                name = source_files.get(file_id)
                if name is None:
                    raise ValueError(f"no such file: {file_id}")
                self._files.upload(file_id, os.path.join(self._source_dir, name))

            self._builds.signal_build(started.id, SignalRequest(upload_done=UploadDone()))

            for update in reader:
                _dispatch(update, listener)