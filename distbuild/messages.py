"""Messages exchanged between clients, the coordinator and workers, with JSON codecs."""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeVar


class _Message:
    """Shared wire encoding for messages without fields."""

    def _to_wire(self) -> dict[str, Any]:
        return {}

    @classmethod
    def _from_wire(cls, obj: dict[str, Any]):
        return cls()


MessageT = TypeVar("MessageT", bound=_Message)


def _object(value: Any) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ValueError(f"expected a JSON object, got {type(value).__name__}")
    return value


def _dump(message: _Message | None) -> dict[str, Any] | None:
    return None if message is None else message._to_wire()


def _load(cls: type[MessageT], value: Any) -> MessageT | None:
    return None if value is None else cls._from_wire(_object(value))


def _encode_bytes(value: bytes | None) -> str | None:
    return None if value is None else base64.b64encode(value).decode("ascii")


def _decode_bytes(value: Any) -> bytes | None:
    return None if value is None else base64.b64decode(value, validate=True)


def _strings(value: Any) -> list[str]:
    return [str(item) for item in value or []]


@dataclass
class BuildRequest(_Message):
    graph: dict[str, Any] = field(default_factory=dict)

    def _to_wire(self) -> dict[str, Any]:
        return {"Graph": self.graph}

    @classmethod
    def _from_wire(cls, obj: dict[str, Any]) -> BuildRequest:
        return cls(graph=dict(obj.get("Graph") or {}))


@dataclass
class BuildStarted(_Message):
    id: str
    missing_files: list[str] = field(default_factory=list)

    def _to_wire(self) -> dict[str, Any]:
        return {"ID": self.id, "MissingFiles": list(self.missing_files)}

    @classmethod
    def _from_wire(cls, obj: dict[str, Any]) -> BuildStarted:
        return cls(id=obj.get("ID", ""), missing_files=_strings(obj.get("MissingFiles")))


@dataclass
class BuildFailed(_Message):
    error: str = ""

    def _to_wire(self) -> dict[str, Any]:
        return {"Error": self.error}

    @classmethod
    def _from_wire(cls, obj: dict[str, Any]) -> BuildFailed:
        return cls(error=obj.get("Error", ""))


@dataclass
class BuildFinished(_Message):
    pass


@dataclass
class JobResult(_Message):
    """Outcome of one job; ``error`` is None when the job ran successfully."""

    id: str
    stdout: bytes | None = None
    stderr: bytes | None = None
    exit_code: int = 0
    error: str | None = None

    def _to_wire(self) -> dict[str, Any]:
        return {
            "ID": self.id,
            "Stdout": _encode_bytes(self.stdout),
            "Stderr": _encode_bytes(self.stderr),
            "ExitCode": self.exit_code,
            "Error": self.error,
        }

    @classmethod
    def _from_wire(cls, obj: dict[str, Any]) -> JobResult:
        return cls(
            id=obj.get("ID", ""),
            stdout=_decode_bytes(obj.get("Stdout")),
            stderr=_decode_bytes(obj.get("Stderr")),
            exit_code=int(obj.get("ExitCode", 0)),
            error=obj.get("Error"),
        )


@dataclass
class StatusUpdate(_Message):
    job_finished: JobResult | None = None
    build_failed: BuildFailed | None = None
    build_finished: BuildFinished | None = None

    def _to_wire(self) -> dict[str, Any]:
        return {
            "JobFinished": _dump(self.job_finished),
            "BuildFailed": _dump(self.build_failed),
            "BuildFinished": _dump(self.build_finished),
        }

    @classmethod
    def _from_wire(cls, obj: dict[str, Any]) -> StatusUpdate:
        return cls(
            job_finished=_load(JobResult, obj.get("JobFinished")),
            build_failed=_load(BuildFailed, obj.get("BuildFailed")),
            build_finished=_load(BuildFinished, obj.get("BuildFinished")),
        )


@dataclass
class UploadDone(_Message):
    pass


@dataclass
class SignalRequest(_Message):
    upload_done: UploadDone | None = None

    def _to_wire(self) -> dict[str, Any]:
        return {"UploadDone": _dump(self.upload_done)}

    @classmethod
    def _from_wire(cls, obj: dict[str, Any]) -> SignalRequest:
        return cls(upload_done=_load(UploadDone, obj.get("UploadDone")))


@dataclass
class SignalResponse(_Message):
    pass


@dataclass
class HeartbeatRequest(_Message):
    """A worker's periodic report; ``worker_id`` doubles as its HTTP endpoint."""

    worker_id: str
    running_jobs: list[str] = field(default_factory=list)
    free_slots: int = 0
    finished_job: list[JobResult] = field(default_factory=list)
    added_artifacts: list[str] = field(default_factory=list)

    def _to_wire(self) -> dict[str, Any]:
        return {
            "WorkerID": self.worker_id,
            "RunningJobs": list(self.running_jobs),
            "FreeSlots": self.free_slots,
            "FinishedJob": [result._to_wire() for result in self.finished_job],
            "AddedArtifacts": list(self.added_artifacts),
        }

    @classmethod
    def _from_wire(cls, obj: dict[str, Any]) -> HeartbeatRequest:
        return cls(
            worker_id=obj.get("WorkerID", ""),
            running_jobs=_strings(obj.get("RunningJobs")),
            free_slots=int(obj.get("FreeSlots", 0)),
            finished_job=[
                JobResult._from_wire(_object(item)) for item in obj.get("FinishedJob") or []
            ],
            added_artifacts=_strings(obj.get("AddedArtifacts")),
        )


_JOB_SPEC_KEYS = ("SourceFiles", "Artifacts")


@dataclass
class JobSpec(_Message):
    """A job to run, with the source files and artifact locations it needs.

    ``job`` holds the job description itself; its keys sit at the top level
    of the encoded object next to ``SourceFiles`` and ``Artifacts``.
    """

    source_files: dict[str, str] = field(default_factory=dict)
    artifacts: dict[str, str] = field(default_factory=dict)
    job: dict[str, Any] = field(default_factory=dict)

    @property
    def id(self) -> str:
        return self.job.get("ID", "")

    def _to_wire(self) -> dict[str, Any]:
        wire: dict[str, Any] = {
            "SourceFiles": dict(self.source_files),
            "Artifacts": dict(self.artifacts),
        }
        for key, value in self.job.items():
            wire.setdefault(key, value)
        return wire

    @classmethod
    def _from_wire(cls, obj: dict[str, Any]) -> JobSpec:
        return cls(
            source_files=dict(_object(obj.get("SourceFiles") or {})),
            artifacts=dict(_object(obj.get("Artifacts") or {})),
            job={key: value for key, value in obj.items() if key not in _JOB_SPEC_KEYS},
        )


@dataclass
class HeartbeatResponse(_Message):
    jobs_to_run: dict[str, JobSpec] = field(default_factory=dict)

    def _to_wire(self) -> dict[str, Any]:
        return {
            "JobsToRun": {job_id: spec._to_wire() for job_id, spec in self.jobs_to_run.items()}
        }

    @classmethod
    def _from_wire(cls, obj: dict[str, Any]) -> HeartbeatResponse:
        jobs = _object(obj.get("JobsToRun") or {})
        return cls(
            jobs_to_run={
                job_id: JobSpec._from_wire(_object(spec)) for job_id, spec in jobs.items()
            }
        )


class StatusWriter(Protocol):
    """Receives the progress of a build as it runs."""

    def started(self, started: BuildStarted) -> None: ...

    def updated(self, update: StatusUpdate) -> None: ...


class BuildService(Protocol):
    """Runs builds on behalf of clients."""

    def start_build(self, request: BuildRequest, writer: StatusWriter) -> None: ...

    def signal_build(self, build_id: str, signal: SignalRequest) -> SignalResponse: ...


class HeartbeatService(Protocol):
    """Accepts worker heartbeats and hands out jobs."""

    def heartbeat(self, request: HeartbeatRequest) -> HeartbeatResponse: ...


def to_json(message: _Message) -> bytes:
    """Encode a message as compact JSON."""
    if not isinstance(message, _Message):
        raise TypeError(f"not a message: {type(message).__name__}")
    return json.dumps(message._to_wire(), separators=(",", ":")).encode("utf-8")


def from_json(cls: type[MessageT], data: bytes | str) -> MessageT:
    """Decode JSON ``data`` into a message of type ``cls``."""
    if not (isinstance(cls, type) and issubclass(cls, _Message)):
        raise TypeError(f"not a message type: {cls!r}")
    obj = json.loads(data)
    try:
        return cls._from_wire(_object(obj))
    except (TypeError, KeyError, AttributeError) as error:
        raise ValueError(f"malformed {cls.__name__}: {error}") from error