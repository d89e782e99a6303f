import threading

import pytest
from werkzeug.serving import make_server

from distbuild.build_api import BuildApiError, BuildHandler
from distbuild.client import Client
from distbuild.filecache import FileCache
from distbuild.filecache_transfer import FileCacheHandler
from distbuild.messages import (
    BuildFailed,
    BuildFinished,
    BuildStarted,
    JobResult,
    SignalResponse,
    StatusUpdate,
    UploadDone,
)
from distbuild.mux import ServeMux

BUILD_ID = "0b" + "00" * 19
JOB_ID = "0a" + "00" * 19
FILE_A = "01" + "00" * 19
FILE_C = "03" + "00" * 19


class FakeCoordinator:
    def __init__(self, cache, missing=(), updates=(), error=None, fail_start=None):
        self.cache = cache
        self.missing = list(missing)
        self.updates = list(updates)
        self.error = error
        self.fail_start = fail_start
        self.requests = []
        self.signals = []
        self.signalled = threading.Event()
        self.cached_at_signal = None

    def start_build(self, request, writer):
        self.requests.append(request)
        if self.fail_start is not None:
            raise self.fail_start
        writer.started(BuildStarted(id=BUILD_ID, missing_files=self.missing))
        if not self.signalled.wait(5):
            return
        for update in self.updates:
            writer.updated(update)
        if self.error is not None:
            raise self.error

    def signal_build(self, build_id, signal):
        self.cached_at_signal = sorted(self.cache)
        self.signals.append((build_id, signal))
        self.signalled.set()
        return SignalResponse()


class Listener:
    def __init__(self, fail_on_stdout=False):
        self.events = []
        self.fail_on_stdout = fail_on_stdout

    def on_job_stdout(self, job_id, stdout):
        if self.fail_on_stdout:
            raise RuntimeError("listener failed")
        self.events.append(("stdout", job_id, stdout))

    def on_job_stderr(self, job_id, stderr):
        self.events.append(("stderr", job_id, stderr))

    def on_job_finished(self, job_id):
        self.events.append(("finished", job_id))

    def on_job_failed(self, job_id, code, error):
        self.events.append(("failed", job_id, code, error))


@pytest.fixture
def serve():
    servers = []

    def start(coordinator):
        mux = ServeMux()
        BuildHandler(coordinator).register(mux)
        FileCacheHandler(coordinator.cache).register(mux)
        server = make_server("127.0.0.1", 0, mux, threaded=True)
        threading.Thread(target=server.serve_forever, daemon=True).start()
        servers.append(server)
        return f"http://127.0.0.1:{server.server_port}"

    yield start
    for server in servers:
        server.shutdown()
        server.server_close()


@pytest.fixture
def sources(tmp_path):
    root = tmp_path / "src"
    (root / "b").mkdir(parents=True)
    (root / "a.txt").write_bytes(b"foo")
    (root / "b" / "c.txt").write_bytes(b"bar")
    return root


GRAPH = {"SourceFiles": {FILE_A: "a.txt", FILE_C: "b/c.txt"}, "Jobs": []}


def test_build_uploads_missing_files_and_reports_jobs(tmp_path, serve, sources):
    cache = FileCache(tmp_path / "cache")
    update = StatusUpdate(
        job_finished=JobResult(id=JOB_ID, stdout=b"foo", stderr=b"bar"),
        build_finished=BuildFinished(),
    )
    coordinator = FakeCoordinator(cache, missing=[FILE_A, FILE_C], updates=[update])
    listener = Listener()

    Client(serve(coordinator), sources).build(GRAPH, listener)

    assert listener.events == [
        ("finished", JOB_ID),
        ("stdout", JOB_ID, b"foo"),
        ("stderr", JOB_ID, b"bar"),
    ]
    assert coordinator.cached_at_signal == [FILE_A, FILE_C]
    assert coordinator.signals[0][0] == BUILD_ID
    assert coordinator.signals[0][1].upload_done == UploadDone()
    assert coordinator.requests[0].graph == GRAPH
    with cache.get(FILE_C) as path:
        with open(path, "rb") as uploaded:
            assert uploaded.read() == b"bar"


def test_failed_job_is_reported(tmp_path, serve, sources):
    cache = FileCache(tmp_path / "cache")
    update = StatusUpdate(
        job_finished=JobResult(id=JOB_ID, exit_code=2),
        build_failed=BuildFailed(error="job failed"),
    )
    coordinator = FakeCoordinator(cache, updates=[update])
    listener = Listener()

    Client(serve(coordinator), sources).build(GRAPH, listener)

    assert listener.events == [("failed", JOB_ID, 2, "job failed")]


def test_updates_without_job_are_skipped(tmp_path, serve, sources):
    cache = FileCache(tmp_path / "cache")
    coordinator = FakeCoordinator(
        cache,
        updates=[StatusUpdate(build_finished=BuildFinished())],
        error=RuntimeError("late failure"),
    )
    listener = Listener()

    Client(serve(coordinator), sources).build(GRAPH, listener)

    assert listener.events == []
    assert len(coordinator.signals) == 1


def test_missing_file_not_in_graph(tmp_path, serve, sources):
    cache = FileCache(tmp_path / "cache")
    unknown = "ff" + "00" * 19
    coordinator = FakeCoordinator(cache, missing=[unknown])

    with pytest.raises(ValueError, match="no such file"):
        Client(serve(coordinator), sources).build(GRAPH, Listener())
    assert coordinator.signals == []


def test_start_failure_is_raised(tmp_path, serve, sources):
    cache = FileCache(tmp_path / "cache")
    coordinator = FakeCoordinator(cache, fail_start=RuntimeError("foo bar error"))

    with pytest.raises(BuildApiError, match="foo bar error"):
        Client(serve(coordinator), sources).build(GRAPH, Listener())


def test_listener_error_propagates(tmp_path, serve, sources):
    cache = FileCache(tmp_path / "cache")
    update = StatusUpdate(job_finished=JobResult(id=JOB_ID, stdout=b"foo"))
    coordinator = FakeCoordinator(cache, updates=[update])

    with pytest.raises(RuntimeError, match="listener failed"):
        Client(serve(coordinator), sources).build(GRAPH, Listener(fail_on_stdout=True))