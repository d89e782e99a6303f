"""HTTP transport for starting builds, streaming their status and signalling them."""

from __future__ import annotations

import queue
import threading
from collections.abc import Iterator
from typing import Any

import requests
from werkzeug.wrappers import Request, Response

from distbuild.messages import (
    BuildFailed,
    BuildRequest,
    BuildService,
    BuildStarted,
    SignalRequest,
    SignalResponse,
    StatusUpdate,
    from_json,
    to_json,
)
from distbuild.mux import ServeMux

# The error text of the final update that marks a normally finished stream.
END_OF_STREAM = "EOF"

_JSON = "application/json"


class BuildApiError(Exception):
    """The coordinator rejected a build request or signal."""


class BuildStatusReader:
    """Iterates over the status updates of a running build."""

    def __init__(self, response: requests.Response) -> None:
        self._response = response
        self._lines = self._split_lines()
        self._finished = False

    def _split_lines(self) -> Iterator[bytes]:
        buffer = b""
        for chunk in self._response.iter_content(chunk_size=None):
            buffer += chunk
            while b"\n" in buffer:
                line, buffer = buffer.split(b"\n", 1)
                yield line

    def _next_line(self) -> bytes | None:
        """Return the next complete line, or None once the stream has ended."""
        return next(self._lines, None)

    def __iter__(self) -> BuildStatusReader:
        return self

    def __next__(self) -> StatusUpdate:
        if self._finished:
            raise StopIteration
        line = self._next_line()
        if line is None:
            self._finished = True
            raise StopIteration
        update = from_json(StatusUpdate, line)
        if update.build_failed is not None and update.build_failed.error == END_OF_STREAM:
            self._finished = True
            raise StopIteration
        return update

    def close(self) -> None:
        """Close the underlying HTTP response."""
        self._finished = True
        self._response.close()

    def __enter__(self) -> BuildStatusReader:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


class BuildClient:
    """Starts and signals builds on a coordinator."""

    def __init__(self, endpoint: str) -> None:
        self._endpoint = endpoint

    def start_build(self, request: BuildRequest) -> tuple[BuildStarted, BuildStatusReader]:
        """Start a build and return its first message and a reader for the rest."""
        response = requests.post(
            f"{self._endpoint}/build",
            data=to_json(request),
            headers={"Content-Type": _JSON},
            stream=True,
        )
        if response.status_code != 200 or response.headers.get("Content-Type") != _JSON:
            with response:
                text = response.text
            raise BuildApiError(text.strip())

        reader = BuildStatusReader(response)
        try:
            line = reader._next_line()
            if line is None:
                raise BuildApiError("build stream ended before the build started")
            started = from_json(BuildStarted, line)
        except BaseException:
            reader.close()
            raise
        return started, reader

    def signal_build(self, build_id: str, signal: SignalRequest) -> SignalResponse:
        """Send a signal to a running build."""
        response = requests.post(
            f"{self._endpoint}/signal",
            params={"build_id": build_id},
            data=to_json(signal),
            headers={"Content-Type": _JSON},
        )
        if response.status_code != 200:
            raise BuildApiError(
                f"got not OK status code - {response.status_code} "
                f"in signal client - {response.text}"
            )
        return from_json(SignalResponse, response.content)


class _StreamStatusWriter:
    """Hands the status of a build to the response stream through a queue."""

    def __init__(self) -> None:
        self.events: queue.Queue[tuple[str, Any]] = queue.Queue()
        self.cancelled = threading.Event()
        self._lock = threading.Lock()
        self._started = False

    def _check_open(self) -> None:
        if self.cancelled.is_set():
            raise BuildApiError("build status stream is closed")

    def started(self, started: BuildStarted) -> None:
        with self._lock:
            self._check_open()
            self._started = True
            self.events.put(("line", to_json(started) + b"\n"))

    def updated(self, update: StatusUpdate) -> None:
        with self._lock:
            self._check_open()
            self.events.put(("line", to_json(update) + b"\n"))

    def finish(self, error: Exception | None) -> None:
        with self._lock:
            if not self._started:
                reason = error or BuildApiError("build finished before it started")
                self.events.put(("error", reason))
                return
            message = END_OF_STREAM if error is None else str(error)
            update = StatusUpdate(build_failed=BuildFailed(error=message))
            self.events.put(("line", to_json(update) + b"\n"))
            self.events.put(("end", None))


class BuildHandler:
    """HTTP handlers that forward build requests and signals to a :class:`BuildService`."""

    def __init__(self, service: BuildService) -> None:
        self._service = service

    def _run(self, request: BuildRequest, writer: _StreamStatusWriter) -> None:
        try:
            self._service.start_build(request, writer)
        except Exception as error:
            writer.finish(error)
        else:
            writer.finish(None)

    def build(self, request: Request) -> Response:
        try:
            build_request = from_json(BuildRequest, request.get_data())
        except ValueError:
            return Response(status=400)

        writer = _StreamStatusWriter()
        threading.Thread(target=self._run, args=(build_request, writer), daemon=True).start()

        kind, payload = writer.events.get()
        if kind == "error":
            return Response(f"{payload}\n", status=500, mimetype="text/plain")

        def stream() -> Iterator[bytes]:
            try:
                yield payload
                while True:
                    event, data = writer.events.get()
                    if event == "end":
                        return
                    yield data
            finally:
                writer.cancelled.set()

        return Response(stream(), mimetype=_JSON)

    def signal(self, request: Request) -> Response:
        build_id = request.args.get("build_id")
        if not build_id:
            return Response(status=400)
        try:
            bytes.fromhex(build_id)
            signal = from_json(SignalRequest, request.get_data())
        except ValueError:
            return Response(status=400)

        try:
            reply = self._service.signal_build(build_id, signal)
        except Exception as error:
            return Response(str(error), status=500, mimetype="text/plain")

        return Response(to_json(reply), mimetype=_JSON)

    def register(self, mux: ServeMux) -> None:
        """Serve builds at ``POST /build`` and signals at ``POST /signal``."""
        mux.handle("POST", "/signal", self.signal)
        mux.handle("POST", "/build", self.build)