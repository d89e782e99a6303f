"""Serving artifacts over HTTP and downloading them into a local cache."""

from __future__ import annotations

import io
import tarfile
from contextlib import ExitStack
from typing import BinaryIO

import requests
from werkzeug.wrappers import Request, Response

from distbuild import tarstream
from distbuild.artifact_cache import ArtifactCache, ArtifactError
from distbuild.mux import ServeMux


def _store(cache: ArtifactCache, artifact_id: str, body: BinaryIO) -> None:
    try:
        pending = cache.create(artifact_id)
    except (ArtifactError, OSError):
        with cache.get(artifact_id) as directory:
            tarstream.receive(directory, body)
        return

    with pending:
        tarstream.receive(pending.path, body)


def download(endpoint: str, cache: ArtifactCache, artifact_id: str) -> None:
    """Fetch an artifact from a remote worker into ``cache``."""
    url = f"{endpoint}/artifact"
    with requests.get(url, params={"id": artifact_id}, stream=True) as response:
        if response.status_code != 200:
            raise ArtifactError(
                f"status code is not OK in handler - {response.status_code}"
            )
        _store(cache, artifact_id, response.raw)


class ArtifactHandler:
    """HTTP handler that streams cached artifacts as tar archives."""

    def __init__(self, cache: ArtifactCache) -> None:
        self._cache = cache

    def __call__(self, request: Request) -> Response:
        artifact_id = request.args.get("id")
        if artifact_id is None:
            return Response(status=400)

        buffer = io.BytesIO()
        with ExitStack() as stack:
            try:
                directory = stack.enter_context(self._cache.get(artifact_id))
            except ValueError:
                return Response(status=400)
            except (ArtifactError, OSError):
                return Response(status=500)

            try:
                tarstream.send(directory, buffer)
            except (OSError, tarfile.TarError):
                return Response(status=500)

        return Response(buffer.getvalue(), mimetype="application/x-tar")

    def register(self, mux: ServeMux) -> None:
        """Serve artifacts at ``GET /artifact``."""
        mux.handle("GET", "/artifact", self)