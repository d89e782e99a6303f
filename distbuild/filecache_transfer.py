"""Uploading source files to a remote file cache and downloading them back."""

from __future__ import annotations

import os
import threading

import requests
from werkzeug.wrappers import Request, Response

from distbuild.filecache import FileCache, FileCacheError, FileExistsInCacheError
from distbuild.mux import ServeMux


class FileCacheClient:
    """Talks to a remote file cache served by :class:`FileCacheHandler`."""

    def __init__(self, endpoint: str) -> None:
        self._url = f"{endpoint}/file"

    def upload(self, file_id: str, local_path: str | os.PathLike[str]) -> None:
        """Send the file at ``local_path`` to the remote cache under ``file_id``."""
        with open(local_path, "rb") as source:
            content = source.read()
        response = requests.put(self._url, params={"id": file_id}, data=content)
        if response.status_code != 200:
            raise FileCacheError(
                f"status code is not OK in upload handler - {response.status_code}"
            )

    def download(self, local_cache: FileCache, file_id: str) -> None:
        """Fetch ``file_id`` from the remote cache and store it in ``local_cache``."""
        response = requests.get(self._url, params={"id": file_id})
        if response.status_code != 200:
            raise FileCacheError(
                f"status code is not OK in download handler - {response.status_code}"
            )
        with local_cache.write(file_id) as writer:
            writer.write(response.content)


class FileCacheHandler:
    """HTTP handlers that store uploaded files and serve cached ones."""

    def __init__(self, cache: FileCache) -> None:
        self._cache = cache
        self._guard = threading.Lock()
        self._key_locks: dict[str, threading.Lock] = {}
        self._results: dict[str, Exception | None] = {}

    def _store_once(self, file_id: str, content: bytes) -> Exception | None:
        """Store a file, sharing the outcome between uploads of the same id."""
        with self._guard:
            key_lock = self._key_locks.setdefault(file_id, threading.Lock())

        with key_lock:
            if file_id in self._results:
                return self._results[file_id]

            outcome: Exception | None = None
            try:
                with self._cache.write(file_id) as writer:
                    writer.write(content)
            except FileExistsInCacheError:
                outcome = None
            except (FileCacheError, OSError) as error:
                outcome = error
            self._results[file_id] = outcome
            return outcome

    def upload(self, request: Request) -> Response:
        file_id = request.args.get("id")
        if file_id is None:
            return Response(status=400)

        content = request.get_data()
        try:
            outcome = self._store_once(file_id, content)
        except ValueError:
            return Response(status=400)

        if outcome is not None:
            return Response(str(outcome), status=500, mimetype="text/plain")
        return Response(status=200)

    def download(self, request: Request) -> Response:
        file_id = request.args.get("id")
        if file_id is None:
            return Response(status=400)

        try:
            with self._cache.get(file_id) as path:
                with open(path, "rb") as source:
                    content = source.read()
        except ValueError:
            return Response(status=400)
        except (FileCacheError, OSError):
            return Response(status=500)

        return Response(content, mimetype="application/octet-stream")

    def register(self, mux: ServeMux) -> None:
        """Serve uploads at ``PUT /file`` and downloads at ``GET /file``."""
        mux.handle("PUT", "/file", self.upload)
        mux.handle("GET", "/file", self.download)