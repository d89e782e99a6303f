"""On-disk cache of build artifacts with per-artifact read and write locks."""

from __future__ import annotations

import functools
import os
import shutil
import threading
from collections import Counter
from collections.abc import Callable, Iterator
from contextlib import contextmanager

_HEX_DIGITS = frozenset("0123456789abcdef")


class ArtifactError(Exception):
    """Base class for artifact cache errors."""


class NotFoundError(ArtifactError):
    """The artifact is not in the cache."""


class ExistsError(ArtifactError):
    """The artifact is already in the cache."""


class WriteLockedError(ArtifactError):
    """The artifact is being written."""


class ReadLockedError(ArtifactError):
    """The artifact is being read."""


def _is_valid_id(value: object) -> bool:
    return (
        isinstance(value, str)
        and len(value) >= 2
        and len(value) % 2 == 0
        and set(value) <= _HEX_DIGITS
    )


def _check_id(artifact_id: str) -> None:
    if not _is_valid_id(artifact_id):
        raise ValueError(f"invalid artifact id: {artifact_id!r}")


def _remove_tree(path: str) -> None:
    if os.path.lexists(path):
        shutil.rmtree(path)


class PendingArtifact:
    """An artifact being written; it holds the write lock until committed or aborted."""

    def __init__(
        self,
        artifact_id: str,
        path: str,
        destination: str,
        release: Callable[[], None],
    ) -> None:
        self.artifact_id = artifact_id
        self.path = path
        self._destination = destination
        self._release = release
        self._finished = False

    def commit(self) -> None:
        """Move the written directory into the cache and release the lock."""
        if self._finished:
            raise ArtifactError(f"artifact {self.artifact_id} is already finished")
        self._finished = True
        try:
            os.rename(self.path, self._destination)
        finally:
            self._release()

    def abort(self) -> None:
        """Discard the written directory and release the lock."""
        if self._finished:
            return
        self._finished = True
        try:
            _remove_tree(self.path)
        finally:
            self._release()

    def __enter__(self) -> PendingArtifact:
        return self

    def __exit__(self, exc_type, exc, traceback) -> None:
        if exc_type is None:
            self.commit()
        else:
            self.abort()


class ArtifactCache:
    """Artifacts stored as directories under ``root``, sharded by the first id byte."""

    def __init__(self, root: str | os.PathLike[str]) -> None:
        root = os.fspath(root)
        self._tmp_dir = os.path.join(root, "tmp")
        _remove_tree(self._tmp_dir)
        os.makedirs(self._tmp_dir, exist_ok=True)

        self._cache_dir = os.path.join(root, "c")
        os.makedirs(self._cache_dir, exist_ok=True)
        for shard in range(256):
            os.makedirs(os.path.join(self._cache_dir, f"{shard:02x}"), exist_ok=True)

        self._lock = threading.Lock()
        self._write_locked: set[str] = set()
        self._read_locked: Counter[str] = Counter()

    def _final_path(self, artifact_id: str) -> str:
        return os.path.join(self._cache_dir, artifact_id[:2], artifact_id)

    def _read_lock(self, artifact_id: str) -> None:
        with self._lock:
            if artifact_id in self._write_locked:
                raise WriteLockedError(f"artifact is locked for write: {artifact_id}")
            self._read_locked[artifact_id] += 1

    def _read_unlock(self, artifact_id: str) -> None:
        with self._lock:
            self._read_locked[artifact_id] -= 1
            if self._read_locked[artifact_id] <= 0:
                del self._read_locked[artifact_id]

    def _write_lock(self, artifact_id: str, remove: bool) -> None:
        with self._lock:
            try:
                os.stat(self._final_path(artifact_id))
            except FileNotFoundError:
                exists = False
            else:
                exists = True
            if exists and not remove:
                raise ExistsError(f"artifact exists: {artifact_id}")
            if artifact_id in self._write_locked:
                raise WriteLockedError(f"artifact is locked for write: {artifact_id}")
            if self._read_locked[artifact_id] > 0:
                raise ReadLockedError(f"artifact is locked for read: {artifact_id}")
            self._write_locked.add(artifact_id)

    def _write_unlock(self, artifact_id: str) -> None:
        with self._lock:
            self._write_locked.discard(artifact_id)

    def __iter__(self) -> Iterator[str]:
        """Yield the ids of all committed artifacts."""
        for shard in sorted(os.listdir(self._cache_dir)):
            for name in sorted(os.listdir(os.path.join(self._cache_dir, shard))):
                if not _is_valid_id(name):
                    raise ArtifactError(f"invalid artifact name: {name!r}")
                yield name

    def remove(self, artifact_id: str) -> None:
        """Delete an artifact; missing artifacts are ignored."""
        _check_id(artifact_id)
        self._write_lock(artifact_id, remove=True)
        try:
            _remove_tree(self._final_path(artifact_id))
        finally:
            self._write_unlock(artifact_id)

    def create(self, artifact_id: str) -> PendingArtifact:
        """Start writing a new artifact into a temporary directory."""
        _check_id(artifact_id)
        self._write_lock(artifact_id, remove=False)
        path = os.path.join(self._tmp_dir, artifact_id)
        try:
            os.makedirs(path, exist_ok=True)
        except BaseException:
            self._write_unlock(artifact_id)
            raise
        return PendingArtifact(
            artifact_id,
            path,
            self._final_path(artifact_id),
            functools.partial(self._write_unlock, artifact_id),
        )

    @contextmanager
    def get(self, artifact_id: str) -> Iterator[str]:
        """Hold a read lock on an artifact and yield its directory."""
        _check_id(artifact_id)
        self._read_lock(artifact_id)
        try:
            path = self._final_path(artifact_id)
            try:
                os.stat(path)
            except FileNotFoundError:
                raise NotFoundError(f"artifact not found: {artifact_id}") from None
            yield path
        finally:
            self._read_unlock(artifact_id)