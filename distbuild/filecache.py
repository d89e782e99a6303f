"""A cache of single source files built on the artifact cache."""

from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import ExitStack, contextmanager
from typing import BinaryIO

from distbuild.artifact_cache import (
    ArtifactCache,
    ArtifactError,
    ExistsError,
    NotFoundError,
    PendingArtifact,
    ReadLockedError,
    WriteLockedError,
)

FILE_NAME = "file"


class FileCacheError(Exception):
    """Base class for file cache errors."""


class FileNotFoundInCacheError(FileCacheError):
    """The file is not in the cache."""


class FileExistsInCacheError(FileCacheError):
    """The file is already in the cache."""


class FileWriteLockedError(FileCacheError):
    """The file is being written."""


class FileReadLockedError(FileCacheError):
    """The file is being read."""


_CONVERSIONS: dict[type[ArtifactError], tuple[type[FileCacheError], str]] = {
    NotFoundError: (FileNotFoundInCacheError, "file not found"),
    ExistsError: (FileExistsInCacheError, "file exists"),
    WriteLockedError: (FileWriteLockedError, "file is locked for write"),
    ReadLockedError: (FileReadLockedError, "file is locked for read"),
}


@contextmanager
def _converted_errors() -> Iterator[None]:
    try:
        yield
    except ArtifactError as error:
        conversion = _CONVERSIONS.get(type(error))
        if conversion is None:
            raise
        error_type, message = conversion
        raise error_type(message) from error


class FileWriter:
    """Writes one cached file; closing commits it, aborting discards it."""

    def __init__(self, file: BinaryIO, pending: PendingArtifact) -> None:
        self._file = file
        self._pending = pending
        self._finished = False

    def write(self, data: bytes) -> int:
        return self._file.write(data)

    def close(self) -> None:
        """Close the file and commit it to the cache."""
        if self._finished:
            raise FileCacheError("file writer is already closed")
        self._finished = True
        try:
            self._file.close()
        finally:
            self._pending.commit()

    def abort(self) -> None:
        """Close the file and discard it."""
        if self._finished:
            return
        self._finished = True
        try:
            self._file.close()
        finally:
            self._pending.abort()

    def __enter__(self) -> FileWriter:
        return self

    def __exit__(self, exc_type, exc, traceback) -> None:
        if exc_type is None:
            self.close()
        else:
            self.abort()


class FileCache:
    """Files stored by id, each inside its own artifact directory."""

    def __init__(self, root: str | os.PathLike[str]) -> None:
        self._cache = ArtifactCache(root)

    def __iter__(self) -> Iterator[str]:
        return iter(self._cache)

    def remove(self, file_id: str) -> None:
        with _converted_errors():
            self._cache.remove(file_id)

    def write(self, file_id: str) -> FileWriter:
        """Start writing a new file into the cache."""
        with _converted_errors():
            pending = self._cache.create(file_id)
        try:
            handle = open(os.path.join(pending.path, FILE_NAME), "wb")
        except BaseException:
            pending.abort()
            raise
        return FileWriter(handle, pending)

    @contextmanager
    def get(self, file_id: str) -> Iterator[str]:
        """Hold a read lock on a file and yield its path."""
        with ExitStack() as stack:
            with _converted_errors():
                root = stack.enter_context(self._cache.get(file_id))
            yield os.path.join(root, FILE_NAME)