"""Serialise a directory tree into a tar stream and materialise it back."""

from __future__ import annotations

import os
import shutil
import stat
import tarfile
from collections.abc import Iterator
from typing import BinaryIO


def _walk(directory: str, prefix: str = "") -> Iterator[tuple[str, str]]:
    """Yield (path, archive name) pairs in lexical, depth-first order."""
    for name in sorted(os.listdir(directory)):
        path = os.path.join(directory, name)
        relative = prefix + name
        yield path, relative
        if stat.S_ISDIR(os.lstat(path).st_mode):
            yield from _walk(path, relative + "/")


def send(directory: str, stream: BinaryIO) -> None:
    """Write the contents of ``directory`` to ``stream`` as a tar archive."""
    with tarfile.open(fileobj=stream, mode="w|") as archive:
        for path, name in _walk(directory):
            status = os.lstat(path)
            info = tarfile.TarInfo(name)
            if stat.S_ISDIR(status.st_mode):
                info.type = tarfile.DIRTYPE
                archive.addfile(info)
                continue
            info.type = tarfile.REGTYPE
            info.size = status.st_size
            info.mode = stat.S_IMODE(status.st_mode)
            with open(path, "rb") as source:
                archive.addfile(info, source)


class _Prefixed:
    """A readable stream that first returns bytes already taken from another."""

    def __init__(self, head: bytes, stream: BinaryIO) -> None:
        self._head = head
        self._stream = stream

    def read(self, size: int = -1) -> bytes:
        if not self._head:
            return self._stream.read(size)
        if size is None or size < 0:
            data = self._head + self._stream.read()
            self._head = b""
            return data
        data, self._head = self._head[:size], self._head[size:]
        return data


def _write_member(archive: tarfile.TarFile, member: tarfile.TarInfo, target: str) -> None:
    descriptor = os.open(target, os.O_CREAT | os.O_WRONLY, member.mode)
    with os.fdopen(descriptor, "wb") as output:
        source = archive.extractfile(member)
        if source is not None:
            shutil.copyfileobj(source, output)


def receive(directory: str, stream: BinaryIO) -> None:
    """Read a tar archive from ``stream`` and recreate its entries in ``directory``."""
    head = stream.read(tarfile.BLOCKSIZE)
    if not head:
        return

    with tarfile.open(fileobj=_Prefixed(head, stream), mode="r|") as archive:
        for member in archive:
            target = os.path.normpath(os.path.join(directory, member.name))
            if member.isdir():
                os.mkdir(target, 0o777)
            else:
                _write_member(archive, member, target)