"""Conversion of an image layer (a tar stream) into a newc cpio archive."""

from __future__ import annotations

import logging
import posixpath
import stat
import tarfile
from dataclasses import dataclass
from typing import Any, BinaryIO

logger = logging.getLogger(__name__)

NEWC_MAGIC = b"070701"
TRAILER_NAME = "TRAILER!!!"

_FORMAT_MASK = 0o170000


@dataclass(frozen=True)
class _Record:
    name: str
    mode: int
    data: bytes = b""
    rmajor: int = 0
    rminor: int = 0


def _pad(length: int) -> bytes:
    return b"\0" * (-length % 4)


def _encode(record: _Record) -> bytes:
    name = record.name.encode("utf-8") + b"\0"
    fields = (
        0,  # inode
        record.mode,
        0,  # uid
        0,  # gid
        0,  # nlink
        0,  # mtime
        len(record.data),
        0,  # major
        0,  # minor
        record.rmajor,
        record.rminor,
        len(name),
        0,  # check
    )
    header = NEWC_MAGIC + b"".join(b"%08x" % value for value in fields)
    head = header + name
    return head + _pad(len(head)) + record.data + _pad(len(record.data))


def _clean_name(name: str) -> str:
    cleaned = posixpath.normpath(name).lstrip("/")
    return cleaned or "."


class _DedupWriter:
    """Writes each record name once; later records with the same name are dropped."""

    def __init__(self, dest: BinaryIO) -> None:
        self._dest = dest
        self._written: set[str] = set()

    def write(self, record: _Record) -> None:
        if record.name in self._written:
            return
        self._written.add(record.name)
        self._dest.write(_encode(record))

    def write_with_dirs(self, record: _Record) -> None:
        """Write every missing parent directory of ``record``, then the record."""
        parents: list[str] = []
        parent = posixpath.dirname(record.name)
        while parent not in ("", ".", "/"):
            parents.append(parent)
            parent = posixpath.dirname(parent)
        for directory in reversed(parents):
            self.write(_Record(name=directory, mode=stat.S_IFDIR | 0o755))
        self.write(record)


def _perm(mode: int) -> int:
    return mode & ~_FORMAT_MASK


def _open_layer(layer: Any) -> tuple[BinaryIO, bool]:
    uncompressed = getattr(layer, "uncompressed", None)
    if callable(uncompressed):
        return uncompressed(), True
    return layer, False


def from_layer(layer: Any, dest: BinaryIO) -> None:
    """Write the entries of ``layer`` to ``dest`` as a newc cpio archive.

    ``layer`` is a binary stream of an uncompressed tar, or an object whose
    ``uncompressed()`` method returns one.  Directories, regular files,
    symlinks and character devices are written; other entries are skipped.
    """
    stream, owned = _open_layer(layer)
    writer = _DedupWriter(dest)
    try:
        with tarfile.open(fileobj=stream, mode="r|") as archive:
            for member in archive:
                name = _clean_name(member.name)
                if member.isdir():
                    record = _Record(name=name, mode=stat.S_IFDIR | _perm(member.mode))
                elif member.issym():
                    record = _Record(
                        name=name,
                        mode=stat.S_IFLNK | 0o777,
                        data=member.linkname.encode("utf-8"),
                    )
                elif member.isreg():
                    handle = archive.extractfile(member)
                    content = handle.read() if handle is not None else b""
                    record = _Record(name=name, mode=stat.S_IFREG | _perm(member.mode), data=content)
                elif member.ischr():
                    record = _Record(
                        name=name,
                        mode=stat.S_IFCHR | _perm(member.mode),
                        rmajor=member.devmajor,
                        rminor=member.devminor,
                    )
                else:
                    logger.warning(
                        "Unsupported TAR typeflag: %s for %s",
                        member.type.decode("ascii", "replace"),
                        member.name,
                    )
                    continue
                writer.write_with_dirs(record)
    finally:
        if owned:
            stream.close()

    writer.write(_Record(name=TRAILER_NAME, mode=0))