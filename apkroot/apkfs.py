"""A read-only filesystem over the control or data section of an APK package."""

from __future__ import annotations

import enum
import errno
import gzip
import os
import stat
import tarfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import BinaryIO

from .expandapk import APKExpanded, ExpandError, expand_apk
from .fsbase import FileInfo

_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)
_XATTR_PREFIX = "SCHILY.xattr."


class APKFSType(enum.Enum):
    """Which section of the package the filesystem exposes."""

    CONTROL = 0
    PACKAGE = 1


def _basename(path: str) -> str:
    return path[path.rfind("/") + 1:]


def _parent(path: str) -> str:
    return path.rsplit("/", 1)[0] or "/"


def _correct_path(path: str) -> str:
    if path == ".":
        path = "/"
    if len(path) > 3 and path.startswith("./"):
        path = path[1:]
    if not path.startswith("/"):
        path = "/" + path
    return path


def _member_mode(member: tarfile.TarInfo) -> int:
    if member.issym():
        kind = stat.S_IFLNK
    elif member.isdir():
        kind = stat.S_IFDIR
    elif member.ischr():
        kind = stat.S_IFCHR
    elif member.isblk():
        kind = stat.S_IFBLK
    elif member.isfifo():
        kind = stat.S_IFIFO
    else:
        kind = stat.S_IFREG
    return kind | (member.mode & 0o7777)


@dataclass(frozen=True)
class _Entry:
    path: str
    mode: int
    size: int = 0
    uid: int = 0
    gid: int = 0
    mod_time: datetime = _EPOCH
    link_target: str = ""
    is_dir: bool = False
    xattrs: dict[str, bytes] = field(default_factory=dict)

    def info(self) -> FileInfo:
        return FileInfo(
            name=_basename(self.path),
            size=self.size,
            mode=self.mode,
            mod_time=self.mod_time,
            uid=self.uid,
            gid=self.gid,
            xattrs=dict(self.xattrs),
        )


def _entry_from_member(member: tarfile.TarInfo) -> _Entry:
    xattrs = {
        key[len(_XATTR_PREFIX):]: value.encode("utf-8", "surrogateescape")
        for key, value in (member.pax_headers or {}).items()
        if key.startswith(_XATTR_PREFIX)
    }
    return _Entry(
        path="/" + member.name,
        mode=_member_mode(member),
        size=member.size,
        uid=member.uid,
        gid=member.gid,
        mod_time=datetime.fromtimestamp(member.mtime, tz=timezone.utc),
        link_target=member.linkname,
        is_dir=member.isdir(),
        xattrs=xattrs,
    )


class APKFSFile:
    """An open entry of an :class:`APKFS`."""

    def __init__(self, entry: _Entry, closers: list, reader: BinaryIO | None) -> None:
        self._entry = entry
        self._closers = closers
        self._reader = reader
        self.closed = False

    def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` bytes of the entry (all remaining when negative)."""
        if self.closed:
            raise ValueError("I/O operation on closed file")
        if self._reader is None:
            return b""
        return self._reader.read(size if size is not None else -1) or b""

    def stat(self) -> FileInfo:
        return self._entry.info()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        for closer in self._closers:
            closer.close()

    def __enter__(self) -> APKFSFile:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class APKFS:
    """The files of one section of an APK, indexed for lookup and reading."""

    def __init__(self, archive: str | os.PathLike, fs_type: APKFSType = APKFSType.PACKAGE) -> None:
        self._path = os.fspath(archive)
        self._type = fs_type
        with open(self._path, "rb") as source:
            self._cache: APKExpanded | None = expand_apk(source)
        try:
            self._files = self._index()
        except BaseException:
            self.close()
            raise

    def _section_file(self) -> str:
        assert self._cache is not None
        if self._type is APKFSType.PACKAGE:
            return self._cache.package_file
        return self._cache.control_file

    def _index(self) -> dict[str, _Entry]:
        files: dict[str, _Entry] = {}
        try:
            with gzip.open(self._section_file(), "rb") as compressed, tarfile.open(
                fileobj=compressed, mode="r|"
            ) as archive:
                for member in archive:
                    entry = _entry_from_member(member)
                    files[entry.path] = entry
        except (tarfile.TarError, EOFError, OSError) as err:
            raise ExpandError(f"reading {self._path!r}: {err}") from err
        files["/"] = _Entry(path="/", mode=stat.S_IFDIR | 0o777, is_dir=True)
        return files

    def _lookup(self, path: str) -> _Entry:
        entry = self._files.get(_correct_path(path))
        if entry is None:
            raise FileNotFoundError(errno.ENOENT, "file does not exist", path)
        return entry

    def stat(self, path: str) -> FileInfo:
        return self._lookup(path).info()

    def read_dir(self, path: str) -> list[FileInfo]:
        """List the direct children of a directory, sorted by name."""
        entry = self._lookup(path)
        if not entry.is_dir:
            raise NotADirectoryError(errno.ENOTDIR, "not a directory", path)
        children = [
            child.info()
            for key, child in self._files.items()
            if key != entry.path and _parent(key) == entry.path
        ]
        return sorted(children, key=lambda info: info.name)

    def open(self, path: str) -> APKFSFile:
        """Open an entry; regular files can be read."""
        entry = self._lookup(path)
        if entry.is_dir:
            return APKFSFile(entry, [], None)
        compressed = gzip.open(self._section_file(), "rb")
        try:
            archive = tarfile.open(fileobj=compressed, mode="r|")
            target = entry.path[1:]
            for member in archive:
                if member.name == target:
                    reader = archive.extractfile(member) if member.isreg() else None
                    return APKFSFile(entry, [archive, compressed], reader)
            archive.close()
        except BaseException:
            compressed.close()
            raise
        compressed.close()
        raise FileNotFoundError(errno.ENOENT, "file does not exist", path)

    def close(self) -> None:
        """Remove the temporary expansion of the package."""
        if self._cache is not None:
            cache, self._cache = self._cache, None
            cache.close()

    def __enter__(self) -> APKFS:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()