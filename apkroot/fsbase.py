"""Filesystem interface shared by the in-memory, on-disk and package filesystems.

Every implementation offers full read-write access together with features the
host may not support (ownership, device nodes, extended attributes).  How such
features are stored is up to the implementation, as long as reads and writes
stay consistent.  All implementations are case-sensitive.

Modes are Unix ``st_mode`` values: the file type bits from :mod:`stat`
combined with the permission bits.
"""

from __future__ import annotations

import abc
import errno
import posixpath
import stat
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, BinaryIO

_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


def _clean(path: str) -> str:
    """Lexically clean a slash-separated path, keeping a single leading slash."""
    if not path:
        return "."
    cleaned = posixpath.normpath(path)
    if path.startswith("/"):
        cleaned = "/" + cleaned.lstrip("/")
    return cleaned


def _join(*elements: str) -> str:
    """Join path elements, ignoring empty ones, and clean the result."""
    parts = [element for element in elements if element]
    if not parts:
        return ""
    return _clean("/".join(parts))


def _invalid_path(op: str, path: str) -> OSError:
    return OSError(errno.EINVAL, f"{op} {path}: invalid argument", path)


@dataclass(frozen=True)
class FileInfo:
    """Metadata describing one filesystem entry."""

    name: str
    size: int = 0
    mode: int = 0
    mod_time: datetime = _EPOCH
    uid: int = 0
    gid: int = 0
    xattrs: Mapping[str, bytes] = field(default_factory=dict, compare=False)

    @property
    def is_dir(self) -> bool:
        return stat.S_ISDIR(self.mode)

    @property
    def is_symlink(self) -> bool:
        return stat.S_ISLNK(self.mode)

    @property
    def is_char_device(self) -> bool:
        return stat.S_ISCHR(self.mode)

    @property
    def is_regular(self) -> bool:
        return stat.S_ISREG(self.mode)

    @property
    def perm(self) -> int:
        """Permission bits, including setuid, setgid and sticky."""
        return stat.S_IMODE(self.mode)

    @property
    def file_type(self) -> int:
        """File type bits of the mode."""
        return stat.S_IFMT(self.mode)


class FullFS(abc.ABC):
    """A filesystem supporting every filesystem operation."""

    @abc.abstractmethod
    def mkdir(self, path: str, perm: int) -> None:
        """Create a single directory; its parent must exist."""

    @abc.abstractmethod
    def mkdir_all(self, path: str, perm: int) -> None:
        """Create a directory and any missing parents."""

    @abc.abstractmethod
    def open(self, name: str) -> BinaryIO:
        """Open a file for reading."""

    @abc.abstractmethod
    def open_reader_at(self, name: str) -> BinaryIO:
        """Open a file for reading at arbitrary offsets."""

    @abc.abstractmethod
    def open_file(self, name: str, flag: int, perm: int) -> BinaryIO:
        """Open a file with ``os.O_*`` flags."""

    @abc.abstractmethod
    def read_file(self, name: str) -> bytes:
        """Return the whole content of a file."""

    @abc.abstractmethod
    def write_file(self, name: str, data: bytes, mode: int) -> None:
        """Create or truncate a file and write ``data`` to it."""

    @abc.abstractmethod
    def read_dir(self, name: str) -> list[FileInfo]:
        """List a directory, sorted by name."""

    @abc.abstractmethod
    def mknod(self, path: str, mode: int, dev: int) -> None:
        """Create a character device node."""

    @abc.abstractmethod
    def readnod(self, name: str) -> int:
        """Return the device number of a device node."""

    @abc.abstractmethod
    def symlink(self, oldname: str, newname: str) -> None:
        """Create ``newname`` as a symbolic link to ``oldname``."""

    @abc.abstractmethod
    def link(self, oldname: str, newname: str) -> None:
        """Create ``newname`` as a hard link to ``oldname``."""

    @abc.abstractmethod
    def readlink(self, name: str) -> str:
        """Return the target of a symbolic link."""

    @abc.abstractmethod
    def stat(self, path: str) -> FileInfo:
        """Describe a path, following symbolic links."""

    @abc.abstractmethod
    def lstat(self, path: str) -> FileInfo:
        """Describe a path without following a final symbolic link."""

    @abc.abstractmethod
    def create(self, name: str) -> BinaryIO:
        """Create or truncate a file and open it for reading and writing."""

    @abc.abstractmethod
    def remove(self, name: str) -> None:
        """Remove a file or directory entry."""

    @abc.abstractmethod
    def chmod(self, path: str, perm: int) -> None:
        """Change permission bits, keeping the file type."""

    @abc.abstractmethod
    def chown(self, path: str, uid: int, gid: int) -> None:
        """Change ownership."""

    @abc.abstractmethod
    def chtimes(self, path: str, atime: datetime, mtime: datetime) -> None:
        """Change access and modification times."""

    @abc.abstractmethod
    def set_xattr(self, path: str, attr: str, data: bytes) -> None:
        """Set an extended attribute."""

    @abc.abstractmethod
    def get_xattr(self, path: str, attr: str) -> bytes:
        """Return an extended attribute."""

    @abc.abstractmethod
    def remove_xattr(self, path: str, attr: str) -> None:
        """Remove an extended attribute; a missing one is not an error."""

    @abc.abstractmethod
    def list_xattrs(self, path: str) -> dict[str, bytes]:
        """Return a copy of all extended attributes of a path."""

    @abc.abstractmethod
    def sub(self, path: str) -> FullFS:
        """Return a view of the filesystem rooted at ``path``."""


@dataclass
class SubFS(FullFS):
    """A view of another filesystem whose paths are taken relative to ``root``."""

    fs: FullFS
    root: str

    def _full(self, path: str) -> str:
        return _join(self.root, path)

    def open(self, path: str) -> Any:
        if not valid_path(path):
            raise _invalid_path("open", path)
        return self.fs.open(self._full(path))

    def open_reader_at(self, path: str) -> Any:
        return self.fs.open_reader_at(self._full(path))

    def open_file(self, name: str, flag: int, perm: int) -> Any:
        return self.fs.open_file(self._full(name), flag, perm)

    def create(self, name: str) -> Any:
        return self.fs.create(self._full(name))

    def read_file(self, name: str) -> bytes:
        return self.fs.read_file(self._full(name))

    def write_file(self, name: str, data: bytes, mode: int) -> None:
        return self.fs.write_file(self._full(name), data, mode)

    def mkdir(self, path: str, perm: int) -> None:
        return self.fs.mkdir(self._full(path), perm)

    def mkdir_all(self, path: str, perm: int) -> None:
        return self.fs.mkdir_all(self._full(path), perm)

    def read_dir(self, name: str) -> list[FileInfo]:
        return self.fs.read_dir(self._full(name))

    def stat(self, path: str) -> FileInfo:
        return self.fs.stat(self._full(path))

    def lstat(self, path: str) -> FileInfo:
        return self.fs.lstat(self._full(path))

    def remove(self, name: str) -> None:
        return self.fs.remove(self._full(name))

    def chmod(self, path: str, perm: int) -> None:
        return self.fs.chmod(self._full(path), perm)

    def chown(self, path: str, uid: int, gid: int) -> None:
        return self.fs.chown(self._full(path), uid, gid)

    def chtimes(self, path: str, atime: datetime, mtime: datetime) -> None:
        return self.fs.chtimes(self._full(path), atime, mtime)

    def symlink(self, oldname: str, newname: str) -> None:
        return self.fs.symlink(oldname, newname)

    def link(self, oldname: str, newname: str) -> None:
        return self.fs.link(oldname, newname)

    def readlink(self, name: str) -> str:
        return self.fs.readlink(self._full(name))

    def mknod(self, path: str, mode: int, dev: int) -> None:
        return self.fs.mknod(self._full(path), mode, dev)

    def readnod(self, path: str) -> int:
        return self.fs.readnod(self._full(path))

    def set_xattr(self, path: str, attr: str, data: bytes) -> None:
        return self.fs.set_xattr(self._full(path), attr, data)

    def get_xattr(self, path: str, attr: str) -> bytes:
        return self.fs.get_xattr(self._full(path), attr)

    def remove_xattr(self, path: str, attr: str) -> None:
        return self.fs.remove_xattr(self._full(path), attr)

    def list_xattrs(self, path: str) -> dict[str, bytes]:
        return self.fs.list_xattrs(self._full(path))

    def sub(self, path: str) -> FullFS:
        if not valid_path(path):
            raise _invalid_path("sub", path)
        clean_path = _clean(path)
        if clean_path == ".":
            return self
        full_path = self._full(clean_path)
        if not self.fs.stat(full_path).is_dir:
            raise NotADirectoryError(errno.ENOTDIR, "not a directory", full_path)
        return SubFS(self.fs, full_path)


def valid_path(name: str) -> bool:
    """Tell whether ``name`` is an unrooted, slash-separated path without
    empty, ``.`` or ``..`` elements (``.`` alone names the root)."""
    if name == ".":
        return True
    if not name:
        return False
    return all(element not in ("", ".", "..") for element in name.split("/"))


def sub(fsys: FullFS, dir: str) -> FullFS:
    """Return a view of ``fsys`` rooted at ``dir``."""
    if not valid_path(dir):
        raise _invalid_path("sub", dir)
    if dir == ".":
        return fsys
    return SubFS(fsys, dir)


def walk_dir(fsys: FullFS, root: str) -> Iterator[tuple[str, FileInfo]]:
    """Walk the tree under ``root`` in lexical order, yielding ``(path, info)``.

    A directory is yielded before its contents.  Errors are raised as they
    occur.
    """
    info = fsys.stat(root)
    yield root, info
    if info.is_dir:
        yield from _walk_children(fsys, root)


def _walk_children(fsys: FullFS, path: str) -> Iterator[tuple[str, FileInfo]]:
    for entry in sorted(fsys.read_dir(path), key=lambda item: item.name):
        child = _join(path, entry.name)
        yield child, entry
        if entry.is_dir:
            yield from _walk_children(fsys, child)