"""An in-memory filesystem supporting every filesystem operation."""

from __future__ import annotations

import errno
import os
import posixpath
import stat
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone

from .fsbase import FileInfo, FullFS, SubFS

# Maximum depth of symbolic links followed, matching the Linux kernel since 4.2.
MAX_LINKS = 40

_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


def _clean(path: str) -> str:
    if not path:
        return "."
    cleaned = posixpath.normpath(path)
    if path.startswith("/"):
        cleaned = "/" + cleaned.lstrip("/")
    return cleaned


def _join(*elements: str) -> str:
    parts = [element for element in elements if element]
    if not parts:
        return ""
    return _clean("/".join(parts))


def _dir(path: str) -> str:
    return _clean(posixpath.dirname(path))


def _base(path: str) -> str:
    if not path:
        return "."
    stripped = path.rstrip("/")
    if not stripped:
        return "/"
    return stripped.rsplit("/", 1)[-1]


def _dev_major(dev: int) -> int:
    return (((dev >> 8) & 0x00000FFF) | ((dev >> 32) & 0xFFFFF000)) & 0xFFFFFFFF


def _dev_minor(dev: int) -> int:
    return (((dev >> 0) & 0x000000FF) | ((dev >> 12) & 0xFFFFFF00)) & 0xFFFFFFFF


def _mkdev(major: int, minor: int) -> int:
    return (
        ((major & 0x00000FFF) << 8)
        | ((major & 0xFFFFF000) << 32)
        | (minor & 0x000000FF)
        | ((minor & 0xFFFFFF00) << 12)
    )


def _not_found(path: str) -> FileNotFoundError:
    return FileNotFoundError(errno.ENOENT, "file does not exist", path)


def _exists(path: str) -> FileExistsError:
    return FileExistsError(errno.EEXIST, "file already exists", path)


@dataclass(eq=False)
class _Node:
    name: str
    mode: int
    is_dir: bool = False
    uid: int = 0
    gid: int = 0
    data: bytearray = field(default_factory=bytearray)
    mod_time: datetime = _EPOCH
    link_target: str = ""
    # Extra links: 0 means a single reference.
    link_count: int = 0
    major: int = 0
    minor: int = 0
    children: dict[str, _Node] | None = None
    xattrs: dict[str, bytes] = field(default_factory=dict)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def is_symlink(self) -> bool:
        return stat.S_ISLNK(self.mode)

    def file_info(self, name: str) -> FileInfo:
        return FileInfo(
            name=name,
            size=len(self.data),
            mode=self.mode,
            mod_time=self.mod_time,
            uid=self.uid,
            gid=self.gid,
            xattrs=dict(self.xattrs),
        )


def _new_dir(name: str, perm: int) -> _Node:
    return _Node(
        name=name,
        mode=stat.S_IFDIR | stat.S_IMODE(perm),
        is_dir=True,
        children={},
    )


class MemFile:
    """An open file of a :class:`MemFS`, positioned at an offset."""

    def __init__(self, node: _Node, name: str, fs: MemFS, flag: int) -> None:
        self._node: _Node | None = node
        self._fs: MemFS | None = fs
        self.name = name
        self._flag = flag
        self._offset = 0
        if flag & os.O_TRUNC:
            node.data = bytearray()
        if flag & os.O_APPEND:
            self._offset = len(node.data)

    def _check(self) -> _Node:
        if self._node is None or self._fs is None:
            raise ValueError("I/O operation on closed file")
        return self._node

    @property
    def closed(self) -> bool:
        return self._node is None

    def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` bytes (all remaining when negative)."""
        node = self._check()
        if self._offset >= len(node.data):
            return b""
        end = len(node.data) if size is None or size < 0 else self._offset + size
        chunk = bytes(node.data[self._offset:end])
        self._offset += len(chunk)
        return chunk

    def read_at(self, size: int, offset: int) -> bytes:
        """Read up to ``size`` bytes at ``offset`` without moving the position."""
        node = self._check()
        if offset >= len(node.data):
            return b""
        return bytes(node.data[offset:offset + size])

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        node = self._check()
        if whence == os.SEEK_SET:
            new = offset
        elif whence == os.SEEK_CUR:
            new = self._offset + offset
        elif whence == os.SEEK_END:
            new = len(node.data) + offset
        else:
            raise ValueError("invalid whence")
        if new < 0:
            raise ValueError("negative seek position")
        self._offset = new
        return new

    def tell(self) -> int:
        self._check()
        return self._offset

    def write(self, data: bytes) -> int:
        node = self._check()
        end = self._offset + len(data)
        if self._offset > len(node.data):
            node.data.extend(bytes(self._offset - len(node.data)))
        node.data[self._offset:end] = data
        self._offset = end
        return len(data)

    def stat(self) -> FileInfo:
        self._check()
        assert self._fs is not None
        return self._fs.stat(self.name)

    def close(self) -> None:
        self._check()
        self._fs = None
        self._node = None

    def __enter__(self) -> MemFile:
        return self

    def __exit__(self, *exc_info: object) -> None:
        if not self.closed:
            self.close()


class MemFS(FullFS):
    """A filesystem held entirely in memory."""

    def __init__(self) -> None:
        self._tree = _new_dir("/", 0o755)

    def _get_node(self, path: str, link_depth: int = 0) -> _Node:
        if path in ("/", "."):
            return self._tree
        node = self._tree
        traversed: list[str] = []
        for part in path.split("/"):
            if part in ("", "."):
                continue
            if node.children is None:
                raise _not_found(path)
            with node.lock:
                child = node.children.get(part)
            if child is None:
                raise _not_found(path)
            if child.is_symlink:
                depth = link_depth + 1
                if depth > MAX_LINKS:
                    raise OSError(errno.ELOOP, "maximum symlink depth exceeded", path)
                target = child.link_target
                if not posixpath.isabs(target):
                    target = _join("/".join(traversed), target)
                child = self._get_node(target, depth)
            node = child
            traversed.append(part)
        return node

    def _parent_dir(self, path: str) -> _Node:
        parent = self._get_node(_dir(path))
        if not parent.is_dir or parent.children is None:
            raise NotADirectoryError(errno.ENOTDIR, "parent is not a directory", path)
        return parent

    def mkdir(self, path: str, perm: int) -> None:
        parent = self._get_node(_dir(path))
        if not stat.S_ISDIR(parent.mode) or parent.children is None:
            raise NotADirectoryError(errno.ENOTDIR, "parent is not a directory", path)
        base = _base(path)
        with parent.lock:
            if base in parent.children:
                raise _exists(path)
            parent.children[base] = _new_dir(base, perm)

    def stat(self, path: str) -> FileInfo:
        node = self._get_node(path)
        if node.is_symlink:
            node = self._get_node(node.link_target)
        return node.file_info(_base(path))

    def lstat(self, path: str) -> FileInfo:
        return self._get_node(path).file_info(_base(path))

    def mkdir_all(self, path: str, perm: int) -> None:
        node = self._tree
        traversed: list[str] = []
        for part in path.split("/"):
            if part in ("", "."):
                continue
            if node.children is None:
                node.children = {}
            with node.lock:
                child = node.children.get(part)
                if child is None:
                    child = _new_dir(part, perm)
                    node.children[part] = child
            if child.is_symlink:
                target = child.link_target
                if not posixpath.isabs(target):
                    target = _join("/".join(traversed), target)
                child = self._get_node(target)
            if not child.is_dir:
                raise NotADirectoryError(errno.ENOTDIR, "path is not a directory", path)
            node = child
            traversed.append(part)

    def open(self, name: str) -> MemFile:
        return self.open_file(name, os.O_RDONLY, 0o644)

    def open_file(self, name: str, flag: int, perm: int) -> MemFile:
        return self._open_file(name, flag, perm, 0)

    def _open_file(self, name: str, flag: int, perm: int, link_count: int) -> MemFile:
        parent_path = _dir(name)
        base = _base(name)
        parent = self._get_node(parent_path)
        if not parent.is_dir:
            raise NotADirectoryError(errno.ENOTDIR, "parent is not a directory", name)
        if parent.children is None:
            parent.children = {}
        with parent.lock:
            node = parent.children.get(base)
            if node is None and not flag & os.O_CREAT:
                raise _not_found(name)
            if node is not None and node.is_dir:
                raise IsADirectoryError(errno.EISDIR, "is a directory", name)
            if node is None:
                node = _Node(name=base, mode=stat.S_IFREG | stat.S_IMODE(perm))
                parent.children[base] = node
        if node.is_symlink:
            count = link_count + 1
            if count > MAX_LINKS:
                raise OSError(errno.ELOOP, "too many links", name)
            target = node.link_target
            if not posixpath.isabs(target):
                target = _join(parent_path, target)
            return self._open_file(target, flag, perm, count)
        return MemFile(node, name, self, flag)

    def open_reader_at(self, name: str) -> MemFile:
        return self.open_file(name, os.O_RDONLY, 0o644)

    def read_file(self, name: str) -> bytes:
        with self.open_file(name, os.O_RDONLY, 0o644) as f:
            return f.read()

    def write_file(self, name: str, data: bytes, mode: int) -> None:
        with self.open_file(name, os.O_RDWR | os.O_CREAT | os.O_TRUNC, mode) as f:
            f.write(data or b"")

    def read_dir(self, name: str) -> list[FileInfo]:
        node = self._get_node(name)
        if not node.is_dir:
            raise NotADirectoryError(errno.ENOTDIR, "not a directory", name)
        with node.lock:
            children = list((node.children or {}).items())
        return sorted(
            (child.file_info(child_name) for child_name, child in children),
            key=lambda info: info.name,
        )

    def mknod(self, path: str, mode: int, dev: int) -> None:
        parent = self._parent_dir(path)
        base = _base(path)
        with parent.lock:
            if base in parent.children:
                raise _exists(path)
            parent.children[base] = _Node(
                name=base,
                mode=stat.S_IFCHR | stat.S_IMODE(mode),
                major=_dev_major(dev),
                minor=_dev_minor(dev),
                mod_time=parent.mod_time,
            )

    def readnod(self, path: str) -> int:
        parent = self._parent_dir(path)
        with parent.lock:
            node = parent.children.get(_base(path))
        if node is None:
            raise _not_found(path)
        if not stat.S_ISCHR(node.mode):
            raise OSError(errno.ENODEV, "not a device", path)
        return _mkdev(node.major, node.minor)

    def chmod(self, path: str, perm: int) -> None:
        node = self._get_node(path)
        node.mode = stat.S_IMODE(perm) | stat.S_IFMT(node.mode)

    def chown(self, path: str, uid: int, gid: int) -> None:
        node = self._get_node(path)
        node.uid = uid
        node.gid = gid

    def chtimes(self, path: str, atime: datetime, mtime: datetime) -> None:
        self._get_node(path).mod_time = mtime

    def create(self, name: str) -> MemFile:
        return self.open_file(name, os.O_CREAT | os.O_TRUNC | os.O_RDWR, 0o666)

    def symlink(self, oldname: str, newname: str) -> None:
        parent = self._parent_dir(newname)
        base = _base(newname)
        with parent.lock:
            if base in parent.children:
                raise _exists(newname)
            parent.children[base] = _Node(
                name=base,
                mode=stat.S_IFLNK | 0o777,
                link_target=oldname,
                mod_time=parent.mod_time,
            )

    def link(self, oldname: str, newname: str) -> None:
        parent = self._parent_dir(newname)
        base = _base(newname)
        try:
            target = self._get_node(oldname)
        except OSError as err:
            raise _not_found(oldname) from err
        with parent.lock:
            if base in parent.children:
                raise _exists(newname)
            parent.children[base] = target
            target.link_count += 1

    def readlink(self, name: str) -> str:
        parent = self._parent_dir(name)
        with parent.lock:
            node = parent.children.get(_base(name))
        if node is None:
            raise _not_found(name)
        if not node.is_symlink:
            raise OSError(errno.EINVAL, "file is not a link", name)
        return node.link_target

    def remove(self, name: str) -> None:
        parent = self._parent_dir(name)
        base = _base(name)
        with parent.lock:
            node = parent.children.get(base)
            if node is None:
                raise _not_found(name)
            if node.link_count > 0:
                node.link_count -= 1
            del parent.children[base]

    def _xattr_node(self, path: str) -> _Node:
        try:
            return self._get_node(path)
        except OSError as err:
            raise _not_found(path) from err

    def set_xattr(self, path: str, attr: str, data: bytes) -> None:
        node = self._xattr_node(path)
        with node.lock:
            node.xattrs[attr] = bytes(data)

    def get_xattr(self, path: str, attr: str) -> bytes:
        node = self._xattr_node(path)
        with node.lock:
            if attr not in node.xattrs:
                raise FileNotFoundError(errno.ENOENT, f"no attribute {attr}", path)
            return node.xattrs[attr]

    def remove_xattr(self, path: str, attr: str) -> None:
        node = self._xattr_node(path)
        with node.lock:
            node.xattrs.pop(attr, None)

    def list_xattrs(self, path: str) -> dict[str, bytes]:
        node = self._xattr_node(path)
        with node.lock:
            return {key: bytes(value) for key, value in node.xattrs.items()}

    def sub(self, path: str) -> FullFS:
        clean_path = _clean(path)
        if clean_path == ".":
            return self
        if not self.stat(clean_path).is_dir:
            raise NotADirectoryError(errno.ENOTDIR, "not a directory", clean_path)
        return SubFS(self, clean_path)