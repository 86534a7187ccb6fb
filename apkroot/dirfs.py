"""A filesystem backed by a directory on disk, with in-memory overrides.

Anything the host cannot store (ownership, device nodes, extended attributes,
permissions an unprivileged user cannot set, or file names that differ only in
case on a case-insensitive disk) is kept in an in-memory filesystem.  Every
entry exists in memory; file content lives on disk whenever it can.

On a case-insensitive disk only one variant of each name goes to disk: the
first one created.  Later variants that differ only in case are kept in memory.
"""

from __future__ import annotations

import errno
import os
import posixpath
import stat
import threading
from datetime import datetime, timezone

from .fsbase import FileInfo, FullFS
from .memfs import MemFS


def _standardize(path: str) -> str:
    return path[1:] if path.startswith("/") else path


def _base(path: str) -> str:
    stripped = path.rstrip("/")
    if not stripped:
        return "/" if path else "."
    return stripped.rsplit("/", 1)[-1]


def _mtime(st: os.stat_result) -> datetime:
    return datetime.fromtimestamp(st.st_mtime, tz=timezone.utc)


def _info_from_stat(name: str, st: os.stat_result) -> FileInfo:
    return FileInfo(
        name=name,
        size=st.st_size,
        mode=st.st_mode,
        mod_time=_mtime(st),
        uid=st.st_uid,
        gid=st.st_gid,
    )


def _merge(disk_name: str, st: os.stat_result, mem: FileInfo) -> FileInfo:
    """Size and times from disk, mode and ownership from memory."""
    return FileInfo(
        name=disk_name,
        size=st.st_size,
        mode=mem.mode,
        mod_time=_mtime(st),
        uid=mem.uid,
        gid=mem.gid,
        xattrs=mem.xattrs,
    )


def _file_mode(flag: int) -> str:
    append = bool(flag & os.O_APPEND)
    if flag & os.O_RDWR:
        return "a+b" if append else "r+b"
    if flag & os.O_WRONLY:
        return "ab" if append else "wb"
    return "rb"


class _DiskFile:
    """An open file on disk, optionally restoring its mode when closed."""

    def __init__(self, raw, name: str, restore_mode: int | None = None, path: str = "") -> None:
        self._raw = raw
        self.name = name
        self._restore_mode = restore_mode
        self._path = path

    @property
    def closed(self) -> bool:
        return self._raw.closed

    def read(self, size: int = -1) -> bytes:
        return self._raw.read(size) or b""

    def read_at(self, size: int, offset: int) -> bytes:
        return os.pread(self._raw.fileno(), size, offset)

    def write(self, data: bytes) -> int:
        return self._raw.write(data)

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        return self._raw.seek(offset, whence)

    def tell(self) -> int:
        return self._raw.tell()

    def fileno(self) -> int:
        return self._raw.fileno()

    def stat(self) -> FileInfo:
        return _info_from_stat(self.name, os.fstat(self._raw.fileno()))

    def close(self) -> None:
        self._raw.close()
        if self._restore_mode is not None:
            os.chmod(self._path, self._restore_mode)
            self._restore_mode = None

    def __enter__(self) -> _DiskFile:
        return self

    def __exit__(self, *exc_info: object) -> None:
        if not self.closed:
            self.close()


def _open_disk(path: str, flag: int, perm: int) -> _DiskFile:
    fd = os.open(path, flag, stat.S_IMODE(perm))
    try:
        raw = os.fdopen(fd, _file_mode(flag), buffering=0)
    except BaseException:
        os.close(fd)
        raise
    return _DiskFile(raw, _base(path))


class DirFS(FullFS):
    """A full filesystem rooted at a directory on disk."""

    def __init__(self, base: str, overrides: FullFS, case_map: dict[str, str] | None) -> None:
        self.base = base
        self._overrides = overrides
        # None when the disk is case-sensitive; otherwise maps the lower-cased
        # path to the one variant that lives on disk.
        self._case_map = case_map
        self._case_lock = threading.Lock()

    @property
    def case_sensitive(self) -> bool:
        return self._case_map is None

    def _disk(self, name: str) -> str:
        return os.path.normpath(os.path.join(self.base, name.lstrip("/")))

    def _sanitize(self, name: str) -> str:
        full = self._disk(name)
        if not full.startswith(self.base):
            raise ValueError(f"content filepath is tainted: {name}")
        return full

    def _case_sensitive_on_disk(self, path: str) -> bool:
        if self._case_map is None:
            return True
        with self._case_lock:
            path = _standardize(path)
            found = self._case_map.get(path.lower())
            return found is None or found == path

    def _create_on_disk(self, path: str) -> bool:
        if self._case_map is None:
            return True
        with self._case_lock:
            path = _standardize(path)
            key = path.lower()
            found = self._case_map.get(key)
            if found is None:
                self._case_map[key] = path
                return True
            return found == path

    def _remove_on_disk(self, path: str) -> bool:
        if self._case_map is None:
            return True
        with self._case_lock:
            path = _standardize(path)
            key = path.lower()
            if self._case_map.get(key) == path:
                del self._case_map[key]
                return True
            return False

    def readlink(self, name: str) -> str:
        # The disk may not support symlinks or may fold case: memory is authoritative.
        return self._overrides.readlink(name)

    def open(self, name: str):
        """Open a file for reading.

        A file on disk that the user may not read has its permissions changed
        for the duration, and restored when the file is closed.
        """
        full = self._sanitize(name)
        base_name = _base(name)
        if not self._case_sensitive_on_disk(name):
            return self._overrides.open_reader_at(name)
        try:
            return _DiskFile(open(full, "rb", buffering=0), base_name)
        except PermissionError:
            pass
        original = os.stat(full).st_mode
        try:
            os.chmod(full, 0o600)
        except OSError as err:
            raise PermissionError(
                errno.EACCES, f"unable to read file or change permissions: {name}"
            ) from err
        try:
            raw = open(full, "rb", buffering=0)
        except OSError as err:
            raise PermissionError(
                errno.EACCES, f"unable to read file even after change permissions: {name}"
            ) from err
        return _DiskFile(raw, base_name, restore_mode=stat.S_IMODE(original), path=full)

    def open_file(self, name: str, flag: int, perm: int):
        if flag & os.O_CREAT:
            handle = self._overrides.open_file(name, flag, perm)
            if self._create_on_disk(name):
                handle.close()
                handle = _open_disk(self._disk(name), flag, perm)
            return handle
        if self._case_sensitive_on_disk(name):
            return _open_disk(self._disk(name), flag, perm)
        return self._overrides.open_file(name, flag, perm)

    def open_reader_at(self, name: str):
        return self.open(name)

    def stat(self, name: str) -> FileInfo:
        mem = self._overrides.stat(name)
        if not self._case_sensitive_on_disk(name):
            return mem
        st = os.stat(self._disk(name))
        return _merge(_base(name), st, mem)

    def lstat(self, name: str) -> FileInfo:
        return self._overrides.lstat(name)

    def create(self, name: str):
        handle = self._overrides.create(name)
        if self._create_on_disk(name):
            handle.close()
            handle = _DiskFile(open(self._disk(name), "w+b", buffering=0), _base(name))
        return handle

    def remove(self, name: str) -> None:
        self._overrides.remove(name)
        if self._remove_on_disk(name):
            path = self._disk(name)
            if os.path.isdir(path) and not os.path.islink(path):
                os.rmdir(path)
            else:
                os.remove(path)

    def read_dir(self, name: str) -> list[FileInfo]:
        on_disk: dict[str, os.DirEntry] = {}
        if self._case_sensitive_on_disk(name):
            with os.scandir(self._disk(name)) as entries:
                on_disk = {entry.name: entry for entry in entries}
        merged = []
        for mem in self._overrides.read_dir(name):
            entry = on_disk.get(mem.name)
            if entry is None:
                merged.append(mem)
            else:
                merged.append(_merge(entry.name, entry.stat(follow_symlinks=False), mem))
        return sorted(merged, key=lambda info: info.name)

    def read_file(self, name: str) -> bytes:
        if self._case_sensitive_on_disk(name):
            with open(self._disk(name), "rb") as handle:
                return handle.read()
        return self._overrides.read_file(name)

    def write_file(self, name: str, data: bytes, mode: int) -> None:
        mem_content = b""
        if self._create_on_disk(name):
            fd = os.open(self._disk(name), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, stat.S_IMODE(mode))
            with os.fdopen(fd, "wb") as handle:
                handle.write(data or b"")
        else:
            mem_content = data or b""
        # On disk, memory only marks existence; otherwise memory holds the content.
        self._overrides.write_file(name, mem_content, mode)

    def readnod(self, name: str) -> int:
        if self._case_sensitive_on_disk(name):
            os.stat(self._disk(name))
        return self._overrides.readnod(name)

    def link(self, oldname: str, newname: str) -> None:
        target = self._disk(oldname)
        if not target.startswith(self.base):
            raise ValueError(f"hardlink target {target} is outside of the filesystem")
        if self._create_on_disk(newname):
            os.link(target, self._disk(newname))
        self._overrides.link(oldname, newname)

    def symlink(self, oldname: str, newname: str) -> None:
        # The target is taken as is, so links may point outside the root.
        if self._create_on_disk(newname):
            os.symlink(oldname, self._disk(newname))
        self._overrides.symlink(oldname, newname)

    def mkdir_all(self, name: str, perm: int) -> None:
        full_perm = stat.S_IFDIR | stat.S_IMODE(perm)
        if self._create_on_disk(name):
            os.makedirs(self._disk(name), stat.S_IMODE(perm), exist_ok=True)
        self._overrides.mkdir_all(name, full_perm)

    def mkdir(self, name: str, perm: int) -> None:
        full_perm = stat.S_IFDIR | stat.S_IMODE(perm)
        if self._create_on_disk(name):
            os.mkdir(self._disk(name), stat.S_IMODE(perm))
        self._overrides.mkdir(name, full_perm)

    def chmod(self, path: str, perm: int) -> None:
        if self._case_sensitive_on_disk(path):
            try:
                os.chmod(self._disk(path), stat.S_IMODE(perm))
            except OSError:
                pass  # tracked in memory regardless
        self._overrides.chmod(path, perm)

    def chown(self, path: str, uid: int, gid: int) -> None:
        if self._case_sensitive_on_disk(path):
            try:
                os.chown(self._disk(path), uid, gid)
            except OSError:
                pass  # tracked in memory regardless
        self._overrides.chown(path, uid, gid)

    def chtimes(self, path: str, atime: datetime, mtime: datetime) -> None:
        try:
            os.utime(self._disk(path), (atime.timestamp(), mtime.timestamp()))
        except OSError as err:
            raise OSError(err.errno, f"unable to change times: {err.strerror}", path) from err
        self._overrides.chtimes(path, atime, mtime)

    def mknod(self, name: str, mode: int, dev: int) -> None:
        if self._case_sensitive_on_disk(name):
            full = self._disk(name)
            make_node = getattr(os, "mknod", None)
            try:
                if make_node is None:
                    raise PermissionError(errno.EPERM, "mknod unsupported")
                make_node(full, mode, dev)
            except OSError:
                # Leave a placeholder on disk; memory holds the device.
                fd = os.open(full, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0)
                os.close(fd)
        self._overrides.mknod(name, mode, dev)

    def set_xattr(self, path: str, attr: str, data: bytes) -> None:
        self._overrides.set_xattr(path, attr, data)

    def get_xattr(self, path: str, attr: str) -> bytes:
        return self._overrides.get_xattr(path, attr)

    def remove_xattr(self, path: str, attr: str) -> None:
        self._overrides.remove_xattr(path, attr)

    def list_xattrs(self, path: str) -> dict[str, bytes]:
        return self._overrides.list_xattrs(path)

    def sub(self, path: str) -> FullFS:
        return self._overrides.sub(path)


def _detect_case_sensitive(directory: str) -> bool:
    index = 0
    while True:
        filename = f"test-dirfs-{index}"
        probe = os.path.join(directory, filename)
        if os.path.exists(probe):
            index += 1
            continue
        try:
            with open(probe, "wb") as handle:
                handle.write(b"test")
        except OSError:
            return False
        sensitive = not os.path.exists(os.path.join(directory, filename.upper()))
        try:
            os.remove(probe)
        except OSError:
            pass
        return sensitive


def _populate(overrides: FullFS, root: str, rel: str = "") -> None:
    with os.scandir(os.path.join(root, rel) if rel else root) as it:
        entries = sorted(it, key=lambda entry: entry.name)
    for entry in entries:
        path = posixpath.join(rel, entry.name) if rel else entry.name
        st = entry.stat(follow_symlinks=False)
        perm = stat.S_IMODE(st.st_mode)
        if stat.S_ISDIR(st.st_mode):
            overrides.mkdir(path, stat.S_IFDIR | perm)
            _populate(overrides, root, path)
        elif stat.S_ISLNK(st.st_mode):
            overrides.symlink(os.readlink(os.path.join(root, path)), path)
        elif stat.S_ISCHR(st.st_mode):
            overrides.mknod(path, stat.S_IFCHR | perm, st.st_rdev)
        else:
            overrides.open_file(path, os.O_CREAT, perm).close()


def dir_fs(path: str, case_sensitive: bool | None = None, create_dir: bool = False) -> DirFS:
    """Return a :class:`DirFS` over ``path``.

    ``case_sensitive`` forces how the disk is treated; by default it is probed.
    With ``create_dir`` a missing directory is created.
    """
    try:
        info = os.stat(path)
    except FileNotFoundError:
        if not create_dir:
            raise
        os.makedirs(path, 0o700, exist_ok=True)
    else:
        if not stat.S_ISDIR(info.st_mode):
            raise NotADirectoryError(errno.ENOTDIR, "not a directory", path)

    if case_sensitive is None:
        case_sensitive = _detect_case_sensitive(path)

    overrides = MemFS()
    fsys = DirFS(os.path.normpath(path), overrides, None if case_sensitive else {})
    try:
        _populate(overrides, path)
    except OSError:
        pass  # keep whatever was recorded before the failure
    return fsys