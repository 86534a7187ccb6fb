"""Parsing and writing of /etc/passwd and /etc/group files."""

from __future__ import annotations

import os
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, BinaryIO

from .fsbase import FullFS

_INTEGER = re.compile(r"[+-]?[0-9]+")


def _parse_id(value: str, what: str) -> int:
    if not _INTEGER.fullmatch(value):
        raise ValueError(f"failed to parse {what} {value}")
    return int(value) % (1 << 32)


def _lines(stream: Any) -> list[str]:
    data = stream.read()
    if isinstance(data, (bytes, bytearray)):
        data = bytes(data).decode("utf-8")
    lines = data.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return lines


def _open(opener: Callable[[], Any], file_path: str) -> Any:
    try:
        return opener()
    except OSError as err:
        raise OSError(err.errno, f"failed to open {file_path}: {err.strerror or err}", file_path) from err


def _create(fsys: FullFS, file_path: str) -> Any:
    try:
        return fsys.create(file_path)
    except OSError as err:
        raise OSError(
            err.errno, f"unable to open {file_path} for writing: {err.strerror or err}", file_path
        ) from err


@dataclass
class UserEntry:
    """One line of /etc/passwd."""

    user_name: str = ""
    password: str = ""
    uid: int = 0
    gid: int = 0
    info: str = ""
    home_dir: str = ""
    shell: str = ""

    @classmethod
    def parse(cls, line: str) -> UserEntry:
        parts = line.strip().split(":")
        if len(parts) != 7:
            raise ValueError(f"malformed line, contains {len(parts)} parts, expecting 7")
        return cls(
            user_name=parts[0],
            password=parts[1],
            uid=_parse_id(parts[2], "UID"),
            gid=_parse_id(parts[3], "GID"),
            info=parts[4],
            home_dir=parts[5],
            shell=parts[6],
        )

    def __str__(self) -> str:
        return ":".join(
            [self.user_name, self.password, str(self.uid), str(self.gid), self.info, self.home_dir, self.shell]
        )

    def write(self, out: BinaryIO) -> None:
        out.write(f"{self}\n".encode("utf-8"))


@dataclass
class UserFile:
    """The entries of an /etc/passwd file."""

    entries: list[UserEntry] = field(default_factory=list)
    fsys: FullFS | None = field(default=None, repr=False, compare=False)

    def load(self, stream: Any) -> None:
        """Append the entries read from a binary or text stream."""
        for line in _lines(stream):
            try:
                self.entries.append(UserEntry.parse(line))
            except ValueError as err:
                raise ValueError(f"unable to parse: {err}") from err

    def write(self, out: BinaryIO) -> None:
        for entry in self.entries:
            entry.write(out)

    def write_file(self, file_path: str) -> None:
        """Write the entries to ``file_path`` on the filesystem they were read from."""
        if self.fsys is None:
            raise ValueError("user file has no filesystem to write to")
        handle = _create(self.fsys, file_path)
        try:
            self.write(handle)
        finally:
            handle.close()


@dataclass
class GroupEntry:
    """One line of /etc/group."""

    group_name: str = ""
    password: str = ""
    gid: int = 0
    members: list[str] = field(default_factory=list)

    @classmethod
    def parse(cls, line: str) -> GroupEntry:
        parts = line.strip().split(":")
        if len(parts) != 4:
            raise ValueError(f"malformed line, contains {len(parts)} parts, expecting 4")
        return cls(
            group_name=parts[0],
            password=parts[1],
            gid=_parse_id(parts[2], "GID"),
            members=parts[3].split(","),
        )

    def __str__(self) -> str:
        return f"{self.group_name}:{self.password}:{self.gid}:{','.join(self.members)}"

    def write(self, out: BinaryIO) -> None:
        out.write(f"{self}\n".encode("utf-8"))


@dataclass
class GroupFile:
    """The entries of an /etc/group file."""

    entries: list[GroupEntry] = field(default_factory=list)

    def load(self, stream: Any) -> None:
        """Append the entries read from a binary or text stream."""
        for line in _lines(stream):
            try:
                self.entries.append(GroupEntry.parse(line))
            except ValueError as err:
                raise ValueError(f"unable to parse: {err}") from err

    def write(self, out: BinaryIO) -> None:
        for entry in self.entries:
            entry.write(out)

    def write_file(self, fsys: FullFS, file_path: str) -> None:
        handle = _create(fsys, file_path)
        try:
            self.write(handle)
        finally:
            handle.close()


def _load_into(target: UserFile | GroupFile, handle: Any) -> None:
    try:
        target.load(handle)
    finally:
        handle.close()


def read_or_create_user_file(fsys: FullFS, file_path: str) -> UserFile:
    """Read an /etc/passwd file, creating an empty one if it is missing."""
    user_file = UserFile(fsys=fsys)
    handle = _open(lambda: fsys.open_file(file_path, os.O_RDONLY | os.O_CREAT, 0o644), file_path)
    _load_into(user_file, handle)
    return user_file


def read_user_file(fsys: Any, file_path: str) -> UserFile:
    """Read an /etc/passwd file; a missing file is an error."""
    user_file = UserFile()
    handle = _open(lambda: fsys.open(file_path), file_path)
    _load_into(user_file, handle)
    return user_file


def read_or_create_group_file(fsys: FullFS, file_path: str) -> GroupFile:
    """Read an /etc/group file, creating an empty one if it is missing."""
    group_file = GroupFile()
    handle = _open(lambda: fsys.open_file(file_path, os.O_RDONLY | os.O_CREAT, 0o644), file_path)
    _load_into(group_file, handle)
    return group_file


def read_group_file(fsys: Any, file_path: str) -> GroupFile:
    """Read an /etc/group file; a missing file is an error."""
    group_file = GroupFile()
    handle = _open(lambda: fsys.open(file_path), file_path)
    _load_into(group_file, handle)
    return group_file