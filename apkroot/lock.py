"""Lock files pinning the packages, repositories and keyrings of a build."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any


def _get_str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a string, got {type(value).__name__}")
    return value


def _get_dict(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"field {key!r} must be an object, got {type(value).__name__}")
    return value


def _get_list(data: dict[str, Any], key: str) -> list[dict[str, Any]]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"field {key!r} must be an array, got {type(value).__name__}")
    for item in value:
        if not isinstance(item, dict):
            raise ValueError(f"items of {key!r} must be objects")
    return value


@dataclass
class LockConfig:
    """The configuration the lock file was generated from."""

    name: str = ""
    # Also covers included files and command-line settings that influence resolution.
    deep_checksum: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LockConfig:
        return cls(name=_get_str(data, "name"), deep_checksum=_get_str(data, "checksum"))

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.name:
            result["name"] = self.name
        if self.deep_checksum:
            result["checksum"] = self.deep_checksum
        return result


@dataclass
class LockPkgRangeAndChecksum:
    range: str = ""
    checksum: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LockPkgRangeAndChecksum:
        return cls(range=_get_str(data, "range"), checksum=_get_str(data, "checksum"))

    def to_dict(self) -> dict[str, Any]:
        return {"range": self.range, "checksum": self.checksum}


@dataclass
class LockPkg:
    """A locked package, in installation order for one architecture."""

    name: str = ""
    url: str = ""
    version: str = ""
    architecture: str = ""
    signature: LockPkgRangeAndChecksum = field(default_factory=LockPkgRangeAndChecksum)
    control: LockPkgRangeAndChecksum = field(default_factory=LockPkgRangeAndChecksum)
    data: LockPkgRangeAndChecksum = field(default_factory=LockPkgRangeAndChecksum)
    # APK-style 'Q1'-prefixed SHA-1 of the control stream.
    checksum: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LockPkg:
        return cls(
            name=_get_str(data, "name"),
            url=_get_str(data, "url"),
            version=_get_str(data, "version"),
            architecture=_get_str(data, "architecture"),
            signature=LockPkgRangeAndChecksum.from_dict(_get_dict(data, "signature")),
            control=LockPkgRangeAndChecksum.from_dict(_get_dict(data, "control")),
            data=LockPkgRangeAndChecksum.from_dict(_get_dict(data, "data")),
            checksum=_get_str(data, "checksum"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "url": self.url,
            "version": self.version,
            "architecture": self.architecture,
            "signature": self.signature.to_dict(),
            "control": self.control.to_dict(),
            "data": self.data.to_dict(),
            "checksum": self.checksum,
        }


@dataclass
class LockRepo:
    name: str = ""
    url: str = ""
    architecture: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LockRepo:
        return cls(
            name=_get_str(data, "name"),
            url=_get_str(data, "url"),
            architecture=_get_str(data, "architecture"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "url": self.url, "architecture": self.architecture}


@dataclass
class LockKeyring:
    name: str = ""
    url: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LockKeyring:
        return cls(name=_get_str(data, "name"), url=_get_str(data, "url"))

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "url": self.url}


@dataclass
class LockContents:
    keyrings: list[LockKeyring] = field(default_factory=list)
    build_repositories: list[LockRepo] = field(default_factory=list)
    runtime_repositories: list[LockRepo] = field(default_factory=list)
    packages: list[LockPkg] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LockContents:
        return cls(
            keyrings=[LockKeyring.from_dict(item) for item in _get_list(data, "keyring")],
            build_repositories=[
                LockRepo.from_dict(item) for item in _get_list(data, "build_repositories")
            ],
            runtime_repositories=[
                LockRepo.from_dict(item) for item in _get_list(data, "repositories")
            ],
            packages=[LockPkg.from_dict(item) for item in _get_list(data, "packages")],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "keyring": [item.to_dict() for item in self.keyrings],
            "build_repositories": [item.to_dict() for item in self.build_repositories],
            "repositories": [item.to_dict() for item in self.runtime_repositories],
            "packages": [item.to_dict() for item in self.packages],
        }


_HTML_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


def _escape(text: str) -> str:
    # These characters only ever occur inside JSON strings.
    return "".join(_HTML_ESCAPES.get(char, char) for char in text)


@dataclass
class Lock:
    """A lock file."""

    version: str = ""
    config: LockConfig | None = None
    contents: LockContents = field(default_factory=LockContents)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Lock:
        if not isinstance(data, dict):
            raise ValueError("lock file must hold a JSON object")
        config = data.get("config")
        if config is not None and not isinstance(config, dict):
            raise ValueError("field 'config' must be an object")
        return cls(
            version=_get_str(data, "version"),
            config=LockConfig.from_dict(config) if config is not None else None,
            contents=LockContents.from_dict(_get_dict(data, "contents")),
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"version": self.version}
        if self.config is not None:
            result["config"] = self.config.to_dict()
        result["contents"] = self.contents.to_dict()
        return result

    def to_json(self) -> str:
        """Serialise as indented JSON ending in a newline."""
        return _escape(json.dumps(self.to_dict(), indent=2, ensure_ascii=False)) + "\n"

    def save_to_file(self, lock_file: str | os.PathLike) -> None:
        """Write the lock to ``lock_file``; it must be publicly readable."""
        payload = self.to_json().encode("utf-8")
        fd = os.open(lock_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o777)
        with os.fdopen(fd, "wb") as handle:
            handle.write(payload)


def from_file(lock_file: str | os.PathLike) -> Lock:
    """Load a lock file."""
    try:
        with open(lock_file, "rb") as handle:
            payload = handle.read()
    except OSError as err:
        raise OSError(err.errno, f"failed to load lockfile: {err.strerror}", lock_file) from err
    return Lock.from_dict(json.loads(payload))