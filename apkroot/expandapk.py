"""Expansion of APK packages into their signature, control and data streams.

An APK v2 package is two or three concatenated gzip streams: an optional
signature, the control data (``.PKGINFO`` and scripts) and the package data.
"""

from __future__ import annotations

import base64
import binascii
import gzip
import hashlib
import io
import os
import shutil
import tarfile
import tempfile
import threading
import zlib
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import BinaryIO

PAX_CHECKSUM_KEY = "APK-TOOLS.checksum.SHA1"

_GZIP_WBITS = 16 + zlib.MAX_WBITS
_CHUNK = 1 << 20


class ExpandError(Exception):
    """Raised when an APK cannot be split, expanded or verified."""


class _Source:
    """A binary reader that allows unconsumed bytes to be pushed back."""

    def __init__(self, raw: BinaryIO) -> None:
        self._raw = raw
        self._pending = b""

    def read_chunk(self) -> bytes:
        if self._pending:
            chunk, self._pending = self._pending, b""
            return chunk
        return self._raw.read(_CHUNK) or b""

    def push_back(self, data: bytes) -> None:
        if data:
            self._pending = data + self._pending

    def read(self, size: int = -1) -> bytes:
        if self._pending:
            if size is None or size < 0:
                rest = self._raw.read() or b""
                chunk, self._pending = self._pending + rest, b""
                return chunk
            chunk, self._pending = self._pending[:size], self._pending[size:]
            return chunk
        return self._raw.read(size) or b""


def _read_member(src: _Source, sink: Callable[[bytes], object]) -> bytes | None:
    """Read exactly one gzip member from ``src``.

    The compressed bytes of the member are passed to ``sink``; bytes after the
    member are left in ``src``.  Returns the decompressed content, or None if
    ``src`` was already at its end.
    """
    decompressor = zlib.decompressobj(_GZIP_WBITS)
    output: list[bytes] = []
    consumed = False
    while True:
        chunk = src.read_chunk()
        if not chunk:
            if not consumed:
                return None
            raise ExpandError("reading gzip stream: unexpected EOF")
        consumed = True
        try:
            output.append(decompressor.decompress(chunk))
        except zlib.error as err:
            raise ExpandError(f"creating gzip reader: {err}") from err
        if decompressor.eof:
            unused = decompressor.unused_data
            sink(chunk[: len(chunk) - len(unused)])
            src.push_back(unused)
            return b"".join(output)
        sink(chunk)


def _first_member_name(tar_data: bytes) -> str:
    try:
        with tarfile.open(fileobj=io.BytesIO(tar_data), mode="r:") as archive:
            member = archive.next()
    except tarfile.TarError as err:
        raise ExpandError(f"reading tar header: {err}") from err
    if member is None:
        raise ExpandError("reading tar header: EOF")
    return member.name


def checksum_from_header(member: tarfile.TarInfo) -> bytes | None:
    """Return the SHA-1 recorded in a member's PAX records, or None if absent.

    The value is hex, or base64 after a ``Q1`` prefix.
    """
    value = (member.pax_headers or {}).get(PAX_CHECKSUM_KEY)
    if value is None:
        return None
    if value.startswith("Q1"):
        try:
            return base64.b64decode(value[2:], validate=True)
        except (binascii.Error, ValueError) as err:
            raise ExpandError(
                f"decoding base64 checksum from header for {member.name!r}: {err}"
            ) from err
    try:
        return binascii.unhexlify(value)
    except (binascii.Error, ValueError) as err:
        raise ExpandError(
            f"decoding hex checksum from header for {member.name!r}: {err}"
        ) from err


def check_sums(stream: BinaryIO) -> None:
    """Verify each regular file of a tar stream against its recorded SHA-1."""
    try:
        archive = tarfile.open(fileobj=stream, mode="r|")
    except tarfile.ReadError as err:
        if str(err) == "empty file":
            return
        raise ExpandError(f"checking sums: {err}") from err
    except tarfile.TarError as err:
        raise ExpandError(f"checking sums: {err}") from err
    with archive:
        try:
            for member in archive:
                if not member.isreg():
                    continue
                want = checksum_from_header(member)
                if want is None:
                    continue
                digest = hashlib.sha1()  # noqa: S324 - the format uses SHA-1
                handle = archive.extractfile(member)
                if handle is not None:
                    for block in iter(lambda: handle.read(_CHUNK), b""):
                        digest.update(block)
                got = digest.digest()
                if want != got:
                    raise ExpandError(
                        f"checksum mismatch: {member.name} header was "
                        f"{want.hex()}, computed {got.hex()}"
                    )
        except tarfile.TarError as err:
            raise ExpandError(f"checking sums: {err}") from err


class _MultiReader:
    """Reads several open files one after another."""

    def __init__(self, files: list[BinaryIO]) -> None:
        self._files = files
        self._index = 0

    def read(self, size: int = -1) -> bytes:
        parts: list[bytes] = []
        remaining = size
        while self._index < len(self._files):
            chunk = self._files[self._index].read(remaining if remaining >= 0 else -1)
            if not chunk:
                self._index += 1
                continue
            parts.append(chunk)
            if remaining >= 0:
                remaining -= len(chunk)
                if remaining == 0:
                    break
        return b"".join(parts)

    def close(self) -> None:
        errors = []
        for handle in self._files:
            try:
                handle.close()
            except OSError as err:
                errors.append(err)
        if errors:
            raise errors[0]

    def __enter__(self) -> _MultiReader:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


@dataclass(eq=False)
class APKExpanded:
    """An APK expanded into temporary files; ``close`` removes them."""

    size: int = 0
    signed: bool = False
    signature_file: str = ""
    control_file: str = ""
    package_file: str = ""
    tar_file: str = ""
    control_hash: bytes = b""
    package_hash: bytes = b""
    signature_hash: bytes = b""
    control_size: int = 0
    package_size: int = 0
    signature_size: int = 0
    _temp_dir: str = field(default="", repr=False)
    _control_data: bytes | None = field(default=None, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def control_data(self) -> bytes:
        """Return the decompressed control tar."""
        with self._lock:
            if self._control_data is None:
                with gzip.open(self.control_file, "rb") as handle:
                    self._control_data = handle.read()
            return self._control_data

    def package_data(self) -> BinaryIO:
        """Open the uncompressed data tar, recreating it if it is missing."""
        try:
            return open(self.tar_file, "rb")
        except FileNotFoundError:
            pass
        try:
            with gzip.open(self.package_file, "rb") as compressed, open(
                self.tar_file, "wb"
            ) as out:
                shutil.copyfileobj(compressed, out, _CHUNK)
        except (OSError, EOFError, zlib.error) as err:
            raise ExpandError(f"decompressing {self.package_file!r}: {err}") from err
        return open(self.tar_file, "rb")

    def apk(self) -> _MultiReader:
        """Open the original package: signature, control and data streams in order."""
        files: list[BinaryIO] = []
        try:
            for name in (self.signature_file, self.control_file, self.package_file):
                if name:
                    files.append(open(name, "rb"))
        except OSError:
            for handle in files:
                handle.close()
            raise
        return _MultiReader(files)

    def close(self) -> None:
        """Remove every temporary file of the expansion."""
        if self._temp_dir:
            shutil.rmtree(self._temp_dir, ignore_errors=False)
            self._temp_dir = ""

    def __enter__(self) -> APKExpanded:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def _expand_data_section(src: _Source, gz_path: str, tar_path: str) -> bytes | None:
    """Copy the rest of ``src`` to ``gz_path`` and its decompression to ``tar_path``.

    Returns the SHA-256 of the compressed bytes, or None if nothing was left.
    """
    digest = hashlib.sha256()
    decompressor = zlib.decompressobj(_GZIP_WBITS)
    in_member = False
    seen = False
    with open(gz_path, "wb") as gz_out, open(tar_path, "wb") as tar_out:
        while True:
            chunk = src.read_chunk()
            if not chunk:
                break
            seen = True
            gz_out.write(chunk)
            digest.update(chunk)
            data = chunk
            while data:
                in_member = True
                try:
                    tar_out.write(decompressor.decompress(data))
                except zlib.error as err:
                    raise ExpandError(f"creating gzip reader: {err}") from err
                if decompressor.eof:
                    data = decompressor.unused_data
                    decompressor = zlib.decompressobj(_GZIP_WBITS)
                    in_member = False
                else:
                    data = b""
    if not seen:
        os.remove(gz_path)
        os.remove(tar_path)
        return None
    if in_member:
        raise ExpandError("reading gzip stream: unexpected EOF")
    return digest.digest()


def expand_apk(source: BinaryIO, cache_dir: str | None = None) -> APKExpanded:
    """Expand an APK stream into its gzip streams under a new temporary directory.

    The data section's tar is also written uncompressed and its per-file
    checksums are verified.  Call :meth:`APKExpanded.close` when done.
    """
    temp_dir = tempfile.mkdtemp(prefix="expand-apk", dir=cache_dir or None)
    try:
        return _expand_into(_Source(source), temp_dir)
    except BaseException:
        shutil.rmtree(temp_dir, ignore_errors=True)
        raise


def _expand_into(src: _Source, temp_dir: str) -> APKExpanded:
    streams: list[tuple[str, bytes]] = []
    max_streams = 2
    index = 0
    while True:
        path = os.path.join(temp_dir, f"stream-{index}.tar.gz")
        if index + 1 >= max_streams:
            tar_path = path[: -len(".gz")]
            digest = _expand_data_section(src, path, tar_path)
            if digest is None:
                break
            with open(tar_path, "rb") as tar_in:
                check_sums(tar_in)
            streams.append((path, digest))
            break

        hasher = hashlib.sha1()  # noqa: S324 - the format uses SHA-1
        with open(path, "wb") as out:

            def sink(data: bytes, out: BinaryIO = out) -> None:
                out.write(data)
                hasher.update(data)

            content = _read_member(src, sink)
        if content is None:
            os.remove(path)
            break
        if index == 0 and _first_member_name(content).startswith(".SIGN."):
            max_streams = 3
        streams.append((path, hasher.digest()))
        index += 1

    sizes = [os.path.getsize(path) for path, _ in streams]
    if len(streams) == 3:
        signature_index, control_index, package_index = 0, 1, 2
    elif len(streams) == 2:
        signature_index, control_index, package_index = -1, 0, 1
    else:
        raise ExpandError(f"invalid number of tar streams: {len(streams)}")

    expanded = APKExpanded(
        size=sum(sizes),
        signed=signature_index >= 0,
        control_file=streams[control_index][0],
        control_hash=streams[control_index][1],
        control_size=sizes[control_index],
        package_file=streams[package_index][0],
        package_hash=streams[package_index][1],
        package_size=sizes[package_index],
        _temp_dir=temp_dir,
    )
    if expanded.signed:
        expanded.signature_file = streams[signature_index][0]
        expanded.signature_hash = streams[signature_index][1]
        expanded.signature_size = sizes[signature_index]

    try:
        expanded.control_data()
    except (OSError, EOFError, zlib.error) as err:
        raise ExpandError(f"reading {expanded.control_file!r}: {err}") from err

    expanded.tar_file = expanded.package_file[: -len(".gz")]
    expanded.package_data().close()
    return expanded


def split(source: BinaryIO) -> list[BinaryIO]:
    """Split an APK stream into its compressed parts.

    Three parts mean signature, control and data; two mean control and data.
    The signature and control parts are held in memory; the data part reads
    the rest of ``source``.
    """
    src = _Source(source)
    parts: list[BinaryIO] = []

    buffer = io.BytesIO()
    content = _read_member(src, buffer.write)
    if content is None:
        raise ExpandError("creating gzip reader: EOF")
    try:
        name = _first_member_name(content)
    except ExpandError as err:
        raise ExpandError(f"reading first tar header: {err}") from err

    if name.startswith(".SIGN."):
        parts.append(io.BytesIO(buffer.getvalue()))
        buffer = io.BytesIO()
        if _read_member(src, buffer.write) is None:
            raise ExpandError("resetting gzip reader after signature: EOF")

    parts.append(io.BytesIO(buffer.getvalue()))
    parts.append(src)  # type: ignore[arg-type]
    return parts