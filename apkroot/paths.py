"""Path helpers: include-path resolution and cache file advertisement."""

from __future__ import annotations

import os
import posixpath


def _join(prefix: str, path: str) -> str:
    parts = [part for part in (prefix, path) if part]
    if not parts:
        return ""
    joined = posixpath.normpath("/".join(parts))
    if joined.startswith("//"):
        joined = "/" + joined.lstrip("/")
    return joined


def resolve_path(p: str, include_paths: list[str]) -> str:
    """Return ``p`` if it exists, else the first existing ``prefix/p``.

    Raises FileNotFoundError when no candidate exists.
    """
    if os.path.exists(p):
        return p
    for prefix in include_paths:
        candidate = _join(prefix, p)
        if os.path.exists(candidate):
            return candidate
    raise FileNotFoundError(f"file does not exist: {p}")


def advertise_cached_file(src: str, dst: str) -> None:
    """Create a symlink at ``dst`` pointing to ``src``.

    If ``dst`` already exists another process advertised it first; ``src`` is
    then removed on a best-effort basis.
    """
    try:
        target = os.path.relpath(src, os.path.dirname(dst) or ".")
    except ValueError:
        target = src

    if os.path.exists(dst):
        try:
            os.remove(src)
        except OSError:
            pass
        return

    try:
        os.symlink(target, dst)
    except FileExistsError:
        return
    except OSError as err:
        raise OSError(
            err.errno, f"linking (cached) {target} to {dst}: {err.strerror}"
        ) from err