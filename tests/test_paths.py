import os

import pytest

from apkroot.paths import advertise_cached_file, resolve_path


def test_advertise_cached_file(tmp_path):
    content = "content"
    src1 = tmp_path / "src1.tmp"
    src2 = tmp_path / "src2.tmp"
    src1.write_text(content)
    src2.write_text(content)
    dst = tmp_path / "target"

    # dst does not exist
    advertise_cached_file(str(src1), str(dst))
    assert dst.read_text() == content

    # dst exists
    advertise_cached_file(str(src2), str(dst))
    rel1 = os.path.relpath(str(src1), os.path.dirname(str(dst)))
    assert os.readlink(dst) == rel1
    assert not src2.exists()


def test_advertise_cached_file_uses_relative_link(tmp_path):
    src = tmp_path / "blob"
    src.write_bytes(b"x")
    dst = tmp_path / "link"
    advertise_cached_file(str(src), str(dst))
    assert not os.path.isabs(os.readlink(dst))
    assert dst.read_bytes() == b"x"
    assert src.exists()


def test_advertise_cached_file_missing_parent(tmp_path):
    src = tmp_path / "blob"
    src.write_bytes(b"x")
    with pytest.raises(OSError) as excinfo:
        advertise_cached_file(str(src), str(tmp_path / "missing" / "link"))
    assert "linking (cached)" in str(excinfo.value)


def test_resolve_path_existing(tmp_path):
    f = tmp_path / "config.yaml"
    f.write_text("x")
    assert resolve_path(str(f), []) == str(f)


def test_resolve_path_from_include(tmp_path):
    inc = tmp_path / "inc"
    inc.mkdir()
    (inc / "base.yaml").write_text("x")
    other = tmp_path / "other"
    other.mkdir()
    resolved = resolve_path("base.yaml", [str(other), str(inc)])
    assert resolved == os.path.join(str(inc), "base.yaml")


def test_resolve_path_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        resolve_path("nope.yaml", [str(tmp_path)])