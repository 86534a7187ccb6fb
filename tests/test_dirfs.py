import os
import stat
from datetime import datetime, timezone

import pytest

from apkroot.dirfs import DirFS, dir_fs
from apkroot.fsbase import walk_dir


def test_empty_dir(tmp_path):
    fsys = dir_fs(str(tmp_path))
    assert isinstance(fsys, DirFS)
    assert fsys.read_dir(".") == []
    # the case-sensitivity probe cleans up after itself
    assert os.listdir(tmp_path) == []


def test_existing_dir(tmp_path):
    files = [
        ("a/b", True, 0o755, None),
        ("a/b/c", False, 0o644, b"hello"),
        ("foo/bar", True, 0o700, None),
        ("foo/bar/world", False, 0o600, b"world"),
    ]
    for path, is_dir, perms, content in files:
        full = tmp_path / path
        if is_dir:
            os.makedirs(full, perms)
        else:
            full.write_bytes(content)
            os.chmod(full, perms)

    fsys = dir_fs(str(tmp_path))
    for path, is_dir, _perms, content in files:
        if is_dir:
            continue
        assert fsys.read_file(path) == content
    assert fsys.stat("foo/bar/world").perm == 0o600
    assert fsys.stat("a/b").is_dir


def test_missing_dir(tmp_path):
    fsys = dir_fs(str(tmp_path))
    with pytest.raises(OSError):
        fsys.write_file("foo/bar/world", b"world", 0o600)


def test_missing_root_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        dir_fs(str(tmp_path / "absent"))


def test_missing_root_created(tmp_path):
    target = tmp_path / "created"
    fsys = dir_fs(str(target), create_dir=True)
    assert target.is_dir()
    fsys.write_file("x", b"data", 0o644)
    assert (target / "x").read_bytes() == b"data"


def test_root_not_a_directory(tmp_path):
    target = tmp_path / "file"
    target.write_bytes(b"x")
    with pytest.raises(NotADirectoryError):
        dir_fs(str(target))


def test_case_insensitive(tmp_path):
    files = [
        ("a/b", True, 0o755, None, True),
        ("a/b/c", False, 0o644, b"hello lower lower", True),
        ("a/b/C", False, 0o644, b"hello lower upper", False),
        ("a/B", True, 0o755, None, False),
        ("a/B/c", False, 0o644, b"hello upper lower", False),
    ]
    fsys = dir_fs(str(tmp_path), case_sensitive=False)
    assert fsys.case_sensitive is False

    for path, is_dir, perms, content, _on_disk in files:
        if is_dir:
            fsys.mkdir_all(path, perms)
        else:
            fsys.write_file(path, content, perms)

    for path, is_dir, _perms, content, _on_disk in files:
        if not is_dir:
            assert fsys.read_file(path) == content

    for path, is_dir, _perms, content, on_disk in files:
        full = tmp_path / path
        if not on_disk:
            assert not os.path.lexists(full)
            continue
        if is_dir:
            assert full.is_dir()
        else:
            assert full.read_bytes() == content


def test_consistent_ordering(tmp_path):
    fsys = dir_fs(str(tmp_path))
    entries = [
        ("dir1", 0o777, True),
        ("dir1/subdir1", 0o777, True),
        ("dir1/subdir1/file1", 0o644, False),
        ("dir1/subdir1/file2", 0o644, False),
        ("dir1/subdir2", 0o777, True),
        ("dir1/subdir2/file1", 0o644, False),
        ("dir1/subdir2/file2", 0o644, False),
        ("dir1/subdir3", 0o777, True),
        ("dir1/subdir3/file1", 0o644, False),
        ("dir1/subdir3/file2", 0o644, False),
        ("dir2", 0o777, True),
        ("dir2/subdir1", 0o777, True),
        ("dir2/subdir1/file1", 0o644, False),
        ("dir2/subdir1/file2", 0o644, False),
        ("dir2/subdir2", 0o777, True),
        ("dir2/subdir2/file1", 0o644, False),
        ("dir2/subdir2/file2", 0o644, False),
        ("dir2/subdir3", 0o777, True),
        ("dir2/subdir3/file1", 0o644, False),
        ("dir2/subdir3/file2", 0o644, False),
        ("dir2/file1", 0o644, False),
        ("dir2/file2", 0o644, False),
        ("dir2/file3", 0o644, False),
    ]
    for path, perms, is_dir in entries:
        if is_dir:
            fsys.mkdir(path, perms)
        else:
            fsys.write_file(path, b"", perms)

    first = [path for path, _info in walk_dir(fsys, "/")]
    for _ in range(9):
        assert [path for path, _info in walk_dir(fsys, "/")] == first
    assert first[0] == "/"
    assert set(first) == {"/"} | {"/" + path for path, _p, _d in entries}


def test_symlink_on_disk_and_in_memory(tmp_path):
    fsys = dir_fs(str(tmp_path))
    fsys.write_file("target", b"x", 0o644)
    fsys.symlink("target", "link")
    assert fsys.readlink("link") == "target"
    assert os.readlink(tmp_path / "link") == "target"
    assert fsys.read_file("link") == b"x"


def test_existing_symlink_is_recorded(tmp_path):
    (tmp_path / "real").write_bytes(b"content")
    os.symlink("real", tmp_path / "alias")
    fsys = dir_fs(str(tmp_path))
    assert fsys.readlink("alias") == "real"
    assert fsys.lstat("alias").is_symlink


def test_stat_uses_memory_mode_and_disk_size(tmp_path):
    fsys = dir_fs(str(tmp_path))
    fsys.write_file("f", b"hello", 0o644)
    fsys.chmod("f", 0o600)
    info = fsys.stat("f")
    assert info.perm == 0o600
    assert info.size == 5
    assert info.is_regular


def test_chown_recorded_in_memory(tmp_path):
    fsys = dir_fs(str(tmp_path))
    fsys.write_file("f", b"", 0o644)
    fsys.chown("f", 1234, 5678)
    info = fsys.stat("f")
    assert (info.uid, info.gid) == (1234, 5678)


def test_chtimes(tmp_path):
    fsys = dir_fs(str(tmp_path))
    fsys.write_file("f", b"", 0o644)
    when = datetime(2020, 1, 1, tzinfo=timezone.utc)
    fsys.chtimes("f", when, when)
    assert fsys.stat("f").mod_time == when


def test_remove_deletes_from_disk(tmp_path):
    fsys = dir_fs(str(tmp_path))
    fsys.write_file("f", b"data", 0o644)
    fsys.remove("f")
    assert not (tmp_path / "f").exists()
    assert [info.name for info in fsys.read_dir(".")] == []


def test_read_dir_sorted(tmp_path):
    fsys = dir_fs(str(tmp_path))
    for name in ("c", "a", "b"):
        fsys.write_file(name, name.encode(), 0o644)
    fsys.mkdir("d", 0o755)
    infos = fsys.read_dir(".")
    assert [info.name for info in infos] == ["a", "b", "c", "d"]
    assert infos[0].size == 1
    assert infos[3].is_dir


def test_open_reader_at(tmp_path):
    fsys = dir_fs(str(tmp_path))
    fsys.write_file("f", b"hello", 0o644)
    with fsys.open_reader_at("f") as handle:
        assert handle.read_at(3, 1) == b"ell"
        assert handle.read() == b"hello"


def test_open_file_create_and_write(tmp_path):
    fsys = dir_fs(str(tmp_path))
    with fsys.open_file("new", os.O_CREAT | os.O_WRONLY | os.O_TRUNC, 0o644) as handle:
        handle.write(b"abc")
    assert fsys.read_file("new") == b"abc"
    assert (tmp_path / "new").read_bytes() == b"abc"


def test_create_on_disk(tmp_path):
    fsys = dir_fs(str(tmp_path))
    with fsys.create("made") as handle:
        handle.write(b"xyz")
    assert (tmp_path / "made").read_bytes() == b"xyz"


def test_case_insensitive_variant_kept_in_memory(tmp_path):
    fsys = dir_fs(str(tmp_path), case_sensitive=False)
    fsys.write_file("name", b"disk", 0o644)
    with fsys.create("NAME") as handle:
        handle.write(b"memory")
    assert fsys.read_file("NAME") == b"memory"
    assert fsys.read_file("name") == b"disk"
    assert not os.path.lexists(tmp_path / "NAME")


def test_mknod_readnod(tmp_path):
    fsys = dir_fs(str(tmp_path))
    fsys.mknod("null", stat.S_IFCHR | 0o666, 0x0103)
    assert fsys.readnod("null") == 0x0103
    assert os.path.lexists(tmp_path / "null")


def test_link_outside_root_rejected(tmp_path):
    fsys = dir_fs(str(tmp_path / "root"), create_dir=True)
    with pytest.raises(ValueError):
        fsys.link("../../outside", "inside")


def test_hard_link(tmp_path):
    fsys = dir_fs(str(tmp_path))
    fsys.write_file("orig", b"same", 0o644)
    fsys.link("orig", "copy")
    assert fsys.read_file("copy") == b"same"
    assert os.stat(tmp_path / "copy").st_ino == os.stat(tmp_path / "orig").st_ino


def test_xattrs_in_memory(tmp_path):
    fsys = dir_fs(str(tmp_path))
    fsys.write_file("f", b"", 0o644)
    fsys.set_xattr("f", "user.foo", b"bar")
    assert fsys.get_xattr("f", "user.foo") == b"bar"
    assert fsys.list_xattrs("f") == {"user.foo": b"bar"}
    fsys.remove_xattr("f", "user.foo")
    assert fsys.list_xattrs("f") == {}


def test_sub_of_file_raises(tmp_path):
    fsys = dir_fs(str(tmp_path))
    fsys.write_file("f", b"", 0o644)
    with pytest.raises(NotADirectoryError):
        fsys.sub("f")