import io

import pytest

from apkroot.dirfs import dir_fs
from apkroot.memfs import MemFS
from apkroot.passwd import (
    GroupEntry,
    GroupFile,
    UserEntry,
    UserFile,
    read_group_file,
    read_or_create_group_file,
    read_or_create_user_file,
    read_user_file,
)

USERS_TEXT = (
    "root:x:0:0:root:/root:/bin/ash\n"
    "daemon:x:2:2:daemon:/sbin:/sbin/nologin\n"
    "nobody:x:65534:65534:nobody:/:/sbin/nologin\n"
)

GROUP = (
    "root:x:0:root\n"
    "wheel:x:10:root,daemon\n"
    "nogroup:x:65533:\n"
    "nobody:x:65534:\n"
)


@pytest.fixture
def users_fs():
    fsys = MemFS()
    fsys.mkdir_all("etc", 0o755)
    fsys.write_file("etc/passwd", USERS_TEXT.encode(), 0o600)
    return fsys


def test_parser(users_fs):
    user_file = read_or_create_user_file(users_fs, "etc/passwd")
    assert len(user_file.entries) == 3
    for entry in user_file.entries:
        if entry.uid == 0:
            assert entry.user_name == "root"
        if entry.uid == 65534:
            assert entry.user_name == "nobody"


def test_writer(users_fs):
    user_file = read_or_create_user_file(users_fs, "etc/passwd")
    first = io.BytesIO()
    user_file.write(first)

    reloaded = UserFile()
    reloaded.load(io.BytesIO(first.getvalue()))
    second = io.BytesIO()
    reloaded.write(second)

    assert first.getvalue() == second.getvalue()
    assert first.getvalue() == USERS_TEXT.encode()


def test_user_entry_fields():
    entry = UserEntry.parse("daemon:x:2:3:daemon:/sbin:/sbin/nologin\n")
    assert entry == UserEntry("daemon", "x", 2, 3, "daemon", "/sbin", "/sbin/nologin")


def test_user_entry_malformed():
    with pytest.raises(ValueError, match="contains 3 parts, expecting 7"):
        UserEntry.parse("root:x:0")


def test_user_entry_bad_uid():
    with pytest.raises(ValueError, match="failed to parse UID abc"):
        UserEntry.parse("root:x:abc:0:root:/root:/bin/sh")


def test_user_entry_negative_id_wraps():
    assert UserEntry.parse("u:x:-1:0:::").uid == 4294967295


def test_load_error_is_wrapped():
    with pytest.raises(ValueError, match="^unable to parse"):
        UserFile().load(io.BytesIO(b"root:x:0:0:root:/root:/bin/sh\n\n"))


def test_read_or_create_creates_empty_file():
    fsys = MemFS()
    fsys.mkdir_all("etc", 0o755)
    user_file = read_or_create_user_file(fsys, "etc/passwd")
    assert user_file.entries == []
    assert fsys.stat("etc/passwd").size == 0


def test_read_user_file_missing_raises():
    with pytest.raises(FileNotFoundError):
        read_user_file(MemFS(), "etc/passwd")


def test_user_write_file(users_fs):
    user_file = read_or_create_user_file(users_fs, "etc/passwd")
    user_file.entries.append(UserEntry("app", "x", 1000, 1000, "", "/home/app", "/bin/sh"))
    user_file.write_file("etc/passwd")
    assert users_fs.read_file("etc/passwd") == (USERS_TEXT + "app:x:1000:1000::/home/app:/bin/sh\n").encode()


def test_user_write_file_without_fs():
    with pytest.raises(ValueError):
        UserFile().write_file("etc/passwd")


@pytest.fixture
def group_fs(tmp_path):
    (tmp_path / "group").write_text(GROUP)
    return dir_fs(str(tmp_path))


def test_group_parser(group_fs):
    group_file = read_or_create_group_file(group_fs, "group")
    assert len(group_file.entries) == 4
    for entry in group_file.entries:
        if entry.gid == 0:
            assert entry.group_name == "root"
        if entry.gid == 65534:
            assert entry.group_name == "nobody"


def test_group_writer(group_fs):
    group_file = read_or_create_group_file(group_fs, "group")
    first = io.BytesIO()
    group_file.write(first)

    reloaded = GroupFile()
    reloaded.load(io.BytesIO(first.getvalue()))
    second = io.BytesIO()
    reloaded.write(second)

    assert first.getvalue() == second.getvalue()
    assert first.getvalue() == GROUP.encode()


def test_group_entry_members():
    assert GroupEntry.parse("wheel:x:10:root,daemon").members == ["root", "daemon"]
    assert GroupEntry.parse("nobody:x:65534:").members == [""]


def test_group_entry_malformed():
    with pytest.raises(ValueError, match="contains 2 parts, expecting 4"):
        GroupEntry.parse("wheel:x")


def test_read_group_file(group_fs):
    group_file = read_group_file(group_fs, "group")
    assert [entry.group_name for entry in group_file.entries] == ["root", "wheel", "nogroup", "nobody"]


def test_read_group_file_missing_raises():
    with pytest.raises(FileNotFoundError):
        read_group_file(MemFS(), "group")


def test_group_write_file():
    fsys = MemFS()
    group_file = GroupFile([GroupEntry("staff", "x", 50, ["app"])])
    group_file.write_file(fsys, "group")
    assert fsys.read_file("group") == b"staff:x:50:app\n"