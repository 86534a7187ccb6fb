# apkroot

Helpers for assembling container root filesystems out of APK packages.

## What is inside

- `apkroot.fsbase` — the `FullFS` interface that every filesystem here
  implements, the immutable `FileInfo` record (with `is_dir`, `is_symlink`,
  `is_char_device`, `is_regular`, `perm` and `file_type`), `SubFS` and
  `sub()` for views rooted at a subdirectory, `valid_path()` and
  `walk_dir()`, which yields `(path, info)` pairs in lexical order.
- `apkroot.memfs.MemFS` — a complete in-memory filesystem: directories,
  symlinks (followed up to 40 levels deep, so loops raise instead of
  hanging), hard links, character device nodes, ownership, permissions,
  modification times and extended attributes. `read_dir()` is always sorted
  by name. Files are opened as `MemFile` objects with `read`, `read_at`,
  `seek`, `write`, `stat` and `close`.
- `apkroot.dirfs` — `dir_fs(path, case_sensitive=None, create_dir=False)`
  returns a `DirFS` backed by a directory on disk, with an in-memory overlay
  for what the disk cannot hold (ownership as non-root, device nodes,
  xattrs, and names differing only in case on a case-insensitive disk).
  Case sensitivity is probed unless given; a missing directory raises
  unless `create_dir` is set.
- `apkroot.expandapk` — `expand_apk(source, cache_dir)` writes an APK's
  signature, control and data gzip streams to a temporary directory,
  records their hashes and sizes, writes the data tar uncompressed and
  verifies per-file SHA-1 checksums; the returned `APKExpanded` offers
  `control_data()`, `package_data()`, `apk()` and `close()`. `split(source)`
  separates the streams without touching disk. `check_sums()` and
  `checksum_from_header()` are available on their own. Failures raise
  `ExpandError`.
- `apkroot.apkfs.APKFS` — a read-only view of an APK's control or package
  section (`APKFSType.CONTROL` / `APKFSType.PACKAGE`) with `stat`,
  `read_dir`, `open` and `close`.
- `apkroot.passwd` — `UserEntry`/`UserFile` and `GroupEntry`/`GroupFile`
  for `/etc/passwd` and `/etc/group`, plus `read_or_create_user_file`,
  `read_user_file`, `read_or_create_group_file` and `read_group_file`.
- `apkroot.lock` — `Lock` and its parts (`LockConfig`, `LockContents`,
  `LockPkg`, `LockPkgRangeAndChecksum`, `LockRepo`, `LockKeyring`);
  `from_file()` loads a lock file and `Lock.save_to_file()` writes indented
  JSON ending in a newline.
- `apkroot.s6.S6Context` — `write_supervision_tree(services)` writes
  `sv/<service>/run` execline scripts into any `FullFS`.
- `apkroot.cpio.from_layer(layer, dest)` — turns an uncompressed tar stream
  (or an object whose `uncompressed()` returns one) into a newc cpio
  archive. Directories, regular files, symlinks and character devices are
  kept; missing parent directories are added; other entries are skipped.
- `apkroot.signature` — `rsa_sign_digest()` and `rsa_verify_digest()` for
  RSA PKCS#1 v1.5 signatures over a precomputed digest, using
  `cryptography` hash algorithms. SHA-1 signing is refused. Failures raise
  `SignatureError`.
- `apkroot.paths` — `resolve_path()` looks a path up against include
  directories; `advertise_cached_file()` publishes a cache file through a
  relative symlink, removing the source if another process got there first.

## Install

```
pip install apkroot
```

## Examples

```python
from apkroot.memfs import MemFS
from apkroot.passwd import read_or_create_user_file

fsys = MemFS()
fsys.mkdir_all("etc", 0o755)
fsys.write_file("etc/passwd", b"root:x:0:0:root:/root:/bin/sh\n", 0o644)

users = read_or_create_user_file(fsys, "etc/passwd")
print(users.entries[0].user_name)  # root
```

```python
from apkroot.expandapk import expand_apk

with open("hello-2.12-r0.apk", "rb") as source:
    expanded = expand_apk(source, "")
with expanded:
    print(expanded.signed, expanded.size)
    print(len(expanded.control_data()))
```

```python
from apkroot.apkfs import APKFS, APKFSType

with APKFS("hello-2.12-r0.apk", APKFSType.CONTROL) as fsys:
    with fsys.open("/.PKGINFO") as handle:
        print(handle.read().decode())
```

## What it does not do

This is a library only. It has no command-line tool, does not download
packages or indexes from repositories, does not resolve dependencies or
install packages into a root, and does not assemble, push or sign container
images. It works on APK files, tar streams and directories you already have.

## Tests

```
pip install "apkroot[test]"
pytest
```