[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "apkroot"
version = "0.1.0"
description = "Filesystems, APK archive handling and image-root helpers: in-memory and directory-backed filesystems, APK stream expansion, passwd/group files, lock files, s6 trees and cpio conversion."
requires-python = ">=3.10"
dependencies = [
    "cryptography",
]
keywords = ["apk", "alpine", "container", "filesystem", "cpio", "lockfile", "passwd", "s6"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Archiving :: Packaging",
    "Topic :: System :: Filesystems",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["apkroot"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
