"""Filesystems, APK archive handling and image-root helpers for building container images."""

__version__ = "0.1.0"