"""Fetch yum/dnf repository metadata, resolve RPM dependencies and convert cpio payloads to tar."""

__version__ = "0.1.0"

__all__ = [
    "cache",
    "cpio",
    "fetch",
    "models",
    "repos",
    "resolver",
    "rpmver",
    "solver",
    "xattr",
]