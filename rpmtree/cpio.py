"""Reading of newc cpio archives and their conversion into tar archives."""

from __future__ import annotations

import tarfile
from dataclasses import dataclass
from typing import BinaryIO, Iterator, Mapping, MutableSet, Sequence

from rpmtree.xattr import XattrError, add_capabilities, set_selinux_label

TRAILER = "TRAILER!!!"

S_ISFIFO = 0o010000
S_ISCHR = 0o020000
S_ISDIR = 0o040000
S_ISBLK = 0o060000
S_ISREG = 0o100000
S_ISLNK = 0o120000

_MAGICS = (b"070701", b"070702")
_HEADER_SIZE = 110
_FIELD_COUNT = 13


class CpioError(ValueError):
    """Raised for malformed cpio data or entries that cannot be converted."""


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    chunks = []
    remaining = size
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def _pad4(size: int) -> int:
    return (4 - size % 4) % 4


@dataclass(frozen=True)
class CpioHeader:
    """The header fields of one newc cpio entry."""

    filename: str
    ino: int = 0
    mode: int = 0
    uid: int = 0
    gid: int = 0
    nlink: int = 1
    mtime: int = 0
    filesize: int = 0
    devmajor: int = 0
    devminor: int = 0
    rdevmajor: int = 0
    rdevminor: int = 0

    @property
    def file_type(self) -> int:
        """The file type bits of the mode."""
        return self.mode & ~0o7777


class _Payload:
    """Reads at most the payload bytes of one entry from the shared stream."""

    def __init__(self, stream: BinaryIO, size: int) -> None:
        self._stream = stream
        self._remaining = size

    def read(self, size: int = -1) -> bytes:
        if self._remaining <= 0:
            return b""
        if size is None or size < 0 or size > self._remaining:
            size = self._remaining
        data = _read_exact(self._stream, size)
        self._remaining -= len(data)
        if len(data) < size:
            self._remaining = 0
        return data

    def skip_rest(self) -> None:
        while self.read(65536):
            pass


@dataclass
class CpioEntry:
    """A cpio entry: its header and a reader for its payload."""

    header: CpioHeader
    payload: _Payload


def read_entries(stream: BinaryIO) -> Iterator[CpioEntry]:
    """Yield the entries of a newc cpio stream up to its trailer.

    Each payload must be consumed before the next entry is requested;
    whatever is left unread is skipped.
    """
    while True:
        raw = _read_exact(stream, _HEADER_SIZE)
        if len(raw) < _HEADER_SIZE:
            raise CpioError("unexpected end of cpio stream")
        if raw[:6] not in _MAGICS:
            raise CpioError(f"bad cpio magic {raw[:6]!r}")
        try:
            fields = [int(raw[6 + 8 * i: 14 + 8 * i], 16) for i in range(_FIELD_COUNT)]
        except ValueError as exc:
            raise CpioError(f"malformed cpio header: {exc}") from exc
        (ino, mode, uid, gid, nlink, mtime, filesize,
         devmajor, devminor, rdevmajor, rdevminor, namesize, _check) = fields

        name = _read_exact(stream, namesize)
        if len(name) < namesize:
            raise CpioError("unexpected end of cpio stream")
        _read_exact(stream, _pad4(_HEADER_SIZE + namesize))
        filename = name.split(b"\x00", 1)[0].decode("utf-8", "surrogateescape")
        if filename == TRAILER:
            return

        header = CpioHeader(
            filename=filename, ino=ino, mode=mode, uid=uid, gid=gid, nlink=nlink,
            mtime=mtime, filesize=filesize, devmajor=devmajor, devminor=devminor,
            rdevmajor=rdevmajor, rdevminor=rdevminor,
        )
        payload = _Payload(stream, filesize)
        yield CpioEntry(header=header, payload=payload)
        payload.skip_rest()
        _read_exact(stream, _pad4(filesize))


_SIMPLE_TYPES = {
    S_ISCHR: tarfile.CHRTYPE,
    S_ISBLK: tarfile.BLKTYPE,
    S_ISFIFO: tarfile.FIFOTYPE,
}


def _base_info(header: CpioHeader) -> tarfile.TarInfo:
    info = tarfile.TarInfo(header.filename)
    info.size = header.filesize
    info.mode = header.mode & 0o7777
    info.uid = header.uid
    info.gid = header.gid
    info.mtime = header.mtime
    info.devmajor = header.devmajor
    info.devminor = header.devminor
    return info


def cpio_to_tar(
    stream: BinaryIO,
    tar: tarfile.TarFile,
    no_symlinks_and_dirs: bool,
    capabilities: Mapping[str, Sequence[str]] | None,
    selinux_labels: Mapping[str, str] | None,
    created_paths: MutableSet[str],
) -> None:
    """Write the entries of a cpio stream into ``tar``.

    Paths already in ``created_paths`` are skipped; written paths are added.
    Hard links are written last, once their targets are known.
    """
    capabilities = capabilities or {}
    selinux_labels = selinux_labels or {}
    hard_links: dict[int, list[tarfile.TarInfo]] = {}
    inodes: dict[int, str] = {}

    for entry in read_entries(stream):
        header = entry.header
        name = header.filename
        if name:
            if name in created_paths:
                continue
            created_paths.add(name)

        pax: dict[str, str] = {}
        caps = capabilities.get(name)
        if caps is not None:
            try:
                add_capabilities(pax, caps)
            except XattrError as exc:
                raise CpioError(f"failed setting capabilities on {name}: {exc}") from exc
        label = selinux_labels.get(name)
        if label is not None:
            try:
                set_selinux_label(pax, label)
            except XattrError as exc:
                raise CpioError(f"failed setting selinux label on {name}: {exc}") from exc

        info = _base_info(header)
        info.pax_headers = pax
        payload = None
        kind = header.file_type
        if kind in _SIMPLE_TYPES:
            info.type = _SIMPLE_TYPES[kind]
            info.size = 0
        elif kind == S_ISDIR:
            if no_symlinks_and_dirs:
                continue
            info.type = tarfile.DIRTYPE
            info.size = 0
        elif kind == S_ISLNK:
            if no_symlinks_and_dirs:
                continue
            info.type = tarfile.SYMTYPE
            info.size = 0
            info.linkname = entry.payload.read().decode("utf-8", "surrogateescape")
        elif kind == S_ISREG:
            if header.nlink > 1 and header.filesize == 0:
                info.type = tarfile.LNKTYPE
                info.size = 0
                hard_links.setdefault(header.ino, []).append(info)
                continue
            info.type = tarfile.REGTYPE
            payload = entry.payload
            inodes[header.ino] = name
        else:
            raise CpioError(f"unknown file mode 0{header.mode:o} for {name}")

        try:
            tar.addfile(info, payload)
        except OSError as exc:
            if payload is not None:
                raise CpioError(f"short write body for {name}") from exc
            raise CpioError(f"could not write tar header for {name}: {exc}") from exc

    for node in sorted(hard_links):
        target = inodes.get(node, "")
        if not target:
            raise CpioError(f"no target file for inode {node} found")
        for info in hard_links[node]:
            info.linkname = target
            try:
                tar.addfile(info)
            except OSError as exc:
                raise CpioError(f"could not write tar header for {info.name}") from exc