"""Extended attributes (capabilities, SELinux labels) as PAX tar records."""

from __future__ import annotations

import posixpath
import tarfile
from typing import Mapping, MutableMapping, Sequence

CAPABILITIES_HEADER = "SCHILY.xattr.security.capability"
SELINUX_HEADER = "SCHILY.xattr.security.selinux"

_CAP_MASK_LENGTH = 20
_CAP_EMPTY_BITMASK = bytes(_CAP_MASK_LENGTH)

SUPPORTED_CAPABILITIES: Mapping[str, bytes] = {
    "cap_chown": bytes([1, 0, 0, 2, 1]).ljust(_CAP_MASK_LENGTH, b"\x00"),
    "cap_net_bind_service": bytes([1, 0, 0, 2, 0, 4]).ljust(_CAP_MASK_LENGTH, b"\x00"),
    "cap_sys_ptrace": bytes([1, 0, 0, 2, 0, 0, 8]).ljust(_CAP_MASK_LENGTH, b"\x00"),
}


class XattrError(ValueError):
    """Raised when an attribute cannot be applied."""


def _to_bytes(value: str) -> bytes:
    return value.encode("utf-8", "surrogateescape")


def _to_str(value: bytes) -> str:
    return value.decode("utf-8", "surrogateescape")


def add_capabilities(pax: MutableMapping[str, str], capabilities: Sequence[str]) -> None:
    """Merge the named capabilities into the capability record of ``pax``."""
    for capability in capabilities:
        mask = SUPPORTED_CAPABILITIES.get(capability)
        if mask is None:
            raise XattrError(f"requested capability '{capability}' is not supported")
        current = bytearray(_to_bytes(pax.get(CAPABILITIES_HEADER, _to_str(_CAP_EMPTY_BITMASK))))
        if len(current) < len(mask):
            raise XattrError("existing capability record is too short")
        for index, bits in enumerate(mask):
            current[index] |= bits
        pax[CAPABILITIES_HEADER] = _to_str(bytes(current))


def set_selinux_label(pax: MutableMapping[str, str], label: str) -> None:
    """Store ``label`` as the SELinux record of ``pax``."""
    if not label:
        raise XattrError(f"label must not be empty, but got '{label}'")
    pax[SELINUX_HEADER] = f"{label}\x00"


def enrich_entry(
    info: tarfile.TarInfo,
    capabilities: Mapping[str, Sequence[str]] | None,
    labels: Mapping[str, str] | None,
) -> None:
    """Add the capabilities and label configured for the entry's path."""
    if info.pax_headers is None:
        info.pax_headers = {}
    file_name = posixpath.normpath(info.name.removeprefix("/"))

    caps = (capabilities or {}).get(file_name)
    if caps is not None:
        add_capabilities(info.pax_headers, caps)
    label = (labels or {}).get(file_name)
    if label is not None:
        set_selinux_label(info.pax_headers, label)


def apply(
    reader: tarfile.TarFile,
    writer: tarfile.TarFile,
    capabilities: Mapping[str, Sequence[str]] | None,
    labels: Mapping[str, str] | None,
) -> None:
    """Copy every entry of ``reader`` to ``writer``, adding attributes on the way.

    The writer must use the PAX format, since only it carries the records.
    """
    if writer.format != tarfile.PAX_FORMAT:
        raise ValueError("the writer must use the PAX tar format")
    for member in reader:
        enrich_entry(member, capabilities, labels)
        body = reader.extractfile(member) if member.isreg() else None
        writer.addfile(member, body)