"""Repository metadata: versions, packages and the rpm-md XML documents."""

from __future__ import annotations

import os
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import IO, Any, Mapping, Optional, Union

PRIMARY_FILE_TYPE = "primary"
FILELISTS_FILE_TYPE = "filelists"

Source = Union[str, "os.PathLike[str]", IO[bytes]]

_CHECKSUM_ALIASES = {"sha": ("sha", "sha1"), "sha1": ("sha1", "sha")}


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _children(element: ET.Element, name: str) -> list[ET.Element]:
    return [child for child in element if _local(child.tag) == name]


def _child(element: ET.Element, name: str) -> Optional[ET.Element]:
    return next((child for child in element if _local(child.tag) == name), None)


def _text(element: Optional[ET.Element]) -> str:
    if element is None or element.text is None:
        return ""
    return element.text.strip()


@dataclass(frozen=True)
class Version:
    """Epoch, version and release of a package or resource."""

    epoch: str = ""
    ver: str = ""
    rel: str = ""

    def __str__(self) -> str:
        text = f"{self.epoch or '0'}:{self.ver}"
        return f"{text}-{self.rel}" if self.rel else text


def _parse_version(element: Optional[ET.Element]) -> Version:
    if element is None:
        return Version()
    return Version(
        epoch=element.get("epoch", ""),
        ver=element.get("ver", ""),
        rel=element.get("rel", ""),
    )


@dataclass(frozen=True)
class Entry:
    """A provided, required or conflicting resource."""

    name: str
    flags: str = ""
    epoch: str = ""
    ver: str = ""
    rel: str = ""
    pre: bool = False

    def version(self) -> Version:
        """The version this entry refers to."""
        return Version(epoch=self.epoch, ver=self.ver, rel=self.rel)


@dataclass
class RepoConfig:
    """A configured repository."""

    name: str
    disabled: bool = False
    metalink: str = ""
    baseurl: str = ""
    arch: str = ""
    mirrors: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RepoConfig:
        """Build a repository from its configuration mapping."""
        return cls(
            name=str(data.get("name") or ""),
            disabled=bool(data.get("disabled", False)),
            metalink=str(data.get("metalink") or ""),
            baseurl=str(data.get("baseurl") or ""),
            arch=str(data.get("arch") or ""),
            mirrors=[str(mirror) for mirror in data.get("mirrors") or []],
        )

    def to_dict(self) -> dict[str, Any]:
        """The configuration mapping of this repository."""
        data: dict[str, Any] = {
            "name": self.name,
            "disabled": self.disabled,
            "metalink": self.metalink,
            "baseurl": self.baseurl,
            "arch": self.arch,
        }
        if self.mirrors:
            data["mirrors"] = list(self.mirrors)
        return data


@dataclass(eq=False)
class Package:
    """A package as listed in a primary metadata file."""

    name: str
    arch: str = ""
    version: Version = field(default_factory=Version)
    provides: list[Entry] = field(default_factory=list)
    requires: list[Entry] = field(default_factory=list)
    conflicts: list[Entry] = field(default_factory=list)
    files: list[str] = field(default_factory=list)
    location_href: str = ""
    checksum_type: str = ""
    checksum: str = ""
    repository: Optional[RepoConfig] = None

    def __str__(self) -> str:
        return f"{self.name}-{self.version}"


@dataclass
class FileListPackage:
    """A package with its files as listed in a filelists metadata file."""

    name: str
    arch: str = ""
    version: Version = field(default_factory=Version)
    files: list[str] = field(default_factory=list)

    def __str__(self) -> str:
        return f"{self.name}-{self.version}"


@dataclass
class RepomdFile:
    """One metadata file referenced by repomd.xml."""

    type: str
    location_href: str = ""
    checksums: dict[str, str] = field(default_factory=dict)

    def checksum(self, algorithm: str) -> Optional[str]:
        """The recorded checksum for ``algorithm``, or ``None`` if there is none."""
        algorithm = algorithm.lower()
        for name in _CHECKSUM_ALIASES.get(algorithm, (algorithm,)):
            if name in self.checksums:
                return self.checksums[name]
        return None


@dataclass
class Repomd:
    """The index of a repository's metadata files."""

    files: list[RepomdFile] = field(default_factory=list)

    def file(self, file_type: str) -> Optional[RepomdFile]:
        """The first referenced file of ``file_type``, if any."""
        return next((f for f in self.files if f.type == file_type), None)


@dataclass(frozen=True)
class MetalinkUrl:
    """A mirror location of repomd.xml."""

    url: str
    protocol: str = ""
    type: str = ""


@dataclass
class Metalink:
    """The repomd.xml entry of a metalink document."""

    urls: list[MetalinkUrl] = field(default_factory=list)
    hashes: list[tuple[str, str]] = field(default_factory=list)

    def sha256_sums(self) -> list[str]:
        """All accepted sha256 sums of repomd.xml, current one first."""
        return [value for kind, value in self.hashes if kind == "sha256"]


def parse_repomd(source: Source) -> Repomd:
    """Parse a repomd.xml document."""
    root = ET.parse(source).getroot()
    files = []
    for data in _children(root, "data"):
        location = _child(data, "location")
        files.append(
            RepomdFile(
                type=data.get("type", ""),
                location_href=location.get("href", "") if location is not None else "",
                checksums={
                    checksum.get("type", "").lower(): _text(checksum)
                    for checksum in _children(data, "checksum")
                },
            )
        )
    return Repomd(files=files)


def parse_metalink(source: Source) -> Metalink:
    """Parse a metalink document and return its repomd.xml entry."""
    root = ET.parse(source).getroot()
    repomd = next(
        (
            element
            for element in root.iter()
            if _local(element.tag) == "file" and element.get("name") == "repomd.xml"
        ),
        None,
    )
    if repomd is None:
        raise ValueError("metalink contains no reference to repomd.xml")

    hashes = [
        (element.get("type", "").lower(), _text(element))
        for element in repomd.iter()
        if _local(element.tag) == "hash"
    ]
    urls = [
        MetalinkUrl(
            url=_text(element),
            protocol=element.get("protocol", ""),
            type=element.get("type", ""),
        )
        for resources in _children(repomd, "resources")
        for element in _children(resources, "url")
    ]
    return Metalink(urls=urls, hashes=hashes)


def _parse_entries(format_element: Optional[ET.Element], name: str) -> list[Entry]:
    if format_element is None:
        return []
    container = _child(format_element, name)
    if container is None:
        return []
    return [
        Entry(
            name=entry.get("name", ""),
            flags=entry.get("flags", ""),
            epoch=entry.get("epoch", ""),
            ver=entry.get("ver", ""),
            rel=entry.get("rel", ""),
            pre=entry.get("pre", "") in ("1", "true"),
        )
        for entry in _children(container, "entry")
    ]


def _parse_package(element: ET.Element) -> Package:
    format_element = _child(element, "format")
    location = _child(element, "location")
    checksum = _child(element, "checksum")
    return Package(
        name=_text(_child(element, "name")),
        arch=_text(_child(element, "arch")),
        version=_parse_version(_child(element, "version")),
        provides=_parse_entries(format_element, "provides"),
        requires=_parse_entries(format_element, "requires"),
        conflicts=_parse_entries(format_element, "conflicts"),
        files=[_text(f) for f in _children(format_element, "file")]
        if format_element is not None
        else [],
        location_href=location.get("href", "") if location is not None else "",
        checksum_type=checksum.get("type", "") if checksum is not None else "",
        checksum=_text(checksum),
    )


def parse_primary(source: Source) -> list[Package]:
    """Parse a primary.xml document into its packages."""
    packages = []
    for _, element in ET.iterparse(source, events=("end",)):
        if _local(element.tag) == "package":
            packages.append(_parse_package(element))
            element.clear()
    return packages


def parse_filelist_package(element: ET.Element) -> FileListPackage:
    """Build a package from a ``package`` element of a filelists document."""
    return FileListPackage(
        name=element.get("name", ""),
        arch=element.get("arch", ""),
        version=_parse_version(_child(element, "version")),
        files=[_text(f) for f in _children(element, "file")],
    )