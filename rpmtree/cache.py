"""Local cache of downloaded repository metadata."""

from __future__ import annotations

import functools
import gzip
import logging
import lzma
import os
import posixpath
import shutil
import xml.etree.ElementTree as ET
from typing import BinaryIO, Iterable, Optional, Sequence, Union

import zstandard

from rpmtree import rpmver
from rpmtree.models import (
    FILELISTS_FILE_TYPE,
    PRIMARY_FILE_TYPE,
    FileListPackage,
    Metalink,
    Package,
    RepoConfig,
    Repomd,
    RepomdFile,
    parse_filelist_package,
    parse_metalink,
    parse_primary,
    parse_repomd,
)

log = logging.getLogger(__name__)

_MAX_MIRRORS = 4
_REPOMD_SUFFIX = "repodata/repomd.xml"

Body = Union[bytes, bytearray, memoryview, BinaryIO]


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def default_cache_dir() -> str:
    """The per-user cache directory used when none is given."""
    base = os.environ.get("XDG_CACHE_HOME") or os.path.join(
        os.path.expanduser("~"), ".cache"
    )
    return os.path.join(base, "rpmtree")


def open_compressed(filename: str, stream: BinaryIO) -> BinaryIO:
    """Wrap ``stream`` in a decompressor chosen by the extension of ``filename``."""
    if filename.endswith(".gz"):
        return gzip.GzipFile(fileobj=stream)
    if filename.endswith(".zst"):
        return zstandard.ZstdDecompressor().stream_reader(stream)
    if filename.endswith(".xz"):
        return lzma.LZMAFile(stream)
    raise ValueError(f"file format not supported: {os.path.splitext(filename)[1]}")


class CacheHelper:
    """Reads and writes metadata files below one directory per repository."""

    def __init__(self, cache_dir: Optional[str] = None) -> None:
        if cache_dir is None:
            cache_dir = default_cache_dir()
        log.info("Using cache directory %s", cache_dir)
        self.cache_dir = os.path.expandvars(cache_dir.replace("~", "${HOME}"))

    def _path(self, repo: RepoConfig, name: str) -> str:
        return os.path.join(self.cache_dir, repo.name, name)

    def load_metalink(self, repo: RepoConfig) -> Metalink:
        """Parse the cached metalink document of ``repo``."""
        with self.open_from_repo_dir(repo, "metalink") as stream:
            return parse_metalink(stream)

    def write_to_repo_dir(self, repo: RepoConfig, body: Body, name: str) -> None:
        """Store ``body`` as the file ``name`` of ``repo``."""
        directory = os.path.join(self.cache_dir, repo.name)
        os.makedirs(directory, mode=0o770, exist_ok=True)
        with open(os.path.join(directory, name), "wb") as out:
            if isinstance(body, (bytes, bytearray, memoryview)):
                out.write(body)
            else:
                shutil.copyfileobj(body, out)

    def open_from_repo_dir(self, repo: RepoConfig, name: str) -> BinaryIO:
        """Open the cached file ``name`` of ``repo`` for reading."""
        return open(self._path(repo, name), "rb")

    def _load_repomd(self, repo: RepoConfig) -> Repomd:
        with self.open_from_repo_dir(repo, "repomd.xml") as stream:
            return parse_repomd(stream)

    @staticmethod
    def _referenced(repomd: Repomd, file_type: str) -> RepomdFile:
        data = repomd.file(file_type)
        if data is None:
            raise ValueError(f"no {file_type} file referenced in repomd.xml")
        return data

    def current_primary(self, repo: RepoConfig) -> list[Package]:
        """The packages of the cached primary file of ``repo``.

        Fills in the mirrors of ``repo`` when it has none yet and attaches
        ``repo`` to every package.
        """
        primary = self._referenced(self._load_repomd(repo), PRIMARY_FILE_TYPE)
        name = posixpath.basename(primary.location_href)
        with self.open_from_repo_dir(repo, name) as raw, open_compressed(name, raw) as stream:
            packages = parse_primary(stream)

        if not repo.mirrors and repo.metalink:
            try:
                metalink = self.load_metalink(repo)
            except FileNotFoundError:
                pass
            else:
                urls: list[str] = []
                for url in metalink.urls:
                    if url.type == "https":
                        urls.append(url.url.removesuffix(_REPOMD_SUFFIX))
                    if len(urls) == _MAX_MIRRORS:
                        break
                repo.mirrors = urls
        elif not repo.mirrors and repo.baseurl:
            repo.mirrors = [repo.baseurl]

        for package in packages:
            package.repository = repo
        return packages

    def current_filelists_for_packages(
        self,
        repo: RepoConfig,
        arches: Iterable[str],
        packages: Sequence[Package],
    ) -> tuple[list[FileListPackage], list[Package]]:
        """Look up the file lists of ``packages`` in the cached filelists file.

        Returns the file lists found and the packages passed over without a
        match. Both the filelists file and the packages are walked in name
        order; the packages are sorted by name and version first.
        """
        filelists = self._referenced(self._load_repomd(repo), FILELISTS_FILE_TYPE)
        name = posixpath.basename(filelists.location_href)
        version_key = functools.cmp_to_key(rpmver.compare)
        ordered = sorted(packages, key=lambda p: (p.name, version_key(p.version)))
        allowed_arches = set(arches)

        found: list[FileListPackage] = []
        remaining: list[Package] = []
        index = 0
        if not ordered:
            return found, remaining

        with self.open_from_repo_dir(repo, name) as raw, open_compressed(
            filelists.location_href, raw
        ) as stream:
            for _, element in ET.iterparse(stream, events=("end",)):
                if index == len(ordered):
                    break
                if _local(element.tag) != "package":
                    continue
                pkg_name = element.get("name", "")
                if element.get("arch", "") in allowed_arches:
                    parsed: Optional[FileListPackage] = None
                    while index < len(ordered):
                        current = ordered[index]
                        if pkg_name < current.name:
                            break
                        if pkg_name == current.name:
                            if parsed is None:
                                parsed = parse_filelist_package(element)
                            if str(current) == str(parsed):
                                index += 1
                                found.append(parsed)
                            break
                        remaining.append(current)
                        index += 1
                element.clear()
        return found, remaining

    def current_primaries(
        self, repos: Iterable[RepoConfig], arch: str
    ) -> list[list[Package]]:
        """The packages of every repository matching ``arch`` or noarch."""
        primaries = []
        for repo in repos:
            if repo.arch and repo.arch != arch and repo.arch != "noarch":
                log.info("Ignoring primary for %s - %s", repo.name, repo.arch)
                continue
            primaries.append(self.current_primary(repo))
        return primaries