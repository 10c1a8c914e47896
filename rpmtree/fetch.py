"""Downloading repository metadata into the local cache."""

from __future__ import annotations

import base64
import hashlib
import logging
import netrc as netrc_module
import os
import posixpath
import threading
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Any, BinaryIO, Callable, Optional, Sequence
from urllib.parse import SplitResult, urlsplit, urlunsplit

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from rpmtree.cache import CacheHelper
from rpmtree.models import (
    PRIMARY_FILE_TYPE,
    Metalink,
    RepoConfig,
    Repomd,
    RepomdFile,
    parse_repomd,
)

log = logging.getLogger(__name__)

_REPOMD_PATH = "/repodata/repomd.xml"
_RETRY_STATUSES = (429, 500, 502, 503, 504)
_TIMEOUT = (30, 300)


class FetchError(Exception):
    """Raised when repository metadata cannot be fetched."""


@dataclass
class FetchResponse:
    """Status and body of a fetched resource."""

    status_code: int
    body: BinaryIO
    closer: Optional[Callable[[], None]] = None

    def close(self) -> None:
        """Release the body and the underlying connection."""
        self.body.close()
        if self.closer is not None:
            self.closer()

    def __enter__(self) -> FetchResponse:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


class _NetrcCache:
    """Parsed netrc files, keyed by path."""

    def __init__(self) -> None:
        self._parsed: dict[str, netrc_module.netrc] = {}
        self._lock = threading.Lock()

    def read(self, path: str) -> netrc_module.netrc:
        with self._lock:
            cached = self._parsed.get(path)
        if cached is not None:
            return cached
        parsed = netrc_module.netrc(path)
        with self._lock:
            self._parsed[path] = parsed
        return parsed


_netrc_cache = _NetrcCache()


def _netrc() -> Optional[netrc_module.netrc]:
    path = os.environ.get("NETRC", "")
    if not path:
        home_netrc = os.path.join(os.path.expanduser("~"), ".netrc")
        if os.path.exists(home_netrc):
            path = home_netrc
    if not path:
        return None
    try:
        return _netrc_cache.read(path)
    except (OSError, netrc_module.NetrcParseError) as exc:
        raise FetchError(f"getting netrc: {exc}") from exc


def auth_header(url: str) -> Optional[str]:
    """The Basic Authorization value netrc holds for the host of ``url``, if any."""
    parsed = _netrc()
    if parsed is None:
        return None
    host = urlsplit(url).hostname
    if not host:
        return None
    entry = parsed.authenticators(host)
    if entry is None:
        return None
    login, _account, password = entry
    log.debug("Reading auth headers for %s from netrc", host)
    credentials = f"{login or ''}:{password or ''}".encode("utf-8")
    return "Basic " + base64.b64encode(credentials).decode("ascii")


def _retrying_session() -> requests.Session:
    retry = Retry(
        total=4,
        backoff_factor=1,
        status_forcelist=_RETRY_STATUSES,
        allowed_methods=frozenset({"GET"}),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session = requests.Session()
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


class Getter:
    """Fetches ``file://`` URLs from disk and others over HTTP with retries."""

    def __init__(self, session: Optional[requests.Session] = None) -> None:
        self._session = session

    def get(self, url: str) -> FetchResponse:
        """Open ``url``; the caller closes the returned response."""
        try:
            parsed = urlsplit(url)
        except ValueError as exc:
            raise FetchError(f"Failed to parse URL: {exc}") from exc
        if parsed.scheme == "file":
            return FetchResponse(status_code=200, body=open(parsed.path, "rb"))
        return self._http_get(url)

    def _http_get(self, url: str) -> FetchResponse:
        headers = {}
        authorization = auth_header(url)
        if authorization is not None:
            headers["Authorization"] = authorization
        if self._session is None:
            self._session = _retrying_session()
        response = self._session.get(url, headers=headers, stream=True, timeout=_TIMEOUT)
        response.raw.decode_content = True
        return FetchResponse(
            status_code=response.status_code, body=response.raw, closer=response.close
        )


class _HashingReader:
    """Feeds everything read from a stream into a hash."""

    def __init__(self, stream: BinaryIO, hasher: Any) -> None:
        self._stream = stream
        self._hasher = hasher

    def read(self, size: int = -1) -> bytes:
        data = self._stream.read(size)
        self._hasher.update(data)
        return data


def _lookup_checksum(data: RepomdFile, algorithm: str) -> Optional[str]:
    try:
        value = data.checksum(algorithm)
    except (LookupError, ValueError):
        return None
    return value or None


def choose_hash_type(data: RepomdFile) -> tuple[Any, str]:
    """Pick the strongest checksum of ``data``: a fresh hasher and the expected sum."""
    for algorithm, factory in (
        ("sha512", hashlib.sha512),
        ("sha256", hashlib.sha256),
        ("sha", hashlib.sha1),
        ("sha1", hashlib.sha1),
    ):
        value = _lookup_checksum(data, algorithm)
        if value is not None:
            return factory(), value
    raise FetchError("Unable identify file checksum: no sha512, sha256, or sha1 found")


def _ok(status_code: int) -> bool:
    return 200 <= status_code <= 299


class RepoFetcher:
    """Downloads repomd.xml and the primary file of each repository."""

    def __init__(
        self,
        repos: Sequence[RepoConfig],
        getter: Getter,
        cache_helper: CacheHelper,
    ) -> None:
        self.repos = list(repos)
        self.getter = getter
        self.cache_helper = cache_helper

    def fetch(self) -> None:
        """Fetch the metadata of every repository into the cache."""
        for repo in self.repos:
            sums: list[str] = []
            repomd_urls: list[str] = []
            if repo.metalink:
                try:
                    metalink, repomd_urls = self._resolve_metalink(repo)
                except (FetchError, OSError, requests.RequestException,
                        ET.ParseError, ValueError) as exc:
                    raise FetchError(
                        f"failed to resolve metalink for {repo.name}: {exc}"
                    ) from exc
                try:
                    sums = list(metalink.sha256_sums())
                except (LookupError, ValueError) as exc:
                    raise FetchError(
                        f"failed to get sha256sum of repomd file: {exc}"
                    ) from exc
            elif repo.baseurl:
                repomd_urls.append(repo.baseurl.rstrip("/") + _REPOMD_PATH)

            try:
                repomd, mirror = self._resolve_repomd(repo, repomd_urls, sums)
            except FetchError as exc:
                raise FetchError(
                    f"failed to fetch repomd.xml for {repo.name}: {exc}"
                ) from exc
            try:
                self._fetch_file(PRIMARY_FILE_TYPE, repo, repomd, mirror)
            except (FetchError, OSError, requests.RequestException) as exc:
                raise FetchError(
                    f"failed to fetch primary.xml for {repo.name}: {exc}"
                ) from exc

    def _resolve_metalink(self, repo: RepoConfig) -> tuple[Metalink, list[str]]:
        with self.getter.get(repo.metalink) as response:
            if not _ok(response.status_code):
                raise FetchError(
                    f"Failed to download {repo.metalink}: status : {response.status_code} "
                )
            self.cache_helper.write_to_repo_dir(repo, response.body, "metalink")
        metalink = self.cache_helper.load_metalink(repo)
        if not metalink.urls:
            raise FetchError("Metalink file contains no reference to repod.xml")
        urls = [u.url for u in metalink.urls if u.type == "https"]
        if not urls:
            raise FetchError("Metalink contains no https url to a rpomd.xml file")
        return metalink, urls

    def _resolve_repomd(
        self, repo: RepoConfig, urls: Sequence[str], sums: Sequence[str]
    ) -> tuple[Repomd, SplitResult]:
        for url in urls:
            log.info("Resolving repomd.xml from %s", url)
            try:
                response = self.getter.get(url)
            except (OSError, requests.RequestException, FetchError) as exc:
                log.error("Failed to resolve repomd.xml from %s: %s", url, exc)
                continue
            hasher = hashlib.sha256()
            with response:
                if not _ok(response.status_code):
                    log.warning("Failed to download %s: status : %s", url, response.status_code)
                    continue
                try:
                    self.cache_helper.write_to_repo_dir(
                        repo, _HashingReader(response.body, hasher), "repomd.xml"
                    )
                except (OSError, requests.RequestException) as exc:
                    log.error("Failed to save repomd.xml from %s: %s", url, exc)
                    continue

            digest = hasher.hexdigest()
            if sums:
                if digest not in sums:
                    for expected in sums:
                        log.warning(
                            "Expected repomd.xml sha256 sum %s, but got %s", expected, digest
                        )
                    log.warning("Mirror has no expected repomd.xml version: %s", url)
                    continue
                log.info("Matched repmod.xml with sha256 sum %s", digest)

            try:
                with self.cache_helper.open_from_repo_dir(repo, "repomd.xml") as stream:
                    repomd = parse_repomd(stream)
            except (ET.ParseError, ValueError, OSError) as exc:
                log.error("Failed to decode repomd.xml from %s: %s", url, exc)
                continue

            mirror = urlsplit(url)
            directory = posixpath.dirname(mirror.path) or "."
            return repomd, mirror._replace(path=directory.removesuffix("repodata"))

        raise FetchError("All mirrors tried, could not download repomd.xml")

    def _fetch_file(
        self, file_type: str, repo: RepoConfig, repomd: Repomd, mirror: SplitResult
    ) -> None:
        data = repomd.file(file_type)
        if data is None:
            raise FetchError("No 'file' file referenced in repomd")
        href = data.location_href
        if not href:
            raise FetchError("The 'file' file has no href associated")

        file_url = href
        file_name = posixpath.basename(href)
        if not href.startswith("/"):
            joined = posixpath.normpath(posixpath.join(mirror.path, href))
            file_url = urlunsplit(mirror._replace(path=joined))

        log.info("Loading %s file from %s", file_type, file_url)
        try:
            response = self.getter.get(file_url)
        except (OSError, requests.RequestException) as exc:
            raise FetchError(
                f"Failed to load primary repository file from {file_url}: {exc}"
            ) from exc
        with response:
            if not _ok(response.status_code):
                raise FetchError(
                    f"Failed to download {file_url}: status : {response.status_code} "
                )
            hasher, expected = choose_hash_type(data)
            try:
                self.cache_helper.write_to_repo_dir(
                    repo, _HashingReader(response.body, hasher), file_name
                )
            except (OSError, requests.RequestException) as exc:
                raise FetchError(
                    f"Failed to write file.xml from {file_url} to file: {exc}"
                ) from exc

        if expected != hasher.hexdigest():
            raise FetchError(f"Expected sha sum {expected}, but got {hasher.hexdigest()}")


def new_remote_repo_fetcher(repos: Sequence[RepoConfig]) -> RepoFetcher:
    """A fetcher using the network and the default cache directory."""
    return RepoFetcher(repos=repos, getter=Getter(), cache_helper=CacheHelper())