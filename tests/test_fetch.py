import base64
import gzip
import hashlib
import io

import pytest
import responses

from rpmtree.cache import CacheHelper
from rpmtree.fetch import (
    FetchError,
    Getter,
    RepoFetcher,
    auth_header,
    choose_hash_type,
    new_remote_repo_fetcher,
)
from rpmtree.models import RepoConfig, parse_repomd

PRIMARY_HREF = "repodata/primary.xml.gz"
MIRROR = "https://mirror.example.com/fedora/"
METALINK_URL = "https://metalink.example.com/metalink?repo=fedora-32&arch=x86_64"


def repomd_xml(algorithm=None, digest=None, href=PRIMARY_HREF):
    checksum = f'<checksum type="{algorithm}">{digest}</checksum>' if algorithm else ""
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<repomd xmlns="http://linux.duke.edu/metadata/repo" '
        'xmlns:rpm="http://linux.duke.edu/metadata/rpm">\n'
        "  <revision>1</revision>\n"
        '  <data type="primary">\n'
        f"    {checksum}\n"
        f'    <location href="{href}"/>\n'
        "  </data>\n"
        "</repomd>\n"
    ).encode("utf-8")


def metalink_xml(repomd_sha256, urls):
    url_lines = "\n".join(
        f'<url protocol="https" type="https" location="US" preference="100">{u}</url>'
        for u in urls
    )
    return (
        '<?xml version="1.0" encoding="utf-8"?>\n'
        '<metalink version="3.0" xmlns="http://www.metalinker.org/" '
        'xmlns:mm0="http://fedorahosted.org/mirrormanager">\n'
        "<files>\n"
        '<file name="repomd.xml">\n'
        "<verification>\n"
        f'<hash type="sha256">{repomd_sha256}</hash>\n'
        "</verification>\n"
        '<resources maxconnections="1">\n'
        f"{url_lines}\n"
        "</resources>\n"
        "</file>\n"
        "</files>\n"
        "</metalink>\n"
    ).encode("utf-8")


def primary_bytes():
    return gzip.compress(
        b'<?xml version="1.0"?><metadata xmlns="http://linux.duke.edu/metadata/common" packages="0"></metadata>'
    )


@pytest.fixture(autouse=True)
def isolated_netrc(tmp_path, monkeypatch):
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.delenv("NETRC", raising=False)
    return home


def build_mirror(root, primary, digest=None):
    repodata = root / "repodata"
    repodata.mkdir(parents=True)
    (repodata / "primary.xml.gz").write_bytes(primary)
    digest = digest or hashlib.sha256(primary).hexdigest()
    repomd = repomd_xml("sha256", digest)
    (repodata / "repomd.xml").write_bytes(repomd)
    return repomd


def test_choose_hash_type_sha256():
    digest = hashlib.sha256(b"data").hexdigest()
    data = parse_repomd(io.BytesIO(repomd_xml("sha256", digest))).file("primary")
    hasher, expected = choose_hash_type(data)
    assert hasher.name == "sha256"
    assert expected == digest


def test_choose_hash_type_sha512():
    digest = hashlib.sha512(b"data").hexdigest()
    data = parse_repomd(io.BytesIO(repomd_xml("sha512", digest))).file("primary")
    hasher, expected = choose_hash_type(data)
    assert hasher.name == "sha512"
    assert expected == digest


def test_choose_hash_type_without_checksum():
    data = parse_repomd(io.BytesIO(repomd_xml())).file("primary")
    with pytest.raises(FetchError, match="Unable identify file checksum"):
        choose_hash_type(data)


def test_getter_reads_file_urls(tmp_path):
    path = tmp_path / "payload.bin"
    path.write_bytes(b"payload")
    with Getter().get(path.as_uri()) as response:
        assert response.status_code == 200
        assert response.body.read() == b"payload"


def test_getter_missing_file(tmp_path):
    with pytest.raises(OSError):
        Getter().get((tmp_path / "missing").as_uri())


def test_auth_header_from_netrc(tmp_path, monkeypatch):
    netrc_path = tmp_path / "netrc"
    netrc_path.write_text("machine mirror.example.com login user password password\n")
    monkeypatch.setenv("NETRC", str(netrc_path))
    expected = "Basic " + base64.b64encode(b"user:password").decode("ascii")
    assert auth_header("https://mirror.example.com/fedora/repodata/repomd.xml") == expected
    assert auth_header("https://other.example.com/x") is None


def test_auth_header_without_netrc():
    assert auth_header("https://mirror.example.com/x") is None


def test_getter_sends_auth_header(tmp_path, monkeypatch):
    netrc_path = tmp_path / "netrc-http"
    netrc_path.write_text("machine mirror.example.com login user password password\n")
    monkeypatch.setenv("NETRC", str(netrc_path))
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, MIRROR + "file.txt", body=b"content", status=200)
        with Getter().get(MIRROR + "file.txt") as response:
            assert response.status_code == 200
            assert response.body.read() == b"content"
        sent = rsps.calls[0].request.headers["Authorization"]
    assert sent == "Basic " + base64.b64encode(b"user:password").decode("ascii")


def test_fetch_from_baseurl(tmp_path):
    primary = primary_bytes()
    repomd = build_mirror(tmp_path / "mirror", primary)
    cache = CacheHelper(str(tmp_path / "cache"))
    repo = RepoConfig(name="local", baseurl=(tmp_path / "mirror").as_uri() + "/")
    RepoFetcher([repo], Getter(), cache).fetch()
    assert (tmp_path / "cache" / "local" / "repomd.xml").read_bytes() == repomd
    assert (tmp_path / "cache" / "local" / "primary.xml.gz").read_bytes() == primary


def test_fetch_detects_wrong_primary_checksum(tmp_path):
    build_mirror(tmp_path / "mirror", primary_bytes(), digest=hashlib.sha256(b"x").hexdigest())
    cache = CacheHelper(str(tmp_path / "cache"))
    repo = RepoConfig(name="local", baseurl=(tmp_path / "mirror").as_uri())
    with pytest.raises(FetchError, match="Expected sha sum"):
        RepoFetcher([repo], Getter(), cache).fetch()


def test_fetch_without_reachable_mirror(tmp_path):
    cache = CacheHelper(str(tmp_path / "cache"))
    repo = RepoConfig(name="local", baseurl=(tmp_path / "nowhere").as_uri())
    with pytest.raises(FetchError, match="All mirrors tried"):
        RepoFetcher([repo], Getter(), cache).fetch()


def test_fetch_via_metalink(tmp_path):
    primary = primary_bytes()
    repomd = repomd_xml("sha256", hashlib.sha256(primary).hexdigest())
    repomd_url = MIRROR + "repodata/repomd.xml"
    metalink = metalink_xml(hashlib.sha256(repomd).hexdigest(), [repomd_url])
    cache = CacheHelper(str(tmp_path / "cache"))
    repo = RepoConfig(name="fedora", metalink=METALINK_URL, arch="x86_64")
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        rsps.add(responses.GET, METALINK_URL, body=metalink, status=200)
        rsps.add(responses.GET, repomd_url, body=repomd, status=200)
        rsps.add(responses.GET, MIRROR + PRIMARY_HREF, body=primary, status=200)
        RepoFetcher([repo], Getter(), cache).fetch()
        requested = [call.request.url for call in rsps.calls]
    assert MIRROR + PRIMARY_HREF in requested
    assert (tmp_path / "cache" / "fedora" / "metalink").read_bytes() == metalink
    assert (tmp_path / "cache" / "fedora" / "primary.xml.gz").read_bytes() == primary


def test_fetch_via_metalink_rejects_unexpected_repomd(tmp_path):
    primary = primary_bytes()
    repomd = repomd_xml("sha256", hashlib.sha256(primary).hexdigest())
    repomd_url = MIRROR + "repodata/repomd.xml"
    metalink = metalink_xml(hashlib.sha256(b"other").hexdigest(), [repomd_url])
    cache = CacheHelper(str(tmp_path / "cache"))
    repo = RepoConfig(name="fedora", metalink=METALINK_URL, arch="x86_64")
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        rsps.add(responses.GET, METALINK_URL, body=metalink, status=200)
        rsps.add(responses.GET, repomd_url, body=repomd, status=200)
        with pytest.raises(FetchError, match="All mirrors tried"):
            RepoFetcher([repo], Getter(), cache).fetch()


def test_fetch_metalink_download_failure(tmp_path):
    cache = CacheHelper(str(tmp_path / "cache"))
    repo = RepoConfig(name="fedora", metalink=METALINK_URL, arch="x86_64")
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, METALINK_URL, body=b"missing", status=404)
        with pytest.raises(FetchError, match="failed to resolve metalink for fedora"):
            RepoFetcher([repo], Getter(), cache).fetch()


def test_new_remote_repo_fetcher(tmp_path):
    repos = [RepoConfig(name="local", baseurl=(tmp_path / "mirror").as_uri())]
    fetcher = new_remote_repo_fetcher(repos)
    assert fetcher.repos == repos
    assert isinstance(fetcher.getter, Getter)
    assert isinstance(fetcher.cache_helper, CacheHelper)