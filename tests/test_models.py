import io
import xml.etree.ElementTree as ET

import pytest

from rpmtree.models import (
    FILELISTS_FILE_TYPE,
    PRIMARY_FILE_TYPE,
    Entry,
    Package,
    RepoConfig,
    RepomdFile,
    Version,
    parse_filelist_package,
    parse_metalink,
    parse_primary,
    parse_repomd,
)

REPOMD = b"""<?xml version="1.0" encoding="UTF-8"?>
<repomd xmlns="http://linux.duke.edu/metadata/repo">
  <data type="primary">
    <checksum type="sha256">aaaa</checksum>
    <open-checksum type="sha256">bbbb</open-checksum>
    <location href="repodata/aaaa-primary.xml.gz"/>
  </data>
  <data type="filelists">
    <checksum type="sha512">cccc</checksum>
    <location href="repodata/cccc-filelists.xml.zst"/>
  </data>
</repomd>
"""

METALINK = b"""<?xml version="1.0" encoding="utf-8"?>
<metalink version="3.0" xmlns="http://www.metalinker.org/"
          xmlns:mm0="http://fedorahosted.org/mirrormanager">
  <files>
    <file name="repomd.xml">
      <verification>
        <hash type="md5">dddd</hash>
        <hash type="sha256">eeee</hash>
      </verification>
      <mm0:alternates>
        <mm0:alternate>
          <verification><hash type="sha256">ffff</hash></verification>
        </mm0:alternate>
      </mm0:alternates>
      <resources maxconnections="1">
        <url protocol="https" type="https">https://mirror.example.com/f32/repodata/repomd.xml</url>
        <url protocol="http" type="http">http://mirror.example.com/f32/repodata/repomd.xml</url>
      </resources>
    </file>
  </files>
</metalink>
"""

PRIMARY = b"""<?xml version="1.0" encoding="UTF-8"?>
<metadata xmlns="http://linux.duke.edu/metadata/common"
          xmlns:rpm="http://linux.duke.edu/metadata/rpm" packages="2">
<package type="rpm">
  <name>glibc</name>
  <arch>x86_64</arch>
  <version epoch="0" ver="2.31" rel="4.fc32"/>
  <checksum type="sha256" pkgid="YES">1234</checksum>
  <location href="Packages/g/glibc-2.31-4.fc32.x86_64.rpm"/>
  <format>
    <rpm:provides>
      <rpm:entry name="glibc" flags="EQ" epoch="0" ver="2.31" rel="4.fc32"/>
      <rpm:entry name="libc.so.6()(64bit)"/>
    </rpm:provides>
    <rpm:requires>
      <rpm:entry name="basesystem" pre="1"/>
    </rpm:requires>
    <rpm:conflicts>
      <rpm:entry name="kernel" flags="LT" epoch="0" ver="2.6.32"/>
    </rpm:conflicts>
    <file>/usr/lib64/libc.so.6</file>
  </format>
</package>
<package type="rpm">
  <name>testa</name>
  <arch>noarch</arch>
  <version ver="1"/>
</package>
</metadata>
"""


def test_package_string_matches_source_format():
    assert str(Package("testa", version=Version(ver="1"))) == "testa-0:1"
    glibc = Package("glibc", version=Version(epoch="0", ver="2.31", rel="4.fc32"))
    assert str(glibc) == "glibc-0:2.31-4.fc32"


def test_entry_version():
    entry = Entry(name="kernel", flags="GE", epoch="1", ver="2.6", rel="3")
    assert entry.version() == Version(epoch="1", ver="2.6", rel="3")


def test_parse_repomd():
    repomd = parse_repomd(io.BytesIO(REPOMD))
    primary = repomd.file(PRIMARY_FILE_TYPE)
    assert primary.location_href == "repodata/aaaa-primary.xml.gz"
    assert primary.checksum("sha256") == "aaaa"
    assert primary.checksum("sha512") is None
    filelists = repomd.file(FILELISTS_FILE_TYPE)
    assert filelists.checksum("SHA512") == "cccc"
    assert repomd.file("other") is None


def test_parse_repomd_from_path(tmp_path):
    path = tmp_path / "repomd.xml"
    path.write_bytes(REPOMD)
    assert [f.type for f in parse_repomd(str(path)).files] == ["primary", "filelists"]


def test_sha1_checksum_aliases():
    data = RepomdFile(type="primary", checksums={"sha": "abc"})
    assert data.checksum("sha1") == "abc"
    assert data.checksum("sha") == "abc"


def test_parse_metalink():
    metalink = parse_metalink(io.BytesIO(METALINK))
    assert metalink.sha256_sums() == ["eeee", "ffff"]
    assert [u.url for u in metalink.urls] == [
        "https://mirror.example.com/f32/repodata/repomd.xml",
        "http://mirror.example.com/f32/repodata/repomd.xml",
    ]
    assert [u.protocol for u in metalink.urls] == ["https", "http"]
    assert metalink.urls[0].type == "https"


def test_metalink_without_repomd_is_rejected():
    doc = b'<metalink xmlns="http://www.metalinker.org/"><files><file name="x"/></files></metalink>'
    with pytest.raises(ValueError):
        parse_metalink(io.BytesIO(doc))


def test_parse_primary():
    packages = parse_primary(io.BytesIO(PRIMARY))
    assert [p.name for p in packages] == ["glibc", "testa"]
    glibc = packages[0]
    assert str(glibc) == "glibc-0:2.31-4.fc32"
    assert glibc.arch == "x86_64"
    assert [e.name for e in glibc.provides] == ["glibc", "libc.so.6()(64bit)"]
    assert glibc.provides[0].flags == "EQ"
    assert glibc.requires == [Entry(name="basesystem", pre=True)]
    assert glibc.conflicts[0].version() == Version(epoch="0", ver="2.6.32")
    assert glibc.files == ["/usr/lib64/libc.so.6"]
    assert glibc.location_href == "Packages/g/glibc-2.31-4.fc32.x86_64.rpm"
    assert glibc.checksum == "1234"
    assert glibc.repository is None
    assert str(packages[1]) == "testa-0:1"
    assert packages[1].provides == []


def test_parse_filelist_package():
    element = ET.fromstring(
        b'<package xmlns="http://linux.duke.edu/metadata/filelists" pkgid="x" name="bash" arch="x86_64">'
        b'<version epoch="0" ver="5.0.17" rel="1.fc32"/>'
        b"<file>/usr/bin/bash</file><file type=\"dir\">/etc/skel</file></package>"
    )
    pkg = parse_filelist_package(element)
    assert pkg.name == "bash"
    assert pkg.arch == "x86_64"
    assert pkg.files == ["/usr/bin/bash", "/etc/skel"]
    same = Package("bash", version=Version(epoch="0", ver="5.0.17", rel="1.fc32"))
    assert str(pkg) == str(same)


def test_repo_config_round_trip():
    repo = RepoConfig(
        name="fedora",
        metalink="https://mirror.example.com/metalink",
        arch="x86_64",
        mirrors=["https://mirror.example.com/"],
    )
    assert RepoConfig.from_dict(repo.to_dict()) == repo


def test_repo_config_defaults():
    repo = RepoConfig.from_dict({"name": "local", "unknown": 1})
    assert repo == RepoConfig(name="local")
    assert "mirrors" not in repo.to_dict()


def test_packages_compare_by_identity():
    a = Package("testa", version=Version(ver="1"))
    b = Package("testa", version=Version(ver="1"))
    assert a != b
    assert len({a, b}) == 2