# rpmtree

`rpmtree` is a library for working with yum/dnf repositories and RPM
payloads. It can:

- write and read YAML files that list repositories,
- fetch `repomd.xml` and the primary metadata file of each repository into a local cache,
- read the cached metadata back as Python objects,
- pick a consistent, newest-possible set of packages with a weighted MaxSAT search,
- convert a newc cpio stream (the payload format of RPMs) into a tar archive, optionally with file capabilities and SELinux labels stored as PAX records,
- compare RPM versions.

## Installation

```
pip install rpmtree
```

To run the test suite, install the `test` extra: `pip install "rpmtree[test]"`.

## Describing repositories

Repositories are listed in a YAML file under the key `repositories`; each
entry has `name`, `disabled`, `metalink`, `baseurl`, `arch` and optionally
`mirrors`. `rpmtree.repos.new_remote_init` prepares a file for a Fedora
release (a leading `f` in the release is dropped) with one primary and one
update repository, each given by a metalink URL:

```python
from rpmtree.repos import new_remote_init, load_repo_files

new_remote_init("f40", "x86_64", "repo.yaml").init()
repos = load_repo_files(["repo.yaml"])   # list of RepoConfig
```

`RepoInit.init()` raises `FileExistsError` if the file already exists.
`load_repo_file` reads one file; `load_repo_files` concatenates several.

## Fetching metadata

```python
from rpmtree.fetch import new_remote_repo_fetcher

new_remote_repo_fetcher(repos).fetch()
```

For every repository, `RepoFetcher.fetch()`:

1. downloads the metalink (if one is configured) and takes its `https` mirror URLs and accepted sha256 sums of `repomd.xml`; otherwise uses `<baseurl>/repodata/repomd.xml`,
2. tries the mirrors in turn until one serves a `repomd.xml` whose sha256 sum is accepted and that parses,
3. downloads the primary metadata file referenced there and checks it against the strongest checksum recorded (sha512, then sha256, then sha1; see `choose_hash_type`).

Failures are raised as `rpmtree.fetch.FetchError`. Only the primary file is
downloaded; filelists files are not fetched.

`Getter.get` reads `file://` URLs straight from disk and fetches everything
else over HTTP with retries. Basic credentials for a host are taken from the
file named by `$NETRC`, or from `~/.netrc` (`auth_header` gives the header
value). `RepoFetcher(repos, getter, cache_helper)` accepts any getter and
cache helper you supply.

## The cache

`rpmtree.cache.CacheHelper` keeps one directory per repository below its
cache directory. Without an argument it uses `default_cache_dir()`, which is
`rpmtree` under `$XDG_CACHE_HOME` (or `~/.cache`). A `~` in a given path is
replaced by `$HOME` and environment variables are expanded.

```python
from rpmtree.cache import CacheHelper

cache = CacheHelper()
primaries = cache.current_primaries(repos, "x86_64")   # one package list per repository
packages = [pkg for primary in primaries for pkg in primary]
```

- `current_primary(repo)` parses the cached primary file (`.gz`, `.zst` or `.xz`, see `open_compressed`), attaches `repo` to every package and, if `repo.mirrors` is empty, fills it from the cached metalink (up to four `https` mirrors) or from `baseurl`.
- `current_primaries(repos, arch)` skips repositories whose `arch` is set and is neither `arch` nor `noarch`.
- `current_filelists_for_packages(repo, arches, packages)` returns the file lists found for the given packages in a cached filelists file, and the packages passed over without a match. The filelists file must already be in the cache.

The metadata documents are modelled in `rpmtree.models` (`Version`,
`Entry`, `Package`, `FileListPackage`, `RepoConfig`, `Repomd`, `Metalink`)
and parsed by `parse_repomd`, `parse_metalink`, `parse_primary` and
`parse_filelist_package`.

## Resolving dependencies

```python
from rpmtree.resolver import Resolver, NoSolutionError

resolver = Resolver(nobest=False)
resolver.load_involved_packages(packages, ignore_regex=[], allow_regex=[])
resolver.construct_requirements(["bash", "fedora-release-container"])
result = resolver.resolve()
for pkg in result.install:
    print(pkg)   # e.g. bash-0:5.0.17-1.fc32
```

`resolve()` returns a `Resolution` with `install`, `excluded` and
`force_ignored` package lists. With `nobest=False` only the newest version
of each package name is considered; with `nobest=True` all versions are
loaded and older ones are penalised, so the newest that works is chosen.

The two regular-expression lists are matched (with `re.search`) against the
full package name such as `bash-0:5.0.17-1.fc32`:

- a package matching `ignore_regex` keeps its place in the solution, but its own requirements are dropped and it is reported in `force_ignored` instead of `install`;
- when `allow_regex` is not empty, packages that match none of its patterns are treated the same way.

`construct_requirements` raises `ValueError` for a name nothing provides.
`resolve()` raises `NoSolutionError` when the requirements cannot be met;
`mus()` then returns a minimal unsatisfiable set of CNF clauses.

The underlying tools live in `rpmtree.solver`: the formula classes `Var`,
`Not`, `And`, `Or` with `implies` and `unique`, `to_cnf`, `solve_maxsat`
and `minimal_unsat_core`. The search is exact and intended for
package-sized problems.

## Converting cpio payloads to tar

```python
import tarfile
from rpmtree.cpio import cpio_to_tar

created = set()
with open("payload.cpio", "rb") as payload, \
        tarfile.open("out.tar", "w", format=tarfile.PAX_FORMAT) as tar:
    cpio_to_tar(
        payload,
        tar,
        no_symlinks_and_dirs=False,
        capabilities={"./usr/bin/ping": ["cap_net_bind_service"]},
        selinux_labels={},
        created_paths=created,
    )
```

Paths already in `created_paths` are skipped and written paths are added,
so passing the same set for several payloads writes each path once, first
occurrence wins. Hard links are written at the end, once their target is
known. With `no_symlinks_and_dirs=True`, directories and symlinks are left
out. Malformed input raises `rpmtree.cpio.CpioError`. `read_entries` yields
the raw `CpioEntry` objects.

Supported capabilities are `cap_chown`, `cap_net_bind_service` and
`cap_sys_ptrace`. `rpmtree.xattr` provides `add_capabilities`,
`set_selinux_label`, `enrich_entry` and `apply`; `apply` copies an existing
tar archive into a PAX-format writer, adding the records for the paths
named (leading `/` stripped, path normalised).

## Version comparison

`rpmtree.rpmver.compare` orders two versions by epoch, then version, then
release, using RPM's rules for `~`, numeric and alphabetic segments:

```python
from rpmtree.models import Version
from rpmtree.rpmver import compare

compare(Version(epoch="0", ver="4.16.0"), Version(epoch="0", ver="4.3"))  # 1
```

`compare_segment` compares a single string; `Tokenizer` and `Token` expose
the tokenisation it uses.

## What rpmtree does not do

- It does not read `.rpm` files: there is no parsing of the RPM lead and headers and no decompression of the payload. `cpio_to_tar` needs an already uncompressed cpio stream.
- It does not extract selected files from the tar archives it writes.
- It has no command-line interface; it is used as a library.