"""Repository configuration files."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Iterable

import yaml

from rpmtree.models import RepoConfig

_METALINK_BASE = "https://mirrors.fedoraproject.org/metalink"


@dataclass
class RepoInit:
    """Settings for a new repository file with a primary and an update repo."""

    os_name: str
    arch: str
    primary_metalink_url: str
    update_metalink_url: str
    repo_file: str

    def init(self) -> None:
        """Write the repository file; it must not exist yet."""
        if os.path.lexists(self.repo_file):
            raise FileExistsError(f"repository file {self.repo_file} already exists.")
        repos = [
            RepoConfig(
                name=f"{self.os_name}-{self.arch}-primary-repo",
                metalink=self.primary_metalink_url,
                arch=self.arch,
            ),
            RepoConfig(
                name=f"{self.os_name}-{self.arch}-update-repo",
                metalink=self.update_metalink_url,
                arch=self.arch,
            ),
        ]
        text = yaml.safe_dump(
            {"repositories": [repo.to_dict() for repo in repos]},
            default_flow_style=False,
        )
        fd = os.open(self.repo_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o660)
        with os.fdopen(fd, "w", encoding="utf-8") as out:
            out.write(text)


def new_remote_init(os_name: str, arch: str, repo_file: str) -> RepoInit:
    """Settings for the release ``os_name`` (an optional leading ``f`` is dropped)."""
    os_name = os_name.removeprefix("f")
    return RepoInit(
        os_name=os_name,
        arch=arch,
        repo_file=repo_file,
        primary_metalink_url=f"{_METALINK_BASE}?repo=fedora-{os_name}&arch={arch}",
        update_metalink_url=f"{_METALINK_BASE}?repo=updates-released-f{os_name}&arch={arch}",
    )


def load_repo_file(path: str) -> list[RepoConfig]:
    """Read the repositories configured in a YAML file."""
    with open(path, encoding="utf-8") as stream:
        data = yaml.safe_load(stream)
    if data is None:
        return []
    if not isinstance(data, dict):
        raise ValueError(f"repository file {path} does not hold a mapping")
    return [RepoConfig.from_dict(item) for item in data.get("repositories") or []]


def load_repo_files(paths: Iterable[str]) -> list[RepoConfig]:
    """Read and concatenate the repositories of several files."""
    repos: list[RepoConfig] = []
    for path in paths:
        repos.extend(load_repo_file(path))
    return repos