[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "rpmtree"
version = "0.1.0"
description = "Fetch yum/dnf repository metadata, resolve RPM dependencies and turn cpio payloads into tar archives"
requires-python = ">=3.10"
keywords = ["rpm", "dnf", "yum", "repository", "dependency-resolution", "cpio", "tar", "maxsat"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Build Tools",
    "Topic :: System :: Archiving :: Packaging",
]
dependencies = [
    "pyyaml>=6.0",
    "requests>=2.28",
    "urllib3>=1.26",
    "zstandard>=0.19",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
    "responses>=0.23",
]

[tool.hatch.build.targets.wheel]
packages = ["rpmtree"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
