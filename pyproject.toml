[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "carina"
version = "0.1.0"
description = "Local node storage management: LVM volume groups, bcache devices, block device discovery and capacity-aware placement helpers"
requires-python = ">=3.10"
dependencies = []
keywords = ["lvm", "bcache", "local-storage", "block-devices", "lsblk", "scheduling"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Filesystems",
    "Topic :: System :: Systems Administration",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["carina"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
