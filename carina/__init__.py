"""Local node storage: LVM and bcache tooling, block device discovery and placement helpers."""

__version__ = "0.1.0"