"""Listing local block devices and housekeeping around partition tables."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable

from .executor import CommandExecutor
from .types import KEYWORD, LocalDisk

log = logging.getLogger(__name__)

_LSBLK_ARGS = (
    "--pairs",
    "--paths",
    "--bytes",
    "--output",
    "NAME,FSTYPE,MOUNTPOINT,SIZE,STATE,TYPE,ROTA,RO,PKNAME,MAJ:MIN",
)

# Devices smaller than this are never offered as storage.
MIN_DISK_SIZE = 10 << 30

_U64_MAX = 2**64 - 1


def _parse_uint(text: str) -> int:
    if text.isascii() and text.isdigit():
        return min(int(text), _U64_MAX)
    return 0


def parse_udev_info(output: str) -> dict[str, str]:
    """Parse ``KEY=VALUE`` lines; lines without ``=`` are ignored."""
    result: dict[str, str] = {}
    for line in output.split("\n"):
        pairs = line.split("=")
        if len(pairs) > 1:
            result[pairs[0]] = pairs[1]
    return result


def parse_disk_string(text: str) -> list[LocalDisk]:
    """Parse the output of ``lsblk --pairs`` into one record per line."""
    disks: list[LocalDisk] = []
    if text == "":
        return disks
    for line in text.replace('"', "").split("\n"):
        if not line.strip():
            continue
        disk = LocalDisk()
        for token in line.split(" "):
            key, _, value = token.partition("=")
            if key == "NAME":
                disk.name = value
            elif key == "MOUNTPOINT":
                disk.mount_point = value
            elif key == "SIZE":
                disk.size = _parse_uint(value)
            elif key == "STATE":
                disk.state = value
            elif key == "TYPE":
                disk.type = value
            elif key == "ROTA":
                disk.rotational = value
            elif key == "RO":
                disk.readonly = value == "1"
            elif key == "FSTYPE":
                disk.filesystem = value
            elif key == "PKNAME":
                disk.parent_name = value
            elif key == "MAJ:MIN":
                disk.device_number = value
            else:
                log.warning("undefined field %s-%s", key, value)
        disks.append(disk)
    return disks


def filter_disks(disks: Iterable[LocalDisk]) -> list[LocalDisk]:
    """Keep writable, unformatted, unmounted devices of at least 10 GiB."""
    kept = []
    for disk in disks:
        if KEYWORD in disk.name:
            continue
        if disk.readonly or disk.size < MIN_DISK_SIZE or disk.filesystem or disk.mount_point:
            log.debug(
                "Mismatched disk:%s, filesystem:%s, mountpoint:%s, readonly:%s, size:%d",
                disk.name, disk.filesystem, disk.mount_point, disk.readonly, disk.size,
            )
            continue
        kept.append(disk)
    return kept


class PartitionManager:
    """Inspects local block devices through lsblk and friends."""

    def __init__(self, executor: CommandExecutor) -> None:
        self.executor = executor
        self.cache_partition_num: dict[str, int] = {}

    def list_devices_detail_without_filter(self, device: str = "") -> list[LocalDisk]:
        """List every block device, or only ``device`` when it is given."""
        args = list(_LSBLK_ARGS)
        if device:
            args.append(device)
        output = self.executor.execute_with_output("lsblk", *args)
        return parse_disk_string(output)

    def list_devices_detail(self, device: str = "") -> list[LocalDisk]:
        """List block devices that are candidates for storage."""
        return filter_disks(self.list_devices_detail_without_filter(device))

    def get_disk_used(self, device: str) -> int:
        """Return the used block count reported by statfs for ``device``.

        Raises OSError if the device path does not exist.
        """
        os.stat(device)
        try:
            stat = os.statvfs(device)
        except OSError:
            return 0
        return stat.f_blocks - stat.f_bavail

    def get_device(self, device_number: str) -> LocalDisk | None:
        """Find the device with the given ``MAJ:MIN`` number, or None."""
        for disk in self.list_devices_detail_without_filter(""):
            if disk.device_number == device_number:
                return disk
        return None

    def udev_settle(self) -> None:
        self.executor.execute_with_output("udevadm", "settle")

    def part_probe(self) -> None:
        self.executor.execute("bash", "-c", "partprobe")