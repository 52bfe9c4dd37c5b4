"""Driving LVM2 through its command-line tools and parsing what they report."""

from __future__ import annotations

import logging
import math
import os
import time
from collections.abc import Callable, Iterable, Sequence

from .executor import CommandError, CommandExecutor
from .types import LvInfo, PVInfo, VgGroup

log = logging.getLogger(__name__)

_REPORT_ARGS = (
    "--noheadings",
    "--separator=,",
    "--units=b",
    "--nosuffix",
    "--unbuffered",
    "--nameprefixes",
)
_VG_FIELDS = ("-o", "VG_NAME,PV_COUNT,LV_COUNT,VG_ATTR,VG_SIZE,VG_FREE")
_LV_FIELDS = (
    "-o",
    "lv_name,vg_name,lv_path,lv_size,data_percent,lv_attr,lv_kernel_major,"
    "lv_kernel_minor,origin,origin_size,pool_lv,thin_count,lv_tags,lv_active",
)

_U32_MAX = 2**32 - 1
_U64_MAX = 2**64 - 1


class NotFoundError(LookupError):
    """A physical volume, volume group or logical volume does not exist."""


def _parse_uint(text: str, limit: int = _U64_MAX) -> int:
    """Parse an unsigned decimal; malformed text gives 0, overflow the limit."""
    if text.isascii() and text.isdigit():
        return min(int(text), limit)
    return 0


def _parse_float(text: str) -> float:
    if not text or "_" in text:
        return 0.0
    try:
        value = float(text)
    except ValueError:
        return 0.0
    return value if math.isfinite(value) or text.lower().lstrip("+-") in ("inf", "infinity") else 0.0


def _records(text: str) -> Iterable[list[tuple[str, str]]]:
    """Split a ``--nameprefixes`` report into lists of key/value pairs."""
    if text == "":
        return
    cleaned = text.replace("'", "").replace(" ", "")
    for line in cleaned.split("\n"):
        if not line:
            continue
        pairs = []
        for item in line.split(","):
            key, _, value = item.partition("=")
            pairs.append((key, value))
        yield pairs


def parse_vgs(text: str) -> list[VgGroup]:
    """Parse the output of ``vgs --nameprefixes``."""
    setters: dict[str, Callable[[VgGroup, str], None]] = {
        "LVM2_VG_NAME": lambda g, v: setattr(g, "vg_name", v),
        "LVM2_PV_COUNT": lambda g, v: setattr(g, "pv_count", _parse_uint(v)),
        "LVM2_LV_COUNT": lambda g, v: setattr(g, "lv_count", _parse_uint(v)),
        "LVM2_VG_ATTR": lambda g, v: setattr(g, "vg_attr", v),
        "LVM2_VG_SIZE": lambda g, v: setattr(g, "vg_size", _parse_uint(v)),
        "LVM2_VG_FREE": lambda g, v: setattr(g, "vg_free", _parse_uint(v)),
    }
    groups = []
    for pairs in _records(text):
        group = VgGroup()
        for key, value in pairs:
            setter = setters.get(key)
            if setter is None:
                log.warning("undefined field %s-%s", key, value)
            else:
                setter(group, value)
        group.pvs = []
        groups.append(group)
    return groups


def parse_lvs(text: str, prefixes: Sequence[str]) -> list[LvInfo]:
    """Parse the output of ``lvs --nameprefixes``.

    Only volumes whose names start with one of ``prefixes`` are returned.
    """
    setters: dict[str, Callable[[LvInfo, str], None]] = {
        "LVM2_LV_NAME": lambda lv, v: setattr(lv, "lv_name", v),
        "LVM2_VG_NAME": lambda lv, v: setattr(lv, "vg_name", v),
        "LVM2_LV_PATH": lambda lv, v: setattr(lv, "lv_path", v),
        "LVM2_LV_SIZE": lambda lv, v: setattr(lv, "lv_size", _parse_uint(v)),
        "LVM2_LV_KERNEL_MAJOR": lambda lv, v: setattr(lv, "lv_kernel_major", _parse_uint(v, _U32_MAX)),
        "LVM2_LV_KERNEL_MINOR": lambda lv, v: setattr(lv, "lv_kernel_minor", _parse_uint(v, _U32_MAX)),
        "LVM2_ORIGIN": lambda lv, v: setattr(lv, "origin", v),
        "LVM2_ORIGIN_SIZE": lambda lv, v: setattr(lv, "origin_size", _parse_uint(v)),
        "LVM2_POOL_LV": lambda lv, v: setattr(lv, "pool_lv", v),
        "LVM2_THIN_COUNT": lambda lv, v: setattr(lv, "thin_count", _parse_uint(v)),
        "LVM2_LV_TAGS": lambda lv, v: setattr(lv, "lv_tags", v),
        "LVM2_DATA_PERCENT": lambda lv, v: setattr(lv, "data_percent", _parse_float(v)),
        "LVM2_LV_ATTR": lambda lv, v: setattr(lv, "lv_attr", v),
        "LVM2_LV_ACTIVE": lambda lv, v: setattr(lv, "lv_active", v),
    }
    wanted = tuple(prefixes)
    volumes = []
    for pairs in _records(text):
        volume = LvInfo()
        for key, value in pairs:
            setter = setters.get(key)
            if setter is None:
                log.warning("undefined field %s=%s", key, value)
            else:
                setter(volume, value)
        if wanted and volume.lv_name.startswith(wanted):
            volumes.append(volume)
    return volumes


def parse_pvs(text: str) -> list[PVInfo]:
    """Parse the output of ``pvs --nameprefixes``."""
    setters: dict[str, Callable[[PVInfo, str], None]] = {
        "LVM2_PV_NAME": lambda pv, v: setattr(pv, "pv_name", v),
        "LVM2_VG_NAME": lambda pv, v: setattr(pv, "vg_name", v),
        "LVM2_PV_FMT": lambda pv, v: setattr(pv, "pv_fmt", v),
        "LVM2_PV_ATTR": lambda pv, v: setattr(pv, "pv_attr", v),
        "LVM2_PV_SIZE": lambda pv, v: setattr(pv, "pv_size", _parse_uint(v)),
        "LVM2_PV_FREE": lambda pv, v: setattr(pv, "pv_free", _parse_uint(v)),
    }
    volumes = []
    for pairs in _records(text):
        volume = PVInfo()
        for key, value in pairs:
            setter = setters.get(key)
            if setter is None:
                log.warning("undefined field %s-%s", key, value)
            else:
                setter(volume, value)
        volumes.append(volume)
    return volumes


def _gib(size: int) -> str:
    return f"{size >> 30}g"


class Lvm2:
    """Physical volume, volume group, logical volume and snapshot operations."""

    lvmpolld_socket = "/run/lvm/lvmpolld.socket"
    reduce_delay = 1.0

    def __init__(self, executor: CommandExecutor, volume_prefixes: Sequence[str]) -> None:
        self.executor = executor
        self.volume_prefixes = tuple(volume_prefixes)

    # Physical volumes

    def pv_check(self, dev: str) -> str:
        return self.executor.execute_with_combined_output("pvck", dev)

    def pv_create(self, dev: str) -> None:
        self.executor.execute("pvcreate", dev)

    def pv_remove(self, dev: str) -> None:
        self.executor.execute("pvremove", dev)

    def pv_resize(self, dev: str) -> None:
        self.executor.execute("pvresize", dev)

    def pvs(self) -> list[PVInfo]:
        return parse_pvs(self.executor.execute_with_output("pvs", *_REPORT_ARGS))

    def pv_display(self, dev: str) -> PVInfo:
        for pv in self.pvs():
            if pv.pv_name == dev:
                return pv
        raise NotFoundError("disk not found")

    def pv_scan(self, dev: str = "") -> None:
        """Run ``pvscan --cache``, for one device or, with ``dev`` empty, all."""
        args = ["--cache"]
        if dev:
            args.append(dev)
        self.executor.execute("pvscan", *args)

    # Volume groups

    def vg_check(self, vg: str) -> None:
        self.executor.execute("vgck", vg)

    def vg_create(self, vg: str, tags: Iterable[str], pvs: Iterable[str]) -> None:
        args = [f"--add-tag={tag}" for tag in tags if tag]
        args.append(vg)
        args.extend(pvs)
        self.executor.execute("vgcreate", *args)

    def vg_remove(self, vg: str) -> None:
        self.executor.execute("vgremove", "-f", vg)

    def vgs(self) -> list[VgGroup]:
        return parse_vgs(self.executor.execute_with_output("vgs", *_VG_FIELDS, *_REPORT_ARGS))

    def vg_display(self, vg: str) -> VgGroup:
        for group in self.vgs():
            if group.vg_name == vg:
                return group
        raise NotFoundError("vg not found")

    def vg_scan(self, vg: str = "") -> None:
        """Run ``vgscan --cache``, for one group or, with ``vg`` empty, all."""
        args = ["--cache"]
        if vg:
            args.append(vg)
        self.executor.execute("vgscan", *args)

    def vg_extend(self, vg: str, pv: str) -> None:
        self.executor.execute("vgextend", vg, pv)

    def vg_reduce(self, vg: str, pv: str) -> None:
        """Move data off ``pv``, drop it from ``vg`` and remove its label."""
        try:
            self.executor.execute_with_output("pvmove", pv)
        except CommandError as exc:
            if "No data to move" not in exc.output:
                log.error("%s", exc.output)
                raise
        log.info("wait %ss to exec vgreduce", self.reduce_delay)
        time.sleep(self.reduce_delay)
        self.executor.execute("vgreduce", vg, pv)
        self.pv_remove(pv)

    # Thin pools and logical volumes

    def create_thin_pool(self, lv: str, vg: str, size: int) -> None:
        self.executor.execute("lvcreate", "-T", f"{vg}/{lv}", "--size", _gib(size))

    def resize_thin_pool(self, lv: str, vg: str, size: int) -> None:
        self.executor.execute("lvresize", "-f", "-L", _gib(size), f"{vg}/{lv}")

    def delete_thin_pool(self, lv: str, vg: str) -> None:
        self.lv_remove(lv, vg)

    def lv_create_from_pool(self, lv: str, thin: str, vg: str, size: int) -> None:
        self.executor.execute("lvcreate", "-T", f"{vg}/{thin}", "-n", lv, "-V", _gib(size))

    def lv_create_from_vg(
        self,
        lv: str,
        vg: str,
        size: int,
        tags: Iterable[str] = (),
        stripe: int = 0,
        stripe_size: str = "",
    ) -> None:
        """Create a linear or striped volume of ``size`` bytes in ``vg``."""
        args = ["-n", lv, "-L", _gib(size), "-W", "y", "-y"]
        args.extend(f"--add-tag={tag}" for tag in tags if tag)
        if stripe:
            args.extend(["-i", str(stripe)])
            if stripe_size:
                args.extend(["-I", stripe_size])
        args.append(vg)
        self.executor.execute("lvcreate", *args)

    def lv_remove(self, lv: str, vg: str) -> None:
        self.executor.execute("lvremove", "-f", f"{vg}/{lv}")

    def lv_resize(self, lv: str, vg: str, size: int) -> None:
        self.executor.execute("lvresize", "-L", _gib(size), f"{vg}/{lv}")

    def lv_display(self, lv: str, vg: str) -> LvInfo:
        volumes = self.lvs(f"{vg}/{lv}")
        if not volumes:
            raise NotFoundError("not found")
        return volumes[0]

    def lvs(self, lv_name: str = "") -> list[LvInfo]:
        """List logical volumes; a missing named volume gives an empty list."""
        args = [*_LV_FIELDS, *_REPORT_ARGS]
        if lv_name:
            args.append(lv_name)
        try:
            output = self.executor.execute_with_output("lvs", *args)
        except CommandError as exc:
            if "Failed to find logical volume" in exc.output:
                return []
            raise
        return parse_lvs(output, self.volume_prefixes)

    # Snapshots

    def create_snapshot(self, snap: str, lv: str, vg: str) -> None:
        self.executor.execute("lvcreate", "-s", f"{vg}/{lv}", "-n", snap, "-ay", "-Ky")

    def delete_snapshot(self, snap: str, vg: str) -> None:
        self.lv_remove(snap, vg)

    def restore_snapshot(self, snap: str, vg: str) -> None:
        """Merge the snapshot back into its origin; the snapshot disappears."""
        self.executor.execute("lvconvert", "--merge", f"{vg}/{snap}")

    # Services

    def start_lvm2(self) -> None:
        """Start lvmpolld unless its socket is already present."""
        if not os.path.exists(self.lvmpolld_socket):
            self.executor.execute_resident(3, "lvmpolld")

    def remove_unknown_device(self, vg: str) -> None:
        self.executor.execute("vgreduce", "--removemissing", vg)