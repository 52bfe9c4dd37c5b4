"""Records shared across the device manager and the scheduler."""

from __future__ import annotations

import re
from dataclasses import dataclass, field, fields
from typing import Any

# Scheduler and CSI keys.
CSI_PLUGIN_NAME = "carina.storage.io"
DEVICE_DISK_KEY = "carina.storage.io/disk-group-name"
VOLUME_DEVICE_NODE = "carina.storage.io/node"
DEVICE_CAPACITY_KEY_PREFIX = "carina.storage.io/"
VOLUME_BACKEND_DISK_TYPE = "carina.storage.io/backend-disk-group-name"
VOLUME_CACHE_DISK_TYPE = "carina.storage.io/cache-disk-group-name"
VOLUME_CACHE_DISK_RATIO = "carina.storage.io/cache-disk-ratio"
LVM_VOLUME_TYPE = "lvm"
RAW_VOLUME_TYPE = "raw"
EXCLUSIVITY_DISK = "carina.storage.io/exclusively-raw-disk"

# Block device kinds as reported by lsblk.
KEYWORD = "carina-"
DISK_TYPE = "disk"
SSD_TYPE = "ssd"
PART_TYPE = "part"
CRYPT_TYPE = "crypt"
LVM_TYPE = "lvm"
ROM_TYPE = "rom"
LVM2_FS_TYPE = "LVM2_member"
MULTI_PATH = "mpath"


def _json(default: Any, name: str) -> Any:
    return field(default=default, metadata={"json": name})


class _Record:
    """Mixin giving dataclasses a dictionary form keyed by their wire names."""

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for f in fields(self):  # type: ignore[arg-type]
            value = getattr(self, f.name)
            if isinstance(value, list):
                value = [v.to_dict() if isinstance(v, _Record) else v for v in value]
            result[f.metadata.get("json", f.name)] = value
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]):
        kwargs = {
            f.name: data[f.metadata.get("json", f.name)]
            for f in fields(cls)  # type: ignore[arg-type]
            if f.metadata.get("json", f.name) in data
        }
        return cls(**kwargs)


@dataclass
class BcacheDeviceInfo(_Record):
    """Superblock and kernel details of a bcache device."""

    magic: str = _json("", "magic")
    first_sector: str = _json("", "first_sector")
    csum: str = _json("", "csum")
    label: str = _json("", "label")
    uuid: str = _json("", "uuid")
    sectors_per_block: str = _json("", "sectors_per_block")
    sectors_per_bucket: str = _json("", "sectors_per_bucket")
    data_first_sector: str = _json("", "data_first_sector")
    data_cache_mode: str = _json("", "data_cache_mode")
    data_cache_state: str = _json("", "data_cache_state")
    cset_uuid: str = _json("", "cset_uuid")
    version: str = _json("", "version")
    name: str = _json("", "name")
    bcache_path: str = _json("", "bcache_path")
    device_path: str = _json("", "device_path")
    kernel_major: int = _json(0, "lvKernelMajor")
    kernel_minor: int = _json(0, "lvKernelMinor")


@dataclass
class LocalDisk(_Record):
    """A block device as listed by lsblk."""

    name: str = _json("", "name")
    mount_point: str = _json("", "mountPoint")
    size: int = _json(0, "size")
    state: str = _json("", "state")
    type: str = _json("", "type")
    rotational: str = _json("", "rotational")
    readonly: bool = _json(False, "readOnly")
    filesystem: str = _json("", "filesystem")
    used: int = _json(0, "used")
    parent_name: str = _json("", "parentName")
    device_number: str = _json("", "deviceNumber")


@dataclass
class LvInfo(_Record):
    """A logical volume as reported by lvs."""

    lv_name: str = _json("", "lvName")
    vg_name: str = _json("", "vgName")
    lv_path: str = _json("", "lvPath")
    lv_size: int = _json(0, "lvSize")
    lv_kernel_major: int = _json(0, "lvKernelMajor")
    lv_kernel_minor: int = _json(0, "lvKernelMinor")
    origin: str = _json("", "origin")
    origin_size: int = _json(0, "originSize")
    pool_lv: str = _json("", "poolLv")
    thin_count: int = _json(0, "thinCount")
    lv_tags: str = _json("", "lvTags")
    data_percent: float = _json(0.0, "dataPercent")
    lv_attr: str = _json("", "lvAttr")
    lv_active: str = _json("", "lvActive")


@dataclass
class PVInfo(_Record):
    """A physical volume as reported by pvs."""

    pv_name: str = ""
    vg_name: str = ""
    pv_fmt: str = ""
    pv_attr: str = ""
    pv_size: int = 0
    pv_free: int = 0


@dataclass
class VgGroup(_Record):
    """A volume group together with the physical volumes that belong to it."""

    vg_name: str = ""
    pv_count: int = 0
    lv_count: int = 0
    vg_attr: str = ""
    vg_size: int = 0
    vg_free: int = 0
    pvs: list[PVInfo] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VgGroup:
        group = super().from_dict(data)
        group.pvs = [
            pv if isinstance(pv, PVInfo) else PVInfo.from_dict(pv) for pv in group.pvs
        ]
        return group


@dataclass
class DiskSelectorItem(_Record):
    """One disk group of the configuration: which devices belong to it and how."""

    name: str = _json("", "name")
    re: list[str] = field(default_factory=list, metadata={"json": "re"})
    policy: str = _json("", "policy")
    node_label: str = _json("", "nodeLabel")

    @property
    def is_raw(self) -> bool:
        return self.policy.lower() == RAW_VOLUME_TYPE

    def selector(self) -> re.Pattern[str]:
        """Compile the group's expressions into a single alternation."""
        return re.compile("|".join(self.re))