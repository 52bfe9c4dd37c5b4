"""Scheduler configuration: disk groups and the placement strategy."""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .types import DiskSelectorItem

SCHEDULER_BINPACK = "binpack"
SCHEDULER_SPREADOUT = "spreadout"
DEFAULT_CONFIG_PATH = "/etc/carina/config.json"

_LEGACY_GROUPS = ("ssd", "hdd")


def _legacy_group(name: str) -> str:
    """Map the old ``ssd``/``hdd`` group names onto their volume group names."""
    return f"carina-vg-{name}" if name in _LEGACY_GROUPS else name


def _lower_keys(data: Mapping[str, Any]) -> dict[str, Any]:
    return {str(key).lower(): value for key, value in data.items()}


def _string_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return value.split(",") if value else []
    return [str(item) for item in value]


def _selector_item(data: Mapping[str, Any]) -> DiskSelectorItem:
    keys = _lower_keys(data)
    return DiskSelectorItem(
        name=str(keys.get("name", "")),
        re=_string_list(keys.get("re")),
        policy=str(keys.get("policy", "")),
        node_label=str(keys.get("nodelabel", "")),
    )


@dataclass
class SchedulerConfig:
    """The parts of the node configuration the scheduler plugin reads."""

    disk_selectors: list[DiskSelectorItem] = field(default_factory=list)
    disk_scan_interval: int = 0
    scheduler_strategy: str = ""

    def strategy(self) -> str:
        """Return ``binpack`` or ``spreadout``; anything else means ``binpack``."""
        value = self.scheduler_strategy.lower()
        if value in (SCHEDULER_BINPACK, SCHEDULER_SPREADOUT):
            return value
        return SCHEDULER_BINPACK

    def get_device_group(self, disk_type: str) -> str:
        """Resolve the disk group a storage class names.

        A configured non-raw group is returned as written; otherwise the name
        is lower-cased and the legacy ``ssd``/``hdd`` names are expanded.
        """
        for item in self.disk_selectors:
            if item.is_raw:
                continue
            if item.name == disk_type:
                return disk_type
        return _legacy_group(disk_type.lower())

    def check_raw_device_group(self, disk_type: str) -> bool:
        """Tell whether ``disk_type`` names a configured raw-disk group."""
        group = _legacy_group(disk_type.lower())
        return any(item.name == group and item.is_raw for item in self.disk_selectors)


def load_config(path: str = DEFAULT_CONFIG_PATH) -> SchedulerConfig:
    """Read a JSON configuration file; a directory means its ``config.json``.

    Keys are matched without regard to case. Raises OSError when the file
    cannot be read and ValueError when it is not a valid configuration.
    """
    if os.path.isdir(path):
        path = os.path.join(path, "config.json")
    with open(path, encoding="utf-8") as handle:
        data = json.load(handle)
    if not isinstance(data, Mapping):
        raise ValueError(f"{path}: configuration must be a JSON object")
    keys = _lower_keys(data)

    selectors = keys.get("diskselector") or []
    if not isinstance(selectors, list) or not all(isinstance(s, Mapping) for s in selectors):
        raise ValueError(f"{path}: diskSelector must be a list of objects")

    interval = keys.get("diskscaninterval", 0) or 0
    try:
        interval = int(interval)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{path}: diskScanInterval must be an integer") from exc

    return SchedulerConfig(
        disk_selectors=[_selector_item(item) for item in selectors],
        disk_scan_interval=interval,
        scheduler_strategy=str(keys.get("schedulerstrategy", "") or ""),
    )