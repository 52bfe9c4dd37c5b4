"""Periodic discovery of local disks and reconciliation of volume groups."""

from __future__ import annotations

import logging
import re
import threading
import time
from collections.abc import Callable, Mapping

from .executor import CommandError
from .manager import DeviceManager, Trigger
from .types import CRYPT_TYPE, LVM_TYPE, MULTI_PATH, ROM_TYPE, DiskSelectorItem, VgGroup

log = logging.getLogger(__name__)

DEFAULT_SCAN_INTERVAL = 300
_UNSUPPORTED_TYPES = (LVM_TYPE, CRYPT_TYPE, MULTI_PATH, ROM_TYPE)
_SCAN_ERRORS = (CommandError, OSError, re.error)


def merge_device_maps(
    new_disk: Mapping[str, list[str]], new_pv: Mapping[str, list[str]]
) -> dict[str, list[str]]:
    """Combine devices found as bare disks with devices found as loose PVs.

    Groups present in both get the union of their devices, first-seen order
    kept and duplicates dropped.
    """
    merged: dict[str, list[str]] = {}
    for source in (new_disk, new_pv):
        for group, devices in source.items():
            target = merged.setdefault(group, [])
            for device in devices:
                if device not in target:
                    target.append(device)
    return merged


class DeviceCheck:
    """Adds matching empty disks to their volume groups and removes stray ones.

    Set ``config_changed`` to ask a running ``start`` loop for an immediate scan.
    """

    settle_delay = 5.0
    poll_interval = 1.0
    config_notice_delay = 10.0

    def __init__(
        self, device_manager: DeviceManager, node_labels: Mapping[str, str] | None
    ) -> None:
        self.dm = device_manager
        self.node_labels = node_labels
        self.config_changed = threading.Event()

    def _groups(self) -> dict[str, DiskSelectorItem]:
        return self.dm.get_node_disk_select_group(self.node_labels)

    @staticmethod
    def _pv_map(vgs: list[VgGroup]) -> dict[str, list[str]]:
        return {vg.vg_name: [pv.pv_name for pv in vg.pvs] for vg in vgs if vg.pvs}

    def add_and_remove_device(self) -> None:
        """Run one reconciliation pass; failures are logged, not raised."""
        disk_class = self._groups()
        volumes = self.dm.volume_manager
        try:
            change_before = volumes.get_current_vg_struct()
        except _SCAN_ERRORS as exc:
            log.error("get current vg struct failed: %s", exc)
            return
        try:
            new_disk = self.discover_disk(disk_class)
        except _SCAN_ERRORS as exc:
            log.error("find new device failed: %s", exc)
            return
        try:
            new_pv = self.discover_pv(disk_class)
        except _SCAN_ERRORS as exc:
            log.error("find new pv failed: %s", exc)
            return

        candidates = merge_device_maps(new_disk, new_pv)
        current = self._pv_map(change_before)
        for vg, pvs in candidates.items():
            log.info("vg:%s, pvs:%s", vg, pvs)
            for pv in pvs:
                if pv in current.get(vg, ()):
                    continue
                try:
                    volumes.add_new_disk_to_vg(pv, vg)
                except Exception as exc:  # one failed disk must not stop the pass
                    log.error("add new disk failed vg: %s, disk: %s, error: %s", vg, pv, exc)

        if self.settle_delay:
            time.sleep(self.settle_delay)

        # A PV on its own cannot be told to belong to us, so only PVs inside
        # managed groups are ever removed.
        try:
            groups = volumes.get_current_vg_struct()
        except _SCAN_ERRORS as exc:
            log.error("get current vg struct failed: %s", exc)
            return
        for vg in groups:
            item = disk_class.get(vg.vg_name)
            if item is None:
                continue
            try:
                selector = item.selector()
            except re.error as exc:
                log.warning("disk regex %s error %s", "|".join(item.re), exc)
                return
            for pv in vg.pvs:
                if "unknown" in pv.pv_name:
                    try:
                        volumes.lvm.remove_unknown_device(pv.vg_name)
                    except CommandError as exc:
                        log.debug("remove missing devices of %s: %s", pv.vg_name, exc)
                    continue
                if selector.search(pv.pv_name):
                    continue
                log.info("try to remove pv %s from vg %s", pv.pv_name, vg.vg_name)
                try:
                    volumes.remove_disk_in_vg(pv.pv_name, vg.vg_name)
                except Exception as exc:  # keep going with the other PVs
                    log.error("remove pv %s error %s", pv.pv_name, exc)
                    continue
                log.info("succeeded in removing pv %s from vg %s", pv.pv_name, vg.vg_name)

        try:
            change_after = volumes.get_current_vg_struct()
        except _SCAN_ERRORS as exc:
            log.error("get current vg struct failed: %s", exc)
            return
        log.debug("new vgs %s", change_after)
        if change_before != change_after:
            self.dm.notice_update_capacity(Trigger.LVM_CHECK, None)

    def discover_disk(self, disk_class: Mapping[str, DiskSelectorItem]) -> dict[str, list[str]]:
        """Find empty, supported block devices matching each LVM disk group.

        A device is claimed by the first group that matches it.
        """
        block_class: dict[str, list[str]] = {}
        local_disks = self.dm.partition.list_devices_detail("")
        if not local_disks:
            log.info("cannot find new device")
            return block_class

        parents = {disk.parent_name for disk in local_disks}
        matched: set[str] = set()
        for item in disk_class.values():
            if item.is_raw:
                continue
            try:
                selector = item.selector()
            except re.error as exc:
                log.warning("disk regex %s error %s", "|".join(item.re), exc)
                continue
            for disk in local_disks:
                if disk.name in parents or "cache" in disk.name:
                    continue
                if any(kind in disk.type for kind in _UNSUPPORTED_TYPES):
                    log.info("mismatched disk:%s, disktype:%s", disk.name, disk.type)
                    continue
                if not selector.search(disk.name):
                    log.info("mismatched disk:%s, regex:%s", disk.name, selector.pattern)
                    continue
                try:
                    used = self.dm.partition.get_disk_used(disk.name)
                except OSError as exc:
                    log.warning("get disk %s used failed %s", disk.name, exc)
                    continue
                if used > 0:
                    log.warning("block device don't empty %s", disk.name)
                    continue
                log.info("eligible %s device %s", item.name, disk.name)
                devices = block_class.get(item.name, [])
                if disk.name in devices or disk.name in matched:
                    continue
                block_class.setdefault(item.name, []).append(disk.name)
                matched.add(disk.name)
        return block_class

    def discover_pv(self, disk_class: Mapping[str, DiskSelectorItem]) -> dict[str, list[str]]:
        """Find physical volumes not bound to any group that match a disk group.

        These arise when a PV was created but the group step failed. PVs
        already in a group are resized to pick up grown disks. Raises re.error
        for an invalid group expression.
        """
        found: dict[str, list[str]] = {}
        volumes = self.dm.volume_manager
        pv_list = volumes.get_current_pv_struct()
        for item in disk_class.values():
            if item.is_raw:
                continue
            try:
                selector = item.selector()
            except re.error as exc:
                log.warning("disk regex %s error %s", "|".join(item.re), exc)
                raise
            for pv in pv_list:
                if pv.vg_name == item.name:
                    try:
                        volumes.lvm.pv_resize(pv.pv_name)
                    except CommandError:
                        log.error("resize %s error", pv.pv_name)
                if pv.vg_name:
                    continue
                if not selector.search(pv.pv_name):
                    log.info("mismatched pv:%s, regex:%s", pv.pv_name, selector.pattern)
                    continue
                try:
                    disks = self.dm.partition.list_devices_detail_without_filter(pv.pv_name)
                except CommandError as exc:
                    log.error("get device failed %s", exc)
                    continue
                if len(disks) != 1:
                    log.error("get disk count not equal 1")
                    continue
                name = disks[0].name
                log.info("eligible %s pv %s", item.name, name)
                devices = found.setdefault(item.name, [])
                if name not in devices:
                    devices.append(name)
        return found

    def _notice_config_modify(self) -> None:
        self.dm.notice_update_capacity(Trigger.CONFIG_MODIFY, None)

    def start(self, stop_event: threading.Event, interval_source: Callable[[], int]) -> None:
        """Scan now, then on every interval and configuration change until stopped.

        ``interval_source`` gives the configured scan interval in seconds; 0
        means skip scanning and look again after the default interval.
        """
        log.info("Starting device scan...")
        self.dm.volume_manager.refresh_lvm_cache()
        self.add_and_remove_device()

        interval = interval_source() or DEFAULT_SCAN_INTERVAL
        period = interval
        next_tick = time.monotonic() + period
        while not stop_event.is_set():
            if self.config_changed.is_set():
                self.config_changed.clear()
                log.info("config modify trigger disk scan...")
                self.add_and_remove_device()
                timer = threading.Timer(self.config_notice_delay, self._notice_config_modify)
                timer.daemon = True
                timer.start()
                continue
            now = time.monotonic()
            if now >= next_tick:
                configured = interval_source()
                if configured == 0:
                    period = DEFAULT_SCAN_INTERVAL
                    next_tick = now + period
                    log.info("skip disk discovery...")
                    continue
                if configured != interval:
                    interval = configured
                    period = interval
                next_tick = now + period
                log.info("clock %d second device scan...", configured)
                self.add_and_remove_device()
                self.dm.notice_update_capacity(Trigger.DUMMY, None)
                continue
            stop_event.wait(min(self.poll_interval, next_tick - now))
        log.info("stop device scan...")

    def need_leader_election(self) -> bool:
        return False