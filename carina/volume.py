"""Volume-level operations built on LVM2 and bcache."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from .bcache import BcacheManager
from .executor import CommandError
from .lvm import Lvm2, NotFoundError
from .types import BcacheDeviceInfo, LvInfo, PVInfo, VgGroup

log = logging.getLogger(__name__)

DEFAULT_RESERVED_SPACE = 10 << 30


class MutexBusyError(RuntimeError):
    """Another volume operation holds the lock; the caller should retry."""

    def __init__(self) -> None:
        super().__init__("get global mutex failed")


class ResourceExhaustedError(RuntimeError):
    """The volume group lacks the space an operation needs."""


class LocalVolume:
    """Creates, resizes and removes logical volumes and manages disk groups.

    Mutating operations are serialised by a non-blocking lock: a second
    operation started while one is running fails with MutexBusyError.
    """

    def __init__(
        self,
        lvm: Lvm2,
        bcache: BcacheManager,
        volume_prefix: str,
        reserved_space: int = DEFAULT_RESERVED_SPACE,
        edge_space: int = 0,
    ) -> None:
        self.lvm = lvm
        self.bcache = bcache
        self.volume_prefix = volume_prefix
        self.reserved_space = reserved_space
        self.edge_space = edge_space
        self._lock = threading.Lock()

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        if not self._lock.acquire(blocking=False):
            log.info("wait other task release mutex, please retry...")
            raise MutexBusyError()
        try:
            yield
        finally:
            self._lock.release()

    @property
    def _min_free(self) -> int:
        return self.reserved_space - self.edge_space

    def _find_lv(self, lv: str, vg: str) -> LvInfo | None:
        if not lv:
            return None
        try:
            return self.lvm.lv_display(lv, vg)
        except (NotFoundError, CommandError):
            return None

    def create_volume(self, lv_name: str, vg_name: str, size: int, ratio: int = 1) -> None:
        """Create ``lv_name`` (prefixed) of ``size`` bytes unless it already exists."""
        with self._exclusive():
            vg_info = self.lvm.vg_display(vg_name)
            if vg_info.vg_free - size < self._min_free:
                log.warning("%s don't have enough space, reserved 10g", vg_name)
                raise ResourceExhaustedError(f"{vg_name} don't have enough space")
            name = self.volume_prefix + lv_name
            existing = self._find_lv(name, vg_name)
            if existing is not None and existing.vg_name == vg_name:
                log.info("%s/%s volume exists", vg_name, name)
                return
            self.lvm.lv_create_from_vg(name, vg_name, size, [], 0, "")

    def delete_volume(self, lv_name: str, vg_name: str) -> None:
        """Remove a volume, its bcache device and any thin pool behind it."""
        with self._exclusive():
            name = lv_name if lv_name.startswith(self.volume_prefix) else self.volume_prefix + lv_name
            try:
                lv_info = self.lvm.lv_display(name, vg_name)
            except NotFoundError:
                log.warning("volume %s/%s not exist", vg_name, lv_name)
                return
            try:
                self.delete_bcache(f"/dev/{vg_name}/{name}", "")
            except (CommandError, NotFoundError) as exc:
                log.debug("delete bcache of %s/%s: %s", vg_name, name, exc)
            self.lvm.lv_remove(name, vg_name)
            if self._find_lv(lv_info.pool_lv, vg_name) is None:
                return
            self.lvm.delete_thin_pool(lv_info.pool_lv, vg_name)

    def resize_volume(self, lv_name: str, vg_name: str, size: int, ratio: int = 1) -> None:
        """Grow a volume to ``size`` bytes; a volume that cannot be read is left alone."""
        with self._exclusive():
            vg_info = self.lvm.vg_display(vg_name)
            name = self.volume_prefix + lv_name
            try:
                lv_info = self.lvm.lv_display(name, vg_name)
            except (NotFoundError, CommandError) as exc:
                log.error("get volume info failed %s/%s %s", vg_name, name, exc)
                return
            if lv_info.lv_size == size:
                log.info("%s/%s have expend", vg_name, lv_name)
                return
            if vg_info.vg_free - (size - lv_info.lv_size) < self._min_free:
                log.warning("%s don't have enough space, reserved 10g", vg_name)
                raise ResourceExhaustedError(f"{vg_name} don't have enough space")
            thin = self._find_lv(lv_info.pool_lv, vg_name)
            if thin is not None and thin.lv_size < size:
                self.lvm.resize_thin_pool(lv_info.pool_lv, vg_name, size * ratio)
            self.lvm.lv_resize(name, vg_name, size)

    def volume_list(self, lv_name: str = "", vg_name: str = "") -> list[LvInfo]:
        """List volumes; with both names given, only ``vg_name/lv_name``."""
        name = f"{vg_name}/{lv_name}" if lv_name and vg_name else ""
        return self.lvm.lvs(name)

    def volume_info(self, lv_name: str, vg_name: str) -> LvInfo:
        for volume in self.volume_list(lv_name, vg_name):
            if volume.lv_name == lv_name:
                return volume
        raise NotFoundError("not found")

    def get_current_vg_struct(self) -> list[VgGroup]:
        """Return the volume groups, each with the physical volumes it holds."""
        groups: dict[str, VgGroup] = {group.vg_name: group for group in self.lvm.vgs()}
        for pv in self.lvm.pvs():
            if pv.vg_name and pv.vg_name in groups:
                groups[pv.vg_name].pvs.append(pv)
        return list(groups.values())

    def get_current_pv_struct(self) -> list[PVInfo]:
        return self.lvm.pvs()

    def add_new_disk_to_vg(self, disk: str, vg_name: str) -> None:
        """Make ``disk`` a physical volume and add it to ``vg_name``, creating the group."""
        vg_name = vg_name.lower()
        with self._exclusive():
            try:
                pv_info: PVInfo | None = self.lvm.pv_display(disk)
            except NotFoundError:
                pv_info = None
            if pv_info is None:
                self.lvm.pv_create(disk)
            elif pv_info.vg_name:
                log.error("pv %s have bind vg %s", pv_info.pv_name, pv_info.vg_name)
                raise ValueError(f"pv {pv_info.pv_name} have bind vg {pv_info.vg_name}")
            try:
                self.lvm.vg_display(vg_name)
            except NotFoundError:
                self.lvm.vg_create(vg_name, [vg_name], [disk])
            else:
                self.lvm.vg_extend(vg_name, disk)

    def remove_disk_in_vg(self, disk: str, vg_name: str) -> None:
        """Take ``disk`` out of ``vg_name``, removing the group if it was its last disk."""
        with self._exclusive():
            pv_info = self.lvm.pv_display(disk)
            if pv_info.vg_name != vg_name:
                log.error("pv %s have bind vg %s not %s", pv_info.pv_name, pv_info.vg_name, vg_name)
                raise ValueError(
                    f"pv {pv_info.pv_name} have bind vg {pv_info.vg_name} not {vg_name}"
                )
            if not pv_info.vg_name:
                self.lvm.pv_remove(disk)
                return
            vg_info = self.lvm.vg_display(vg_name)
            if vg_info.pv_count == 1:
                if vg_info.lv_count > 0:
                    log.warning(
                        "cannot remove the disk %s because there are still have logic volumes", disk
                    )
                    raise RuntimeError("still have logical volumes")
                self.lvm.vg_remove(vg_name)
                self.lvm.pv_remove(disk)
                return
            if vg_info.vg_free - self.reserved_space + self.edge_space < pv_info.pv_size:
                log.warning("cannot remove the disk %s because there will not enough space", disk)
                raise ResourceExhaustedError(f"removing {disk} leaves {vg_name} without space")
            self.lvm.vg_reduce(vg_name, disk)

    def refresh_lvm_cache(self) -> None:
        """Start lvmpolld and rescan physical volumes and groups, tolerating failures."""
        try:
            self.lvm.start_lvm2()
        except CommandError as exc:
            log.debug("start lvmpolld: %s", exc)
        try:
            self.lvm.pv_scan("")
        except CommandError as exc:
            log.warning("error during pvscan: %s", exc)
        try:
            self.lvm.vg_scan("")
        except CommandError as exc:
            log.warning("error during vgscan: %s", exc)

    def create_bcache(
        self,
        dev: str,
        cache_dev: str,
        block: str = "",
        bucket: str = "",
        cache_policy: str = "",
    ) -> BcacheDeviceInfo:
        """Build a bcache device from ``dev`` and ``cache_dev`` and set its cache mode."""
        self.bcache.create_bcache(dev, cache_dev, block, bucket)
        self.bcache.register_device(dev, cache_dev)
        info = self.bcache.get_device_bcache(dev)
        self.bcache.set_cache_mode(info.name, cache_policy)
        return info

    def delete_bcache(self, dev: str, cache_dev: str = "") -> None:
        """Tear down the bcache device on ``dev``; a device without bcache is skipped."""
        try:
            info = self.bcache_device_info(dev)
        except CommandError as exc:
            if "exit status 2" in str(exc):
                return
            log.error("get device info error %s %s", dev, exc)
            raise
        self.bcache.remove_bcache(info)

    def bcache_device_info(self, dev: str) -> BcacheDeviceInfo:
        """Combine the superblock of ``dev`` with its kernel device details."""
        info = self.bcache.show_device(dev)
        info.device_path = dev
        device = self.bcache.get_device_bcache(dev)
        info.kernel_major = device.kernel_major
        info.kernel_minor = device.kernel_minor
        info.name = device.name
        info.bcache_path = device.bcache_path
        return info