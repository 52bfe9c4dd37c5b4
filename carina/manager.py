"""The node's device manager: disk groups and capacity change notices."""

from __future__ import annotations

import enum
import logging
import queue
import threading
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .types import DiskSelectorItem

log = logging.getLogger(__name__)


class Trigger(str, enum.Enum):
    """What caused a capacity update."""

    DUMMY = "dummy"
    CONFIG_MODIFY = "configModify"
    LVM_CHECK = "lvmCheck"
    CLEANUP_ORPHAN = "cleanupOrphan"
    LOGIC_VOLUME_CONTROLLER = "logicVolumeController"


@dataclass
class VolumeEvent:
    """A request to recompute the node's storage capacity."""

    trigger: Trigger
    trigger_at: datetime = field(default_factory=datetime.now)
    done: threading.Event | None = None


class DeviceManager:
    """Holds the volume and partition managers and fans out capacity notices."""

    notice_timeout = 10.0

    def __init__(
        self,
        node_name: str,
        volume_manager: Any,
        partition: Any,
        selector_source: Callable[[], Iterable[DiskSelectorItem]],
    ) -> None:
        self.node_name = node_name
        self.volume_manager = volume_manager
        self.partition = partition
        self.selector_source = selector_source
        self._notice_queues: list[queue.Queue] = []

    def get_node_disk_select_group(
        self, node_labels: Mapping[str, str] | None
    ) -> dict[str, DiskSelectorItem]:
        """Return the configured disk groups that apply to this node.

        A group applies when it names no node label or when the node carries
        the label. ``node_labels`` of None means the node could not be read.
        """
        if node_labels is None:
            log.error("get node %s error: labels unavailable", self.node_name)
            return {}
        groups: dict[str, DiskSelectorItem] = {}
        for item in self.selector_source():
            if item.node_label == "" or item.node_label in node_labels:
                groups[item.name] = item
        return groups

    def notice_update_capacity(
        self, trigger: Trigger, done: threading.Event | None = None
    ) -> None:
        """Send a capacity event to every registered queue, giving up on full ones."""
        for notice in self._notice_queues:
            event = VolumeEvent(trigger=trigger, done=done)
            try:
                notice.put(event, timeout=self.notice_timeout)
            except queue.Full:
                log.debug(
                    "Notice channel is full, send update channel timeout(%ss).",
                    self.notice_timeout,
                )

    def register_notice_queue(self, queue: queue.Queue) -> None:
        self._notice_queues.append(queue)