import queue
import threading

import pytest

from carina.manager import DeviceManager, Trigger, VolumeEvent
from carina.types import DiskSelectorItem


def make_manager(items):
    return DeviceManager("node-a", None, None, lambda: list(items))


@pytest.mark.parametrize(
    "trigger, wire",
    [
        (Trigger.DUMMY, "dummy"),
        (Trigger.CONFIG_MODIFY, "configModify"),
        (Trigger.LVM_CHECK, "lvmCheck"),
        (Trigger.CLEANUP_ORPHAN, "cleanupOrphan"),
    ],
)
def test_trigger_wire_values(trigger, wire):
    manager = make_manager([])
    notices = queue.Queue()
    manager.register_notice_queue(notices)
    manager.notice_update_capacity(trigger)
    event = notices.get_nowait()
    assert event.trigger.value == wire
    assert event.done is None


def test_disk_select_group_by_label():
    everywhere = DiskSelectorItem(name="hdd", re=["sd"], policy="lvm")
    labelled = DiskSelectorItem(name="ssd", re=["nvme"], policy="lvm", node_label="fast")
    other = DiskSelectorItem(name="raw", re=["vd"], policy="raw", node_label="rawnode")
    manager = make_manager([everywhere, labelled, other])
    groups = manager.get_node_disk_select_group({"fast": "yes"})
    assert groups == {"hdd": everywhere, "ssd": labelled}


def test_disk_select_group_without_node():
    manager = make_manager([DiskSelectorItem(name="hdd")])
    assert manager.get_node_disk_select_group(None) == {}


def test_notice_reaches_every_queue():
    manager = make_manager([])
    first, second = queue.Queue(), queue.Queue()
    manager.register_notice_queue(first)
    manager.register_notice_queue(second)
    done = threading.Event()
    manager.notice_update_capacity(Trigger.LVM_CHECK, done)
    for q in (first, second):
        event = q.get_nowait()
        assert isinstance(event, VolumeEvent)
        assert event.trigger is Trigger.LVM_CHECK
        assert event.done is done


def test_notice_full_queue_is_skipped():
    manager = make_manager([])
    manager.notice_timeout = 0.01
    full = queue.Queue(maxsize=1)
    full.put("existing")
    manager.register_notice_queue(full)
    manager.notice_update_capacity(Trigger.DUMMY)
    assert full.qsize() == 1
    assert full.get_nowait() == "existing"