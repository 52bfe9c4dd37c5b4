# carina

Local storage management for a Linux node: finding empty block devices,
gathering them into LVM volume groups, creating, resizing and deleting
logical volumes, building bcache devices, and deciding whether a node has
room for a pod's volume claims.

Operations on the system run the usual tools (`pvs`, `vgs`, `lvs`,
`vgcreate`, `lvcreate`, `lsblk`, `make-bcache`, `udevadm`, `partprobe`) as
subprocesses, so they need root on a Linux host with those tools installed.
The parsers and the scheduling helpers are plain Python and run anywhere.

## Installation

```
pip install .
```

The package has no dependencies outside the standard library.

## Modules

- `carina.types` — records: `LocalDisk`, `LvInfo`, `PVInfo`, `VgGroup`,
  `BcacheDeviceInfo` and `DiskSelectorItem`, each with `to_dict()` and
  `from_dict()`. `DiskSelectorItem.selector()` compiles a group's
  expressions into one pattern; `is_raw` tells raw-disk groups apart. The
  module also holds the storage-class keys such as `DEVICE_DISK_KEY` and
  `DEVICE_CAPACITY_KEY_PREFIX`.
- `carina.executor` — `CommandExecutor` with `execute`,
  `execute_with_output`, `execute_with_combined_output` and
  `execute_resident`; every failure raises `CommandError`, which carries the
  command, its exit status and its output.
- `carina.lvm` — `Lvm2` covers physical volumes (`pv_create`, `pv_remove`,
  `pv_resize`, `pvs`, `pv_display`, `pv_scan`, ...), volume groups
  (`vg_create`, `vg_extend`, `vg_reduce`, `vgs`, `vg_display`, ...),
  logical volumes and thin pools (`lv_create_from_vg`, `lv_resize`, `lvs`,
  `create_thin_pool`, ...) and snapshots. `parse_pvs`, `parse_vgs` and
  `parse_lvs` read the `--nameprefixes` reports; `parse_lvs` keeps only
  volumes whose names start with one of the given prefixes. Lookups of
  missing objects raise `NotFoundError`.
- `carina.bcache` — `BcacheManager` creates, registers, inspects and removes
  bcache devices and sets their cache mode; `parse_bcache` reads
  `bcache-super-show -f` and `parse_device` reads `lsblk` pairs.
- `carina.partition` — `PartitionManager` lists block devices through
  `lsblk`, looks a device up by its `MAJ:MIN` number, reports used blocks,
  and runs `udevadm settle` and `partprobe`. `filter_disks` keeps devices
  that are writable, unformatted, unmounted and at least 10 GiB
  (`MIN_DISK_SIZE`).
- `carina.volume` — `LocalVolume` puts rules on top of `Lvm2` and
  `BcacheManager`: space kept in reserve in every volume group, adding a
  disk to a group (creating the group when needed), removing a disk
  (removing the group when it was the last one), and bcache set-up and
  tear-down. Mutating calls fail with `MutexBusyError` while another is
  running, and with `ResourceExhaustedError` when space is short.
- `carina.manager` — `DeviceManager` holds a node's volume and partition
  managers, picks the disk groups that apply to the node from its labels,
  and sends `VolumeEvent`s (with a `Trigger`) to every queue registered with
  `register_notice_queue`.
- `carina.devicecheck` — `DeviceCheck` reconciles disks and volume groups:
  empty devices matching a group are added, PVs in a managed group that no
  longer match are removed, and a capacity event is sent when the groups
  changed. `start(stop_event, interval_source)` repeats this on an interval
  and whenever `config_changed` is set. `merge_device_maps` joins two
  group-to-devices maps.
- `carina.readiness` — `ReadinessCheck` runs a check at an interval; it
  becomes ready at the first check that does not raise and reports the
  latest error.
- `carina.scheduler_config` — `load_config` reads a JSON configuration
  (disk selectors, scan interval, strategy) into a `SchedulerConfig`, which
  resolves disk group names and tells raw groups apart.
- `carina.localstorage` — `filter_node` and `score_node` decide whether a
  node can hold a pod's claims and how well it fits under the `binpack` or
  `spreadout` strategy; `build_allocatable_map` turns a node's allocatable
  resources into free GiB per group; `minimum_value_minus` takes one claim
  from the smallest raw disk that can hold it.

## Examples

Listing volume groups:

```python
from carina.executor import CommandExecutor
from carina.lvm import Lvm2

lvm = Lvm2(CommandExecutor(), ("volume-", "thin-"))
for vg in lvm.vgs():
    print(vg.vg_name, vg.vg_size, vg.vg_free)
```

Placing claims needs no system access:

```python
from carina.localstorage import PvcRequest, minimum_value_minus

free = [3, 4, 5, 2, 5, 23, 1]
index = minimum_value_minus(free, PvcRequest(exclusive=False, request=3))
# free is now sorted, with 3 GiB taken from the first entry that held it
```

## What it does not do

- There is no command-line program and no long-running service; callers
  build the objects and run `DeviceCheck.start` or `ReadinessCheck.start`
  in their own threads.
- It does not talk to a cluster. Node labels, allocatable resources and
  the claims of a pod are passed in by the caller; nothing here reads or
  writes cluster objects or publishes node capacity.
- It does not create, resize or delete disk partitions; `PartitionManager`
  only lists devices and runs the settle and probe tools.
- The configuration is read once by `load_config`; changes to the file are
  not watched.

## Tests

```
pip install .[test]
pytest
```