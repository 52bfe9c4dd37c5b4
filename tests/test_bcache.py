import pytest

from carina.bcache import BcacheManager, parse_bcache, parse_device
from carina.executor import CommandError
from carina.types import BcacheDeviceInfo

SUPER_SHOW = (
    "sb.magic\t\tok\n"
    "sb.first_sector\t\t8 [match]\n"
    "sb.csum\t\t\t0000000000000001 [match]\n"
    "sb.version\t\t1 [backing device]\n"
    "\n"
    "dev.label\t\t(empty)\n"
    "dev.uuid\t\t00000000-0000-0000-0000-000000000001\n"
    "dev.sectors_per_block\t1\n"
    "dev.sectors_per_bucket\t1024\n"
    "dev.data.first_sector\t16\n"
    "dev.data.cache_mode\t0 [writethrough]\n"
    "dev.data.cache_state\t1 [clean]\n"
    "\n"
    "cset.uuid\t\t00000000-0000-0000-0000-000000000002"
)

LSBLK = 'KNAME="dm-0" MAJ:MIN="252:0"\nKNAME="bcache0" MAJ:MIN="251:0"'


class FakeExecutor:
    def __init__(self, outputs=None, fail_when=lambda argv: False):
        self.calls = []
        self.outputs = outputs or {}
        self.fail_when = fail_when

    def _record(self, command, args):
        argv = (command, *args)
        self.calls.append(argv)
        if self.fail_when(argv):
            raise CommandError(argv, 1, "boom")

    def execute(self, command, *args):
        self._record(command, args)

    def execute_with_output(self, command, *args):
        self._record(command, args)
        return self.outputs.get(command, "")


def test_parse_bcache_sample():
    info = parse_bcache(SUPER_SHOW)
    assert info.magic == "ok"
    assert info.first_sector == "8 [match]"
    assert info.csum == "0000000000000001 [match]"
    assert info.version == "1 [backing device]"
    assert info.label == "(empty)"
    assert info.uuid == "00000000-0000-0000-0000-000000000001"
    assert info.sectors_per_block == "1"
    assert info.sectors_per_bucket == "1024"
    assert info.data_first_sector == "16"
    assert info.data_cache_mode == "0 [writethrough]"
    assert info.data_cache_state == "1 [clean]"
    assert info.cset_uuid == "00000000-0000-0000-0000-000000000002"


def test_parse_bcache_ignores_unknown_and_untabbed_lines():
    assert parse_bcache("nothing here\n\nfoo.bar\tbaz") == BcacheDeviceInfo()


def test_parse_device_last_entry_wins():
    info = parse_device(LSBLK)
    assert info.name == "bcache0"
    assert info.kernel_major == 251
    assert info.kernel_minor == 0
    assert info.bcache_path == "/dev/bcache0"


def test_parse_device_empty():
    info = parse_device("")
    assert info == BcacheDeviceInfo()
    assert info.bcache_path == ""


def test_parse_device_bad_numbers_become_zero():
    info = parse_device('KNAME="dm-0" MAJ:MIN="x:y"')
    assert (info.kernel_major, info.kernel_minor) == (0, 0)
    assert info.bcache_path == "/dev/dm-0"


def test_create_bcache_with_block_and_bucket():
    ex = FakeExecutor()
    BcacheManager(ex).create_bcache("/dev/b", "/dev/c", "4k", "2M")
    assert ex.calls == [
        ("wipefs", "-af", "/dev/b"),
        ("wipefs", "-af", "/dev/c"),
        ("make-bcache", "--block", "4k", "--bucket", "2M", "-B", "/dev/b", "-C", "/dev/c", "--wipe-bcache"),
    ]


def test_create_bcache_without_sizes_and_wipe_failures_ignored():
    ex = FakeExecutor(fail_when=lambda argv: argv[0] == "wipefs")
    BcacheManager(ex).create_bcache("/dev/b", "/dev/c", "4k", "")
    assert ex.calls[-1] == ("make-bcache", "-B", "/dev/b", "-C", "/dev/c", "--wipe-bcache")


def test_create_bcache_failure_raises():
    ex = FakeExecutor(fail_when=lambda argv: argv[0] == "make-bcache")
    with pytest.raises(CommandError):
        BcacheManager(ex).create_bcache("/dev/b", "/dev/c", "", "")


def test_remove_bcache_sequence():
    ex = FakeExecutor(fail_when=lambda argv: "unregister" in argv[-1] or argv[0] == "umount")
    info = BcacheDeviceInfo(name="bcache0", cset_uuid="cset-a")
    BcacheManager(ex).remove_bcache(info)
    assert ex.calls == [
        ("/bin/sh", "-c", "echo cset-a > /sys/block/bcache0/bcache/detach"),
        ("/bin/sh", "-c", "echo 1 > /sys/fs/bcache/cset-a/unregister"),
        ("umount", "/dev/bcache0"),
        ("/bin/sh", "-c", "echo 1 > /sys/block/bcache0/bcache/stop"),
    ]


def test_remove_bcache_detach_failure_stops():
    ex = FakeExecutor(fail_when=lambda argv: argv[-1].endswith("detach"))
    with pytest.raises(CommandError):
        BcacheManager(ex).remove_bcache(BcacheDeviceInfo(name="bcache0", cset_uuid="cset-a"))
    assert len(ex.calls) == 1


def test_remove_bcache_stop_failure_raises():
    ex = FakeExecutor(fail_when=lambda argv: argv[-1].endswith("stop"))
    with pytest.raises(CommandError):
        BcacheManager(ex).remove_bcache(BcacheDeviceInfo(name="bcache0", cset_uuid="cset-a"))


def test_get_device_bcache():
    ex = FakeExecutor(outputs={"lsblk": LSBLK})
    info = BcacheManager(ex).get_device_bcache("/dev/hdd/pvc-test-v1")
    assert ex.calls == [("lsblk", "--pairs", "--noheadings", "--output", "KNAME,MAJ:MIN", "/dev/hdd/pvc-test-v1")]
    assert info.name == "bcache0"


def test_register_device_stops_on_failure():
    ex = FakeExecutor(fail_when=lambda argv: argv[1] == "/dev/b")
    with pytest.raises(CommandError):
        BcacheManager(ex).register_device("/dev/a", "/dev/b", "/dev/c")
    assert ex.calls == [("bcache-register", "/dev/a"), ("bcache-register", "/dev/b")]


def test_show_device():
    ex = FakeExecutor(outputs={"bcache-super-show": SUPER_SHOW})
    info = BcacheManager(ex).show_device("/dev/b")
    assert ex.calls == [("bcache-super-show", "-f", "/dev/b")]
    assert info == parse_bcache(SUPER_SHOW)


def test_set_cache_mode():
    ex = FakeExecutor()
    BcacheManager(ex).set_cache_mode("bcache0", "writeback")
    assert ex.calls == [("/bin/sh", "-c", "echo writeback > /sys/block/bcache0/bcache/cache_mode")]