import json

import pytest

from carina.scheduler_config import (
    SCHEDULER_BINPACK,
    SCHEDULER_SPREADOUT,
    SchedulerConfig,
    load_config,
)
from carina.types import DiskSelectorItem


def _config(strategy="binpack"):
    return SchedulerConfig(
        disk_selectors=[
            DiskSelectorItem(name="carina-vg-ssd", re=["loop2+"], policy="LVM"),
            DiskSelectorItem(name="carina-raw-ssd", re=["loop4+"], policy="RAW"),
            DiskSelectorItem(name="MyGroup", re=["sdb"], policy="LVM"),
        ],
        scheduler_strategy=strategy,
    )


def _write(tmp_path, data):
    path = tmp_path / "config.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def test_load_config_reads_selectors(tmp_path):
    path = _write(
        tmp_path,
        {
            "diskSelector": [
                {"name": "carina-vg-ssd", "re": ["loop2+"], "policy": "LVM", "nodeLabel": "zone"},
                {"name": "carina-raw-ssd", "re": "loop4+,loop5+", "policy": "RAW"},
            ],
            "diskScanInterval": 300,
            "schedulerStrategy": "spreadout",
        },
    )
    config = load_config(str(path))
    assert [item.name for item in config.disk_selectors] == ["carina-vg-ssd", "carina-raw-ssd"]
    assert config.disk_selectors[0].node_label == "zone"
    assert config.disk_selectors[1].re == ["loop4+", "loop5+"]
    assert config.disk_scan_interval == 300
    assert config.strategy() == SCHEDULER_SPREADOUT


def test_load_config_from_directory(tmp_path):
    _write(tmp_path, {"diskselector": [{"name": "g", "re": ["x"], "policy": "raw"}]})
    config = load_config(str(tmp_path))
    assert config.check_raw_device_group("g")


def test_load_config_missing_file(tmp_path):
    with pytest.raises(OSError):
        load_config(str(tmp_path / "absent.json"))


def test_load_config_invalid_json(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(str(path))


def test_load_config_rejects_bad_selector(tmp_path):
    path = _write(tmp_path, {"diskSelector": "oops"})
    with pytest.raises(ValueError):
        load_config(str(path))


@pytest.mark.parametrize(
    "value, expected",
    [
        ("binpack", SCHEDULER_BINPACK),
        ("SpreadOut", SCHEDULER_SPREADOUT),
        ("", SCHEDULER_BINPACK),
        ("random", SCHEDULER_BINPACK),
    ],
)
def test_strategy(value, expected):
    assert _config(value).strategy() == expected


def test_get_device_group_configured_name_kept():
    assert _config().get_device_group("MyGroup") == "MyGroup"


def test_get_device_group_legacy_names():
    config = _config()
    assert config.get_device_group("SSD") == "carina-vg-ssd"
    assert config.get_device_group("hdd") == "carina-vg-hdd"


def test_get_device_group_unknown_lowercased():
    assert _config().get_device_group("Other") == "other"


def test_get_device_group_raw_group_not_returned_verbatim():
    config = SchedulerConfig(
        disk_selectors=[DiskSelectorItem(name="RawGroup", re=["x"], policy="raw")]
    )
    assert config.get_device_group("RawGroup") == "rawgroup"


def test_check_raw_device_group():
    config = _config()
    assert config.check_raw_device_group("carina-raw-ssd")
    assert config.check_raw_device_group("CARINA-RAW-SSD")
    assert not config.check_raw_device_group("carina-vg-ssd")
    assert not config.check_raw_device_group("ssd")
    assert not config.check_raw_device_group("missing")