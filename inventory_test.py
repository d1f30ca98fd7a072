"""Unit tests for inventory.py."""
# pyright: basic

from __future__ import annotations

import pathlib
import tempfile
from collections.abc import Iterator

import pytest

import inventory
from engine import DiskRecord, DiskType, InventorySourceMissing

DISKS_INI = """\
["parity"]
idx="0"
name="parity"
device="sdb"
id="WDC_WD80EFAX-68KNBN0_VAGAAAAA"
type="Parity"
temp="38"
spundown="0"
["disk1"]
idx="1"
name="disk1"
device="sdc"
id="WDC_WD80EFAX-68KNBN0_VAGBBBBB"
type="Data"
temp="*"
spundown="1"
["disk2"]
idx="2"
name="disk2"
device=""
id=""
type="Data"
temp="*"
spundown="0"
["cache"]
idx="30"
name="cache"
device="nvme0n1"
id="Samsung_SSD_970_EVO_Plus_1TB_S4EWNX0N"
type="Cache"
temp="47"
spundown="0"
["flash"]
idx="54"
name="flash"
device="sda"
id="Ultra_Fit"
type="Flash"
temp="*"
spundown="0"
"""

DEVS_INI = """\
["sdh"]
name="sdh"
device="sdh"
id="ST4000VN008-2DR166_ZDHCCCCC"
temp="33"
spundown="0"
"""

VAR_INI = """\
version="6.12.10"
NAME="Tower"
mdResync="0"
mdState="STARTED"
"""


@pytest.fixture
def tmpdir() -> Iterator[pathlib.Path]:
    with tempfile.TemporaryDirectory() as d:
        yield pathlib.Path(d)


def _write(path: pathlib.Path, text: str) -> pathlib.Path:
    _ = path.write_text(text)
    return path


class TestParseIni:
    def test_sections_and_quotes(self) -> None:
        result = inventory.parse_ini(DISKS_INI)
        assert list(result) == ["parity", "disk1", "disk2", "cache", "flash"]
        assert result["parity"]["id"] == "WDC_WD80EFAX-68KNBN0_VAGAAAAA"
        assert result["disk2"]["id"] == ""

    def test_global_keys(self) -> None:
        result = inventory.parse_ini(VAR_INI)
        assert result["global"]["mdresync"] == "0"
        assert result["global"]["name"] == "Tower"

    def test_no_global_section_when_empty(self) -> None:
        assert "global" not in inventory.parse_ini(DEVS_INI)

    def test_unquoted_values(self) -> None:
        result = inventory.parse_ini("[disk1]\nname=disk1\ntemp=40\n")
        assert result == {"disk1": {"name": "disk1", "temp": "40"}}


class TestParseTemp:
    @pytest.mark.parametrize(
        "value,expected",
        [("38", 38), (" 41 ", 41), ("0", 0), ("*", None), ("", None), ("na", None),
         ("-3", None), ("40.5", None), (None, None)],
    )
    def test_values(self, value: str | None, expected: int | None) -> None:
        assert inventory.parse_temp(value) == expected


class TestDiskRecord:
    def test_full_record(self) -> None:
        r = inventory.disk_record(
            "disk1",
            {"name": "disk1", "id": "X", "type": "Data", "temp": "40", "spundown": "0"},
        )
        assert r == DiskRecord(
            id="X", name="disk1", type=DiskType.DATA, spun_down=False, temperature=40
        )

    def test_name_defaults_to_section(self) -> None:
        r = inventory.disk_record("sdh", {"id": "X", "type": "Data"})
        assert r is not None
        assert r.name == "sdh"

    def test_missing_spundown_means_spun_up(self) -> None:
        r = inventory.disk_record("disk1", {"id": "X", "type": "Data", "temp": "40"})
        assert r is not None
        assert not r.spun_down

    def test_missing_temp_is_unreadable(self) -> None:
        r = inventory.disk_record("disk1", {"id": "X", "type": "Data"})
        assert r is not None
        assert r.temperature is None

    def test_unknown_type_skipped(self) -> None:
        assert inventory.disk_record("disk1", {"id": "X", "type": "Tape"}) is None

    def test_missing_type_skipped(self) -> None:
        assert inventory.disk_record("disk1", {"id": "X"}) is None

    def test_type_override(self) -> None:
        r = inventory.disk_record("sdh", {"id": "X", "type": "Data"}, DiskType.UNASSIGNED)
        assert r is not None
        assert r.type is DiskType.UNASSIGNED


class TestLoadInventory:
    def test_merges_unassigned(self, tmpdir: pathlib.Path) -> None:
        snap = inventory.load_inventory(
            _write(tmpdir / "disks.ini", DISKS_INI),
            _write(tmpdir / "devs.ini", DEVS_INI),
            _write(tmpdir / "var.ini", VAR_INI),
        )
        by_name = {d.name: d for d in snap.disks}
        assert set(by_name) == {"parity", "disk1", "disk2", "cache", "flash", "sdh"}
        assert by_name["sdh"].type is DiskType.UNASSIGNED
        assert by_name["sdh"].temperature == 33
        assert by_name["disk1"].spun_down
        assert by_name["disk1"].temperature is None
        assert by_name["cache"].type is DiskType.CACHE
        assert by_name["disk2"].id == ""
        assert snap.resync == 0

    def test_devs_optional(self, tmpdir: pathlib.Path) -> None:
        snap = inventory.load_inventory(
            _write(tmpdir / "disks.ini", DISKS_INI),
            tmpdir / "missing.ini",
            _write(tmpdir / "var.ini", VAR_INI),
        )
        assert len(snap.disks) == 5

    def test_devs_none(self, tmpdir: pathlib.Path) -> None:
        snap = inventory.load_inventory(
            _write(tmpdir / "disks.ini", DISKS_INI),
            None,
            _write(tmpdir / "var.ini", VAR_INI),
        )
        assert all(d.type is not DiskType.UNASSIGNED for d in snap.disks)

    def test_missing_disks_ini(self, tmpdir: pathlib.Path) -> None:
        with pytest.raises(InventorySourceMissing, match="does not exist"):
            _ = inventory.load_inventory(
                tmpdir / "disks.ini", None, _write(tmpdir / "var.ini", VAR_INI)
            )

    def test_missing_var_ini(self, tmpdir: pathlib.Path) -> None:
        with pytest.raises(InventorySourceMissing, match="var.ini"):
            _ = inventory.load_inventory(
                _write(tmpdir / "disks.ini", DISKS_INI), None, tmpdir / "var.ini"
            )

    def test_unparseable_disks_ini(self, tmpdir: pathlib.Path) -> None:
        with pytest.raises(InventorySourceMissing, match="Failed to read"):
            _ = inventory.load_inventory(
                _write(tmpdir / "disks.ini", '["disk1"]\nthis line has no delimiter\n'),
                None,
                _write(tmpdir / "var.ini", VAR_INI),
            )

    def test_resync_in_progress(self, tmpdir: pathlib.Path) -> None:
        snap = inventory.load_inventory(
            _write(tmpdir / "disks.ini", DISKS_INI),
            None,
            _write(tmpdir / "var.ini", 'mdResync="15625000"\n'),
        )
        assert snap.resync == 15625000

    def test_resync_absent(self, tmpdir: pathlib.Path) -> None:
        snap = inventory.load_inventory(
            _write(tmpdir / "disks.ini", DISKS_INI),
            None,
            _write(tmpdir / "var.ini", 'mdState="STOPPED"\n'),
        )
        assert snap.resync is None
