"""Disk inventory from the host's disk-status store.

The store is a set of ini-like files written by the web UI:

    ["disk1"]
    name="disk1"
    id="WDC_WD80EFAX-68KNBN0_VAGXXXXX"
    type="Data"
    temp="34"
    spundown="0"

disks.ini lists array, cache and flash devices; devs.ini lists devices not
assigned to the array; var.ini carries global state such as mdResync.
"""

from __future__ import annotations

import configparser
import dataclasses
import logging
import pathlib
import re

from engine import DiskRecord, DiskType, InventorySourceMissing

log = logging.getLogger("fan-control")

DISKS_INI = pathlib.Path("/var/local/emhttp/disks.ini")
DEVS_INI = pathlib.Path("/usr/local/emhttp/state/devs.ini")
VAR_INI = pathlib.Path("/var/local/emhttp/var.ini")

_GLOBAL_SECTION = "global"


@dataclasses.dataclass(frozen=True, slots=True, kw_only=True)
class InventorySnapshot:
    """Disk records and system status read once at the start of a run."""

    disks: tuple[DiskRecord, ...]
    # Parity check / resync position; read for diagnostics only.
    resync: int | None = None


def parse_ini(text: str) -> dict[str, dict[str, str]]:
    """Parse sectioned key="value" text into {section: {key: value}}.

    Quotes around section names and values are stripped. Keys outside any
    section land in the "global" section.
    """
    p = configparser.ConfigParser(
        delimiters=("=",),
        interpolation=None,
        strict=False,
        default_section="\x00",
    )
    p.read_string("[%s]\n%s" % (_GLOBAL_SECTION, text))
    result: dict[str, dict[str, str]] = {}
    for section in p.sections():
        fields = {k: _unquote(v) for k, v in p.items(section)}
        name = _unquote(section)
        if name == _GLOBAL_SECTION and not fields:
            continue
        result[name] = fields
    return result


def _unquote(s: str) -> str:
    s = s.strip()
    if len(s) >= 2 and s[0] == s[-1] == '"':
        return s[1:-1]
    return s


def _read_ini(path: pathlib.Path) -> dict[str, dict[str, str]]:
    """Read and parse an ini file. Raises InventorySourceMissing on failure."""
    if not path.is_file():
        raise InventorySourceMissing("%s does not exist" % path)
    try:
        return parse_ini(path.read_text())
    except (OSError, UnicodeDecodeError, configparser.Error) as e:
        raise InventorySourceMissing("Failed to read %s: %s" % (path, e)) from e


def parse_temp(value: str | None) -> int | None:
    """Whole-degree reading, or None for "*", "", "na" and the like."""
    if value is None:
        return None
    value = value.strip()
    if not re.fullmatch(r"[0-9]+", value):
        return None
    return int(value)


def disk_record(
    section: str,
    fields: dict[str, str],
    disk_type: DiskType | None = None,
) -> DiskRecord | None:
    """Build a DiskRecord from one section. Returns None for malformed records."""
    if disk_type is None:
        type_str = fields.get("type", "")
        try:
            disk_type = DiskType.parse(type_str)
        except ValueError:
            log.warning("Skipping %s: unknown disk type %r", section, type_str)
            return None
    return DiskRecord(
        id=fields.get("id", "").strip(),
        name=fields.get("name") or section,
        type=disk_type,
        spun_down=fields.get("spundown", "0").strip() == "1",
        temperature=parse_temp(fields.get("temp")),
    )


def read_disks(
    path: pathlib.Path, disk_type: DiskType | None = None
) -> list[DiskRecord]:
    """Disk records from one inventory file; disk_type overrides the type key."""
    disks: list[DiskRecord] = []
    for section, fields in _read_ini(path).items():
        if section == _GLOBAL_SECTION:
            continue
        record = disk_record(section, fields, disk_type)
        if record is not None:
            disks.append(record)
    return disks


def read_resync(path: pathlib.Path) -> int | None:
    """mdResync from the system status record."""
    fields = _read_ini(path).get(_GLOBAL_SECTION, {})
    value = fields.get("mdresync")
    if value is None or not value.strip().isdigit():
        return None
    return int(value)


def load_inventory(
    disks_ini: pathlib.Path = DISKS_INI,
    devs_ini: pathlib.Path | None = DEVS_INI,
    var_ini: pathlib.Path = VAR_INI,
) -> InventorySnapshot:
    """Read the primary inventory, merge unassigned devices, read status.

    disks.ini and var.ini are required. devs.ini is optional and all of its
    devices are typed Unassigned.
    """
    disks = read_disks(disks_ini)
    resync = read_resync(var_ini)
    if devs_ini is not None and devs_ini.is_file():
        disks.extend(read_disks(devs_ini, DiskType.UNASSIGNED))
    for d in disks:
        log.debug(
            "Disk %s: type=%s id=%s spundown=%d temp=%s",
            d.name,
            d.type.value,
            d.id or "-",
            d.spun_down,
            "-" if d.temperature is None else d.temperature,
        )
    log.debug("mdResync=%s (not used for fan decisions)", resync)
    return InventorySnapshot(disks=tuple(disks), resync=resync)
