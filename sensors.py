"""CPU temperature sensors.

Each sensor implements get() -> int | None (whole degrees Celsius).
"""

from __future__ import annotations

import json
import logging
import math
import pathlib
import subprocess
from typing import Protocol

log = logging.getLogger("fan-control")

HWMON_ROOT = pathlib.Path("/sys/class/hwmon")
DEFAULT_CPU_SENSOR = "lm-sensors:k10temp-pci-00c3/CPU Temp/temp1_input"


class CpuSensor(Protocol):
    """Protocol for CPU temperature sensors."""

    def get(self) -> int | None:
        """Read CPU temperature. Returns None on failure."""
        ...


class LmSensors:
    """CPU temperature from lm-sensors JSON output (sensors -j)."""

    chip: str
    feature: str
    subfeature: str

    def __init__(
        self, chip: str, feature: str, subfeature: str = "temp1_input"
    ) -> None:
        self.chip = chip
        self.feature = feature
        self.subfeature = subfeature

    def get(self) -> int | None:
        """Read and floor chip/feature/subfeature."""
        out = run_cmd(["sensors", "-j"])
        if out is None:
            log.error("Failed to run sensors -j")
            return None
        try:
            data = json.loads(out)
            value = float(data[self.chip][self.feature][self.subfeature])
        except (ValueError, KeyError, TypeError):
            log.error(
                "No reading for %s/%s/%s in sensors output",
                self.chip,
                self.feature,
                self.subfeature,
            )
            return None
        if not math.isfinite(value):
            return None
        return _valid_temp(math.floor(value))


class Hwmon:
    """CPU temperature from a hwmon chip (k10temp, coretemp, ...)."""

    name: str
    temp_input: str

    def __init__(
        self,
        name: str = "k10temp",
        temp_input: str = "temp1_input",
        root: pathlib.Path | None = None,
    ) -> None:
        self.name = name
        self.temp_input = temp_input
        root = root if root is not None else HWMON_ROOT
        self._hwmon_path: pathlib.Path | None = None
        if root.is_dir():
            for hwmon in sorted(root.iterdir()):
                name_file = hwmon / "name"
                if name_file.exists() and name_file.read_text().strip() == name:
                    self._hwmon_path = hwmon
                    break
        if self._hwmon_path is None:
            log.warning("%s hwmon not found", name)

    def get(self) -> int | None:
        """Read tempN_input millidegrees, floored to whole degrees."""
        if self._hwmon_path is None:
            return None
        try:
            millidegrees = int((self._hwmon_path / self.temp_input).read_text().strip())
        except (ValueError, OSError):
            log.error("Failed to read %s/%s", self._hwmon_path, self.temp_input)
            return None
        return _valid_temp(millidegrees // 1000)


def parse_sensor_spec(spec: str) -> tuple[str, tuple[str, ...]]:
    """Parse 'lm-sensors:CHIP/FEATURE[/SUB]' or 'hwmon:NAME[/INPUT]'."""
    if ":" not in spec:
        raise ValueError("Invalid sensor spec (missing ':'): %s" % spec)
    kind, path = spec.split(":", 1)
    kind = kind.strip().lower()
    parts = tuple(p.strip() for p in path.split("/"))
    if not all(parts):
        raise ValueError("Invalid sensor path: %s" % path)
    if kind == "lm-sensors" and len(parts) in (2, 3):
        return kind, parts
    if kind == "hwmon" and len(parts) in (1, 2):
        return kind, parts
    raise ValueError("Invalid sensor spec: %s" % spec)


def sensor_from_spec(spec: str) -> CpuSensor:
    kind, parts = parse_sensor_spec(spec)
    if kind == "lm-sensors":
        return LmSensors(*parts)
    return Hwmon(*parts)


def run_cmd(cmd: list[str], timeout: float = 5.0) -> str | None:
    """Run command with timeout. Returns stdout on success, None on failure."""
    try:
        r = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
        return r.stdout if r.returncode == 0 else None
    except (subprocess.TimeoutExpired, OSError):
        return None


def _valid_temp(value: int) -> int | None:
    """Return value if in valid range (0-120C), else None."""
    if 0 <= value <= 120:
        return value
    return None
