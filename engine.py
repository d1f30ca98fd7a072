"""
Temperature-to-PWM decision engine for array, cache and CPU cooling.

Each source (array drives, cache drives, CPU) maps its temperature onto the
same piecewise-linear curve with its own thresholds. The fan PWM is the
maximum over all sources. Everything here is pure: the caller supplies disk
records and a CPU reading, and gets back a FinalDecision.

Fail-safe: any fault detected while deciding resolves to max_pwm.
"""

from __future__ import annotations

import dataclasses
import enum
from collections.abc import Iterable


class FanControlError(Exception):
    """Base class for fatal fan control errors."""


class ConfigurationError(FanControlError, ValueError):
    """Invalid thresholds or PWM bounds."""


class InventorySourceMissing(FanControlError):
    """A required disk-status source is absent or unreadable."""


class CPUSensorFailure(FanControlError):
    """CPU temperature could not be read."""


class DiskType(enum.Enum):
    """Disk assignment as reported by the disk-status store."""

    PARITY = "Parity"
    DATA = "Data"
    CACHE = "Cache"
    FLASH = "Flash"
    UNASSIGNED = "Unassigned"

    @classmethod
    def parse(cls, s: str) -> DiskType:
        """Case-insensitive lookup by value or member name."""
        key = s.strip().lower()
        for t in cls:
            if key in (t.value.lower(), t.name.lower()):
                return t
        raise ValueError("Unknown disk type: %s" % s)


DRIVES = "drives"
CACHE = "cache"
CPU = "cpu"


@dataclasses.dataclass(frozen=True, slots=True, kw_only=True)
class DiskRecord:
    """One disk entry. An empty id means an empty bay."""

    id: str
    name: str
    type: DiskType
    spun_down: bool = False
    temperature: int | None = None


@dataclasses.dataclass(frozen=True, slots=True)
class Thresholds:
    """Fan off at or below low (exclusive), fan at max above high."""

    low: int
    high: int

    @classmethod
    def parse(cls, s: str) -> Thresholds:
        """Parse "LOW:HIGH"."""
        pieces = s.split(":")
        if len(pieces) != 2:
            raise ConfigurationError(
                "Invalid thresholds: %s (expected LOW:HIGH)" % s
            )
        try:
            return cls(int(pieces[0]), int(pieces[1]))
        except ValueError:
            raise ConfigurationError(
                "Thresholds must be whole degrees, got %s" % s
            ) from None

    def __str__(self) -> str:
        return "%d:%d" % (self.low, self.high)


@dataclasses.dataclass(frozen=True, slots=True, kw_only=True)
class Policy:
    """Monitoring policy; immutable for a run and validated on construction."""

    drive: Thresholds = Thresholds(41, 52)
    cpu: Thresholds = Thresholds(55, 75)
    cache: Thresholds = Thresholds(56, 67)
    min_pwm: int = 25
    max_pwm: int = 255
    off_pwm: int = 0
    pwm_limit: int = 255
    include_types: frozenset[DiskType] = frozenset(
        {DiskType.PARITY, DiskType.DATA}
    )
    exclude_names: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        for domain, th in ((DRIVES, self.drive), (CPU, self.cpu), (CACHE, self.cache)):
            if th.high <= th.low:
                raise ConfigurationError(
                    "%s high threshold (%d) must be above low threshold (%d)"
                    % (domain, th.high, th.low)
                )
        if self.min_pwm < 0:
            raise ConfigurationError("min_pwm must be >= 0, got %d" % self.min_pwm)
        if self.min_pwm >= self.max_pwm:
            raise ConfigurationError(
                "min_pwm (%d) must be less than max_pwm (%d)"
                % (self.min_pwm, self.max_pwm)
            )
        if self.max_pwm > self.pwm_limit:
            raise ConfigurationError(
                "max_pwm (%d) exceeds PWM limit (%d)" % (self.max_pwm, self.pwm_limit)
            )
        if not 0 <= self.off_pwm <= self.min_pwm:
            raise ConfigurationError(
                "off_pwm must be between 0 and min_pwm (%d), got %d"
                % (self.min_pwm, self.off_pwm)
            )
        for t in self.include_types:
            if not isinstance(t, DiskType):
                raise ConfigurationError("Unknown disk type: %r" % (t,))

    def percent(self, pwm: int) -> int:
        """PWM as a whole percentage of max_pwm."""
        return pwm * 100 // self.max_pwm


@dataclasses.dataclass(frozen=True, slots=True, kw_only=True)
class TemperatureGroupSummary:
    """Temperature state of one disk group."""

    disk_count: int = 0
    active_count: int = 0
    readable_count: int = 0
    max_temp: int = 0
    max_temp_disk: str | None = None
    unreadable_disks: tuple[str, ...] = ()

    @property
    def fully_readable(self) -> bool:
        return self.disk_count == 0 or self.readable_count >= self.active_count


@dataclasses.dataclass(frozen=True, slots=True)
class EvaluationResult:
    pwm_value: int
    message: str | None = None


@dataclasses.dataclass(frozen=True, slots=True, kw_only=True)
class FinalDecision:
    """Terminal output of the engine."""

    pwm_value: int
    winning_source: str
    message: str
    drives: EvaluationResult
    cache: EvaluationResult
    cpu: EvaluationResult
    array_summary: TemperatureGroupSummary
    cache_summary: TemperatureGroupSummary


def curve(
    temp: int,
    low: int,
    high: int,
    min_pwm: int,
    max_pwm: int,
    off_pwm: int,
) -> int:
    """Piecewise-linear temperature to PWM.

    Below low the fan is off, above high it is at max. In between the range
    is split into (high - low) integer steps of (max_pwm - min_pwm) // (high - low),
    so when the division truncates the value at temp == high is below max_pwm.
    """
    if temp < low:
        return off_pwm
    if temp <= high:
        step = (max_pwm - min_pwm) // (high - low)
        return min_pwm + (temp - low) * step
    return max_pwm


def resolve(
    disks: Iterable[DiskRecord], policy: Policy
) -> tuple[tuple[DiskRecord, ...], tuple[DiskRecord, ...]]:
    """Split the inventory into (array_group, cache_group).

    Cache disks never count toward the array group, whatever the policy says.
    Cache monitoring does not depend on the cache inclusion flag.
    """
    array: list[DiskRecord] = []
    cache: list[DiskRecord] = []
    for disk in disks:
        if not disk.id or disk.name in policy.exclude_names:
            continue
        if disk.type is DiskType.CACHE:
            cache.append(disk)
        elif disk.type in policy.include_types:
            array.append(disk)
    return tuple(array), tuple(cache)


def aggregate(group: Iterable[DiskRecord]) -> TemperatureGroupSummary:
    """Hottest readable temperature among spun-up disks of a group."""
    disk_count = 0
    active = 0
    readable = 0
    max_temp = 0
    max_disk: str | None = None
    unreadable: list[str] = []
    for disk in group:
        disk_count += 1
        if disk.spun_down:
            continue
        active += 1
        t = disk.temperature
        if t is None or t < 0:
            unreadable.append(disk.name)
            continue
        readable += 1
        # Strict comparison: ties keep the first disk seen
        if t > max_temp:
            max_temp = t
            max_disk = disk.name
    return TemperatureGroupSummary(
        disk_count=disk_count,
        active_count=active,
        readable_count=readable,
        max_temp=max_temp,
        max_temp_disk=max_disk,
        unreadable_disks=tuple(unreadable),
    )


def _evaluate(
    label: str, temp: int, th: Thresholds, policy: Policy
) -> EvaluationResult:
    """Apply the curve and describe which branch was taken."""
    if temp < th.low:
        return EvaluationResult(
            policy.off_pwm,
            "%s temperature of %d°C is below the low threshold (%d°C)"
            % (label, temp, th.low),
        )
    elif th.low <= temp <= th.high:
        return EvaluationResult(
            curve(temp, th.low, th.high, policy.min_pwm, policy.max_pwm, policy.off_pwm),
            "%s temperature of %d°C is between the low (%d°C) and high (%d°C) thresholds"
            % (label, temp, th.low, th.high),
        )
    elif temp > th.high:
        return EvaluationResult(
            policy.max_pwm,
            "%s temperature of %d°C is above the high threshold (%d°C)"
            % (label, temp, th.high),
        )
    else:
        return EvaluationResult(
            policy.max_pwm,
            "An unexpected condition occurred (%s temperature %r)" % (label, temp),
        )


def evaluate_drives(
    summary: TemperatureGroupSummary, policy: Policy
) -> EvaluationResult:
    """PWM for the array group. Unreadable disks force max_pwm."""
    if not summary.fully_readable:
        return EvaluationResult(
            policy.max_pwm,
            "Unable to read all disks (%s)" % ", ".join(summary.unreadable_disks),
        )
    if summary.active_count == 0:
        return EvaluationResult(policy.off_pwm, "All disks are in standby mode")
    return _evaluate("Drive", summary.max_temp, policy.drive, policy)


def evaluate_cache(
    summary: TemperatureGroupSummary, policy: Policy
) -> EvaluationResult:
    """PWM for the cache group. No active cache disks is normal, not a fault."""
    if summary.active_count == 0:
        return EvaluationResult(policy.off_pwm)
    return _evaluate("Cache", summary.max_temp, policy.cache, policy)


def evaluate_cpu(cpu_temp: int | None, policy: Policy) -> EvaluationResult:
    """PWM for the CPU. A missing reading is fatal, never assumed."""
    if cpu_temp is None or isinstance(cpu_temp, bool) or not isinstance(cpu_temp, int):
        raise CPUSensorFailure("CPU temperature unavailable: %r" % (cpu_temp,))
    return _evaluate("CPU", cpu_temp, policy.cpu, policy)


def arbitrate(
    drives: EvaluationResult, cache: EvaluationResult, cpu: EvaluationResult
) -> tuple[int, str]:
    """Pick the highest PWM. Returns (pwm, source).

    CPU wins only when strictly above both others, then cache when strictly
    above both others; every tie falls back to drives.
    """
    if cpu.pwm_value > drives.pwm_value and cpu.pwm_value > cache.pwm_value:
        return cpu.pwm_value, CPU
    if cache.pwm_value > drives.pwm_value and cache.pwm_value > cpu.pwm_value:
        return cache.pwm_value, CACHE
    return drives.pwm_value, DRIVES


_SOURCE_LABELS = {
    DRIVES: "drives",
    CACHE: "cache drive",
    CPU: "CPU",
}


def decide(
    disks: Iterable[DiskRecord], cpu_temp: int | None, policy: Policy
) -> FinalDecision:
    """Run the whole pipeline on a snapshot of sensor state."""
    array_group, cache_group = resolve(disks, policy)
    array_summary = aggregate(array_group)
    cache_summary = aggregate(cache_group)

    drives = evaluate_drives(array_summary, policy)
    cpu = evaluate_cpu(cpu_temp, policy)
    cache = evaluate_cache(cache_summary, policy)
    pwm, source = arbitrate(drives, cache, cpu)

    lines = [r.message for r in (drives, cpu, cache) if r.message]
    lines.append("Using %s fan PWM" % _SOURCE_LABELS[source])
    return FinalDecision(
        pwm_value=pwm,
        winning_source=source,
        message="\n".join(lines),
        drives=drives,
        cache=cache,
        cpu=cpu,
        array_summary=array_summary,
        cache_summary=cache_summary,
    )


def report(decision: FinalDecision, policy: Policy) -> list[str]:
    """Human-readable status lines for a decision."""
    lines: list[str] = []
    a = decision.array_summary
    if a.active_count > 0:
        lines.append(
            "Hottest disk is %s at %d°C" % (a.max_temp_disk or "none", a.max_temp)
        )
    c = decision.cache_summary
    if c.active_count > 0:
        lines.append(
            "Hottest cache disk is %s at %d°C" % (c.max_temp_disk or "none", c.max_temp)
        )
    lines.extend(decision.message.splitlines())
    lines[-1] += ", setting fans to %d PWM (%d%%)" % (
        decision.pwm_value,
        policy.percent(decision.pwm_value),
    )
    return lines
