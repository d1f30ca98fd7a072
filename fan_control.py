#!/usr/bin/env python3
"""
Fan control for storage servers driven by array, cache and CPU temperatures.

Each source (array drives, cache drives, CPU) has its own LOW:HIGH range.
Fan PWM = max(curve(source_temp) for all sources), written once per run to
every configured hwmon PWM output. Meant to be run periodically (cron or a
systemd timer); nothing is kept between runs.

Run with --help for configuration options.

Prerequisites:
    # lm-sensors  - CPU temperature via `sensors -j` (or use --cpu-sensor hwmon:...)
    # Fan headers set to PWM mode in the BIOS; pwmconfig helps find them.
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
import pathlib
import sys
from collections.abc import Sequence
from typing import Protocol, cast

import engine
import inventory
import sensors
from engine import DiskType, FanControlError, Policy, Thresholds

logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s: %(message)s",
)
log = logging.getLogger("fan-control")

DEFAULT_FANS = (
    "/sys/class/hwmon/hwmon2/pwm2",
    "/sys/class/hwmon/hwmon2/pwm3",
)
DEFAULT_GRAPH = pathlib.Path("fan_speed_graph.png")

# pwmN_enable: 0 = no control (full speed), 1 = manual, 2+ = chip automatic modes
MANUAL_MODE = "1"


class FanOutputError(FanControlError):
    """At least one fan output could not be written."""


@dataclasses.dataclass(slots=True, kw_only=True)
class Config:
    """Run configuration."""

    policy: Policy = dataclasses.field(default_factory=Policy)
    fans: tuple[str, ...] = DEFAULT_FANS
    disks_ini: pathlib.Path = inventory.DISKS_INI
    devs_ini: pathlib.Path | None = inventory.DEVS_INI
    var_ini: pathlib.Path = inventory.VAR_INI
    cpu_sensor: str = sensors.DEFAULT_CPU_SENSOR
    fail_safe: bool = False
    verbose: bool = False
    generate_graph_data: bool = False
    graph_output: pathlib.Path = DEFAULT_GRAPH

    @classmethod
    def from_args(cls, argv: Sequence[str] | None = None) -> Config:
        """Parse command-line arguments and return Config."""
        dp = Policy()
        p = argparse.ArgumentParser(
            description="Fan control from array, cache and CPU temperatures",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog="""
Threshold format: LOW:HIGH in whole degrees Celsius.
  Below LOW the source asks for --off-pwm, above HIGH for --max-pwm.
  In between PWM rises linearly from --min-pwm in (HIGH - LOW) steps.

  Examples:
    --drive-temps 41:52                 Array drives
    --include parity,data,unassigned    Also watch unassigned devices
    --exclude disk7 --exclude disk8     Ignore disks by name
    --fan /sys/class/hwmon/hwmon2/pwm2  Repeatable
    --cpu-sensor hwmon:coretemp         Read hwmon instead of lm-sensors

  The fans run at the highest PWM asked for by any source.
""",
        )
        _ = p.add_argument(
            "--min-pwm",
            type=int,
            default=dp.min_pwm,
            help="Lowest PWM while a source is in range.",
        )
        _ = p.add_argument(
            "--max-pwm",
            type=int,
            default=dp.max_pwm,
            help="PWM above HIGH or on any fault.",
        )
        _ = p.add_argument(
            "--off-pwm",
            type=int,
            default=dp.off_pwm,
            help="PWM below LOW.",
        )
        _ = p.add_argument(
            "--drive-temps",
            type=str,
            default=str(dp.drive),
            help="Array drive LOW:HIGH (C).",
        )
        _ = p.add_argument(
            "--cpu-temps",
            type=str,
            default=str(dp.cpu),
            help="CPU LOW:HIGH (C).",
        )
        _ = p.add_argument(
            "--cache-temps",
            type=str,
            default=str(dp.cache),
            help="Cache drive LOW:HIGH (C).",
        )
        _ = p.add_argument(
            "--include",
            type=str,
            default=",".join(t.value.lower() for t in DiskType if t in dp.include_types),
            help="Comma-separated disk types counted as array disks.",
        )
        _ = p.add_argument(
            "--exclude",
            action="append",
            metavar="NAME",
            help="Disk name to ignore. Repeatable.",
        )
        _ = p.add_argument(
            "--fan",
            action="append",
            metavar="PATH",
            help="hwmon PWM output to drive. Repeatable.",
        )
        _ = p.add_argument(
            "--disks-ini",
            type=pathlib.Path,
            default=inventory.DISKS_INI,
            help="Disk inventory.",
        )
        _ = p.add_argument(
            "--devs-ini",
            type=pathlib.Path,
            default=inventory.DEVS_INI,
            help="Unassigned devices inventory (optional).",
        )
        _ = p.add_argument(
            "--var-ini",
            type=pathlib.Path,
            default=inventory.VAR_INI,
            help="System status record.",
        )
        _ = p.add_argument(
            "--cpu-sensor",
            type=str,
            default=sensors.DEFAULT_CPU_SENSOR,
            help="lm-sensors:CHIP/FEATURE[/SUB] or hwmon:NAME[/INPUT].",
        )
        _ = p.add_argument(
            "--fail-safe",
            action="store_true",
            help="On a fatal error drive fans to --max-pwm instead of leaving them.",
        )
        _ = p.add_argument(
            "-v",
            "--verbose",
            action="store_true",
            help="Log inventory details.",
        )
        _ = p.add_argument(
            "--generate-graph-data",
            action="store_true",
            help="Print the drive curve and plot it; no sensors are read.",
        )
        _ = p.add_argument(
            "--output-file",
            type=pathlib.Path,
            default=DEFAULT_GRAPH,
            help=f"Graph image path (default: {DEFAULT_GRAPH}).",
        )
        args = p.parse_args(argv)

        try:
            include = frozenset(
                DiskType.parse(x)
                for x in cast(str, args.include).split(",")
                if x.strip()
            )
            policy = Policy(
                drive=Thresholds.parse(cast(str, args.drive_temps)),
                cpu=Thresholds.parse(cast(str, args.cpu_temps)),
                cache=Thresholds.parse(cast(str, args.cache_temps)),
                min_pwm=cast(int, args.min_pwm),
                max_pwm=cast(int, args.max_pwm),
                off_pwm=cast(int, args.off_pwm),
                include_types=include,
                exclude_names=frozenset(cast(list[str], args.exclude or [])),
            )
            _ = sensors.parse_sensor_spec(cast(str, args.cpu_sensor))
        except ValueError as e:
            p.error(str(e))

        fans = tuple(cast(list[str], args.fan or [])) or DEFAULT_FANS
        return cls(
            policy=policy,
            fans=fans,
            disks_ini=cast(pathlib.Path, args.disks_ini),
            devs_ini=cast(pathlib.Path, args.devs_ini),
            var_ini=cast(pathlib.Path, args.var_ini),
            cpu_sensor=cast(str, args.cpu_sensor),
            fail_safe=cast(bool, args.fail_safe),
            verbose=cast(bool, args.verbose),
            generate_graph_data=cast(bool, args.generate_graph_data),
            graph_output=cast(pathlib.Path, args.output_file),
        )


class FanOutputs(Protocol):
    """Fan output interface protocol."""

    def set_pwm(self, pwm: int) -> bool: ...


class HwmonFans:
    """PWM outputs exposed by a hwmon chip (pwmN + pwmN_enable)."""

    paths: tuple[pathlib.Path, ...]

    def __init__(self, paths: Sequence[str | pathlib.Path]) -> None:
        self.paths = tuple(pathlib.Path(x) for x in paths)

    def set_pwm(self, pwm: int) -> bool:
        """Write pwm to every output. Returns False if any write failed."""
        ok = True
        for path in self.paths:
            if not self._ensure_manual_mode(path):
                ok = False
                continue
            try:
                _ = path.write_text("%d\n" % pwm)
            except OSError as e:
                log.error("Failed to set %s to %d: %s", path, pwm, e)
                ok = False
        return ok

    def _ensure_manual_mode(self, path: pathlib.Path) -> bool:
        """Switch the output to manual control unless it already is."""
        enable = path.with_name(path.name + "_enable")
        try:
            if enable.read_text().strip() != MANUAL_MODE:
                log.info("Setting %s to manual mode", enable)
                _ = enable.write_text(MANUAL_MODE + "\n")
        except OSError as e:
            log.error("Failed to set manual mode on %s: %s", enable, e)
            return False
        return True


class FanControl:
    """One pass: read sensors, decide, write fans."""

    config: Config
    sensor: sensors.CpuSensor
    fans: FanOutputs

    def __init__(
        self, config: Config, sensor: sensors.CpuSensor, fans: FanOutputs
    ) -> None:
        self.config = config
        self.sensor = sensor
        self.fans = fans

    def run_once(self) -> engine.FinalDecision:
        """Decide and apply the fan PWM. Raises FanControlError on fatal errors."""
        cfg = self.config
        snapshot = inventory.load_inventory(cfg.disks_ini, cfg.devs_ini, cfg.var_ini)
        cpu_temp = self.sensor.get()
        decision = engine.decide(snapshot.disks, cpu_temp, cfg.policy)

        for line in engine.report(decision, cfg.policy):
            log.info("%s", line)

        if not self.fans.set_pwm(decision.pwm_value):
            raise FanOutputError(
                "Failed to apply %d PWM to all fans" % decision.pwm_value
            )
        return decision

    def fail_safe(self) -> None:
        """Drive every fan to max_pwm."""
        pwm = self.config.policy.max_pwm
        log.warning("Fail-safe: setting fans to %d PWM", pwm)
        if not self.fans.set_pwm(pwm):
            log.error("Fail-safe could not set all fans")


def main(argv: Sequence[str] | None = None) -> int:
    config = Config.from_args(argv)
    if config.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if config.generate_graph_data:
        import visualize_curve

        visualize_curve.generate(config.policy, config.graph_output)
        return 0

    control = FanControl(
        config,
        sensors.sensor_from_spec(config.cpu_sensor),
        HwmonFans(config.fans),
    )
    try:
        _ = control.run_once()
    except FanControlError as e:
        log.error("%s", e)
    except Exception:
        log.exception("Unexpected error")
    else:
        return 0

    if config.fail_safe:
        control.fail_safe()
    return 1


if __name__ == "__main__":
    sys.exit(main())
