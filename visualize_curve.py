#!/usr/bin/env python3
"""
Print and plot the drive temperature -> PWM curve.

Covers LOW-5 .. HIGH+5 of the drive thresholds, so the off and max regions
show on both sides of the linear ramp.

Usage:
    ./visualize_curve.py                              # defaults, fan_speed_graph.png
    ./visualize_curve.py --drive-temps 38:50 --min-pwm 40
    ./visualize_curve.py --output-file curve.png --padding 8
"""

from __future__ import annotations

import argparse
import csv
import pathlib
import sys
from typing import TextIO

import numpy as np

from engine import Policy, Thresholds, curve

DEFAULT_PNG = pathlib.Path("fan_speed_graph.png")
PADDING_CELSIUS = 5


def curve_points(policy: Policy, padding: int = PADDING_CELSIUS) -> np.ndarray:
    """(n, 2) int array of [temperature, pwm] over the padded drive range."""
    th = policy.drive
    temps = np.arange(th.low - padding, th.high + padding + 1)
    pwms = np.fromiter(
        (
            curve(int(t), th.low, th.high, policy.min_pwm, policy.max_pwm, policy.off_pwm)
            for t in temps
        ),
        dtype=int,
        count=len(temps),
    )
    return np.column_stack((temps, pwms))


def write_table(points: np.ndarray, stream: TextIO) -> None:
    """Write temperature,pwm rows as CSV."""
    writer = csv.writer(stream, lineterminator="\n")
    writer.writerow(["temperature", "pwm"])
    for temp, pwm in points:
        writer.writerow([int(temp), int(pwm)])


def plot_curve(points: np.ndarray, path: pathlib.Path, policy: Policy) -> None:
    """Render the curve to an image file."""
    import matplotlib

    matplotlib.use("Agg")
    import matplotlib.pyplot as plt

    temps = points[:, 0]
    pwms = points[:, 1]

    fig, ax = plt.subplots(figsize=(12, 8))
    ax.plot(temps, pwms, marker="o", markersize=4, linewidth=1.2, label="Fan Speed")
    ax.axvline(policy.drive.low, color="gray", linestyle=":", linewidth=0.8)
    ax.axvline(policy.drive.high, color="gray", linestyle=":", linewidth=0.8)

    ax.set_xlabel("Temperature (°C)")
    ax.set_ylabel("Fan PWM")
    ax.set_title("Fan PWM vs Temperature")
    ax.set_xlim(int(temps[0]), int(temps[-1]))
    ax.set_ylim(int(pwms.min()), policy.pwm_limit + 5)
    ax.set_xticks(range(int(temps[0]), int(temps[-1]) + 1))
    ax.set_yticks(range(int(pwms.min()), policy.pwm_limit + 6, 10))
    ax.grid(True, alpha=0.3)
    ax.legend(loc="upper left")

    fig.tight_layout()
    path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(path, dpi=100)
    plt.close(fig)


def generate(
    policy: Policy,
    path: pathlib.Path = DEFAULT_PNG,
    padding: int = PADDING_CELSIUS,
    stream: TextIO | None = None,
) -> np.ndarray:
    """Print the curve table and plot it. Returns the points."""
    points = curve_points(policy, padding)
    write_table(points, stream if stream is not None else sys.stdout)
    plot_curve(points, path, policy)
    print(f"Graph image generated in {path}", file=sys.stderr)
    return points


def main() -> None:
    dp = Policy()
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--drive-temps",
        type=str,
        default=str(dp.drive),
        help="Drive LOW:HIGH (C).",
    )
    parser.add_argument("--min-pwm", type=int, default=dp.min_pwm)
    parser.add_argument("--max-pwm", type=int, default=dp.max_pwm)
    parser.add_argument("--off-pwm", type=int, default=dp.off_pwm)
    parser.add_argument(
        "--padding",
        type=int,
        default=PADDING_CELSIUS,
        help="Degrees shown beyond each threshold.",
    )
    parser.add_argument(
        "--output-file",
        type=pathlib.Path,
        default=DEFAULT_PNG,
        help=f"Output png path (default: {DEFAULT_PNG}).",
    )
    args = parser.parse_args()

    try:
        policy = Policy(
            drive=Thresholds.parse(args.drive_temps),
            min_pwm=args.min_pwm,
            max_pwm=args.max_pwm,
            off_pwm=args.off_pwm,
        )
    except ValueError as e:
        parser.error(str(e))

    if args.padding < 0:
        parser.error("--padding must be >= 0")

    generate(policy, args.output_file, args.padding)


if __name__ == "__main__":
    main()
