"""Reading pose trajectories and measuring the error between two of them."""

from __future__ import annotations

import argparse
import math
from pathlib import Path
from typing import Iterable, Sequence

from slamkit.geometry import Quaternion
from slamkit.lie import SE3

DEFAULT_GROUNDTRUTH = "./example/groundtruth.txt"
DEFAULT_ESTIMATED = "./example/estimated.txt"

_FIELDS = 8


def parse_trajectory(lines: Iterable[str]) -> list[SE3]:
    """Poses from lines of ``time tx ty tz qx qy qz qw``.

    Blank lines and lines starting with ``#`` are skipped.
    """
    poses = []
    for number, line in enumerate(lines, start=1):
        text = line.strip()
        if not text or text.startswith("#"):
            continue
        tokens = text.split()
        if len(tokens) != _FIELDS:
            raise ValueError(
                f"line {number}: expected {_FIELDS} values, got {len(tokens)}"
            )
        try:
            _, tx, ty, tz, qx, qy, qz, qw = (float(t) for t in tokens)
        except ValueError as exc:
            raise ValueError(f"line {number}: {exc}") from exc
        poses.append(SE3.from_quaternion(Quaternion(qw, qx, qy, qz), (tx, ty, tz)))
    return poses


def read_trajectory(path) -> list[SE3]:
    """Poses from a trajectory file."""
    with Path(path).open(encoding="utf-8") as fin:
        return parse_trajectory(fin)


def rmse(groundtruth: Sequence[SE3], estimated: Sequence[SE3]) -> float:
    """Root mean square of the norms of log(gt^-1 * est) over paired poses."""
    if not groundtruth or not estimated:
        raise ValueError("trajectories must not be empty")
    if len(groundtruth) != len(estimated):
        raise ValueError("trajectories must have the same length")
    total = 0.0
    for gt, est in zip(groundtruth, estimated):
        err = (gt.inverse() @ est).log()
        total += float(err @ err)
    return math.sqrt(total / len(estimated))


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Count the poses of one trajectory or compare two."
    )
    parser.add_argument("paths", nargs="*", help="groundtruth [estimated]")
    args = parser.parse_args(argv)
    paths = args.paths or [DEFAULT_GROUNDTRUTH, DEFAULT_ESTIMATED]
    if len(paths) > 2:
        parser.error("at most two trajectory files may be given")

    trajectories = []
    for path in paths:
        try:
            trajectories.append(read_trajectory(path))
        except FileNotFoundError:
            print(f"trajectory {path} not found.")
            return 1
        except ValueError as exc:
            print(f"trajectory {path} is malformed: {exc}")
            return 1

    if len(trajectories) == 1:
        print(f"read total {len(trajectories[0])} pose entries")
        return 0
    try:
        value = rmse(*trajectories)
    except ValueError as exc:
        print(f"cannot compare trajectories: {exc}")
        return 1
    print(f"RMSE = {value}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())