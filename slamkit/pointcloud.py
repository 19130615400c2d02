"""Point clouds from RGB-D and stereo images, with outlier and voxel filters."""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from pathlib import Path

import numpy as np
from scipy.spatial import cKDTree

from slamkit.geometry import Quaternion
from slamkit.lie import SE3

MAX_DISPARITY = 96.0
POSE_FILE = "pose.txt"

_POSE_FIELDS = 7


@dataclass(frozen=True)
class _Preset:
    data_dir: str
    depth_ext: str
    fx: float
    fy: float
    cx: float
    cy: float
    depth_scale: float


PRESETS = {
    "joinmap": _Preset(".", "pgm", 518.0, 519.0, 325.5, 253.5, 1000.0),
    "dense": _Preset("./data", "png", 481.2, -480.0, 319.5, 239.5, 5000.0),
}


def read_poses(path, count):
    """The first ``count`` poses of a file of ``tx ty tz qx qy qz qw`` records."""
    if count < 0:
        raise ValueError("the number of poses must not be negative")
    values = Path(path).read_text(encoding="utf-8").split()
    needed = _POSE_FIELDS * count
    if len(values) < needed:
        raise ValueError(f"pose file holds {len(values)} values, expected {needed}")
    data = np.array(values[:needed], dtype=float).reshape(count, _POSE_FIELDS)
    return [
        SE3.from_quaternion(Quaternion(row[6], row[3], row[4], row[5]), row[:3])
        for row in data
    ]


def depth_to_points(color, depth, pose: SE3, fx, fy, cx, cy, depth_scale) -> np.ndarray:
    """World points of every pixel with a measured depth.

    ``color`` is an RGB (or grey) image of the same size as ``depth``; pixels
    of depth zero carry no measurement. Returns an (N, 6) array of
    ``x, y, z, r, g, b`` in row-major pixel order.
    """
    depth_arr = np.asarray(depth)
    color_arr = np.asarray(color)
    if depth_arr.ndim != 2:
        raise ValueError(f"expected a single-channel depth image, got shape {depth_arr.shape}")
    if color_arr.shape[:2] != depth_arr.shape:
        raise ValueError("color and depth images must have the same size")
    if color_arr.ndim == 2:
        color_arr = np.repeat(color_arr[..., None], 3, axis=2)
    elif color_arr.ndim != 3 or color_arr.shape[2] < 3:
        raise ValueError(f"expected an RGB image, got shape {color_arr.shape}")

    v, u = np.nonzero(depth_arr)
    z = depth_arr[v, u].astype(float) / depth_scale
    x = (u - cx) * z / fx
    y = (v - cy) * z / fy
    world = pose @ np.column_stack([x, y, z])
    colors = color_arr[v, u, :3].astype(float)
    return np.hstack([world.reshape(-1, 3), colors.reshape(-1, 3)])


def disparity_to_points(left, disparity, fx, fy, cx, cy, baseline) -> np.ndarray:
    """Camera points from a disparity map of a rectified stereo pair.

    Pixels whose disparity is not in (0, MAX_DISPARITY) are skipped. Returns
    an (N, 4) array of ``x, y, z, intensity`` with intensity in [0, 1].
    """
    left_arr = np.asarray(left)
    disp = np.asarray(disparity, dtype=float)
    if left_arr.ndim != 2 or disp.shape != left_arr.shape:
        raise ValueError("left image and disparity must be single-channel and of the same size")
    mask = (disp > 0.0) & (disp < MAX_DISPARITY)
    v, u = np.nonzero(mask)
    depth = fx * baseline / disp[v, u]
    x = (u - cx) / fx * depth
    y = (v - cy) / fy * depth
    intensity = left_arr[v, u].astype(float) / 255.0
    return np.column_stack([x, y, depth, intensity])


def _points(points) -> np.ndarray:
    pts = np.asarray(points, dtype=float)
    if pts.ndim != 2 or pts.shape[1] < 3:
        raise ValueError(f"expected an (N, >=3) array of points, got shape {pts.shape}")
    return pts


def statistical_outlier_removal(points, mean_k, stddev_mul) -> np.ndarray:
    """Drop points whose mean distance to their ``mean_k`` neighbours is unusual.

    A point is kept when that distance is at most the mean over all points
    plus ``stddev_mul`` standard deviations. Only the first three columns
    are used as coordinates; the rest are carried along.
    """
    pts = _points(points)
    if mean_k < 1:
        raise ValueError("mean_k must be at least 1")
    if len(pts) < 2:
        return pts.copy()
    k = min(mean_k + 1, len(pts))
    distances, _ = cKDTree(pts[:, :3]).query(pts[:, :3], k=k)
    mean_distances = distances[:, 1:].mean(axis=1)
    threshold = mean_distances.mean() + stddev_mul * mean_distances.std(ddof=1)
    return pts[mean_distances <= threshold]


def voxel_filter(points, leaf_size) -> np.ndarray:
    """Replace the points in each voxel by their centroid (all columns averaged)."""
    pts = _points(points)
    leaf = np.broadcast_to(np.asarray(leaf_size, dtype=float), (3,))
    if np.any(leaf <= 0):
        raise ValueError("leaf size must be positive")
    if len(pts) == 0:
        return pts.copy()
    keys = np.floor(pts[:, :3] / leaf).astype(np.int64)
    _, inverse, counts = np.unique(keys, axis=0, return_inverse=True, return_counts=True)
    inverse = inverse.reshape(-1)
    sums = np.zeros((len(counts), pts.shape[1]))
    np.add.at(sums, inverse, pts)
    return sums / counts[:, None]


def _write_pcd(path, points: np.ndarray) -> None:
    rgb = np.clip(np.rint(points[:, 3:6]), 0, 255).astype(np.uint32)
    packed = (rgb[:, 0] << 16) | (rgb[:, 1] << 8) | rgb[:, 2]
    n = len(points)
    header = [
        "# .PCD v0.7 - Point Cloud Data file format",
        "VERSION 0.7",
        "FIELDS x y z rgb",
        "SIZE 4 4 4 4",
        "TYPE F F F U",
        "COUNT 1 1 1 1",
        f"WIDTH {n}",
        "HEIGHT 1",
        "VIEWPOINT 0 0 0 1 0 0 0",
        f"POINTS {n}",
        "DATA ascii",
    ]
    with Path(path).open("w", encoding="utf-8") as fout:
        fout.write("\n".join(header) + "\n")
        for (x, y, z), c in zip(points[:, :3], packed):
            fout.write(f"{x:.6g} {y:.6g} {z:.6g} {int(c)}\n")


def main(argv=None) -> int:
    from PIL import Image

    parser = argparse.ArgumentParser(description="Join RGB-D frames into one point cloud.")
    parser.add_argument("--preset", choices=sorted(PRESETS), default="joinmap")
    parser.add_argument("--data-dir", default=None)
    parser.add_argument("--frames", type=int, default=5)
    parser.add_argument("--filter", action="store_true", help="apply outlier and voxel filters")
    parser.add_argument("--output", default="map.pcd")
    args = parser.parse_args(argv)

    preset = PRESETS[args.preset]
    root = Path(args.data_dir if args.data_dir is not None else preset.data_dir)
    try:
        poses = read_poses(root / POSE_FILE, args.frames)
    except FileNotFoundError:
        print(f"cannot find pose file in {root}")
        return 1
    except ValueError as exc:
        print(f"pose file is malformed: {exc}")
        return 1

    clouds = []
    for i, pose in enumerate(poses, start=1):
        print(f"converting image: {i}")
        try:
            with Image.open(root / "color" / f"{i}.png") as img:
                color = np.array(img.convert("RGB"))
            with Image.open(root / "depth" / f"{i}.{preset.depth_ext}") as img:
                depth = np.array(img)
        except OSError as exc:
            print(f"cannot read images of frame {i}: {exc}")
            return 1
        cloud = depth_to_points(
            color, depth, pose, preset.fx, preset.fy, preset.cx, preset.cy, preset.depth_scale
        )
        if args.filter:
            cloud = statistical_outlier_removal(cloud, 50, 1.0)
        clouds.append(cloud)

    cloud = np.vstack(clouds) if clouds else np.zeros((0, 6))
    print(f"point cloud has {len(cloud)} points.")
    if args.filter:
        cloud = voxel_filter(cloud, 0.03)
        print(f"after filtering, point cloud has {len(cloud)} points.")
    _write_pcd(args.output, cloud)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())