"""Multi-view triangulation and small converters."""

from __future__ import annotations

from typing import Sequence

import numpy as np

from slamkit.lie import SE3

_QUALITY_RATIO = 1e-2


def triangulation(poses: Sequence[SE3], points) -> np.ndarray | None:
    """Linear SVD triangulation of one point seen from several poses.

    ``poses`` map world to camera coordinates and ``points`` are the matching
    observations on the normalised image plane. Returns the world point, or
    None when the solution is poorly conditioned.
    """
    poses = list(poses)
    observations = [np.asarray(p, dtype=float).reshape(-1) for p in points]
    if len(poses) != len(observations):
        raise ValueError("poses and points must have the same length")
    if len(poses) < 2:
        raise ValueError("triangulation needs at least two views")

    rows = []
    for pose, pt in zip(poses, observations):
        m = pose.matrix3x4()
        rows.append(pt[0] * m[2] - m[0])
        rows.append(pt[1] * m[2] - m[1])
    a = np.vstack(rows)
    _, singular, vt = np.linalg.svd(a, full_matrices=False)
    v = vt[3]
    with np.errstate(divide="ignore", invalid="ignore"):
        point = v[:3] / v[3]
        ratio = singular[3] / singular[2]
    if ratio < _QUALITY_RATIO:
        return point
    return None


def to_vec2(point) -> np.ndarray:
    """2-vector from an object with ``x`` and ``y`` or from a pair."""
    if hasattr(point, "x") and hasattr(point, "y"):
        return np.array([float(point.x), float(point.y)])
    arr = np.asarray(point, dtype=float).reshape(-1)
    if arr.shape != (2,):
        raise ValueError(f"expected a 2-D point, got shape {arr.shape}")
    return arr