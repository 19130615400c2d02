"""Projection errors and Jacobians for bundle adjustment of a stereo camera.

Poses map world to camera coordinates and are updated by left
multiplication with the exponential of a 6-vector (translation first, then
rotation). Errors are ``measurement - projection`` in pixels.
"""

from __future__ import annotations

import math

import numpy as np

from slamkit.lie import SE3

_Z_EPS = 1e-18


def _vec(value, size: int, name: str) -> np.ndarray:
    arr = np.asarray(value, dtype=float).reshape(-1)
    if arr.shape != (size,):
        raise ValueError(f"{name} must be a {size}-vector, got shape {arr.shape}")
    return arr


def _intrinsics(K) -> np.ndarray:
    k = np.asarray(K, dtype=float)
    if k.shape != (3, 3):
        raise ValueError(f"intrinsic matrix must be 3x3, got shape {k.shape}")
    return k


def pose_oplus(pose: SE3, update) -> SE3:
    """Left-multiplicative update exp(update) * pose."""
    return SE3.exp(_vec(update, 6, "update")) @ pose


def huber_weight(chi2: float, delta: float) -> float:
    """Derivative of the Huber kernel applied to a squared error."""
    if chi2 <= delta * delta:
        return 1.0
    return delta / math.sqrt(chi2)


def huber_rho(chi2: float, delta: float) -> float:
    """Huber kernel applied to a squared error."""
    if chi2 <= delta * delta:
        return chi2
    return 2.0 * delta * math.sqrt(chi2) - delta * delta


def _project(K: np.ndarray, pos_cam: np.ndarray) -> np.ndarray:
    pixel = K @ pos_cam
    return pixel[:2] / pixel[2]


def _pose_jacobian(pos_cam: np.ndarray, K: np.ndarray) -> np.ndarray:
    fx, fy = K[0, 0], K[1, 1]
    x, y, z = pos_cam
    zinv = 1.0 / (z + _Z_EPS)
    zinv2 = zinv * zinv
    return np.array(
        [
            [-fx * zinv, 0.0, fx * x * zinv2, fx * x * y * zinv2,
             -fx - fx * x * x * zinv2, fx * y * zinv],
            [0.0, -fy * zinv, fy * y * zinv2, fy + fy * y * y * zinv2,
             -fy * x * y * zinv2, -fy * x * zinv],
        ]
    )


class EdgeProjectionPoseOnly:
    """Reprojection error of a fixed world point, depending on the pose alone."""

    def __init__(self, pos, K, measurement=(0.0, 0.0)):
        self.pos = _vec(pos, 3, "pos").copy()
        self.K = _intrinsics(K).copy()
        self.measurement = _vec(measurement, 2, "measurement").copy()
        self.information = np.eye(2)

    def error(self, pose: SE3) -> np.ndarray:
        return self.measurement - _project(self.K, pose @ self.pos)

    def jacobian(self, pose: SE3) -> np.ndarray:
        """2x6 Jacobian of the error with respect to a left pose increment."""
        return _pose_jacobian(np.asarray(pose @ self.pos, dtype=float), self.K)

    def chi2(self, pose: SE3) -> float:
        e = self.error(pose)
        return float(e @ self.information @ e)


class EdgeProjection:
    """Reprojection error of a landmark into a camera mounted on the rig."""

    def __init__(self, K, cam_ext: SE3, measurement=(0.0, 0.0)):
        self.K = _intrinsics(K).copy()
        self.cam_ext = cam_ext
        self.measurement = _vec(measurement, 2, "measurement").copy()
        self.information = np.eye(2)

    def _camera_point(self, pose: SE3, point) -> np.ndarray:
        return np.asarray(self.cam_ext @ (pose @ _vec(point, 3, "point")), dtype=float)

    def error(self, pose: SE3, point) -> np.ndarray:
        return self.measurement - _project(self.K, self._camera_point(pose, point))

    def jacobians(self, pose: SE3, point):
        """Jacobians of the error: 2x6 for the pose, 2x3 for the landmark."""
        j_pose = _pose_jacobian(self._camera_point(pose, point), self.K)
        j_point = j_pose[:, :3] @ self.cam_ext.rotation_matrix() @ pose.rotation_matrix()
        return j_pose, j_point

    def chi2(self, pose: SE3, point) -> float:
        e = self.error(pose, point)
        return float(e @ self.information @ e)