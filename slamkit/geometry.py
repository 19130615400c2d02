"""Quaternions, angle-axis rotations, Euler angles and rigid transforms."""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np


def _vec3(value) -> np.ndarray:
    arr = np.asarray(value, dtype=float).reshape(-1)
    if arr.shape != (3,):
        raise ValueError(f"expected a 3-vector, got shape {arr.shape}")
    return arr


def _mat3(value) -> np.ndarray:
    arr = np.asarray(value, dtype=float)
    if arr.shape != (3, 3):
        raise ValueError(f"expected a 3x3 matrix, got shape {arr.shape}")
    return arr


@dataclass(frozen=True)
class Quaternion:
    """Quaternion w + xi + yj + zk; the constructor takes the real part first."""

    w: float = 1.0
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    @property
    def vec(self) -> np.ndarray:
        """The imaginary part as a 3-vector."""
        return np.array([self.x, self.y, self.z])

    def norm(self) -> float:
        return math.sqrt(self.w**2 + self.x**2 + self.y**2 + self.z**2)

    def normalized(self) -> Quaternion:
        n = self.norm()
        if n == 0.0:
            raise ValueError("cannot normalise a zero quaternion")
        return Quaternion(self.w / n, self.x / n, self.y / n, self.z / n)

    def conjugate(self) -> Quaternion:
        return Quaternion(self.w, -self.x, -self.y, -self.z)

    def inverse(self) -> Quaternion:
        n2 = self.w**2 + self.x**2 + self.y**2 + self.z**2
        if n2 == 0.0:
            raise ValueError("a zero quaternion has no inverse")
        return Quaternion(self.w / n2, -self.x / n2, -self.y / n2, -self.z / n2)

    def __mul__(self, other):
        """Hamilton product with a quaternion, or rotation of a 3-vector."""
        if isinstance(other, Quaternion):
            w1, x1, y1, z1 = self.w, self.x, self.y, self.z
            w2, x2, y2, z2 = other.w, other.x, other.y, other.z
            return Quaternion(
                w1 * w2 - x1 * x2 - y1 * y2 - z1 * z2,
                w1 * x2 + x1 * w2 + y1 * z2 - z1 * y2,
                w1 * y2 - x1 * z2 + y1 * w2 + z1 * x2,
                w1 * z2 + x1 * y2 - y1 * x2 + z1 * w2,
            )
        return self.rotate(other)

    def rotate(self, vector) -> np.ndarray:
        """Rotate a 3-vector; the quaternion is taken to be of unit length."""
        return self.to_matrix() @ _vec3(vector)

    def to_matrix(self) -> np.ndarray:
        """Rotation matrix of a unit quaternion."""
        w, x, y, z = self.w, self.x, self.y, self.z
        tx, ty, tz = 2 * x, 2 * y, 2 * z
        twx, twy, twz = tx * w, ty * w, tz * w
        txx, txy, txz = tx * x, ty * x, tz * x
        tyy, tyz, tzz = ty * y, tz * y, tz * z
        return np.array(
            [
                [1 - (tyy + tzz), txy - twz, txz + twy],
                [txy + twz, 1 - (txx + tzz), tyz - twx],
                [txz - twy, tyz + twx, 1 - (txx + tyy)],
            ]
        )

    def coeffs(self) -> np.ndarray:
        """Coefficients in storage order (x, y, z, w)."""
        return np.array([self.x, self.y, self.z, self.w])

    @staticmethod
    def from_matrix(rotation) -> Quaternion:
        """Quaternion of a rotation matrix."""
        m = _mat3(rotation)
        trace = m[0, 0] + m[1, 1] + m[2, 2]
        if trace > 0:
            t = math.sqrt(trace + 1.0)
            w = 0.5 * t
            t = 0.5 / t
            return Quaternion(
                w,
                (m[2, 1] - m[1, 2]) * t,
                (m[0, 2] - m[2, 0]) * t,
                (m[1, 0] - m[0, 1]) * t,
            )
        i = 0
        if m[1, 1] > m[0, 0]:
            i = 1
        if m[2, 2] > m[i, i]:
            i = 2
        j = (i + 1) % 3
        k = (j + 1) % 3
        t = math.sqrt(m[i, i] - m[j, j] - m[k, k] + 1.0)
        imag = [0.0, 0.0, 0.0]
        imag[i] = 0.5 * t
        t = 0.5 / t
        w = (m[k, j] - m[j, k]) * t
        imag[j] = (m[j, i] + m[i, j]) * t
        imag[k] = (m[k, i] + m[i, k]) * t
        return Quaternion(w, *imag)

    @staticmethod
    def from_angle_axis(angle, axis) -> Quaternion:
        """Quaternion of a rotation by ``angle`` about ``axis`` (normalised here)."""
        a = _vec3(axis)
        n = float(np.linalg.norm(a))
        if n == 0.0:
            raise ValueError("rotation axis must not be zero")
        a = a / n
        half = 0.5 * angle
        s = math.sin(half)
        return Quaternion(math.cos(half), s * a[0], s * a[1], s * a[2])


def angle_axis_to_matrix(angle, axis) -> np.ndarray:
    """Rotation matrix of a rotation by ``angle`` about ``axis``."""
    return Quaternion.from_angle_axis(angle, axis).to_matrix()


def euler_angles_zyx(rotation) -> np.ndarray:
    """Yaw, pitch and roll (Z, Y, X order) of a rotation matrix.

    The first angle lies in [0, pi], the other two in [-pi, pi].
    """
    m = _mat3(rotation)
    yaw = math.atan2(m[1, 0], m[0, 0])
    c2 = math.hypot(m[2, 2], m[2, 1])
    if yaw < 0:
        yaw += math.pi
        pitch = math.atan2(-m[2, 0], -c2)
    else:
        pitch = math.atan2(-m[2, 0], c2)
    s1, c1 = math.sin(yaw), math.cos(yaw)
    roll = math.atan2(s1 * m[0, 2] - c1 * m[1, 2], c1 * m[1, 1] - s1 * m[0, 1])
    return np.array([yaw, pitch, roll])


def isometry(rotation, translation) -> np.ndarray:
    """4x4 rigid transform from a rotation (matrix or quaternion) and translation."""
    if isinstance(rotation, Quaternion):
        r = rotation.to_matrix()
    else:
        r = _mat3(rotation)
    t = np.eye(4)
    t[:3, :3] = r
    t[:3, 3] = _vec3(translation)
    return t


def _rigid_inverse(transform: np.ndarray) -> np.ndarray:
    r = transform[:3, :3]
    inv = np.eye(4)
    inv[:3, :3] = r.T
    inv[:3, 3] = -r.T @ transform[:3, 3]
    return inv


def transform_between_frames(q1, t1, q2, t2, p1) -> np.ndarray:
    """Express a point given in frame 1 in frame 2.

    Both frames are given by world-to-frame poses ``(q, t)``; the quaternions
    are normalised first.
    """
    t1w = isometry(q1.normalized(), t1)
    t2w = isometry(q2.normalized(), t2)
    p = np.append(_vec3(p1), 1.0)
    return (t2w @ _rigid_inverse(t1w) @ p)[:3]