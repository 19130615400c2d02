"""The rotation group SO(3) and rigid-motion group SE(3) with their Lie algebras.

Tangent vectors of SE(3) put the translational part first and the rotational
part last: ``xi = (upsilon, omega)``.
"""

from __future__ import annotations

import math

import numpy as np

from slamkit.geometry import Quaternion

_EPS = 1e-10
_ORTHO_TOL = 1e-6


def _vector(value, size: int) -> np.ndarray:
    arr = np.asarray(value, dtype=float).reshape(-1)
    if arr.shape != (size,):
        raise ValueError(f"expected a {size}-vector, got shape {arr.shape}")
    return arr


def _hat3(omega) -> np.ndarray:
    x, y, z = _vector(omega, 3)
    return np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])


def _apply(rotation: np.ndarray, translation: np.ndarray, points) -> np.ndarray:
    arr = np.asarray(points, dtype=float)
    if arr.shape == (3,):
        return rotation @ arr + translation
    if arr.ndim == 2 and arr.shape[1] == 3:
        return arr @ rotation.T + translation
    raise ValueError(f"expected a 3-vector or an (N, 3) array, got shape {arr.shape}")


class SO3:
    """A 3-D rotation."""

    __slots__ = ("_matrix",)

    def __init__(self, matrix=None):
        if matrix is None:
            m = np.eye(3)
        else:
            m = np.array(matrix, dtype=float)
            if m.shape != (3, 3):
                raise ValueError(f"expected a 3x3 matrix, got shape {m.shape}")
            if not np.allclose(m @ m.T, np.eye(3), atol=_ORTHO_TOL):
                raise ValueError("matrix is not orthogonal")
            if np.linalg.det(m) <= 0:
                raise ValueError("matrix has a non-positive determinant")
        self._matrix = m

    @staticmethod
    def from_quaternion(q: Quaternion) -> SO3:
        """Rotation of a quaternion, which is normalised first."""
        if q.norm() < _EPS:
            raise ValueError("quaternion is too close to zero")
        return SO3(q.normalized().to_matrix())

    @staticmethod
    def exp(omega) -> SO3:
        w = _vector(omega, 3)
        theta = float(np.linalg.norm(w))
        if theta < _EPS:
            t2 = theta * theta
            t4 = t2 * t2
            imag = 0.5 - t2 / 48.0 + t4 / 3840.0
            real = 1.0 - t2 / 8.0 + t4 / 384.0
        else:
            half = 0.5 * theta
            imag = math.sin(half) / theta
            real = math.cos(half)
        return SO3.from_quaternion(Quaternion(real, *(imag * w)))

    def log(self) -> np.ndarray:
        q = self.unit_quaternion()
        vec = q.vec
        squared_n = float(vec @ vec)
        w = q.w
        if squared_n < _EPS * _EPS:
            two_atan_nbyw_by_n = 2.0 / w - 2.0 / 3.0 * squared_n / (w**3)
        else:
            n = math.sqrt(squared_n)
            if abs(w) < _EPS:
                two_atan_nbyw_by_n = (math.pi if w > 0 else -math.pi) / n
            else:
                two_atan_nbyw_by_n = 2.0 * math.atan(n / w) / n
        return two_atan_nbyw_by_n * vec

    @staticmethod
    def hat(omega) -> np.ndarray:
        """Skew-symmetric matrix of a 3-vector."""
        return _hat3(omega)

    @staticmethod
    def vee(omega_hat) -> np.ndarray:
        """3-vector of a skew-symmetric matrix."""
        m = np.asarray(omega_hat, dtype=float)
        if m.shape != (3, 3):
            raise ValueError(f"expected a 3x3 matrix, got shape {m.shape}")
        return np.array([m[2, 1], m[0, 2], m[1, 0]])

    def inverse(self) -> SO3:
        return SO3(self._matrix.T)

    def matrix(self) -> np.ndarray:
        return self._matrix.copy()

    def unit_quaternion(self) -> Quaternion:
        return Quaternion.from_matrix(self._matrix).normalized()

    def __matmul__(self, other):
        if isinstance(other, SO3):
            return SO3(self._matrix @ other._matrix)
        return _apply(self._matrix, np.zeros(3), other)

    def __repr__(self) -> str:
        return f"SO3({self._matrix.tolist()!r})"


class SE3:
    """A rigid motion: rotation followed by translation."""

    __slots__ = ("_so3", "_translation")

    def __init__(self, rotation=None, translation=None):
        if rotation is None:
            so3 = SO3()
        elif isinstance(rotation, SO3):
            so3 = rotation
        elif isinstance(rotation, Quaternion):
            so3 = SO3.from_quaternion(rotation)
        else:
            so3 = SO3(rotation)
        self._so3 = so3
        self._translation = np.zeros(3) if translation is None else _vector(translation, 3).copy()

    @property
    def so3(self) -> SO3:
        return self._so3

    @property
    def translation(self) -> np.ndarray:
        return self._translation.copy()

    @staticmethod
    def from_quaternion(q: Quaternion, translation) -> SE3:
        return SE3(SO3.from_quaternion(q), translation)

    @staticmethod
    def exp(xi) -> SE3:
        v = _vector(xi, 6)
        upsilon, omega = v[:3], v[3:]
        so3 = SO3.exp(omega)
        theta = float(np.linalg.norm(omega))
        big_omega = _hat3(omega)
        if theta < _EPS:
            jac = so3.matrix()
        else:
            theta_sq = theta * theta
            jac = (
                np.eye(3)
                + (1.0 - math.cos(theta)) / theta_sq * big_omega
                + (theta - math.sin(theta)) / (theta_sq * theta) * (big_omega @ big_omega)
            )
        return SE3(so3, jac @ upsilon)

    def log(self) -> np.ndarray:
        omega = self._so3.log()
        theta = float(np.linalg.norm(omega))
        big_omega = _hat3(omega)
        omega_sq = big_omega @ big_omega
        if theta < _EPS:
            v_inv = np.eye(3) - 0.5 * big_omega + omega_sq / 12.0
        else:
            half = 0.5 * theta
            v_inv = (
                np.eye(3)
                - 0.5 * big_omega
                + (1.0 - theta * math.cos(half) / (2.0 * math.sin(half))) / (theta * theta) * omega_sq
            )
        return np.concatenate([v_inv @ self._translation, omega])

    @staticmethod
    def hat(xi) -> np.ndarray:
        """4x4 matrix of a 6-vector (translation first, rotation last)."""
        v = _vector(xi, 6)
        m = np.zeros((4, 4))
        m[:3, :3] = _hat3(v[3:])
        m[:3, 3] = v[:3]
        return m

    @staticmethod
    def vee(xi_hat) -> np.ndarray:
        m = np.asarray(xi_hat, dtype=float)
        if m.shape != (4, 4):
            raise ValueError(f"expected a 4x4 matrix, got shape {m.shape}")
        return np.concatenate([m[:3, 3], SO3.vee(m[:3, :3])])

    def inverse(self) -> SE3:
        inv = self._so3.inverse()
        return SE3(inv, -(inv.matrix() @ self._translation))

    def matrix(self) -> np.ndarray:
        m = np.eye(4)
        m[:3, :3] = self._so3.matrix()
        m[:3, 3] = self._translation
        return m

    def matrix3x4(self) -> np.ndarray:
        return self.matrix()[:3]

    def rotation_matrix(self) -> np.ndarray:
        return self._so3.matrix()

    def unit_quaternion(self) -> Quaternion:
        return self._so3.unit_quaternion()

    def adjoint(self) -> np.ndarray:
        """6x6 adjoint matrix mapping tangent vectors through this motion."""
        r = self._so3.matrix()
        adj = np.zeros((6, 6))
        adj[:3, :3] = r
        adj[:3, 3:] = _hat3(self._translation) @ r
        adj[3:, 3:] = r
        return adj

    def __matmul__(self, other):
        if isinstance(other, SE3):
            r = self._so3.matrix()
            return SE3(self._so3 @ other._so3, r @ other._translation + self._translation)
        return _apply(self._so3.matrix(), self._translation, other)

    def __repr__(self) -> str:
        return f"SE3(rotation={self._so3.matrix().tolist()!r}, translation={self._translation.tolist()!r})"