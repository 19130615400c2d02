import math

import numpy as np
import pytest

from slamkit.geometry import (
    Quaternion,
    angle_axis_to_matrix,
    euler_angles_zyx,
    isometry,
    transform_between_frames,
)


def _random_rotations(count, seed=3):
    rng = np.random.default_rng(seed)
    for _ in range(count):
        axis = rng.normal(size=3)
        angle = rng.uniform(-math.pi, math.pi)
        yield angle_axis_to_matrix(angle, axis)


def test_coordinate_transform_worked_example():
    p2 = transform_between_frames(
        Quaternion(0.35, 0.2, 0.3, 0.1),
        [0.3, 0.1, 0.1],
        Quaternion(-0.5, 0.4, -0.1, 0.2),
        [-0.1, 0.5, 0.3],
        [0.5, 0, 0.2],
    )
    np.testing.assert_allclose(p2, [-0.0309731, 0.73499, 0.296108], atol=1e-5)


def test_transform_into_same_frame_is_identity():
    q = Quaternion(0.35, 0.2, 0.3, 0.1)
    p = [0.5, 0.0, 0.2]
    np.testing.assert_allclose(transform_between_frames(q, [1, 2, 3], q, [1, 2, 3], p), p, atol=1e-12)


def test_coeffs_order_is_xyzw():
    np.testing.assert_array_equal(Quaternion(1, 2, 3, 4).coeffs(), [2, 3, 4, 1])


def test_angle_axis_quaternion_and_matrix_agree():
    q = Quaternion.from_angle_axis(math.pi / 4, [0, 0, 1])
    np.testing.assert_allclose(q.to_matrix(), angle_axis_to_matrix(math.pi / 4, [0, 0, 1]), atol=1e-12)


def test_axis_is_normalised():
    a = angle_axis_to_matrix(0.7, [0, 0, 5])
    b = angle_axis_to_matrix(0.7, [0, 0, 1])
    np.testing.assert_allclose(a, b, atol=1e-12)


def test_zero_axis_rejected():
    with pytest.raises(ValueError):
        Quaternion.from_angle_axis(1.0, [0, 0, 0])


@pytest.mark.parametrize("rotation", list(_random_rotations(6)))
def test_from_matrix_round_trip(rotation):
    np.testing.assert_allclose(Quaternion.from_matrix(rotation).to_matrix(), rotation, atol=1e-12)


@pytest.mark.parametrize("axis", [[1, 0, 0], [0, 1, 0], [0, 0, 1], [1, 1, 0]])
def test_from_matrix_half_turn(axis):
    rotation = angle_axis_to_matrix(math.pi, axis)
    q = Quaternion.from_matrix(rotation)
    assert q.norm() == pytest.approx(1.0)
    np.testing.assert_allclose(q.to_matrix(), rotation, atol=1e-12)


@pytest.mark.parametrize("rotation", list(_random_rotations(4, seed=8)))
def test_to_matrix_is_rotation(rotation):
    m = Quaternion.from_matrix(rotation).to_matrix()
    np.testing.assert_allclose(m @ m.T, np.eye(3), atol=1e-12)
    assert np.linalg.det(m) == pytest.approx(1.0)


def test_rotate_matches_sandwich_product():
    q = Quaternion.from_angle_axis(math.pi / 4, [0, 0, 1])
    v = [1.0, 0.0, 0.0]
    sandwich = (q * Quaternion(0, *v) * q.inverse()).coeffs()
    np.testing.assert_allclose(sandwich[:3], q.rotate(v), atol=1e-12)
    assert sandwich[3] == pytest.approx(0.0, abs=1e-12)
    np.testing.assert_allclose(q * v, q.rotate(v), atol=1e-12)


def test_rotate_matches_matrix():
    q = Quaternion(0.35, 0.2, 0.3, 0.1).normalized()
    v = np.array([0.3, -1.2, 2.0])
    np.testing.assert_allclose(q.rotate(v), q.to_matrix() @ v, atol=1e-12)


def test_product_with_inverse_is_identity():
    q = Quaternion(0.35, 0.2, 0.3, 0.1)
    np.testing.assert_allclose((q * q.inverse()).coeffs(), [0, 0, 0, 1], atol=1e-12)


def test_normalized_has_unit_norm():
    assert Quaternion(3, 1, -2, 5).normalized().norm() == pytest.approx(1.0)


def test_zero_quaternion_errors():
    with pytest.raises(ValueError):
        Quaternion(0, 0, 0, 0).normalized()
    with pytest.raises(ValueError):
        Quaternion(0, 0, 0, 0).inverse()


@pytest.mark.parametrize(
    "yaw,pitch,roll",
    [(math.pi / 4, 0.0, 0.0), (0.3, 0.2, -0.5), (2.0, -0.7, 1.1)],
)
def test_euler_angles_zyx_recovers_angles(yaw, pitch, roll):
    rotation = (
        angle_axis_to_matrix(yaw, [0, 0, 1])
        @ angle_axis_to_matrix(pitch, [0, 1, 0])
        @ angle_axis_to_matrix(roll, [1, 0, 0])
    )
    np.testing.assert_allclose(euler_angles_zyx(rotation), [yaw, pitch, roll], atol=1e-12)


def test_isometry_applies_rotation_then_translation():
    rotation = angle_axis_to_matrix(math.pi / 4, [0, 0, 1])
    t = isometry(rotation, [1, 3, 4])
    v = np.array([1.0, 0.0, 0.0])
    np.testing.assert_allclose((t @ np.append(v, 1))[:3], rotation @ v + [1, 3, 4], atol=1e-12)
    np.testing.assert_array_equal(t[3], [0, 0, 0, 1])


def test_isometry_accepts_quaternion():
    q = Quaternion.from_angle_axis(0.4, [1, 2, 3])
    np.testing.assert_allclose(isometry(q, [0, 0, 0])[:3, :3], q.to_matrix(), atol=1e-12)


def test_bad_shapes_rejected():
    with pytest.raises(ValueError):
        isometry(np.eye(2), [0, 0, 0])
    with pytest.raises(ValueError):
        Quaternion().rotate([1, 2])