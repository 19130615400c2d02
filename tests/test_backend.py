import numpy as np
import pytest

from slamkit.backend import Backend, OptimizationResult
from slamkit.camera import Camera
from slamkit.frame import Feature, Frame, KeyPoint
from slamkit.lie import SE3
from slamkit.mappoint import MapPoint
from slamkit.slam_map import Map

LEFT = Camera(500.0, 500.0, 320.0, 240.0, 0.5, SE3())
RIGHT = Camera(500.0, 500.0, 320.0, 240.0, 0.5, SE3(None, np.array([-0.5, 0.0, 0.0])))


def _build_scene():
    frames = []
    for k in range(3):
        frame = Frame.create()
        frame.set_keyframe()
        frame.pose = SE3(None, np.array([-0.3 * k, 0.0, 0.0]))
        frames.append(frame)
    landmarks = {}
    for x in (-1.0, 0.0, 1.0):
        for y in (-0.5, 0.5):
            for z in (4.0, 5.0):
                mp = MapPoint.create()
                mp.pos = np.array([x, y, z])
                for frame in frames:
                    for cam, is_left in ((LEFT, True), (RIGHT, False)):
                        u, v = cam.world2pixel(mp.pos, frame.pose)
                        feat = Feature(frame, KeyPoint(u, v), is_on_left_image=is_left)
                        (frame.features_left if is_left else frame.features_right).append(feat)
                        mp.add_observation(feat)
                        feat.attach_map_point(mp)
                landmarks[mp.id] = mp
    keyframes = {f.keyframe_id: f for f in frames}
    return frames, keyframes, landmarks


def _max_reprojection_error(landmarks):
    worst = 0.0
    for mp in landmarks.values():
        for feat in mp.observations():
            cam = LEFT if feat.is_on_left_image else RIGHT
            px = cam.world2pixel(mp.pos, feat.frame().pose)
            err = np.hypot(px[0] - feat.position.x, px[1] - feat.position.y)
            worst = max(worst, float(err))
    return worst


def _perturb(frames, landmarks):
    for mp in landmarks.values():
        mp.pos = mp.pos + np.array([0.02, -0.01, 0.03])
    frames[2].pose = SE3.exp(np.array([0.01, 0.0, 0.0, 0.0, 0.002, 0.0])) @ frames[2].pose


@pytest.fixture
def backend():
    be = Backend()
    be.set_cameras(LEFT, RIGHT)
    yield be
    be.stop()


def test_optimize_reduces_reprojection_error(backend):
    frames, keyframes, landmarks = _build_scene()
    _perturb(frames, landmarks)
    assert _max_reprojection_error(landmarks) > 0.5
    result = backend.optimize(keyframes, landmarks)
    assert _max_reprojection_error(landmarks) < 1e-3
    assert result.outliers == 0
    assert result.inliers == len(landmarks) * 6


def test_optimize_marks_and_removes_outlier(backend):
    frames, keyframes, landmarks = _build_scene()
    mp = next(iter(landmarks.values()))
    feat = mp.observations()[0]
    feat.position = KeyPoint(feat.position.x + 50.0, feat.position.y, 7.0)
    result = backend.optimize(keyframes, landmarks)
    assert result.outliers == 1
    assert feat.is_outlier
    assert feat.map_point() is None
    assert mp.observed_times == 5
    assert feat not in mp.observations()


def test_outlier_landmark_is_left_alone(backend):
    frames, keyframes, landmarks = _build_scene()
    mp = next(iter(landmarks.values()))
    mp.is_outlier = True
    mp.pos = mp.pos + np.array([0.3, 0.0, 0.0])
    before = mp.pos
    backend.optimize(keyframes, landmarks)
    assert np.array_equal(mp.pos, before)


def test_optimize_empty_returns_zero_counts(backend):
    result = backend.optimize({}, {})
    assert isinstance(result, OptimizationResult)
    assert (result.outliers, result.inliers) == (0, 0)


def test_optimize_without_cameras_raises():
    be = Backend()
    try:
        with pytest.raises(RuntimeError):
            be.optimize({}, {})
    finally:
        be.stop()


def test_update_map_runs_optimization_on_worker(backend):
    frames, _, landmarks = _build_scene()
    slam_map = Map()
    for frame in frames:
        slam_map.insert_keyframe(frame)
    for mp in landmarks.values():
        slam_map.insert_map_point(mp)
    _perturb(frames, landmarks)
    backend.set_map(slam_map)
    backend.update_map()
    backend.stop()
    assert _max_reprojection_error(landmarks) < 1e-3


def test_stop_is_idempotent():
    be = Backend()
    be.stop()
    be.stop()
    assert not be._thread.is_alive()