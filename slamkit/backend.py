"""Back end: bundle adjustment of the active keyframes and landmarks.

A worker thread waits for map updates and then optimises the active window;
map updates are triggered by the front end.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from typing import NamedTuple

import numpy as np
from scipy import sparse
from scipy.sparse.linalg import spsolve

from slamkit.algorithm import to_vec2
from slamkit.camera import Camera
from slamkit.frame import Feature
from slamkit.g2o_types import EdgeProjection, huber_rho, huber_weight
from slamkit.lie import SE3

logger = logging.getLogger(__name__)

CHI2_TH = 5.991
OPTIMIZE_ITERATIONS = 10
_THRESHOLD_ROUNDS = 5

_TAU = 1e-5
_MAX_TRIALS = 10
_STEP_TOL = 1e-12


class OptimizationResult(NamedTuple):
    """Outlier and inlier counts and the chi2 threshold that separated them."""

    outliers: int
    inliers: int
    chi2_threshold: float


@dataclass
class _Observation:
    edge: EdgeProjection
    pose_id: int
    landmark_id: int
    feature: Feature


class _BundleAdjuster:
    """Levenberg-Marquardt over poses and landmark positions with a Huber kernel."""

    def __init__(self, poses: dict, points: dict, observations: list, delta: float):
        self.poses = poses
        self.points = points
        self.observations = observations
        self.delta = delta
        self.pose_index = {pid: 6 * k for k, pid in enumerate(poses)}
        offset = 6 * len(poses)
        self.point_index = {lid: offset + 3 * k for k, lid in enumerate(points)}
        self.size = offset + 3 * len(points)

    def _cost(self, poses, points) -> float:
        return sum(
            huber_rho(ob.edge.chi2(poses[ob.pose_id], points[ob.landmark_id]), self.delta)
            for ob in self.observations
        )

    def _linearize(self):
        gradient = np.zeros(self.size)
        rows, cols, vals = [], [], []
        cost = 0.0
        for ob in self.observations:
            pose = self.poses[ob.pose_id]
            point = self.points[ob.landmark_id]
            e = ob.edge.error(pose, point)
            omega = ob.edge.information
            chi2 = float(e @ omega @ e)
            cost += huber_rho(chi2, self.delta)
            w = huber_weight(chi2, self.delta)
            j_pose, j_point = ob.edge.jacobians(pose, point)
            jac = np.hstack([j_pose, j_point])
            po = self.pose_index[ob.pose_id]
            lo = self.point_index[ob.landmark_id]
            idx = np.concatenate([np.arange(po, po + 6), np.arange(lo, lo + 3)])
            gradient[idx] -= w * jac.T @ omega @ e
            rows.append(np.repeat(idx, idx.size))
            cols.append(np.tile(idx, idx.size))
            vals.append((w * jac.T @ omega @ jac).ravel())
        hessian = sparse.coo_matrix(
            (np.concatenate(vals), (np.concatenate(rows), np.concatenate(cols))),
            shape=(self.size, self.size),
        ).tocsc()
        return cost, hessian, gradient

    def _apply(self, dx):
        poses = {
            pid: SE3.exp(dx[o:o + 6]) @ self.poses[pid] for pid, o in self.pose_index.items()
        }
        points = {
            lid: self.points[lid] + dx[o:o + 3] for lid, o in self.point_index.items()
        }
        return poses, points

    def run(self, iterations: int) -> None:
        if not self.observations:
            return
        cost, hessian, gradient = self._linearize()
        diag_max = float(hessian.diagonal().max())
        if diag_max <= 0.0:
            return
        damping = _TAU * diag_max
        nu = 2.0
        identity = sparse.identity(self.size, format="csc")
        for it in range(iterations):
            accepted = False
            for _ in range(_MAX_TRIALS):
                dx = np.atleast_1d(spsolve((hessian + damping * identity).tocsc(), gradient))
                if not np.all(np.isfinite(dx)):
                    damping *= nu
                    nu *= 2.0
                    continue
                if np.linalg.norm(dx) <= _STEP_TOL:
                    return
                poses, points = self._apply(dx)
                new_cost = self._cost(poses, points)
                predicted = float(dx @ (damping * dx + gradient))
                if math.isfinite(new_cost) and predicted > 0:
                    rho = (cost - new_cost) / predicted
                else:
                    rho = -1.0
                if rho > 0:
                    self.poses, self.points = poses, points
                    cost, hessian, gradient = self._linearize()
                    damping *= max(1.0 / 3.0, 1.0 - (2.0 * rho - 1.0) ** 3)
                    nu = 2.0
                    accepted = True
                    logger.debug("iteration %d: cost %s", it, cost)
                    break
                damping *= nu
                nu *= 2.0
            if not accepted:
                return


class Backend:
    """Runs bundle adjustment on a worker thread whenever the map is updated."""

    def __init__(self):
        self._cond = threading.Condition()
        self._running = True
        self._pending = False
        self._map = None
        self._cam_left: Camera | None = None
        self._cam_right: Camera | None = None
        self._thread = threading.Thread(target=self._loop, name="backend", daemon=True)
        self._thread.start()

    def set_cameras(self, left: Camera, right: Camera) -> None:
        self._cam_left = left
        self._cam_right = right

    def set_map(self, slam_map) -> None:
        self._map = slam_map

    def update_map(self) -> None:
        """Ask the worker to optimise the active part of the map."""
        with self._cond:
            self._pending = True
            self._cond.notify()

    def stop(self) -> None:
        """Finish any pending optimisation and end the worker thread."""
        with self._cond:
            self._running = False
            self._cond.notify()
        if self._thread.is_alive():
            self._thread.join()

    def _loop(self) -> None:
        while True:
            with self._cond:
                while self._running and not self._pending:
                    self._cond.wait()
                if self._pending:
                    self._pending = False
                    slam_map = self._map
                    if slam_map is not None:
                        try:
                            self.optimize(
                                slam_map.active_keyframes(), slam_map.active_map_points()
                            )
                        except Exception:
                            logger.exception("back-end optimisation failed")
                if not self._running:
                    break

    def optimize(self, keyframes: dict, landmarks: dict) -> OptimizationResult:
        """Bundle-adjust the given keyframes and landmarks in place.

        Observations whose error exceeds the chi2 threshold are marked as
        outliers and removed from their landmark; the threshold is doubled
        (at most five times) until more than half the observations are inliers.
        """
        if self._cam_left is None or self._cam_right is None:
            raise RuntimeError("cameras are not set")
        K = self._cam_left.K()
        left_ext = self._cam_left.pose
        right_ext = self._cam_right.pose

        frames = {kf.keyframe_id: kf for kf in keyframes.values()}
        poses = {kid: kf.pose for kid, kf in frames.items()}
        points: dict[int, np.ndarray] = {}
        owners = {}
        observations: list[_Observation] = []
        chi2_th = CHI2_TH

        for mp in landmarks.values():
            if mp.is_outlier:
                continue
            landmark_id = mp.id
            for feat in mp.observations():
                if feat.is_outlier:
                    continue
                frame = feat.frame()
                if frame is None or frame.keyframe_id not in poses:
                    continue
                ext = left_ext if feat.is_on_left_image else right_ext
                edge = EdgeProjection(K, ext, to_vec2(feat.position))
                if landmark_id not in points:
                    points[landmark_id] = mp.pos
                    owners[landmark_id] = mp
                observations.append(_Observation(edge, frame.keyframe_id, landmark_id, feat))

        adjuster = _BundleAdjuster(poses, points, observations, chi2_th)
        adjuster.run(OPTIMIZE_ITERATIONS)
        poses, points = adjuster.poses, adjuster.points

        chi2s = [
            ob.edge.chi2(poses[ob.pose_id], points[ob.landmark_id]) for ob in observations
        ]
        cnt_outlier = cnt_inlier = 0
        for _ in range(_THRESHOLD_ROUNDS):
            cnt_outlier = sum(1 for c in chi2s if c > chi2_th)
            cnt_inlier = len(chi2s) - cnt_outlier
            total = cnt_inlier + cnt_outlier
            if total and cnt_inlier / total > 0.5:
                break
            chi2_th *= 2

        for ob, chi2 in zip(observations, chi2s):
            feat = ob.feature
            if chi2 > chi2_th:
                feat.is_outlier = True
                mp = feat.map_point()
                if mp is not None:
                    mp.remove_observation(feat)
            else:
                feat.is_outlier = False

        logger.info("Outlier/Inlier in optimization: %d/%d", cnt_outlier, cnt_inlier)

        for kid, pose in poses.items():
            frames[kid].pose = pose
        for lid, pos in points.items():
            owners[lid].pos = pos
        return OptimizationResult(cnt_outlier, cnt_inlier, chi2_th)