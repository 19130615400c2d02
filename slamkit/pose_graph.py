"""Pose-graph optimisation with poses and errors on the Lie algebra se(3).

Graphs are read and written in the ``VERTEX_SE3:QUAT`` / ``EDGE_SE3:QUAT``
text format. Vertex 0 is held fixed; the others are updated by left
multiplication with the exponential of the increment.
"""

from __future__ import annotations

import argparse
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

import numpy as np
from scipy import sparse
from scipy.sparse.linalg import spsolve

from slamkit.geometry import Quaternion
from slamkit.lie import SE3

logger = logging.getLogger(__name__)

VERTEX_TAG = "VERTEX_SE3:QUAT"
EDGE_TAG = "EDGE_SE3:QUAT"

_POSE_VALUES = 7
_INFO_VALUES = 21
_TRIU = np.triu_indices(6)

_TAU = 1e-5
_MAX_TRIALS = 10
_STEP_TOL = 1e-12


@dataclass
class Vertex:
    """A pose in the graph."""

    id: int
    estimate: SE3
    fixed: bool = False


@dataclass
class Edge:
    """A relative-pose measurement between two vertices."""

    id: int
    v1: int
    v2: int
    measurement: SE3
    information: np.ndarray = field(default_factory=lambda: np.eye(6))


def jr_inv(error: SE3) -> np.ndarray:
    """Approximate inverse right Jacobian of an error; taken as the identity."""
    return np.eye(6)


def edge_error(measurement: SE3, v1: SE3, v2: SE3) -> np.ndarray:
    """Error log(Z^-1 * T1^-1 * T2) of a measurement Z between two poses."""
    return (measurement.inverse() @ v1.inverse() @ v2).log()


def edge_jacobians(error, v2: SE3):
    """Jacobians of an edge error with respect to left increments of both poses."""
    jac = jr_inv(SE3.exp(error))
    adj = v2.inverse().adjoint()
    return -jac @ adj, jac @ adj


def _pose_from_values(values) -> SE3:
    tx, ty, tz, qx, qy, qz, qw = values
    return SE3.from_quaternion(Quaternion(qw, qx, qy, qz), (tx, ty, tz))


def _format_values(values) -> str:
    return " ".join(repr(float(v)) for v in values)


def _format_pose(pose: SE3) -> str:
    return _format_values(list(pose.translation) + list(pose.unit_quaternion().coeffs()))


@dataclass
class PoseGraph:
    """Vertices keyed by id, in insertion order, and the edges between them."""

    vertices: dict = field(default_factory=dict)
    edges: list = field(default_factory=list)

    def add_vertex(self, vertex: Vertex) -> None:
        if vertex.id in self.vertices:
            raise ValueError(f"duplicate vertex id {vertex.id}")
        self.vertices[vertex.id] = vertex

    def add_edge(self, edge: Edge) -> None:
        for vid in (edge.v1, edge.v2):
            if vid not in self.vertices:
                raise ValueError(f"edge {edge.id} refers to unknown vertex {vid}")
        info = np.asarray(edge.information, dtype=float)
        if info.shape != (6, 6):
            raise ValueError("information matrix must be 6x6")
        edge.information = info
        self.edges.append(edge)

    def write(self, stream) -> None:
        """Write the graph in the text format read by ``read_g2o``."""
        for vertex in self.vertices.values():
            stream.write(f"{VERTEX_TAG} {vertex.id} {_format_pose(vertex.estimate)}\n")
        for edge in self.edges:
            info = _format_values(edge.information[_TRIU])
            stream.write(
                f"{EDGE_TAG} {edge.v1} {edge.v2} {_format_pose(edge.measurement)} {info}\n"
            )

    def _chi2(self, estimates: dict) -> float:
        total = 0.0
        for edge in self.edges:
            e = edge_error(edge.measurement, estimates[edge.v1], estimates[edge.v2])
            total += float(e @ edge.information @ e)
        return total

    def _estimates(self) -> dict:
        return {vid: v.estimate for vid, v in self.vertices.items()}

    def total_chi2(self) -> float:
        """Sum of e^T * Omega * e over all edges."""
        return self._chi2(self._estimates())

    def _linearize(self, index: dict):
        size = 6 * len(index)
        gradient = np.zeros(size)
        rows, cols, vals = [], [], []
        chi2 = 0.0
        for edge in self.edges:
            p1 = self.vertices[edge.v1].estimate
            p2 = self.vertices[edge.v2].estimate
            e = edge_error(edge.measurement, p1, p2)
            omega = edge.information
            chi2 += float(e @ omega @ e)
            ji, jj = edge_jacobians(e, p2)
            blocks = [(edge.v1, ji), (edge.v2, jj)]
            for a, ja in blocks:
                if a not in index:
                    continue
                ia = 6 * index[a]
                gradient[ia:ia + 6] -= ja.T @ omega @ e
                for c, jc in blocks:
                    if c not in index:
                        continue
                    ic = 6 * index[c]
                    r, cc = np.meshgrid(
                        np.arange(ia, ia + 6), np.arange(ic, ic + 6), indexing="ij"
                    )
                    rows.append(r.ravel())
                    cols.append(cc.ravel())
                    vals.append((ja.T @ omega @ jc).ravel())
        if vals:
            hessian = sparse.coo_matrix(
                (np.concatenate(vals), (np.concatenate(rows), np.concatenate(cols))),
                shape=(size, size),
            ).tocsc()
        else:
            hessian = sparse.csc_matrix((size, size))
        return chi2, hessian, gradient

    def optimize(self, iterations=30) -> float:
        """Levenberg-Marquardt over the free vertices; returns the final chi2."""
        free = [vid for vid, v in self.vertices.items() if not v.fixed]
        index = {vid: k for k, vid in enumerate(free)}
        chi2, hessian, gradient = self._linearize(index)
        if not free or not self.edges:
            return chi2
        diag_max = float(hessian.diagonal().max())
        if diag_max <= 0.0:
            return chi2
        damping = _TAU * diag_max
        nu = 2.0
        identity = sparse.identity(hessian.shape[0], format="csc")
        for it in range(iterations):
            accepted = False
            for _ in range(_MAX_TRIALS):
                dx = np.atleast_1d(spsolve((hessian + damping * identity).tocsc(), gradient))
                if not np.all(np.isfinite(dx)):
                    damping *= nu
                    nu *= 2.0
                    continue
                if np.linalg.norm(dx) <= _STEP_TOL:
                    return chi2
                candidate = self._estimates()
                for vid, k in index.items():
                    candidate[vid] = SE3.exp(dx[6 * k:6 * k + 6]) @ candidate[vid]
                new_chi2 = self._chi2(candidate)
                predicted = float(dx @ (damping * dx + gradient))
                if math.isfinite(new_chi2) and predicted > 0:
                    rho = (chi2 - new_chi2) / predicted
                else:
                    rho = -1.0
                if rho > 0:
                    for vid in index:
                        self.vertices[vid].estimate = candidate[vid]
                    chi2, hessian, gradient = self._linearize(index)
                    damping *= max(1.0 / 3.0, 1.0 - (2.0 * rho - 1.0) ** 3)
                    nu = 2.0
                    accepted = True
                    logger.info("iteration %d: chi2 %s, lambda %s", it, chi2, damping)
                    break
                damping *= nu
                nu *= 2.0
            if not accepted:
                break
        return chi2


def read_g2o(stream: Iterable[str]) -> PoseGraph:
    """Read a pose graph; lines with other tags are ignored. Vertex 0 is fixed."""
    graph = PoseGraph()
    edge_count = 0
    for number, line in enumerate(stream, start=1):
        tokens = line.split()
        if not tokens:
            continue
        tag = tokens[0]
        try:
            if tag == VERTEX_TAG:
                if len(tokens) != 2 + _POSE_VALUES:
                    raise ValueError(f"expected {_POSE_VALUES} pose values")
                vid = int(tokens[1])
                pose = _pose_from_values([float(t) for t in tokens[2:]])
                graph.add_vertex(Vertex(vid, pose, fixed=vid == 0))
            elif tag == EDGE_TAG:
                if len(tokens) != 3 + _POSE_VALUES + _INFO_VALUES:
                    raise ValueError(
                        f"expected {_POSE_VALUES} pose and {_INFO_VALUES} information values"
                    )
                id1, id2 = int(tokens[1]), int(tokens[2])
                values = [float(t) for t in tokens[3:]]
                info = np.zeros((6, 6))
                info[_TRIU] = values[_POSE_VALUES:]
                info.T[_TRIU] = values[_POSE_VALUES:]
                pose = _pose_from_values(values[:_POSE_VALUES])
                graph.add_edge(Edge(edge_count, id1, id2, pose, info))
                edge_count += 1
        except ValueError as exc:
            raise ValueError(f"line {number}: {exc}") from exc
    return graph


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Optimise a pose graph.")
    parser.add_argument("graph", help="input graph, e.g. sphere.g2o")
    parser.add_argument("--output", default="result_lie.g2o")
    parser.add_argument("--iterations", type=int, default=30)
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.INFO, format="%(message)s")

    try:
        with Path(args.graph).open(encoding="utf-8") as fin:
            graph = read_g2o(fin)
    except OSError:
        print(f"file {args.graph} does not exist.")
        return 1
    except ValueError as exc:
        print(f"file {args.graph} is malformed: {exc}")
        return 1

    print(f"read total {len(graph.vertices)} vertices, {len(graph.edges)} edges.")
    print("optimizing ...")
    graph.optimize(args.iterations)
    print("saving optimization results ...")
    with Path(args.output).open("w", encoding="utf-8") as fout:
        graph.write(fout)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())