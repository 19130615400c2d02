"""Dense depth estimation for a monocular camera moving along a known trajectory.

Every reference pixel carries a Gaussian depth estimate. Each new image is
searched along the epipolar line with zero-mean normalised cross-correlation,
the match is triangulated, and the result is fused into the estimate.
"""

from __future__ import annotations

import argparse
import math
from pathlib import Path
from typing import NamedTuple

import numpy as np

from slamkit.geometry import Quaternion
from slamkit.lie import SE3

BOARDER = 20
WIDTH = 640
HEIGHT = 480
FX = 481.2
FY = -480.0
CX = 319.5
CY = 239.5
NCC_WINDOW_SIZE = 3
NCC_AREA = (2 * NCC_WINDOW_SIZE + 1) ** 2
MIN_COV = 0.1
MAX_COV = 10.0

INIT_DEPTH = 3.0
INIT_COV2 = 3.0

_SEARCH_STEP = 0.7
_MAX_HALF_LENGTH = 100.0
_MIN_NCC = 0.85
_MIN_DEPTH = 0.1

SEQUENCE_FILE = "first_200_frames_traj_over_table_input_sequence.txt"
DEPTH_FILE = Path("depthmaps") / "scene_000.depth"

_OFFSETS = np.arange(-NCC_WINDOW_SIZE, NCC_WINDOW_SIZE + 1, dtype=float)
_WINDOW_Y, _WINDOW_X = np.meshgrid(_OFFSETS, _OFFSETS, indexing="ij")


class DepthError(NamedTuple):
    """Average squared and average signed error of a depth estimate."""

    squared: float
    mean: float


def _vec(value, size: int) -> np.ndarray:
    arr = np.asarray(value, dtype=float).reshape(-1)
    if arr.shape != (size,):
        raise ValueError(f"expected a {size}-vector, got shape {arr.shape}")
    return arr


def _normalized(v: np.ndarray) -> np.ndarray:
    n = float(np.linalg.norm(v))
    return v / n if n > 0 else v


def px2cam(px) -> np.ndarray:
    """Point on the normalised image plane (z = 1) of a pixel."""
    u, v = _vec(px, 2)
    return np.array([(u - CX) / FX, (v - CY) / FY, 1.0])


def cam2px(p_cam) -> np.ndarray:
    """Pixel of a point in camera coordinates."""
    x, y, z = _vec(p_cam, 3)
    return np.array([x * FX / z + CX, y * FY / z + CY])


def inside(pt) -> bool:
    """Whether a pixel lies inside the image, away from the border."""
    x, y = _vec(pt, 2)
    return bool(x >= BOARDER and y >= BOARDER and x + BOARDER < WIDTH and y + BOARDER <= HEIGHT)


def _bilinear_many(image: np.ndarray, x: np.ndarray, y: np.ndarray) -> np.ndarray:
    x0 = x.astype(int)
    y0 = y.astype(int)
    xx = x - np.floor(x)
    yy = y - np.floor(y)
    img = np.asarray(image, dtype=float)
    return (
        (1 - xx) * (1 - yy) * img[y0, x0]
        + xx * (1 - yy) * img[y0, x0 + 1]
        + (1 - xx) * yy * img[y0 + 1, x0]
        + xx * yy * img[y0 + 1, x0 + 1]
    ) / 255.0


def bilinear(image, pt) -> float:
    """Bilinearly interpolated intensity of a grey-scale image, scaled to [0, 1]."""
    x, y = _vec(pt, 2)
    return float(_bilinear_many(np.asarray(image), np.array([x]), np.array([y]))[0])


def ncc(ref, curr, pt_ref, pt_curr) -> float:
    """Zero-mean normalised cross-correlation of the windows around two pixels."""
    ref_arr = np.asarray(ref)
    pr = _vec(pt_ref, 2)
    pc = _vec(pt_curr, 2)
    rows = (_WINDOW_Y + pr[1]).astype(int)
    cols = (_WINDOW_X + pr[0]).astype(int)
    values_ref = ref_arr[rows, cols].astype(float) / 255.0
    values_curr = _bilinear_many(np.asarray(curr), _WINDOW_X + pc[0], _WINDOW_Y + pc[1])
    dr = values_ref - values_ref.sum() / NCC_AREA
    dc = values_curr - values_curr.sum() / NCC_AREA
    numerator = float((dr * dc).sum())
    denominator1 = float((dr * dr).sum())
    denominator2 = float((dc * dc).sum())
    return numerator / math.sqrt(denominator1 * denominator2 + 1e-10)


def epipolar_search(ref, curr, T_C_R: SE3, pt_ref, depth_mu, depth_cov):
    """Best NCC match of a reference pixel along its epipolar line in ``curr``.

    The line covers depths within three standard deviations of the mean.
    Returns ``(pt_curr, epipolar_direction)``, or None when no candidate
    scores at least 0.85.
    """
    f_ref = _normalized(px2cam(pt_ref))
    px_mean_curr = cam2px(T_C_R @ (f_ref * depth_mu))
    d_min = max(depth_mu - 3 * depth_cov, _MIN_DEPTH)
    d_max = depth_mu + 3 * depth_cov
    px_min_curr = cam2px(T_C_R @ (f_ref * d_min))
    px_max_curr = cam2px(T_C_R @ (f_ref * d_max))

    epipolar_line = px_max_curr - px_min_curr
    direction = _normalized(epipolar_line)
    half_length = min(0.5 * float(np.linalg.norm(epipolar_line)), _MAX_HALF_LENGTH)

    best_ncc = -1.0
    best_px = None
    step = -half_length
    while step <= half_length:
        px_curr = px_mean_curr + step * direction
        if inside(px_curr):
            score = ncc(ref, curr, pt_ref, px_curr)
            if score > best_ncc:
                best_ncc = score
                best_px = px_curr
        step += _SEARCH_STEP
    if best_px is None or best_ncc < _MIN_NCC:
        return None
    return best_px, direction


def update_depth_filter(pt_ref, pt_curr, T_C_R: SE3, epipolar_direction, depth, depth_cov2):
    """Triangulate a match and fuse it into the depth estimate in place.

    The uncertainty of the triangulated depth is that of a one-pixel error
    along the epipolar line. Returns the fused ``(mean, variance)``.
    """
    pr = _vec(pt_ref, 2)
    pc = _vec(pt_curr, 2)
    T_R_C = T_C_R.inverse()
    f_ref = _normalized(px2cam(pr))
    f_curr = _normalized(px2cam(pc))

    t = T_R_C.translation
    f2 = T_R_C.so3 @ f_curr
    b = np.array([t @ f_ref, t @ f2])
    a01 = -(f_ref @ f2)
    a = np.array([[f_ref @ f_ref, a01], [-a01, -(f2 @ f2)]])
    ans = np.linalg.inv(a) @ b
    xm = ans[0] * f_ref
    xn = t + ans[1] * f2
    depth_estimation = float(np.linalg.norm((xm + xn) / 2.0))

    p = f_ref * depth_estimation
    a_vec = p - t
    t_norm = float(np.linalg.norm(t))
    a_norm = float(np.linalg.norm(a_vec))
    f_curr_prime = _normalized(px2cam(pc + _vec(epipolar_direction, 2)))
    with np.errstate(invalid="ignore", divide="ignore"):
        alpha = float(np.arccos((f_ref @ t) / t_norm))
        float(np.arccos(-(a_vec @ t) / (a_norm * t_norm)))
        beta_prime = float(np.arccos((f_curr_prime @ -t) / t_norm))
        gamma = math.pi - alpha - beta_prime
        p_prime = t_norm * np.sin(beta_prime) / np.sin(gamma)
    d_cov = float(p_prime) - depth_estimation
    d_cov2 = d_cov * d_cov

    row, col = int(pr[1]), int(pr[0])
    mu = float(depth[row, col])
    sigma2 = float(depth_cov2[row, col])
    mu_fuse = (d_cov2 * mu + sigma2 * depth_estimation) / (sigma2 + d_cov2)
    sigma_fuse2 = (sigma2 * d_cov2) / (sigma2 + d_cov2)
    depth[row, col] = mu_fuse
    depth_cov2[row, col] = sigma_fuse2
    return mu_fuse, sigma_fuse2


def update(ref, curr, T_C_R: SE3, depth, depth_cov2) -> int:
    """Update every unconverged pixel of the depth map from a new image.

    Pixels whose variance lies outside [MIN_COV, MAX_COV] have converged or
    diverged and are left alone. Returns the number of pixels updated.
    """
    ref_arr = np.asarray(ref)
    curr_arr = np.asarray(curr)
    for name, arr in (("ref", ref_arr), ("curr", curr_arr), ("depth", depth), ("depth_cov2", depth_cov2)):
        if arr.shape[:2] != (HEIGHT, WIDTH):
            raise ValueError(f"{name} must be {HEIGHT}x{WIDTH}, got shape {arr.shape}")

    updated = 0
    for x in range(BOARDER, WIDTH - BOARDER):
        for y in range(BOARDER, HEIGHT - BOARDER):
            cov2 = depth_cov2[y, x]
            if cov2 < MIN_COV or cov2 > MAX_COV:
                continue
            pt_ref = np.array([x, y], dtype=float)
            match = epipolar_search(
                ref_arr, curr_arr, T_C_R, pt_ref, float(depth[y, x]), math.sqrt(cov2)
            )
            if match is None:
                continue
            pt_curr, direction = match
            update_depth_filter(pt_ref, pt_curr, T_C_R, direction, depth, depth_cov2)
            updated += 1
    return updated


def evaluate_depth(depth_truth, depth_estimate) -> DepthError:
    """Average squared and signed error over the image, border excluded."""
    truth = np.asarray(depth_truth, dtype=float)
    estimate = np.asarray(depth_estimate, dtype=float)
    if truth.shape != estimate.shape:
        raise ValueError("depth maps must have the same shape")
    rows, cols = truth.shape
    region = (slice(BOARDER, rows - BOARDER), slice(BOARDER, cols - BOARDER))
    error = truth[region] - estimate[region]
    if error.size == 0:
        raise ValueError("depth maps are too small to evaluate")
    return DepthError(float((error * error).mean()), float(error.mean()))


def read_dataset_files(path):
    """Image paths, camera-to-world poses and the reference depth of a dataset.

    Each sequence line holds ``image tx ty tz qx qy qz qw``; the depth file
    holds HEIGHT * WIDTH values in centimetres.
    """
    root = Path(path)
    color_image_files = []
    poses = []
    with (root / SEQUENCE_FILE).open(encoding="utf-8") as fin:
        for number, line in enumerate(fin, start=1):
            tokens = line.split()
            if not tokens:
                continue
            if len(tokens) != 8:
                raise ValueError(f"line {number}: expected 8 values, got {len(tokens)}")
            tx, ty, tz, qx, qy, qz, qw = (float(v) for v in tokens[1:])
            color_image_files.append(str(root / "images" / tokens[0]))
            poses.append(SE3.from_quaternion(Quaternion(qw, qx, qy, qz), (tx, ty, tz)))

    with (root / DEPTH_FILE).open(encoding="utf-8") as fin:
        values = np.array(fin.read().split(), dtype=float)
    if values.size < HEIGHT * WIDTH:
        raise ValueError(
            f"depth file holds {values.size} values, expected {HEIGHT * WIDTH}"
        )
    ref_depth = values[: HEIGHT * WIDTH].reshape(HEIGHT, WIDTH) / 100.0
    return color_image_files, poses, ref_depth


def _load_gray(path) -> np.ndarray | None:
    from PIL import Image

    try:
        with Image.open(path) as img:
            return np.asarray(img.convert("L"))
    except OSError:
        return None


def main(argv=None) -> int:
    from PIL import Image

    parser = argparse.ArgumentParser(description="Dense monocular depth estimation.")
    parser.add_argument("dataset", help="path to the test dataset")
    parser.add_argument("--output", default="depth.png")
    args = parser.parse_args(argv)

    try:
        color_image_files, poses_twc, ref_depth = read_dataset_files(args.dataset)
    except (OSError, ValueError):
        print("Reading image files failed!")
        return 1
    print(f"read total {len(color_image_files)} files.")
    if not color_image_files:
        print("Reading image files failed!")
        return 1

    ref = _load_gray(color_image_files[0])
    if ref is None:
        print(f"cannot read image {color_image_files[0]}")
        return 1
    pose_ref_twc = poses_twc[0]
    depth = np.full((HEIGHT, WIDTH), INIT_DEPTH)
    depth_cov2 = np.full((HEIGHT, WIDTH), INIT_COV2)

    for index in range(1, len(color_image_files)):
        print(f"*** loop {index} ***")
        curr = _load_gray(color_image_files[index])
        if curr is None:
            continue
        pose_t_c_r = poses_twc[index].inverse() @ pose_ref_twc
        update(ref, curr, pose_t_c_r, depth, depth_cov2)
        err = evaluate_depth(ref_depth, depth)
        print(f"Average squared error = {err.squared}, average error: {err.mean}")

    print("estimation returns, saving depth map ...")
    Image.fromarray(np.clip(np.rint(depth), 0, 255).astype(np.uint8)).save(args.output)
    print("done.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())