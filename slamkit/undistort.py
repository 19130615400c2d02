"""Removing radial-tangential lens distortion from a grey-scale image."""

from __future__ import annotations

import argparse
from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class Intrinsics:
    """Pinhole intrinsics."""

    fx: float = 458.654
    fy: float = 457.296
    cx: float = 367.215
    cy: float = 248.375


@dataclass(frozen=True)
class Distortion:
    """Radial (k1, k2) and tangential (p1, p2) distortion coefficients."""

    k1: float = -0.28340811
    k2: float = 0.07395907
    p1: float = 0.00019359
    p2: float = 1.76187114e-05


def distort_normalized(x, y, distortion: Distortion):
    """Distorted position of points on the normalised image plane."""
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    d = distortion
    r = np.sqrt(x * x + y * y)
    r2 = r * r
    radial = 1 + d.k1 * r2 + d.k2 * r2 * r2
    x_distorted = x * radial + 2 * d.p1 * x * y + d.p2 * (r2 + 2 * x * x)
    y_distorted = y * radial + d.p1 * (r2 + 2 * y * y) + 2 * d.p2 * x * y
    return x_distorted, y_distorted


def undistort_image(image, intrinsics: Intrinsics, distortion: Distortion) -> np.ndarray:
    """Undistorted copy of a single-channel image, by nearest-neighbour lookup.

    Pixels whose source falls outside the image are set to zero.
    """
    img = np.asarray(image)
    if img.ndim != 2:
        raise ValueError(f"expected a single-channel image, got shape {img.shape}")
    rows, cols = img.shape
    v, u = np.mgrid[0:rows, 0:cols].astype(float)
    k = intrinsics
    x = (u - k.cx) / k.fx
    y = (v - k.cy) / k.fy
    x_distorted, y_distorted = distort_normalized(x, y, distortion)
    u_distorted = k.fx * x_distorted + k.cx
    v_distorted = k.fy * y_distorted + k.cy
    valid = (
        (u_distorted >= 0)
        & (v_distorted >= 0)
        & (u_distorted < cols)
        & (v_distorted < rows)
    )
    out = np.zeros_like(img)
    out[valid] = img[v_distorted[valid].astype(int), u_distorted[valid].astype(int)]
    return out


def main(argv=None) -> int:
    from PIL import Image

    parser = argparse.ArgumentParser(description="Undistort a grey-scale image.")
    parser.add_argument("input", nargs="?", default="distorted.png")
    parser.add_argument("output", nargs="?", default="undistorted.png")
    args = parser.parse_args(argv)

    try:
        with Image.open(args.input) as src:
            image = np.asarray(src.convert("L"))
    except (FileNotFoundError, OSError) as exc:
        print(f"cannot read image {args.input}: {exc}")
        return 1
    result = undistort_image(image, Intrinsics(), Distortion())
    Image.fromarray(result).save(args.output)
    print(f"undistorted image written to {args.output}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())