"""Reading a stereo image sequence with its camera calibration."""

from __future__ import annotations

import itertools
import logging
from pathlib import Path

import numpy as np

from slamkit.camera import Camera
from slamkit.frame import Frame
from slamkit.lie import SE3

logger = logging.getLogger(__name__)

CALIB_FILE = "calib.txt"
_NUM_CAMERAS = 4
_PROJECTION_VALUES = 12
_SCALE = 0.5


def _load_gray(path: Path) -> np.ndarray | None:
    from PIL import Image

    try:
        with Image.open(path) as img:
            return np.asarray(img.convert("L"))
    except OSError:
        return None


def _half_size(image: np.ndarray) -> np.ndarray:
    """Nearest-neighbour downscaling by one half."""
    rows, cols = image.shape
    return image[::2, ::2][: round(rows * _SCALE), : round(cols * _SCALE)].copy()


class Dataset:
    """A stereo sequence: ``calib.txt`` and ``image_0``/``image_1`` directories."""

    def __init__(self, dataset_path):
        self.dataset_path = Path(dataset_path)
        self.current_image_index = 0
        self.cameras: list[Camera] = []

    def init(self) -> None:
        """Read the intrinsics and extrinsics of the four cameras.

        Each calibration record is a name followed by a 3x4 projection
        matrix; images are used at half size, so the intrinsics are halved.
        """
        path = self.dataset_path / CALIB_FILE
        try:
            tokens = path.read_text(encoding="utf-8").split()
        except OSError:
            logger.error("cannot find %s!", path)
            raise
        stream = iter(tokens)
        cameras = []
        for i in range(_NUM_CAMERAS):
            name = next(stream, None)
            values = list(itertools.islice(stream, _PROJECTION_VALUES))
            if name is None or len(values) < _PROJECTION_VALUES:
                raise ValueError(f"{path}: calibration of camera {i} is incomplete")
            try:
                projection = np.array(values, dtype=float).reshape(3, 4)
            except ValueError as exc:
                raise ValueError(f"{path}: camera {i}: {exc}") from exc
            k = projection[:, :3]
            try:
                t = np.linalg.solve(k, projection[:, 3])
            except np.linalg.LinAlgError as exc:
                raise ValueError(f"{path}: camera {i} has a singular intrinsic matrix") from exc
            k = k * _SCALE
            cameras.append(
                Camera(k[0, 0], k[1, 1], k[0, 2], k[1, 2], float(np.linalg.norm(t)), SE3(None, t))
            )
            logger.info("Camera %d extrinsics: %s", i, t)
        self.cameras = cameras
        self.current_image_index = 0

    def next_frame(self) -> Frame | None:
        """The next stereo frame at half size, or None when the images run out."""
        index = self.current_image_index
        left = _load_gray(self.dataset_path / "image_0" / f"{index:06d}.png")
        right = _load_gray(self.dataset_path / "image_1" / f"{index:06d}.png")
        if left is None or right is None:
            logger.warning("cannot find images at index %d", index)
            return None
        frame = Frame.create()
        frame.left_img = _half_size(left)
        frame.right_img = _half_size(right)
        self.current_image_index += 1
        return frame

    def get_camera(self, camera_id: int) -> Camera:
        if camera_id < 0 or camera_id >= len(self.cameras):
            raise IndexError(f"no camera {camera_id}")
        return self.cameras[camera_id]