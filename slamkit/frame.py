"""Frames of a stereo sequence and the 2-D features extracted from them."""

from __future__ import annotations

import itertools
import threading
import weakref
from typing import TYPE_CHECKING, NamedTuple, Optional

import numpy as np

from slamkit.lie import SE3

if TYPE_CHECKING:
    from slamkit.mappoint import MapPoint


class KeyPoint(NamedTuple):
    """Image position of a feature and the diameter of its neighbourhood."""

    x: float
    y: float
    size: float = 7.0


class Feature:
    """A 2-D feature; after triangulation it is linked to a map point.

    The owning frame and the map point are held by weak reference.
    """

    def __init__(self, frame: Optional[Frame] = None, position=KeyPoint(0.0, 0.0),
                 is_on_left_image: bool = True):
        self._frame = weakref.ref(frame) if frame is not None else None
        self.position = position if isinstance(position, KeyPoint) else KeyPoint(*position)
        self._map_point = None
        self.is_outlier = False
        self.is_on_left_image = is_on_left_image

    def frame(self) -> Optional[Frame]:
        """The frame holding this feature, or None if it no longer exists."""
        return self._frame() if self._frame is not None else None

    def map_point(self) -> Optional[MapPoint]:
        """The linked map point, or None."""
        return self._map_point() if self._map_point is not None else None

    def attach_map_point(self, map_point: Optional[MapPoint]) -> None:
        self._map_point = weakref.ref(map_point) if map_point is not None else None

    def detach_map_point(self) -> None:
        self._map_point = None

    def __repr__(self) -> str:
        return f"Feature(position={self.position!r}, left={self.is_on_left_image})"


class Frame:
    """A stereo frame; every frame has an id and keyframes a keyframe id too."""

    _ids = itertools.count()
    _keyframe_ids = itertools.count()

    def __init__(self, frame_id: int = 0, time_stamp: float = 0.0, pose: SE3 | None = None,
                 left_img: np.ndarray | None = None, right_img: np.ndarray | None = None):
        self.id = frame_id
        self.keyframe_id = 0
        self.is_keyframe = False
        self.time_stamp = time_stamp
        self._pose = SE3() if pose is None else pose
        self._pose_lock = threading.Lock()
        self.left_img = left_img
        self.right_img = right_img
        self.features_left: list[Feature] = []
        self.features_right: list[Optional[Feature]] = []

    @property
    def pose(self) -> SE3:
        """World-to-camera pose."""
        with self._pose_lock:
            return self._pose

    @pose.setter
    def pose(self, value: SE3) -> None:
        with self._pose_lock:
            self._pose = value

    @staticmethod
    def create() -> Frame:
        """A new frame with the next free id."""
        return Frame(next(Frame._ids))

    def set_keyframe(self) -> None:
        """Mark this frame as a keyframe and give it the next keyframe id."""
        self.is_keyframe = True
        self.keyframe_id = next(Frame._keyframe_ids)

    def __repr__(self) -> str:
        return f"Frame(id={self.id}, keyframe_id={self.keyframe_id}, keyframe={self.is_keyframe})"