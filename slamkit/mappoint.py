"""Landmarks: 3-D points formed by triangulating features."""

from __future__ import annotations

import itertools
import threading
import weakref
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from slamkit.frame import Feature


class MapPoint:
    """A landmark with its world position and the features observing it."""

    _ids = itertools.count()

    def __init__(self, point_id: int = 0, position=None):
        self.id = point_id
        self.is_outlier = False
        self._pos = np.zeros(3) if position is None else np.asarray(position, dtype=float).reshape(3).copy()
        self._lock = threading.Lock()
        self.observed_times = 0
        self._observations: list[weakref.ref] = []

    @property
    def pos(self) -> np.ndarray:
        """Position in world coordinates."""
        with self._lock:
            return self._pos.copy()

    @pos.setter
    def pos(self, value) -> None:
        arr = np.asarray(value, dtype=float).reshape(3).copy()
        with self._lock:
            self._pos = arr

    @staticmethod
    def create() -> MapPoint:
        """A new map point with the next free id."""
        return MapPoint(next(MapPoint._ids))

    def add_observation(self, feature: Feature) -> None:
        with self._lock:
            self._observations.append(weakref.ref(feature))
            self.observed_times += 1

    def remove_observation(self, feature: Feature) -> bool:
        """Drop a feature's observation and unlink it; False if it was not there."""
        with self._lock:
            for position, ref in enumerate(self._observations):
                if ref() is feature:
                    del self._observations[position]
                    feature.detach_map_point()
                    self.observed_times -= 1
                    return True
        return False

    def observations(self) -> list[Feature]:
        """The observing features that still exist."""
        with self._lock:
            live = (ref() for ref in self._observations)
            return [feat for feat in live if feat is not None]

    def __repr__(self) -> str:
        return f"MapPoint(id={self.id}, pos={self._pos.tolist()!r}, observed={self.observed_times})"