from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

import numpy as np


@dataclass(frozen=True)
class CornerDetection:
    """
    Output of a checkerboard corner detector for one image.

    ``corners`` are candidate corner positions (N,2) in pixels. Each entry of ``boards`` is an
    integer grid indexing into ``corners``; the grid carries a one-cell border ring around the
    interior corners and may contain negative entries for missing corners.
    """

    corners: np.ndarray
    boards: list[np.ndarray] = field(default_factory=list)

    @property
    def num_corners(self) -> int:
        return int(np.asarray(self.corners).reshape(-1, 2).shape[0])


class CornerDetector(Protocol):
    def detect(self, image: np.ndarray) -> CornerDetection: ...


def _to_gray(image: np.ndarray) -> np.ndarray:
    import cv2  # type: ignore

    if image.ndim == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    return image


@dataclass(frozen=True)
class ChessboardCornerDetector:
    """
    OpenCV-backed detector (``cv2.findChessboardCornersSB``).

    OpenCV returns an already ordered grid, which is wrapped into the border-ringed index grid
    expected by the correspondence normalizer so it goes through the same checks as any other
    detector.
    """

    pattern_width: int
    pattern_height: int
    flags: int | None = None

    def detect(self, image: np.ndarray) -> CornerDetection:
        import cv2  # type: ignore

        gray = _to_gray(np.asarray(image))
        flags = self.flags
        if flags is None:
            flags = cv2.CALIB_CB_NORMALIZE_IMAGE | cv2.CALIB_CB_EXHAUSTIVE | cv2.CALIB_CB_ACCURACY
        found, corners = cv2.findChessboardCornersSB(gray, (self.pattern_width, self.pattern_height), flags=flags)
        if not found or corners is None:
            return CornerDetection(corners=np.zeros((0, 2), dtype=np.float32))

        xy = np.asarray(corners, dtype=np.float32).reshape(-1, 2)
        grid = np.full((self.pattern_height + 2, self.pattern_width + 2), -1, dtype=np.int64)
        grid[1:-1, 1:-1] = np.arange(xy.shape[0], dtype=np.int64).reshape(self.pattern_height, self.pattern_width)
        return CornerDetection(corners=xy, boards=[grid])
