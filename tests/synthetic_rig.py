from __future__ import annotations

from pathlib import Path

import numpy as np

from rigcalib.core.board import board_object_points
from rigcalib.core.detector import CornerDetection

WIDTH, HEIGHT = 640, 480
PATTERN_W, PATTERN_H, SIDE = 9, 6, 30.0


def camera_matrix(f: float = 800.0) -> np.ndarray:
    return np.array([[f, 0.0, WIDTH / 2.0], [0.0, f, HEIGHT / 2.0], [0.0, 0.0, 1.0]], dtype=np.float64)


def rotation(rvec: tuple[float, float, float]) -> np.ndarray:
    import cv2  # type: ignore

    R, _ = cv2.Rodrigues(np.asarray(rvec, dtype=np.float64).reshape(3, 1))
    return R


def board_poses(n: int, seed: int = 0) -> list[tuple[np.ndarray, np.ndarray]]:
    """Board-to-camera-A poses: tilted boards roughly centred in front of camera A."""
    rng = np.random.default_rng(seed)
    center = np.array([(PATTERN_W - 1) * SIDE / 2.0, (PATTERN_H - 1) * SIDE / 2.0, 0.0])
    poses = []
    for _ in range(n):
        R = rotation(tuple(rng.uniform(-0.35, 0.35, size=3)))
        t0 = np.array([rng.uniform(-40.0, 40.0), rng.uniform(-30.0, 30.0), rng.uniform(650.0, 850.0)])
        poses.append((R, t0 - R @ center))
    return poses


def project(
    objp: np.ndarray, R: np.ndarray, t: np.ndarray, K: np.ndarray, D: np.ndarray | None = None
) -> np.ndarray:
    import cv2  # type: ignore

    rvec, _ = cv2.Rodrigues(R)
    uv, _ = cv2.projectPoints(
        np.asarray(objp, dtype=np.float64).reshape(-1, 1, 3),
        rvec,
        np.asarray(t, dtype=np.float64).reshape(3, 1),
        K,
        np.zeros((1, 5)) if D is None else D,
    )
    return uv.reshape(-1, 2)


def stereo_views(
    n: int,
    R_rel: np.ndarray,
    T_rel: np.ndarray,
    *,
    K1: np.ndarray,
    K2: np.ndarray,
    noise_px: float = 0.0,
    seed: int = 0,
) -> tuple[list[np.ndarray], list[np.ndarray], list[np.ndarray]]:
    """Object points and noisy projections in A and in B, where X_B = R_rel X_A + T_rel."""
    rng = np.random.default_rng(seed + 1)
    objp = board_object_points(PATTERN_W, PATTERN_H, SIDE)
    obj_list, img1, img2 = [], [], []
    for R, t in board_poses(n, seed=seed):
        uv1 = project(objp, R, t, K1)
        uv2 = project(objp, R_rel @ R, R_rel @ t + np.asarray(T_rel, dtype=np.float64).reshape(3), K2)
        obj_list.append(objp)
        img1.append((uv1 + rng.normal(0.0, noise_px, size=uv1.shape)).astype(np.float32))
        img2.append((uv2 + rng.normal(0.0, noise_px, size=uv2.shape)).astype(np.float32))
    return obj_list, img1, img2


class FakeFrameSource:
    """
    In-memory recording. Each frame is a black image whose first pixels encode the camera id
    and the frame index, which ``FakeDetector`` decodes.
    """

    def __init__(self, camera_id: int, frame_count: int, fps: float = 30.0, shape: tuple[int, int] = (HEIGHT, WIDTH)) -> None:
        self.camera_id = camera_id
        self._count = frame_count
        self._fps = fps
        self._shape = shape
        self._pos = 0
        self.closed = False
        self.reads = 0

    @property
    def frame_count(self) -> int:
        return self._count

    @property
    def fps(self) -> float:
        return self._fps

    @property
    def position(self) -> int:
        return self._pos

    def read(self) -> np.ndarray | None:
        if self._pos >= self._count:
            return None
        img = np.zeros(self._shape, dtype=np.uint8)
        img[0, 0] = self.camera_id
        img[0, 1] = self._pos % 256
        img[0, 2] = self._pos // 256
        self._pos += 1
        self.reads += 1
        return img

    def seek(self, frame_index: int) -> None:
        self._pos = int(frame_index)

    def close(self) -> None:
        self.closed = True


class FakeDetector:
    """Returns precomputed corners per (camera id, frame index), as a border-ringed grid."""

    def __init__(self, corners: dict[tuple[int, int], np.ndarray] | None = None) -> None:
        self.corners = corners or {}

    def detect(self, image: np.ndarray) -> CornerDetection:
        key = (int(image[0, 0]), int(image[0, 1]) + 256 * int(image[0, 2]))
        xy = self.corners.get(key)
        if xy is None:
            return CornerDetection(corners=np.zeros((0, 2), dtype=np.float32))
        grid = np.full((PATTERN_H + 2, PATTERN_W + 2), -1, dtype=np.int64)
        grid[1:-1, 1:-1] = np.arange(PATTERN_W * PATTERN_H).reshape(PATTERN_H, PATTERN_W)
        return CornerDetection(corners=np.asarray(xy, dtype=np.float32), boards=[grid])


def touch_recordings(directory: Path, cameras: list[str], ext: str = "mp4") -> None:
    directory.mkdir(parents=True, exist_ok=True)
    for cam in cameras:
        (directory / f"{cam}.{ext}").write_bytes(b"")
