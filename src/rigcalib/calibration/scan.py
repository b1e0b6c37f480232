from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

import numpy as np

from rigcalib.calibration.cancellation import CancellationToken
from rigcalib.config import CalibrationConfig
from rigcalib.core.board import board_object_points, board_to_corners, check_rotation
from rigcalib.core.detector import CornerDetector
from rigcalib.core.video import FrameSource, sampling_stride
from rigcalib.errors import MalformedDetectionError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


@dataclass
class ScanResult:
    """
    Board correspondences gathered from synchronized recordings.

    ``image_points[c][i]`` holds the (W*H, 2) corners of camera ``c`` in kept frame ``i``;
    every kept frame has a complete board in all cameras.
    """

    object_points: list[np.ndarray] = field(default_factory=list)
    image_points: list[list[np.ndarray]] = field(default_factory=list)
    frame_indices: list[int] = field(default_factory=list)
    image_size: tuple[int, int] = (0, 0)
    frames_total: int = 0

    def __len__(self) -> int:
        return len(self.object_points)


def detect_board(image: np.ndarray, detector: CornerDetector, pattern_width: int, pattern_height: int) -> np.ndarray | None:
    """Detect, normalize and orient one board. Returns None when no usable board is found."""
    detection = detector.detect(image)
    if detection.num_corners < pattern_width * pattern_height or not detection.boards:
        return None
    try:
        corners = board_to_corners(detection.boards[0], detection.corners, pattern_width, pattern_height)
    except MalformedDetectionError as e:
        logger.debug("dropping board: %s", e)
        return None
    return check_rotation(corners, image, pattern_width, pattern_height)


def scan_synchronized(
    sources: Sequence[FrameSource],
    config: CalibrationConfig,
    detector: CornerDetector,
    *,
    cancel: CancellationToken | None = None,
    progress: ProgressCallback | None = None,
) -> ScanResult:
    """
    Read synchronized recordings in lockstep and keep frames where every camera sees the board.

    After each read all sources skip ahead by the sampling stride. The cancellation token is
    polled before every read.
    """
    if not sources:
        raise ValueError("need at least one frame source")
    w, h = config.pattern_width, config.pattern_height
    objp = board_object_points(w, h, config.pattern_side_length)

    frame_count = int(sources[0].frame_count)
    stride = sampling_stride(sources[0].fps, config.max_sampling_frame_rate)
    result = ScanResult(image_points=[[] for _ in sources], frames_total=frame_count)

    counter = 0
    while True:
        if cancel is not None:
            cancel.raise_if_cancelled()
        frames = [s.read() for s in sources]
        if any(f is None for f in frames):
            break
        frame_index = int(sources[0].position)
        if stride > 0:
            for s in sources:
                s.seek(frame_index + stride)
        result.image_size = (int(frames[0].shape[1]), int(frames[0].shape[0]))

        corners: list[np.ndarray] = []
        for frame in frames:
            c = detect_board(frame, detector, w, h)
            if c is None:
                break
            corners.append(c)
        if len(corners) == len(frames):
            for cam, c in enumerate(corners):
                result.image_points[cam].append(c)
            result.object_points.append(objp)
            result.frame_indices.append(frame_index - 1)

        if progress is not None:
            progress(counter * (stride + 1), frame_count)
        counter += 1
        if frame_index > frame_count:
            break

    logger.debug("scan kept %d of %d sampled frames", len(result), counter)
    return result


def subsample_indices(available: int, target: int) -> list[int]:
    """
    Uniform stride over ``available`` items keeping about ``min(target, available)`` of them.
    """
    if available <= 0:
        return []
    keep = min(int(target), available)
    if keep <= 0:
        return []
    ratio = available / keep
    return [min(int(i * ratio), available - 1) for i in range(keep)]
