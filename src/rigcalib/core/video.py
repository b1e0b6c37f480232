from __future__ import annotations

from pathlib import Path
from typing import Protocol

import numpy as np

from rigcalib.errors import ConfigurationError

RECORDING_FORMATS = ("avi", "mp4", "mov", "wmv", "AVI", "MP4", "MOV", "WMV")


class FrameSource(Protocol):
    """Sequential, seekable access to the frames of one recording."""

    @property
    def frame_count(self) -> int: ...

    @property
    def fps(self) -> float: ...

    @property
    def position(self) -> int: ...

    def read(self) -> np.ndarray | None: ...

    def seek(self, frame_index: int) -> None: ...

    def close(self) -> None: ...


class VideoFrameSource:
    def __init__(self, path: str | Path) -> None:
        import cv2  # type: ignore

        self.path = Path(path)
        self._cap = cv2.VideoCapture(str(self.path))
        if not self._cap.isOpened():
            raise ConfigurationError(f"Cannot open recording {self.path}")

    @property
    def frame_count(self) -> int:
        import cv2  # type: ignore

        return int(self._cap.get(cv2.CAP_PROP_FRAME_COUNT))

    @property
    def fps(self) -> float:
        import cv2  # type: ignore

        return float(self._cap.get(cv2.CAP_PROP_FPS))

    @property
    def position(self) -> int:
        import cv2  # type: ignore

        return int(self._cap.get(cv2.CAP_PROP_POS_FRAMES))

    def read(self) -> np.ndarray | None:
        ok, frame = self._cap.read()
        if not ok:
            return None
        return frame

    def seek(self, frame_index: int) -> None:
        import cv2  # type: ignore

        self._cap.set(cv2.CAP_PROP_POS_FRAMES, int(frame_index))

    def close(self) -> None:
        self._cap.release()

    def __enter__(self) -> "VideoFrameSource":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


def find_recording(directory: Path, camera: str) -> Path:
    """
    Resolve ``<directory>/<camera>.<ext>`` by probing the accepted recording formats.

    When several formats are present, the one listed last in ``RECORDING_FORMATS`` is used.
    """
    directory = Path(directory)
    for ext in reversed(RECORDING_FORMATS):
        candidate = directory / f"{camera}.{ext}"
        if candidate.exists():
            return candidate
    raise ConfigurationError(f"No recording for camera {camera} in {directory} (tried {', '.join(RECORDING_FORMATS)})")


def open_video(path: Path) -> FrameSource:
    return VideoFrameSource(path)


def sampling_stride(fps: float, max_sampling_frame_rate: int) -> int:
    """Frames skipped after each read so that at most ``max_sampling_frame_rate`` frames/s are used."""
    return max(int(fps) // int(max_sampling_frame_rate) - 1, 0)
