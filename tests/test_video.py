from __future__ import annotations

from pathlib import Path

import pytest

from rigcalib.core.video import find_recording, sampling_stride
from rigcalib.errors import ConfigurationError


def test_sampling_stride():
    assert sampling_stride(30.0, 10) == 2
    assert sampling_stride(29.97, 10) == 1
    assert sampling_stride(30.0, 30) == 0
    assert sampling_stride(10.0, 30) == 0


def test_find_recording_prefers_last_listed_format(tmp_path: Path):
    (tmp_path / "Cam1.mov").write_bytes(b"")
    (tmp_path / "Cam1.mp4").write_bytes(b"")
    assert find_recording(tmp_path, "Cam1").name.lower() == "cam1.mov"
    (tmp_path / "Cam1.avi").write_bytes(b"")
    assert find_recording(tmp_path, "Cam1").name.lower() == "cam1.mov"
    (tmp_path / "Cam1.wmv").write_bytes(b"")
    assert find_recording(tmp_path, "Cam1").name.lower() == "cam1.wmv"


def test_find_recording_single_format(tmp_path: Path):
    (tmp_path / "Cam1.mp4").write_bytes(b"")
    assert find_recording(tmp_path, "Cam1").name.lower() == "cam1.mp4"


def test_find_recording_missing(tmp_path: Path):
    (tmp_path / "Cam1.mkv").write_bytes(b"")
    with pytest.raises(ConfigurationError, match="Cam1"):
        find_recording(tmp_path, "Cam1")


def test_video_frame_source_rejects_unreadable_file(tmp_path: Path):
    pytest.importorskip("cv2")
    from rigcalib.core.video import VideoFrameSource

    bad = tmp_path / "Cam1.avi"
    bad.write_bytes(b"not a video")
    with pytest.raises(ConfigurationError):
        VideoFrameSource(bad)
