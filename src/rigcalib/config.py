from __future__ import annotations

import json
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from rigcalib.errors import ConfigurationError

SCHEMA_VERSION = "rigcalib.calibration_config.v0"


@dataclass(frozen=True)
class CameraTopology:
    """
    One calibration unit: 2 cameras (pair) or 3 cameras (triplet).

    Index 0 is the primary camera; in a triplet index 1 is the pivot shared by both legs.
    """

    cameras: tuple[str, ...]

    @property
    def primary(self) -> str:
        return self.cameras[0]

    @property
    def is_triplet(self) -> bool:
        return len(self.cameras) == 3

    @property
    def name(self) -> str:
        return "-".join(self.cameras)

    def legs(self) -> list[tuple[str, str]]:
        return [(self.cameras[i], self.cameras[i + 1]) for i in range(len(self.cameras) - 1)]


@dataclass(frozen=True)
class CalibrationConfig:
    pattern_width: int
    pattern_height: int
    pattern_side_length: float
    max_sampling_frame_rate: int
    frames_for_extrinsics: int
    target_frames_for_extrinsics: int
    calibration_set_path: Path
    calibration_set_name: str
    extrinsics_path: Path
    intrinsics_path: Path | None = None
    frames_for_intrinsics: int = 20

    @property
    def output_dir(self) -> Path:
        return self.calibration_set_path / self.calibration_set_name

    @property
    def intrinsics_dir(self) -> Path:
        return self.output_dir / "Intrinsics"

    @property
    def extrinsics_dir(self) -> Path:
        return self.output_dir / "Extrinsics"

    @property
    def pattern_size(self) -> tuple[int, int]:
        return self.pattern_width, self.pattern_height


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ConfigurationError(msg)


def _as_float(raw: Any, key: str) -> float:
    _require(isinstance(raw, (int, float)) and not isinstance(raw, bool), f"{key} must be a number, got {raw!r}")
    _require(math.isfinite(raw), f"{key} must be finite, got {raw!r}")
    return float(raw)


def _as_int(raw: Any, key: str) -> int:
    value = _as_float(raw, key)
    _require(value.is_integer(), f"{key} must be an integer, got {raw!r}")
    return int(value)


def load_calibration_config(path: Path) -> tuple[CalibrationConfig, list[CameraTopology]]:
    path = Path(path)
    _require(path.exists(), f"Missing {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"{path} is not valid JSON: {e}") from e
    return parse_calibration_config(data)


def parse_calibration_config(data: dict[str, Any]) -> tuple[CalibrationConfig, list[CameraTopology]]:
    _require(isinstance(data, dict), "config must be an object")
    _require(data.get("schema_version") == SCHEMA_VERSION, f"schema_version must be {SCHEMA_VERSION}")

    pattern = data.get("pattern", {})
    sampling = data.get("sampling", {})
    paths = data.get("paths", {})
    for key, section in (("pattern", pattern), ("sampling", sampling), ("paths", paths)):
        _require(isinstance(section, dict), f"{key} must be an object")

    w_raw = pattern.get("width")
    h_raw = pattern.get("height")
    _require(w_raw is not None and h_raw is not None, "pattern.width and pattern.height are required")
    w, h = _as_int(w_raw, "pattern.width"), _as_int(h_raw, "pattern.height")
    # The orientation check reads a 2x2 block at each end of the grid.
    _require(w >= 2 and h >= 2, "pattern.width and pattern.height must be >= 2 interior corners")

    side_raw = pattern.get("side_length")
    _require(side_raw is not None, "pattern.side_length is required")
    side = _as_float(side_raw, "pattern.side_length")
    _require(side > 0.0, "pattern.side_length must be > 0")

    max_rate = _as_int(sampling.get("max_sampling_frame_rate", 10), "sampling.max_sampling_frame_rate")
    _require(max_rate >= 1, "sampling.max_sampling_frame_rate must be >= 1")

    frames_raw = sampling.get("frames_for_extrinsics")
    _require(frames_raw is not None, "sampling.frames_for_extrinsics is required")
    frames_min = _as_int(frames_raw, "sampling.frames_for_extrinsics")
    _require(frames_min >= 1, "sampling.frames_for_extrinsics must be >= 1")
    frames_target = _as_int(
        sampling.get("target_frames_for_extrinsics", frames_min), "sampling.target_frames_for_extrinsics"
    )
    _require(frames_target >= frames_min, "sampling.target_frames_for_extrinsics must be >= frames_for_extrinsics")

    set_path = paths.get("calibration_set_path")
    set_name = paths.get("calibration_set_name")
    ext_path = paths.get("extrinsics_path")
    _require(set_path is not None and set_name, "paths.calibration_set_path and paths.calibration_set_name are required")
    _require(ext_path is not None, "paths.extrinsics_path is required")
    int_path = paths.get("intrinsics_path")
    frames_intr = _as_int(sampling.get("frames_for_intrinsics", 20), "sampling.frames_for_intrinsics")
    _require(frames_intr >= 1, "sampling.frames_for_intrinsics must be >= 1")

    config = CalibrationConfig(
        pattern_width=w,
        pattern_height=h,
        pattern_side_length=side,
        max_sampling_frame_rate=max_rate,
        frames_for_extrinsics=frames_min,
        target_frames_for_extrinsics=frames_target,
        calibration_set_path=Path(set_path),
        calibration_set_name=str(set_name),
        extrinsics_path=Path(ext_path),
        intrinsics_path=Path(int_path) if int_path is not None else None,
        frames_for_intrinsics=frames_intr,
    )
    return config, parse_topologies(data.get("calibration_units", []))


def parse_topologies(units: Any) -> list[CameraTopology]:
    _require(isinstance(units, (list, tuple)), "calibration_units must be a list of camera-name lists")
    topologies: list[CameraTopology] = []
    for unit in units:
        _require(isinstance(unit, (list, tuple)), "each calibration unit must be a list of camera names")
        cameras = tuple(str(c) for c in unit)
        _require(len(cameras) in (2, 3), f"calibration unit {list(cameras)} must have 2 or 3 cameras")
        _require(len(set(cameras)) == len(cameras), f"calibration unit {list(cameras)} repeats a camera")
        topologies.append(CameraTopology(cameras=cameras))
    return topologies
