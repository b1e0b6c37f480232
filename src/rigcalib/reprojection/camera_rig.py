from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import numpy as np

from rigcalib.calibration.params_io import (
    Extrinsics,
    Intrinsics,
    extrinsics_path,
    intrinsics_path,
    load_extrinsics,
    load_intrinsics,
)
from rigcalib.core.geometry import project_point, projection_matrix, triangulate_dlt, undistort_to_normalized
from rigcalib.errors import ConfigurationError


@dataclass(frozen=True)
class CameraRig:
    """
    Calibrated cameras, all expressed in the frame of the primary camera.

    ``extrinsics[i]`` maps primary coordinates into camera i; it is the identity for the primary.
    """

    camera_names: list[str]
    intrinsics: list[Intrinsics]
    extrinsics: list[Extrinsics]
    primary: int = 0

    def __post_init__(self) -> None:
        if not (len(self.camera_names) == len(self.intrinsics) == len(self.extrinsics)):
            raise ValueError("camera_names, intrinsics and extrinsics must have the same length")
        if not 0 <= self.primary < len(self.camera_names):
            raise ValueError(f"primary index {self.primary} out of range")

    @property
    def num_cameras(self) -> int:
        return len(self.camera_names)

    def triangulate(self, observations: dict[int, np.ndarray]) -> np.ndarray:
        """Point in the primary frame from pixel observations {camera index: (u, v)}. NaN if degenerate."""
        cams = sorted(observations)
        xy = [undistort_to_normalized(observations[c], self.intrinsics[c].K, self.intrinsics[c].D)[0] for c in cams]
        projections = [projection_matrix(self.extrinsics[c].R, self.extrinsics[c].T) for c in cams]
        return triangulate_dlt(xy, projections)

    def reproject(self, X: np.ndarray) -> list[tuple[np.ndarray, float]]:
        """(uv_px, depth) of ``X`` in every camera, in rig order."""
        return [
            project_point(X, intr.K, intr.D, ext.R, ext.T)
            for intr, ext in zip(self.intrinsics, self.extrinsics, strict=True)
        ]


def required_parameter_files(
    intrinsics_dir: Path, extrinsics_dir: Path, camera_names: list[str], primary: str
) -> list[Path]:
    if primary not in camera_names:
        raise ConfigurationError(f"primary camera {primary} is not one of {camera_names}")
    files = [intrinsics_path(intrinsics_dir, cam) for cam in camera_names]
    files += [extrinsics_path(extrinsics_dir, primary, cam) for cam in camera_names if cam != primary]
    return files


def missing_parameter_files(
    intrinsics_dir: Path, extrinsics_dir: Path, camera_names: list[str], primary: str
) -> list[Path]:
    return [p for p in required_parameter_files(intrinsics_dir, extrinsics_dir, camera_names, primary) if not p.exists()]


def load_camera_rig(intrinsics_dir: Path, extrinsics_dir: Path, camera_names: list[str], primary: str) -> CameraRig:
    missing = missing_parameter_files(intrinsics_dir, extrinsics_dir, camera_names, primary)
    if missing:
        raise ConfigurationError("Missing parameter files: " + ", ".join(p.name for p in missing))
    intrinsics = [load_intrinsics(intrinsics_dir, cam) for cam in camera_names]
    extrinsics = [
        Extrinsics.identity() if cam == primary else load_extrinsics(extrinsics_dir, primary, cam)
        for cam in camera_names
    ]
    return CameraRig(
        camera_names=list(camera_names),
        intrinsics=intrinsics,
        extrinsics=extrinsics,
        primary=camera_names.index(primary),
    )
