from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np

from rigcalib.calibration.cancellation import CancellationToken
from rigcalib.calibration.intrinsics import load_or_calibrate, termination_criteria
from rigcalib.calibration.params_io import Extrinsics, Intrinsics
from rigcalib.calibration.scan import ProgressCallback, scan_synchronized, subsample_indices
from rigcalib.config import CalibrationConfig
from rigcalib.core.detector import CornerDetector
from rigcalib.core.video import FrameSource, find_recording
from rigcalib.errors import GeometricDegeneracyError, InsufficientDataError

logger = logging.getLogger(__name__)

STAGE_THRESHOLDS = (1.4, 1.6)
STAGE_CRITERIA = (80, 1e-6)
FINAL_CRITERIA = (120, 1e-7)


@dataclass(frozen=True)
class PairCorrespondences:
    object_points: list[np.ndarray]
    image_points_1: list[np.ndarray]
    image_points_2: list[np.ndarray]
    image_size: tuple[int, int]

    def __len__(self) -> int:
        return len(self.object_points)

    def take(self, indices: list[int] | np.ndarray) -> "PairCorrespondences":
        idx = [int(i) for i in indices]
        return PairCorrespondences(
            object_points=[self.object_points[i] for i in idx],
            image_points_1=[self.image_points_1[i] for i in idx],
            image_points_2=[self.image_points_2[i] for i in idx],
            image_size=self.image_size,
        )


@dataclass(frozen=True)
class StereoFit:
    extrinsics: Extrinsics
    mean_error: float
    # Frames used by the stage-1 fit, the stage-2 fit and the final fit.
    stage_counts: tuple[int, int, int]
    stage_errors: tuple[float, float]


@dataclass(frozen=True)
class PairCalibration:
    cameras: tuple[str, str]
    fit: StereoFit
    intrinsics: dict[str, Intrinsics]
    intrinsics_errors: dict[str, float] = field(default_factory=dict)
    frames_total: int = 0

    @property
    def extrinsics(self) -> Extrinsics:
        return self.fit.extrinsics

    @property
    def mean_error(self) -> float:
        return self.fit.mean_error

    @property
    def stage_counts(self) -> tuple[int, int, int]:
        return self.fit.stage_counts


def stereo_calibrate(
    corr: PairCorrespondences,
    i1: Intrinsics,
    i2: Intrinsics,
    criteria: tuple[int, float],
) -> tuple[float, Extrinsics, np.ndarray]:
    """
    One stereo fit with both intrinsics held fixed.

    Returns (rms, extrinsics, per-view errors (N,2)).
    """
    import cv2  # type: ignore

    if len(corr) == 0:
        raise GeometricDegeneracyError("no correspondences left for stereo calibration")
    objp = [np.asarray(o, dtype=np.float32).reshape(-1, 1, 3) for o in corr.object_points]
    img1 = [np.asarray(p, dtype=np.float32).reshape(-1, 1, 2) for p in corr.image_points_1]
    img2 = [np.asarray(p, dtype=np.float32).reshape(-1, 1, 2) for p in corr.image_points_2]
    try:
        out = cv2.stereoCalibrateExtended(
            objp,
            img1,
            img2,
            np.asarray(i1.K, dtype=np.float64),
            np.asarray(i1.D, dtype=np.float64),
            np.asarray(i2.K, dtype=np.float64),
            np.asarray(i2.D, dtype=np.float64),
            (int(corr.image_size[0]), int(corr.image_size[1])),
            np.eye(3, dtype=np.float64),
            np.zeros((3, 1), dtype=np.float64),
            flags=cv2.CALIB_FIX_INTRINSIC,
            criteria=termination_criteria(*criteria),
        )
    except cv2.error as e:
        raise GeometricDegeneracyError(f"stereo calibration failed: {e}") from e

    rms = float(out[0])
    R, T, E, F = (np.asarray(m, dtype=np.float64) for m in out[5:9])
    per_view = np.asarray(out[-1], dtype=np.float64).reshape(-1, 2)
    ext = Extrinsics(R=R.reshape(3, 3), T=T.reshape(3, 1), E=E.reshape(3, 3), F=F.reshape(3, 3))
    if not (np.isfinite(rms) and all(np.all(np.isfinite(m)) for m in (ext.R, ext.T, ext.E, ext.F))):
        raise GeometricDegeneracyError("stereo calibration returned non-finite parameters")
    return rms, ext, per_view


def filter_by_error(per_view: np.ndarray, mean_error: float, threshold_factor: float) -> np.ndarray:
    """Indices of views whose worse camera error stays within ``threshold_factor * mean_error``."""
    worst = np.max(np.asarray(per_view, dtype=np.float64).reshape(-1, 2), axis=1)
    return np.flatnonzero(worst <= float(threshold_factor) * float(mean_error))


def stereo_calibration_step(
    corr: PairCorrespondences,
    i1: Intrinsics,
    i2: Intrinsics,
    threshold_factor: float,
) -> tuple[float, PairCorrespondences]:
    """Fit on ``corr`` and return (rms, the views that pass the error threshold)."""
    rms, _ext, per_view = stereo_calibrate(corr, i1, i2, STAGE_CRITERIA)
    keep = filter_by_error(per_view, rms, threshold_factor)
    if keep.size == 0:
        raise GeometricDegeneracyError(f"outlier filter at {threshold_factor}x mean error left no views")
    return rms, corr.take(keep)


def fit_pair_extrinsics(
    corr: PairCorrespondences,
    i1: Intrinsics,
    i2: Intrinsics,
    *,
    cancel: CancellationToken | None = None,
) -> StereoFit:
    """
    Two-stage threshold-and-refit stereo calibration followed by a tight final fit.
    """
    counts = [len(corr)]
    errors: list[float] = []
    for stage, factor in enumerate(STAGE_THRESHOLDS, start=1):
        if cancel is not None:
            cancel.raise_if_cancelled()
        rms, corr = stereo_calibration_step(corr, i1, i2, factor)
        errors.append(rms)
        logger.info("Mean reprojection error after stage %d: %.4f", stage, rms)
        logger.info("Number of images after stage %d: %d", stage, len(corr))
        counts.append(len(corr))

    if cancel is not None:
        cancel.raise_if_cancelled()
    rms, ext, _ = stereo_calibrate(corr, i1, i2, FINAL_CRITERIA)
    return StereoFit(
        extrinsics=ext,
        mean_error=rms,
        stage_counts=(counts[0], counts[1], counts[2]),
        stage_errors=(errors[0], errors[1]),
    )


def calibrate_pair(
    config: CalibrationConfig,
    cameras: tuple[str, str],
    *,
    detector: CornerDetector,
    open_source: Callable[[Path], FrameSource],
    cancel: CancellationToken | None = None,
    progress: ProgressCallback | None = None,
    known_intrinsics: Mapping[str, Intrinsics] | None = None,
) -> PairCalibration:
    """
    Calibrate the relative pose of ``cameras[1]`` with respect to ``cameras[0]``.

    Recordings are read from ``<extrinsics_path>/<cam0>-<cam1>/<cam>.<ext>``. Intrinsics come
    from ``known_intrinsics``, then from existing parameter files, and are otherwise fitted on
    the subsampled correspondences.
    """
    cam1, cam2 = cameras
    unit = f"{cam1}-{cam2}"
    pair_dir = config.extrinsics_path / unit
    sources = [open_source(find_recording(pair_dir, cam1))]
    try:
        sources.append(open_source(find_recording(pair_dir, cam2)))
        scan = scan_synchronized(sources, config, detector, cancel=cancel, progress=progress)
    finally:
        for s in sources:
            s.close()

    if len(scan) < config.frames_for_extrinsics:
        raise InsufficientDataError(len(scan), config.frames_for_extrinsics, unit=unit)

    keep = subsample_indices(len(scan), config.target_frames_for_extrinsics)
    corr = PairCorrespondences(
        object_points=[scan.object_points[i] for i in keep],
        image_points_1=[scan.image_points[0][i] for i in keep],
        image_points_2=[scan.image_points[1][i] for i in keep],
        image_size=scan.image_size,
    )

    known = dict(known_intrinsics or {})
    intrinsics: dict[str, Intrinsics] = {}
    intrinsics_errors: dict[str, float] = {}
    for cam, points in ((cam1, corr.image_points_1), (cam2, corr.image_points_2)):
        if cam in known:
            intrinsics[cam] = known[cam]
            continue
        if cancel is not None:
            cancel.raise_if_cancelled()
        intr, err = load_or_calibrate(config.intrinsics_dir, cam, corr.object_points, points, corr.image_size)
        intrinsics[cam] = intr
        if err is not None:
            intrinsics_errors[cam] = err

    fit = fit_pair_extrinsics(corr, intrinsics[cam1], intrinsics[cam2], cancel=cancel)
    logger.info("%s: final mean reprojection error %.4f over %d images", unit, fit.mean_error, fit.stage_counts[2])
    return PairCalibration(
        cameras=(cam1, cam2),
        fit=fit,
        intrinsics=intrinsics,
        intrinsics_errors=intrinsics_errors,
        frames_total=scan.frames_total,
    )
