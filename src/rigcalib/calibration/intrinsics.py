from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from pathlib import Path

import numpy as np

from rigcalib.calibration.cancellation import CancellationToken
from rigcalib.calibration.params_io import Intrinsics, load_intrinsics
from rigcalib.calibration.scan import ProgressCallback, scan_synchronized, subsample_indices
from rigcalib.config import CalibrationConfig
from rigcalib.core.detector import CornerDetector
from rigcalib.core.video import FrameSource, find_recording
from rigcalib.errors import ConfigurationError, GeometricDegeneracyError, InsufficientDataError

logger = logging.getLogger(__name__)


def termination_criteria(max_iter: int, eps: float) -> tuple[int, int, float]:
    import cv2  # type: ignore

    return (cv2.TERM_CRITERIA_MAX_ITER + cv2.TERM_CRITERIA_EPS, int(max_iter), float(eps))


def calibrate_intrinsics(
    object_points: Sequence[np.ndarray],
    image_points: Sequence[np.ndarray],
    image_size: tuple[int, int],
) -> tuple[Intrinsics, float]:
    """
    Pinhole fit with k3 fixed and zero tangential distortion.

    ``image_size`` is (width, height). Returns the intrinsics and the RMS reprojection error.
    """
    import cv2  # type: ignore

    if len(object_points) == 0 or len(object_points) != len(image_points):
        raise ValueError("need matching, non-empty object/image point lists")

    objp = [np.asarray(o, dtype=np.float32).reshape(-1, 1, 3) for o in object_points]
    imgp = [np.asarray(i, dtype=np.float32).reshape(-1, 1, 2) for i in image_points]
    try:
        rms, K, D, _rvecs, _tvecs = cv2.calibrateCamera(
            objp,
            imgp,
            (int(image_size[0]), int(image_size[1])),
            None,
            None,
            flags=cv2.CALIB_FIX_K3 | cv2.CALIB_ZERO_TANGENT_DIST,
            criteria=termination_criteria(80, 1e-6),
        )
    except cv2.error as e:
        raise GeometricDegeneracyError(f"intrinsic calibration failed: {e}") from e

    K = np.asarray(K, dtype=np.float64).reshape(3, 3)
    D = np.asarray(D, dtype=np.float64).reshape(1, -1)
    if not (np.isfinite(rms) and np.all(np.isfinite(K)) and np.all(np.isfinite(D))):
        raise GeometricDegeneracyError("intrinsic calibration returned non-finite parameters")
    return Intrinsics(K=K, D=D), float(rms)


def load_or_calibrate(
    intrinsics_dir: Path,
    camera: str,
    object_points: Sequence[np.ndarray],
    image_points: Sequence[np.ndarray],
    image_size: tuple[int, int],
) -> tuple[Intrinsics, float | None]:
    """
    Reuse ``Intrinsics_<camera>.yaml`` when it exists and is readable, otherwise fit.

    Returns (intrinsics, error); the error is None when the file was reused. Nothing is
    written here: the caller persists new intrinsics once the whole unit has succeeded.
    """
    try:
        intrinsics = load_intrinsics(intrinsics_dir, camera)
    except ConfigurationError:
        pass
    else:
        logger.info("Camera %s: reusing intrinsics from %s", camera, intrinsics_dir)
        return intrinsics, None

    logger.info("Calibrating camera %s using %d images...", camera, len(image_points))
    intrinsics, err = calibrate_intrinsics(object_points, image_points, image_size)
    logger.info("Camera %s calibrated with reprojection error %.4f", camera, err)
    return intrinsics, err


def calibrate_intrinsics_recording(
    config: CalibrationConfig,
    camera: str,
    *,
    detector: CornerDetector,
    open_source: Callable[[Path], FrameSource],
    cancel: CancellationToken | None = None,
    progress: ProgressCallback | None = None,
) -> tuple[Intrinsics, float]:
    """
    Fit one camera's intrinsics from its dedicated recording ``<intrinsics_path>/<camera>.<ext>``.
    """
    if config.intrinsics_path is None:
        raise ConfigurationError("paths.intrinsics_path is not configured")
    source = open_source(find_recording(config.intrinsics_path, camera))
    try:
        scan = scan_synchronized([source], config, detector, cancel=cancel, progress=progress)
    finally:
        source.close()

    if len(scan) < config.frames_for_intrinsics:
        raise InsufficientDataError(len(scan), config.frames_for_intrinsics, unit=f"camera {camera}")
    keep = subsample_indices(len(scan), config.frames_for_intrinsics)
    if cancel is not None:
        cancel.raise_if_cancelled()
    logger.info("Calibrating camera %s using %d images...", camera, len(keep))
    intrinsics, err = calibrate_intrinsics(
        [scan.object_points[i] for i in keep],
        [scan.image_points[0][i] for i in keep],
        scan.image_size,
    )
    logger.info("Camera %s calibrated with reprojection error %.4f", camera, err)
    return intrinsics, err
