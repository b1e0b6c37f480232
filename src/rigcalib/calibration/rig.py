from __future__ import annotations

import logging
import shutil
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np

from rigcalib.calibration.cancellation import CancellationToken
from rigcalib.calibration.extrinsics import PairCalibration, calibrate_pair
from rigcalib.calibration.params_io import (
    Extrinsics,
    Intrinsics,
    extrinsics_path,
    intrinsics_path,
    save_extrinsics,
    save_intrinsics,
)
from rigcalib.calibration.scan import ProgressCallback
from rigcalib.config import CalibrationConfig, CameraTopology
from rigcalib.core.detector import CornerDetector
from rigcalib.core.geometry import compose_extrinsics, essential_from_pose, fundamental_from_essential, rotation_angle_deg
from rigcalib.core.video import FrameSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UnitCalibration:
    """
    Result of one calibration unit, held in memory until it is written.

    ``extrinsics`` maps every non-primary camera to its pose relative to the primary.
    """

    topology: CameraTopology
    extrinsics: dict[str, Extrinsics]
    intrinsics: dict[str, Intrinsics]
    intrinsics_errors: dict[str, float] = field(default_factory=dict)
    leg_errors: tuple[float, ...] = ()

    @property
    def mean_error(self) -> float:
        return float(np.mean(self.leg_errors)) if self.leg_errors else 0.0


def compose_triplet(
    leg1: Extrinsics,
    leg2: Extrinsics,
    K_a: np.ndarray,
    K_c: np.ndarray,
) -> Extrinsics:
    """
    Pose of C relative to A from (B rel. A) and (C rel. B).

    E and F are rebuilt from the composed pose so that they relate A and C.
    """
    R, T = compose_extrinsics(leg1.R, leg1.T, leg2.R, leg2.T)
    E = essential_from_pose(R, T)
    F = fundamental_from_essential(E, K_a, K_c)
    return Extrinsics(R=R, T=T, E=E, F=F)


def calibrate_unit(
    config: CalibrationConfig,
    topology: CameraTopology,
    *,
    detector: CornerDetector,
    open_source: Callable[[Path], FrameSource],
    cancel: CancellationToken | None = None,
    progress: ProgressCallback | None = None,
) -> UnitCalibration:
    """
    Calibrate a pair, or both legs of a triplet and compose them.

    Nothing is written here. Progress across the legs of a triplet is reported as one
    non-decreasing sequence.
    """
    offset = 0
    last = 0

    def leg_progress(done: int, total: int) -> None:
        nonlocal last
        last = max(last, offset + int(done))
        if progress is not None:
            progress(last, offset + int(total))

    legs: list[PairCalibration] = []
    intrinsics: dict[str, Intrinsics] = {}
    intrinsics_errors: dict[str, float] = {}
    for cameras in topology.legs():
        if cancel is not None:
            cancel.raise_if_cancelled()
        offset = last
        pair = calibrate_pair(
            config,
            cameras,
            detector=detector,
            open_source=open_source,
            cancel=cancel,
            progress=leg_progress,
            known_intrinsics=intrinsics,
        )
        legs.append(pair)
        intrinsics.update(pair.intrinsics)
        intrinsics_errors.update(pair.intrinsics_errors)

    a = topology.primary
    extrinsics = {topology.cameras[1]: legs[0].extrinsics}
    if topology.is_triplet:
        c = topology.cameras[2]
        composed = compose_triplet(legs[0].extrinsics, legs[1].extrinsics, intrinsics[a].K, intrinsics[c].K)
        extrinsics[c] = composed
        logger.info(
            "%s: composed %s relative to %s: rotation %.3f deg, baseline %.3f",
            topology.name,
            c,
            a,
            rotation_angle_deg(composed.R),
            float(np.linalg.norm(composed.T)),
        )

    return UnitCalibration(
        topology=topology,
        extrinsics=extrinsics,
        intrinsics=intrinsics,
        intrinsics_errors=intrinsics_errors,
        leg_errors=tuple(p.mean_error for p in legs),
    )


def write_unit(
    config: CalibrationConfig,
    unit: UnitCalibration,
    *,
    cancel: CancellationToken | None = None,
) -> list[Path]:
    """
    Persist newly fitted intrinsics and every extrinsics of the unit. Reused intrinsics are not rewritten.

    All files are first written to a staging directory under ``output_dir`` and then moved into
    place. If any step fails, the files already moved are removed again and the error propagates.
    """
    if cancel is not None:
        cancel.raise_if_cancelled()
    primary = unit.topology.primary
    staging = config.output_dir / f".staging-{uuid.uuid4().hex[:8]}"
    written: list[Path] = []
    try:
        staged: list[tuple[Path, Path]] = []
        for cam in unit.topology.cameras:
            if cam in unit.intrinsics_errors:
                tmp = save_intrinsics(staging / "Intrinsics", cam, unit.intrinsics[cam])
                staged.append((tmp, intrinsics_path(config.intrinsics_dir, cam)))
        for cam, ext in unit.extrinsics.items():
            tmp = save_extrinsics(staging / "Extrinsics", primary, cam, ext)
            staged.append((tmp, extrinsics_path(config.extrinsics_dir, primary, cam)))

        for _, dst in staged:
            dst.parent.mkdir(parents=True, exist_ok=True)
        try:
            for src, dst in staged:
                src.replace(dst)
                written.append(dst)
        except OSError:
            for p in written:
                p.unlink(missing_ok=True)
            written.clear()
            raise
    finally:
        shutil.rmtree(staging, ignore_errors=True)

    for p in written:
        logger.info("Wrote %s", p)
    return written
