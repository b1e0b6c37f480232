from rigcalib.calibration.cancellation import CancellationToken
from rigcalib.calibration.extrinsics import PairCalibration, StereoFit, calibrate_pair, fit_pair_extrinsics
from rigcalib.calibration.intrinsics import calibrate_intrinsics, calibrate_intrinsics_recording, load_or_calibrate
from rigcalib.calibration.orchestrator import CalibrationOrchestrator
from rigcalib.calibration.params_io import (
    Extrinsics,
    Intrinsics,
    load_extrinsics,
    load_intrinsics,
    save_extrinsics,
    save_intrinsics,
)
from rigcalib.calibration.rig import UnitCalibration, calibrate_unit, compose_triplet, write_unit

__all__ = [
    "CancellationToken",
    "CalibrationOrchestrator",
    "Extrinsics",
    "Intrinsics",
    "PairCalibration",
    "StereoFit",
    "UnitCalibration",
    "calibrate_intrinsics",
    "calibrate_intrinsics_recording",
    "calibrate_pair",
    "calibrate_unit",
    "compose_triplet",
    "fit_pair_extrinsics",
    "load_extrinsics",
    "load_intrinsics",
    "load_or_calibrate",
    "save_extrinsics",
    "save_intrinsics",
    "write_unit",
]
