from rigcalib.calibration import CalibrationOrchestrator, Extrinsics, Intrinsics
from rigcalib.config import CalibrationConfig, CameraTopology, load_calibration_config
from rigcalib.errors import (
    CalibrationCancelled,
    ConfigurationError,
    GeometricDegeneracyError,
    InsufficientDataError,
    MalformedDetectionError,
    RigCalibError,
)
from rigcalib.reprojection import CameraRig, Dataset, KeypointState, ReprojectionEngine, load_camera_rig

__all__ = [
    "CalibrationCancelled",
    "CalibrationConfig",
    "CalibrationOrchestrator",
    "CameraRig",
    "CameraTopology",
    "ConfigurationError",
    "Dataset",
    "Extrinsics",
    "GeometricDegeneracyError",
    "InsufficientDataError",
    "Intrinsics",
    "KeypointState",
    "MalformedDetectionError",
    "ReprojectionEngine",
    "RigCalibError",
    "load_calibration_config",
    "load_camera_rig",
]
