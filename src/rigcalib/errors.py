from __future__ import annotations


class RigCalibError(Exception):
    pass


class ConfigurationError(RigCalibError, ValueError):
    """Missing or malformed configuration, parameter file or recording."""


class InsufficientDataError(RigCalibError):
    def __init__(self, found: int, required: int, unit: str = "") -> None:
        self.found = int(found)
        self.required = int(required)
        self.unit = unit
        prefix = f"{unit}: " if unit else ""
        super().__init__(
            f"{prefix}found {self.found} valid checkerboard pairs, {self.required} required. "
            "Make sure the checkerboard parameters are set correctly or use fewer frames."
        )


class MalformedDetectionError(RigCalibError):
    """A detected board references corners that do not exist or has the wrong shape."""


class CalibrationCancelled(RigCalibError):
    pass


class GeometricDegeneracyError(RigCalibError):
    """A fit did not converge or produced non-finite parameters."""
