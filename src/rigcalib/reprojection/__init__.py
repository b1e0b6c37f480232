"""
Cross-view annotation propagation: triangulate annotated keypoints with a calibrated rig and
reproject them into the remaining cameras.
"""

from rigcalib.reprojection.camera_rig import CameraRig, load_camera_rig, missing_parameter_files
from rigcalib.reprojection.dataset import Dataset, Frame, ImgSet, Keypoint, KeypointState, SkeletonEdge
from rigcalib.reprojection.engine import EntityErrors, ReprojectionEngine

__all__ = [
    "CameraRig",
    "Dataset",
    "EntityErrors",
    "Frame",
    "ImgSet",
    "Keypoint",
    "KeypointState",
    "ReprojectionEngine",
    "SkeletonEdge",
    "load_camera_rig",
    "missing_parameter_files",
]
