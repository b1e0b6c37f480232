from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

import numpy as np


class KeypointState(Enum):
    NOT_ANNOTATED = "not_annotated"
    ANNOTATED = "annotated"
    REPROJECTED = "reprojected"
    SUPPRESSED = "suppressed"


@dataclass
class Keypoint:
    state: KeypointState = KeypointState.NOT_ANNOTATED
    coordinates: tuple[float, float] = (0.0, 0.0)

    def xy(self) -> np.ndarray:
        return np.asarray(self.coordinates, dtype=np.float64).reshape(2)


@dataclass(frozen=True)
class SkeletonEdge:
    name: str
    keypoint_a: str
    keypoint_b: str
    length: float


@dataclass
class Frame:
    """One camera's image of a capture. ``keypoints`` is keyed by (entity, bodypart)."""

    camera: str
    image_size: tuple[int, int]  # (width, height)
    keypoints: dict[tuple[str, str], Keypoint] = field(default_factory=dict)

    def contains(self, uv: np.ndarray) -> bool:
        u, v = (float(x) for x in np.asarray(uv, dtype=np.float64).reshape(2))
        w, h = self.image_size
        return bool(np.isfinite(u) and np.isfinite(v) and 0.0 <= u <= w and 0.0 <= v <= h)


@dataclass
class ImgSet:
    """One synchronized capture: one frame per camera, in rig order."""

    frames: list[Frame] = field(default_factory=list)


class Dataset:
    """
    Keypoint store addressed by (capture, camera, entity, bodypart).

    Keypoints are created with the dataset and never added or removed afterwards; the
    reprojection engine only reads and writes their state and coordinates.
    """

    def __init__(
        self,
        camera_names: list[str],
        entities: list[str],
        bodyparts: list[str],
        skeleton: list[SkeletonEdge] | None = None,
    ) -> None:
        if len(set(camera_names)) != len(camera_names):
            raise ValueError("camera names must be unique")
        self.camera_names = list(camera_names)
        self.entities = list(entities)
        self.bodyparts = list(bodyparts)
        self.skeleton = list(skeleton or [])
        for edge in self.skeleton:
            if edge.keypoint_a not in self.bodyparts or edge.keypoint_b not in self.bodyparts:
                raise ValueError(f"skeleton edge {edge.name} references an unknown bodypart")
        self.img_sets: list[ImgSet] = []

    @property
    def num_cameras(self) -> int:
        return len(self.camera_names)

    def __len__(self) -> int:
        return len(self.img_sets)

    def add_capture(self, image_sizes: list[tuple[int, int]]) -> int:
        """Append a capture with every keypoint NOT_ANNOTATED. Returns its index."""
        if len(image_sizes) != self.num_cameras:
            raise ValueError(f"expected {self.num_cameras} image sizes, got {len(image_sizes)}")
        frames = []
        for cam, size in zip(self.camera_names, image_sizes, strict=True):
            keypoints = {(e, b): Keypoint() for e in self.entities for b in self.bodyparts}
            frames.append(Frame(camera=cam, image_size=(int(size[0]), int(size[1])), keypoints=keypoints))
        self.img_sets.append(ImgSet(frames=frames))
        return len(self.img_sets) - 1

    def keypoint(self, capture: int, camera: int, entity: str, bodypart: str) -> Keypoint:
        return self.img_sets[capture].frames[camera].keypoints[(entity, bodypart)]

    def annotate(self, capture: int, camera: int, entity: str, bodypart: str, xy: tuple[float, float]) -> None:
        kp = self.keypoint(capture, camera, entity, bodypart)
        kp.state = KeypointState.ANNOTATED
        kp.coordinates = (float(xy[0]), float(xy[1]))

    def suppress(self, capture: int, camera: int, entity: str, bodypart: str) -> None:
        self.keypoint(capture, camera, entity, bodypart).state = KeypointState.SUPPRESSED

    def clear(self, capture: int, camera: int, entity: str, bodypart: str) -> None:
        self.keypoint(capture, camera, entity, bodypart).state = KeypointState.NOT_ANNOTATED
