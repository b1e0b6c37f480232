from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np

from rigcalib.events import EventCallback, ReprojectionUpdated
from rigcalib.reprojection.camera_rig import CameraRig
from rigcalib.reprojection.dataset import Dataset, KeypointState

logger = logging.getLogger(__name__)


@dataclass
class EntityErrors:
    """
    Diagnostics for one entity in one capture.

    A stored 0.0 is ambiguous on its own: ``view_counts`` (trusted views per bodypart) and
    ``points3d`` tell "not triangulated" apart from "no error".
    """

    reprojection: dict[str, float] = field(default_factory=dict)
    bone_length: dict[str, float] = field(default_factory=dict)
    view_counts: dict[str, int] = field(default_factory=dict)
    points3d: dict[str, np.ndarray] = field(default_factory=dict)

    def triangulated(self, bodypart: str) -> bool:
        return bodypart in self.points3d


class ReprojectionEngine:
    """
    Propagate annotations across the cameras of a calibrated rig.

    For every (entity, bodypart) of a capture, the ANNOTATED views are triangulated and the
    point is reprojected into the other views, which become REPROJECTED. SUPPRESSED keypoints
    are never touched. Insufficient support is a normal outcome: stale REPROJECTED keypoints
    are demoted and the errors are zeroed; nothing is raised.
    """

    def __init__(
        self,
        dataset: Dataset,
        rig: CameraRig,
        *,
        min_views: int = 2,
        on_event: EventCallback | None = None,
    ) -> None:
        if rig.num_cameras != dataset.num_cameras:
            raise ValueError(f"rig has {rig.num_cameras} cameras, dataset has {dataset.num_cameras}")
        if min_views < 2:
            raise ValueError("min_views must be >= 2")
        self.dataset = dataset
        self.rig = rig
        self.min_views = int(min_views)
        self.on_event = on_event
        self.active = False
        self._errors: dict[int, dict[str, EntityErrors]] = {}

    def errors(self, capture: int) -> dict[str, EntityErrors]:
        return self._errors.get(capture, {})

    def enable(self) -> None:
        self.active = True
        self.recompute_all()

    def disable(self) -> None:
        """Undo every engine-derived state: demote REPROJECTED keypoints and drop all aggregates."""
        self.active = False
        self._errors.clear()
        for capture, img_set in enumerate(self.dataset.img_sets):
            for frame in img_set.frames:
                for kp in frame.keypoints.values():
                    if kp.state is KeypointState.REPROJECTED:
                        kp.state = KeypointState.NOT_ANNOTATED
            self._emit(capture)

    def set_min_views(self, n: int) -> None:
        if int(n) < 2:
            raise ValueError("min_views must be >= 2")
        self.min_views = int(n)
        if self.active:
            self.recompute_all()

    def recompute_all(self) -> None:
        for capture in range(len(self.dataset)):
            self.recompute_capture(capture)

    def recompute_capture(self, capture: int) -> None:
        if not self.active:
            return
        img_set = self.dataset.img_sets[capture]
        per_entity: dict[str, EntityErrors] = {}
        for entity in self.dataset.entities:
            errs = EntityErrors()
            for bodypart in self.dataset.bodyparts:
                self._recompute_bodypart(img_set.frames, entity, bodypart, errs)
            for edge in self.dataset.skeleton:
                Xa = errs.points3d.get(edge.keypoint_a)
                Xb = errs.points3d.get(edge.keypoint_b)
                if Xa is None or Xb is None:
                    errs.bone_length[edge.name] = 0.0
                else:
                    errs.bone_length[edge.name] = abs(float(np.linalg.norm(Xa - Xb)) - float(edge.length))
            per_entity[entity] = errs
        self._errors[capture] = per_entity
        self._emit(capture)

    def _recompute_bodypart(self, frames: list, entity: str, bodypart: str, errs: EntityErrors) -> None:
        key = (entity, bodypart)
        keypoints = [f.keypoints[key] for f in frames]
        trusted = {cam: kp.xy() for cam, kp in enumerate(keypoints) if kp.state is KeypointState.ANNOTATED}
        errs.view_counts[bodypart] = len(trusted)

        X = None
        if len(trusted) >= self.min_views:
            X = self.rig.triangulate(trusted)
            if not np.all(np.isfinite(X)):
                logger.debug("%s/%s: triangulation at infinity", entity, bodypart)
                X = None

        if X is None:
            errs.reprojection[bodypart] = 0.0
            for kp in keypoints:
                if kp.state is KeypointState.REPROJECTED:
                    kp.state = KeypointState.NOT_ANNOTATED
            return

        n_cameras = len(keypoints)
        error = 0.0
        for cam, ((uv, depth), kp) in enumerate(zip(self.rig.reproject(X), keypoints, strict=True)):
            if cam in trusted:
                error += float(np.linalg.norm(trusted[cam] - uv)) / n_cameras
            elif kp.state is KeypointState.SUPPRESSED:
                continue
            elif depth > 0.0 and frames[cam].contains(uv):
                kp.state = KeypointState.REPROJECTED
                kp.coordinates = (float(uv[0]), float(uv[1]))
            elif kp.state is KeypointState.REPROJECTED:
                kp.state = KeypointState.NOT_ANNOTATED
        errs.reprojection[bodypart] = error
        errs.points3d[bodypart] = X

    def _emit(self, capture: int) -> None:
        if self.on_event is not None:
            self.on_event(ReprojectionUpdated(capture=capture))
