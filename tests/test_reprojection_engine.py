from __future__ import annotations

import numpy as np
import pytest

from rigcalib.calibration.params_io import Extrinsics, Intrinsics
from rigcalib.core.geometry import project_point
from rigcalib.events import ReprojectionUpdated
from rigcalib.reprojection import CameraRig, Dataset, KeypointState, ReprojectionEngine, SkeletonEdge

from synthetic_rig import HEIGHT, WIDTH, camera_matrix, rotation

NOSE = np.array([10.0, -5.0, 700.0])
TAIL = NOSE + np.array([53.0, 0.0, 0.0])


def _pose(rvec, T) -> Extrinsics:
    return Extrinsics(R=rotation(rvec), T=np.asarray(T, dtype=np.float64).reshape(3, 1), E=np.eye(3), F=np.eye(3))


def _rig(D: np.ndarray | None = None) -> CameraRig:
    intr = Intrinsics(K=camera_matrix(), D=np.zeros((1, 5)) if D is None else np.asarray(D, dtype=np.float64).reshape(1, 5))
    return CameraRig(
        camera_names=["Cam0", "Cam1", "Cam2"],
        intrinsics=[intr, intr, intr],
        extrinsics=[Extrinsics.identity(), _pose((0.0, 0.1, 0.0), (-100.0, 0.0, 0.0)), _pose((0.0, -0.1, 0.0), (100.0, 0.0, 0.0))],
    )


def _setup(events=None):
    pytest.importorskip("cv2")
    rig = _rig()
    ds = Dataset(["Cam0", "Cam1", "Cam2"], ["mouse"], ["nose", "tail"], [SkeletonEdge("body", "nose", "tail", 50.0)])
    ds.add_capture([(WIDTH, HEIGHT)] * 3)
    engine = ReprojectionEngine(ds, rig, min_views=2, on_event=None if events is None else events.append)
    return rig, ds, engine


def _uv(rig: CameraRig, cam: int, X: np.ndarray) -> tuple[float, float]:
    uv, _ = project_point(X, rig.intrinsics[cam].K, rig.intrinsics[cam].D, rig.extrinsics[cam].R, rig.extrinsics[cam].T)
    return float(uv[0]), float(uv[1])


def _annotate(ds, rig, bodypart, X, cams):
    for cam in cams:
        ds.annotate(0, cam, "mouse", bodypart, _uv(rig, cam, X))


def test_two_views_reproject_into_third_camera():
    events: list[object] = []
    rig, ds, engine = _setup(events)
    _annotate(ds, rig, "nose", NOSE, [0, 1])
    engine.enable()

    kp = ds.keypoint(0, 2, "mouse", "nose")
    assert kp.state is KeypointState.REPROJECTED
    assert np.allclose(kp.coordinates, _uv(rig, 2, NOSE), atol=1e-6)
    assert ds.keypoint(0, 0, "mouse", "nose").state is KeypointState.ANNOTATED

    errs = engine.errors(0)["mouse"]
    assert errs.reprojection["nose"] < 1e-6
    assert errs.view_counts["nose"] == 2
    assert np.linalg.norm(errs.points3d["nose"] - NOSE) < 1e-6
    assert events == [ReprojectionUpdated(capture=0)]


def test_reprojection_error_averages_over_all_cameras():
    rig, ds, engine = _setup()
    _annotate(ds, rig, "nose", NOSE, [0, 1, 2])
    u, v = _uv(rig, 0, NOSE)
    ds.annotate(0, 0, "mouse", "nose", (u + 3.0, v))
    engine.enable()
    err = engine.errors(0)["mouse"].reprojection["nose"]
    assert 0.0 < err < 3.0


def test_below_min_views_demotes_and_zeroes():
    rig, ds, engine = _setup()
    _annotate(ds, rig, "nose", NOSE, [0, 1])
    engine.enable()
    assert ds.keypoint(0, 2, "mouse", "nose").state is KeypointState.REPROJECTED

    ds.clear(0, 1, "mouse", "nose")
    engine.recompute_capture(0)
    assert ds.keypoint(0, 2, "mouse", "nose").state is KeypointState.NOT_ANNOTATED
    assert ds.keypoint(0, 1, "mouse", "nose").state is KeypointState.NOT_ANNOTATED
    errs = engine.errors(0)["mouse"]
    assert errs.reprojection["nose"] == 0.0
    assert errs.view_counts["nose"] == 1
    assert not errs.triangulated("nose")


def test_raising_min_views_demotes():
    rig, ds, engine = _setup()
    _annotate(ds, rig, "nose", NOSE, [0, 1])
    engine.enable()
    engine.set_min_views(3)
    assert ds.keypoint(0, 2, "mouse", "nose").state is KeypointState.NOT_ANNOTATED
    assert engine.errors(0)["mouse"].reprojection["nose"] == 0.0


def test_suppressed_keypoint_is_never_reprojected():
    rig, ds, engine = _setup()
    ds.suppress(0, 2, "mouse", "nose")
    _annotate(ds, rig, "nose", NOSE, [0, 1])
    engine.enable()
    engine.recompute_all()
    assert ds.keypoint(0, 2, "mouse", "nose").state is KeypointState.SUPPRESSED


def test_out_of_bounds_reprojection_is_cleared():
    rig, ds, engine = _setup()
    _annotate(ds, rig, "nose", NOSE, [0, 1])
    engine.enable()
    assert ds.keypoint(0, 2, "mouse", "nose").state is KeypointState.REPROJECTED

    ds.img_sets[0].frames[2].image_size = (10, 10)
    engine.recompute_capture(0)
    assert ds.keypoint(0, 2, "mouse", "nose").state is KeypointState.NOT_ANNOTATED


def test_bone_length_error():
    rig, ds, engine = _setup()
    _annotate(ds, rig, "nose", NOSE, [0, 1])
    _annotate(ds, rig, "tail", TAIL, [0, 2])
    engine.enable()
    assert engine.errors(0)["mouse"].bone_length["body"] == pytest.approx(3.0, abs=1e-5)

    ds.clear(0, 2, "mouse", "tail")
    engine.recompute_capture(0)
    assert engine.errors(0)["mouse"].bone_length["body"] == 0.0


def test_disable_reverts_engine_state():
    rig, ds, engine = _setup()
    _annotate(ds, rig, "nose", NOSE, [0, 1])
    engine.enable()
    engine.disable()
    states = [ds.keypoint(0, cam, "mouse", "nose").state for cam in range(3)]
    assert states == [KeypointState.ANNOTATED, KeypointState.ANNOTATED, KeypointState.NOT_ANNOTATED]
    assert engine.errors(0) == {}

    # Recompute requests are ignored while the tool is off.
    engine.recompute_capture(0)
    assert ds.keypoint(0, 2, "mouse", "nose").state is KeypointState.NOT_ANNOTATED


def test_rig_and_dataset_must_agree():
    pytest.importorskip("cv2")
    ds = Dataset(["Cam0", "Cam1"], ["mouse"], ["nose"])
    with pytest.raises(ValueError):
        ReprojectionEngine(ds, _rig())


def test_round_trip_through_lens_distortion():
    pytest.importorskip("cv2")
    rig = _rig(D=[[-0.1, 0.02, 0.0, 0.0, 0.0]])
    # The lens model must actually move the point for the round trip to mean anything.
    undistorted = _rig()
    X = NOSE + np.array([-60.0, 30.0, 0.0])
    assert np.linalg.norm(np.subtract(_uv(rig, 1, X), _uv(undistorted, 1, X))) > 0.05

    ds = Dataset(["Cam0", "Cam1", "Cam2"], ["mouse"], ["nose"])
    ds.add_capture([(WIDTH, HEIGHT)] * 3)
    engine = ReprojectionEngine(ds, rig)
    for cam in (0, 1):
        ds.annotate(0, cam, "mouse", "nose", _uv(rig, cam, X))
    engine.enable()

    kp = ds.keypoint(0, 2, "mouse", "nose")
    assert kp.state is KeypointState.REPROJECTED
    assert np.allclose(kp.coordinates, _uv(rig, 2, X), atol=1e-6)
    errs = engine.errors(0)["mouse"]
    assert errs.reprojection["nose"] < 1e-6
    assert np.linalg.norm(errs.points3d["nose"] - X) < 1e-5
