from __future__ import annotations

import numpy as np
import pytest

from rigcalib.calibration.extrinsics import PairCorrespondences, filter_by_error, fit_pair_extrinsics
from rigcalib.calibration.intrinsics import calibrate_intrinsics
from rigcalib.calibration.params_io import Extrinsics, Intrinsics
from rigcalib.calibration.rig import compose_triplet
from rigcalib.calibration.scan import subsample_indices
from rigcalib.core.geometry import rotation_angle_deg

from synthetic_rig import HEIGHT, WIDTH, camera_matrix, rotation, stereo_views


def test_subsample_indices_uniform_stride():
    assert subsample_indices(10, 5) == [0, 2, 4, 6, 8]
    assert subsample_indices(3, 10) == [0, 1, 2]
    assert subsample_indices(0, 10) == []
    idx = subsample_indices(7, 3)
    assert idx == [0, 2, 4]
    assert len(subsample_indices(1000, 333)) == 333


def test_filter_by_error_uses_worse_camera():
    per_view = np.array([[0.1, 0.1], [0.1, 0.5], [0.3, 0.1], [0.2, 0.2]])
    keep = filter_by_error(per_view, 0.2, 1.4)
    assert keep.tolist() == [0, 3]


def test_intrinsics_recovered_from_synthetic_views():
    pytest.importorskip("cv2")
    K = camera_matrix()
    objp, img1, _ = stereo_views(
        20, np.eye(3), np.zeros(3), K1=K, K2=K, noise_px=0.05, seed=3
    )
    intr, rms = calibrate_intrinsics(objp, img1, (WIDTH, HEIGHT))
    assert rms < 0.2
    assert intr.K[0, 0] == pytest.approx(800.0, rel=0.02)
    assert intr.K[1, 1] == pytest.approx(800.0, rel=0.02)
    assert intr.K[0, 2] == pytest.approx(WIDTH / 2.0, abs=8.0)
    assert intr.D.shape[0] == 1


def test_stereo_fit_recovers_pose_and_filters_outliers():
    pytest.importorskip("cv2")
    K = camera_matrix()
    R_rel, T_rel = rotation((0.0, 0.1, 0.0)), np.array([-100.0, 0.0, 0.0])
    objp, img1, img2 = stereo_views(40, R_rel, T_rel, K1=K, K2=K, noise_px=0.1, seed=5)
    # Three views with badly localized corners in camera B.
    rng = np.random.default_rng(9)
    for i in (4, 17, 30):
        img2[i] = (img2[i] + rng.normal(0.0, 3.0, size=img2[i].shape)).astype(np.float32)

    corr = PairCorrespondences(object_points=objp, image_points_1=img1, image_points_2=img2, image_size=(WIDTH, HEIGHT))
    intr = Intrinsics(K=K, D=np.zeros((1, 5)))
    fit = fit_pair_extrinsics(corr, intr, intr)

    c0, c1, c2 = fit.stage_counts
    assert c0 == 40
    assert c0 >= c1 >= c2 > 0
    assert c1 <= 37
    assert fit.mean_error < 0.5
    assert rotation_angle_deg(fit.extrinsics.R.T @ R_rel) < 0.2
    assert np.linalg.norm(fit.extrinsics.T.reshape(3) - T_rel) < 2.0


def test_compose_triplet_identity_legs():
    pytest.importorskip("cv2")
    K = camera_matrix()
    ident = Extrinsics.identity()
    out = compose_triplet(ident, ident, K, K)
    assert np.allclose(out.R, np.eye(3))
    assert np.allclose(out.T, 0.0)
    assert np.allclose(out.E, 0.0)


def test_compose_triplet_rebuilds_epipolar_geometry():
    pytest.importorskip("cv2")
    K_a, K_c = camera_matrix(800.0), camera_matrix(760.0)
    leg1 = Extrinsics(R=rotation((0.0, 0.1, 0.0)), T=np.array([[-100.0], [0.0], [0.0]]), E=np.eye(3), F=np.eye(3))
    leg2 = Extrinsics(R=rotation((0.0, 0.12, 0.02)), T=np.array([[-90.0], [5.0], [0.0]]), E=np.eye(3), F=np.eye(3))
    out = compose_triplet(leg1, leg2, K_a, K_c)

    X = np.array([10.0, -20.0, 750.0])
    x_a = K_a @ X
    x_c = K_c @ (out.R @ X + out.T.reshape(3))
    x_a, x_c = x_a / x_a[2], x_c / x_c[2]
    assert abs(float(x_c @ out.F @ x_a)) < 1e-6
    assert np.allclose(out.T, leg2.R @ leg1.T + leg2.T)
