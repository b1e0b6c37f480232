from __future__ import annotations

from collections.abc import Sequence

import numpy as np


def skew(t: np.ndarray) -> np.ndarray:
    tx, ty, tz = (float(v) for v in np.asarray(t, dtype=np.float64).reshape(3))
    return np.array([[0.0, -tz, ty], [tz, 0.0, -tx], [-ty, tx, 0.0]], dtype=np.float64)


def compose_extrinsics(
    R1: np.ndarray, T1: np.ndarray, R2: np.ndarray, T2: np.ndarray
) -> tuple[np.ndarray, np.ndarray]:
    """
    Chain two relative poses.

    Convention: X_B = R1 X_A + T1 and X_C = R2 X_B + T2. Returns (R, T) with X_C = R X_A + T.
    Both legs are first taken back into the A frame (R1^T T1 and R1^T R2^T T2) and the sum is
    rotated into C, which reduces to R2 T1 + T2.
    """
    R1 = np.asarray(R1, dtype=np.float64).reshape(3, 3)
    R2 = np.asarray(R2, dtype=np.float64).reshape(3, 3)
    T1 = np.asarray(T1, dtype=np.float64).reshape(3, 1)
    T2 = np.asarray(T2, dtype=np.float64).reshape(3, 1)

    T1_a = R1.T @ T1
    T2_b = R2.T @ T2
    R = R2 @ R1
    T = R @ (T1_a + R1.T @ T2_b)
    return R, T


def essential_from_pose(R: np.ndarray, T: np.ndarray) -> np.ndarray:
    return skew(T) @ np.asarray(R, dtype=np.float64).reshape(3, 3)


def fundamental_from_essential(E: np.ndarray, K1: np.ndarray, K2: np.ndarray) -> np.ndarray:
    """F = K2^-T E K1^-1, scaled so that F[2,2] == 1 when possible (OpenCV convention)."""
    K1 = np.asarray(K1, dtype=np.float64).reshape(3, 3)
    K2 = np.asarray(K2, dtype=np.float64).reshape(3, 3)
    F = np.linalg.inv(K2).T @ np.asarray(E, dtype=np.float64).reshape(3, 3) @ np.linalg.inv(K1)
    if abs(F[2, 2]) > 1e-12:
        F = F / F[2, 2]
    return F


def projection_matrix(R: np.ndarray, T: np.ndarray) -> np.ndarray:
    """3x4 [R|T] acting on normalized (undistorted, K-free) image coordinates."""
    P = np.zeros((3, 4), dtype=np.float64)
    P[:, :3] = np.asarray(R, dtype=np.float64).reshape(3, 3)
    P[:, 3] = np.asarray(T, dtype=np.float64).reshape(3)
    return P


def undistort_to_normalized(uv_px: np.ndarray, K: np.ndarray, D: np.ndarray) -> np.ndarray:
    """Pixel coordinates (N,2) -> normalized camera coordinates x=X/Z, y=Y/Z (N,2)."""
    import cv2  # type: ignore

    uv = np.asarray(uv_px, dtype=np.float64).reshape(-1, 1, 2)
    xy = cv2.undistortPoints(uv, np.asarray(K, dtype=np.float64), np.asarray(D, dtype=np.float64))
    return np.asarray(xy, dtype=np.float64).reshape(-1, 2)


def triangulate_dlt(xy_norm: Sequence[np.ndarray] | np.ndarray, projections: Sequence[np.ndarray]) -> np.ndarray:
    """
    Linear least-squares triangulation of one point seen by several cameras.

    ``xy_norm[i]`` is the normalized observation in camera i and ``projections[i]`` its 3x4
    [R|T]. Each view contributes two rows to A X = 0; X is the right singular vector of the
    smallest singular value. Returns (3,), NaN when the solution is at infinity.
    """
    xy = np.asarray(xy_norm, dtype=np.float64).reshape(-1, 2)
    if xy.shape[0] != len(projections) or xy.shape[0] < 2:
        raise ValueError("need one observation per projection and at least two views")

    rows = []
    for (x, y), P in zip(xy, projections, strict=True):
        P = np.asarray(P, dtype=np.float64).reshape(3, 4)
        rows.append(x * P[2] - P[0])
        rows.append(y * P[2] - P[1])
    A = np.stack(rows, axis=0)
    _, _, vt = np.linalg.svd(A)
    Xh = vt[-1]
    if abs(Xh[3]) < 1e-12:
        return np.full((3,), np.nan, dtype=np.float64)
    return Xh[:3] / Xh[3]


def project_point(
    X: np.ndarray, K: np.ndarray, D: np.ndarray, R: np.ndarray, T: np.ndarray
) -> tuple[np.ndarray, float]:
    """
    Project a world point into a camera with lens distortion.

    Returns (uv_px (2,), depth) where depth is Z in the camera frame.
    """
    import cv2  # type: ignore

    X = np.asarray(X, dtype=np.float64).reshape(3)
    R = np.asarray(R, dtype=np.float64).reshape(3, 3)
    T = np.asarray(T, dtype=np.float64).reshape(3)
    depth = float((R @ X + T)[2])
    rvec, _ = cv2.Rodrigues(R)
    uv, _ = cv2.projectPoints(
        X.reshape(1, 1, 3),
        rvec,
        T.reshape(3, 1),
        np.asarray(K, dtype=np.float64),
        np.asarray(D, dtype=np.float64),
    )
    return np.asarray(uv, dtype=np.float64).reshape(2), depth


def rotation_angle_deg(R: np.ndarray) -> float:
    """Magnitude of the rotation, in degrees."""
    from scipy.spatial.transform import Rotation as Rot  # type: ignore

    return float(np.degrees(np.linalg.norm(Rot.from_matrix(np.asarray(R, dtype=np.float64)).as_rotvec())))
