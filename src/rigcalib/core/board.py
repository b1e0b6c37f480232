from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from rigcalib.errors import MalformedDetectionError


def board_object_points(pattern_width: int, pattern_height: int, side_length: float) -> np.ndarray:
    """
    Planar board points (Z=0) in row-major order, shaped (W*H, 3) float32.
    """
    jj, ii = np.meshgrid(np.arange(pattern_width), np.arange(pattern_height))
    pts = np.zeros((pattern_width * pattern_height, 3), dtype=np.float32)
    pts[:, 0] = jj.reshape(-1) * float(side_length)
    pts[:, 1] = ii.reshape(-1) * float(side_length)
    return pts


def _as_index_grid(board_idx: Sequence[Sequence[int]] | np.ndarray) -> np.ndarray:
    if isinstance(board_idx, np.ndarray):
        grid = board_idx
    else:
        widths = {len(row) for row in board_idx}
        if len(widths) != 1:
            raise MalformedDetectionError("board index grid is ragged")
        grid = np.asarray(board_idx)
    if grid.ndim != 2 or grid.shape[0] < 3 or grid.shape[1] < 3:
        raise MalformedDetectionError(f"board index grid has unusable shape {grid.shape}")
    return grid.astype(np.int64)


def board_to_corners(
    board_idx: Sequence[Sequence[int]] | np.ndarray,
    corner_positions: np.ndarray,
    pattern_width: int,
    pattern_height: int,
) -> np.ndarray:
    """
    Extract the interior corners of a detected board in row-major order.

    ``board_idx`` is the detector's grid of indices into ``corner_positions`` and carries a
    one-cell border ring around the interior corners. A grid detected with rows and columns
    swapped is read column-major with its rows reversed, so both orientations yield
    ``pattern_height`` rows of ``pattern_width`` corners.

    Returns (W*H, 2) float32. Raises MalformedDetectionError on shape mismatch or on an
    index outside ``corner_positions``.
    """
    grid = _as_index_grid(board_idx)
    interior = grid[1:-1, 1:-1]
    rows, cols = interior.shape

    if rows == pattern_height and cols == pattern_width:
        order = interior.reshape(-1)
    elif rows == pattern_width and cols == pattern_height:
        order = interior[::-1, :].T.reshape(-1)
    else:
        raise MalformedDetectionError(
            f"board interior is {rows}x{cols}, expected {pattern_height}x{pattern_width}"
        )

    positions = np.asarray(corner_positions, dtype=np.float64).reshape(-1, 2)
    if np.any(order < 0) or np.any(order >= positions.shape[0]):
        raise MalformedDetectionError("board references a corner outside the detected corner list")
    return positions[order].astype(np.float32)


def _mean_intensity(image: np.ndarray, x: float, y: float, radius: int) -> float:
    h, w = image.shape[:2]
    cx = int(np.clip(int(x), 0, w - 1))
    cy = int(np.clip(int(y), 0, h - 1))
    patch = image[max(cy - radius, 0) : cy + radius + 1, max(cx - radius, 0) : cx + radius + 1]
    patch = np.asarray(patch, dtype=np.float64)
    if patch.ndim == 3:
        # Channel sum, like a BGR brightness.
        patch = patch.sum(axis=2)
    return float(patch.mean())


def check_rotation(
    corners: np.ndarray,
    image: np.ndarray,
    pattern_width: int,
    pattern_height: int,
    radius: int = 2,
) -> np.ndarray:
    """
    Canonicalize the 180° ambiguity of a symmetric checkerboard.

    The centroid of the 2x2 corner block at each end of the ordered sequence lies inside a
    board square. When the square at the far end is brighter than the one at the origin the
    sequence is reversed, so the origin always sits on the dark square. Applying this to an
    already canonical sequence leaves it unchanged.
    """
    corners = np.asarray(corners, dtype=np.float32).reshape(-1, 2)
    w, h = int(pattern_width), int(pattern_height)
    n = w * h
    if corners.shape[0] != n:
        raise MalformedDetectionError(f"expected {n} corners, got {corners.shape[0]}")

    far = corners[[n - 1, n - 2, w * (h - 1) - 1, w * (h - 1) - 2]].mean(axis=0)
    near = corners[[0, 1, w, w + 1]].mean(axis=0)

    far_val = _mean_intensity(image, float(far[0]), float(far[1]), radius)
    near_val = _mean_intensity(image, float(near[0]), float(near[1]), radius)
    if far_val > near_val:
        return corners[::-1].copy()
    return corners
