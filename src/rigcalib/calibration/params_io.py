from __future__ import annotations

import uuid
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from rigcalib.errors import ConfigurationError


@dataclass(frozen=True)
class Intrinsics:
    K: np.ndarray  # (3,3)
    D: np.ndarray  # (1,5)


@dataclass(frozen=True)
class Extrinsics:
    """
    Pose of a camera relative to the primary camera: X_cam = R X_primary + T.
    """

    R: np.ndarray  # (3,3)
    T: np.ndarray  # (3,1)
    E: np.ndarray  # (3,3)
    F: np.ndarray  # (3,3)

    @classmethod
    def identity(cls) -> "Extrinsics":
        return cls(
            R=np.eye(3, dtype=np.float64),
            T=np.zeros((3, 1), dtype=np.float64),
            E=np.zeros((3, 3), dtype=np.float64),
            F=np.zeros((3, 3), dtype=np.float64),
        )


def intrinsics_path(intrinsics_dir: Path, camera: str) -> Path:
    return Path(intrinsics_dir) / f"Intrinsics_{camera}.yaml"


def extrinsics_path(extrinsics_dir: Path, primary: str, camera: str) -> Path:
    return Path(extrinsics_dir) / f"Extrinsics_{primary}_{camera}.yaml"


def _to_float_matrix(x: np.ndarray, shape: tuple[int, ...], what: str) -> np.ndarray:
    x = np.asarray(x, dtype=np.float64)
    if x.size != int(np.prod(shape)):
        raise ConfigurationError(f"{what} has {x.size} values, expected shape {shape}")
    x = x.reshape(shape)
    if not np.all(np.isfinite(x)):
        raise ConfigurationError(f"{what} has non-finite values")
    return x


def _write_nodes(path: Path, nodes: dict[str, np.ndarray]) -> Path:
    """
    Write matrices through OpenCV FileStorage. The file is written next to its final name and
    moved into place, so concurrent writers of the same camera never leave a torn file.
    """
    import cv2  # type: ignore

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.stem}.{uuid.uuid4().hex[:8]}.tmp{path.suffix}")
    fs = cv2.FileStorage(str(tmp), cv2.FILE_STORAGE_WRITE)
    try:
        for key, value in nodes.items():
            fs.write(key, np.asarray(value, dtype=np.float64))
    finally:
        fs.release()
    tmp.replace(path)
    return path


def _read_nodes(path: Path, keys: tuple[str, ...]) -> dict[str, np.ndarray]:
    import cv2  # type: ignore

    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Missing {path}")
    try:
        fs = cv2.FileStorage(str(path), cv2.FILE_STORAGE_READ)
    except cv2.error as e:
        raise ConfigurationError(f"Cannot parse {path}: {e}") from e
    try:
        if not fs.isOpened():
            raise ConfigurationError(f"Cannot open {path}")
        out: dict[str, np.ndarray] = {}
        for key in keys:
            node = fs.getNode(key)
            if node.empty():
                raise ConfigurationError(f"{path} missing key: {key}")
            mat = node.mat()
            if mat is None:
                raise ConfigurationError(f"{path} key {key} is not a matrix")
            out[key] = mat
        return out
    finally:
        fs.release()


def save_intrinsics(intrinsics_dir: Path, camera: str, intrinsics: Intrinsics) -> Path:
    """K is stored transposed: the files are shared with tools that use that layout."""
    return _write_nodes(
        intrinsics_path(intrinsics_dir, camera),
        {
            "intrinsicMatrix": np.asarray(intrinsics.K, dtype=np.float64).reshape(3, 3).T,
            "distortionCoefficients": np.asarray(intrinsics.D, dtype=np.float64).reshape(1, -1),
        },
    )


def load_intrinsics(intrinsics_dir: Path, camera: str) -> Intrinsics:
    path = intrinsics_path(intrinsics_dir, camera)
    nodes = _read_nodes(path, ("intrinsicMatrix", "distortionCoefficients"))
    K = _to_float_matrix(nodes["intrinsicMatrix"], (3, 3), f"{path.name} intrinsicMatrix").T
    D = np.asarray(nodes["distortionCoefficients"], dtype=np.float64).reshape(1, -1)
    if not np.all(np.isfinite(D)):
        raise ConfigurationError(f"{path.name} distortionCoefficients has non-finite values")
    return Intrinsics(K=K.copy(), D=D)


def save_extrinsics(extrinsics_dir: Path, primary: str, camera: str, extrinsics: Extrinsics) -> Path:
    return _write_nodes(
        extrinsics_path(extrinsics_dir, primary, camera),
        {
            "R": np.asarray(extrinsics.R, dtype=np.float64).reshape(3, 3).T,
            "T": np.asarray(extrinsics.T, dtype=np.float64).reshape(3, 1),
            "E": np.asarray(extrinsics.E, dtype=np.float64).reshape(3, 3),
            "F": np.asarray(extrinsics.F, dtype=np.float64).reshape(3, 3),
        },
    )


def load_extrinsics(extrinsics_dir: Path, primary: str, camera: str) -> Extrinsics:
    path = extrinsics_path(extrinsics_dir, primary, camera)
    nodes = _read_nodes(path, ("R", "T", "E", "F"))
    return Extrinsics(
        R=_to_float_matrix(nodes["R"], (3, 3), f"{path.name} R").T.copy(),
        T=_to_float_matrix(nodes["T"], (3, 1), f"{path.name} T"),
        E=_to_float_matrix(nodes["E"], (3, 3), f"{path.name} E"),
        F=_to_float_matrix(nodes["F"], (3, 3), f"{path.name} F"),
    )
