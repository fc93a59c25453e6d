# src/monovo/geom/projection.py
from __future__ import annotations

import numpy as np


def _as_points(points_3d: np.ndarray) -> np.ndarray:
    X = np.asarray(points_3d, dtype=np.float64)
    if X.size == 0:
        return np.zeros((0, 3), np.float64)
    if X.ndim != 2 or X.shape[1] != 3:
        raise ValueError(f"Expected (N,3) points, got shape {X.shape}")
    return X


def project_points(
    points_3d: np.ndarray,
    E: np.ndarray,
    K: np.ndarray,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Pinhole projection x = K [R|t] X with perspective division.

    Args:
        points_3d: (N,3) points in the world/model frame.
        E: (3,4) or (4,4) extrinsic, world -> camera.
        K: (3,3) camera intrinsics.

    Returns:
        uv: (N,2) float64 pixel coordinates, NaN where the point is behind the camera
        in_front: (N,) bool, depth > 0
    """
    X = _as_points(points_3d)
    E64 = np.asarray(E, dtype=np.float64)[:3, :4]
    K64 = np.asarray(K, dtype=np.float64)

    X_cam = X @ E64[:, :3].T + E64[:, 3]
    z = X_cam[:, 2]
    in_front = z > 0.0

    x_img = X_cam @ K64.T
    uv = np.full((X.shape[0], 2), np.nan, dtype=np.float64)
    uv[in_front] = x_img[in_front, :2] / z[in_front, None]
    return uv, in_front


def visible_mask(
    points_3d: np.ndarray,
    E: np.ndarray,
    K: np.ndarray,
    image_size: tuple[int, int] | None,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Mask of points with positive depth whose projection lands inside the image.

    image_size is (width, height); None only applies the depth test.
    """
    uv, mask = project_points(points_3d, E, K)
    if image_size is not None:
        w, h = image_size
        with np.errstate(invalid="ignore"):
            mask = mask & (uv[:, 0] >= 0.0) & (uv[:, 0] < w) & (uv[:, 1] >= 0.0) & (uv[:, 1] < h)
    return mask, uv


def visible_points(
    points_3d: np.ndarray,
    E: np.ndarray,
    K: np.ndarray,
    image_size: tuple[int, int] | None,
) -> tuple[np.ndarray, np.ndarray]:
    """Returns (visible_3d (M,3), visible_2d (M,2)), row i of one pairs with row i of the other."""
    X = _as_points(points_3d)
    mask, uv = visible_mask(X, E, K, image_size)
    return X[mask], uv[mask]


def reprojection_errors(points_3d: np.ndarray, points_2d: np.ndarray, E: np.ndarray, K: np.ndarray) -> np.ndarray:
    uv, _ = project_points(points_3d, E, K)
    return np.linalg.norm(uv - np.asarray(points_2d, dtype=np.float64).reshape(-1, 2), axis=1)
