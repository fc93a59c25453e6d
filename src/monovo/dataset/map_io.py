from __future__ import annotations

import logging
import os

import cv2
import numpy as np

from ..modules.orb_match import orb_detect
from ..system.errors import EmptyModel
from ..system.state import LandmarkModel
from .keyframe import Keyframe

LOG = logging.getLogger(__name__)


def _load_o3d(path: str) -> tuple[np.ndarray, np.ndarray | None]:
    try:
        import open3d as o3d
    except ImportError as ex:  # pragma: no cover - environment dependent
        raise ImportError("open3d is required for .pcd/.ply maps. Install with: pip install open3d") from ex

    pcd = o3d.io.read_point_cloud(path)
    pts = np.asarray(pcd.points, dtype=np.float64)
    cols = None
    if pcd.has_colors():
        cols = np.clip(np.asarray(pcd.colors) * 255.0, 0, 255).astype(np.uint8)
    return pts, cols


def load_model(path: str) -> LandmarkModel:
    """
    Load the sparse map.

    Supported: .npy / .txt / .xyz with 3 (xyz) or 6 (xyz rgb) columns,
    .npz written by save_model (keeps ORB descriptors), .pcd / .ply through open3d.
    """
    if not os.path.isfile(path):
        raise FileNotFoundError(f"Missing map file: {path}")

    ext = os.path.splitext(path)[1].lower()
    cols = des = None
    if ext in (".pcd", ".ply"):
        pts, cols = _load_o3d(path)
    elif ext == ".npz":
        with np.load(path) as npz:
            pts = np.asarray(npz["points"], dtype=np.float64).reshape(-1, 3)
            cols = npz["colors"].astype(np.uint8) if "colors" in npz.files else None
            des = npz["descriptors"] if "descriptors" in npz.files else None
    elif ext in (".npy", ".txt", ".xyz"):
        data = np.load(path) if ext == ".npy" else np.loadtxt(path, ndmin=2)
        data = np.asarray(data, dtype=np.float64)
        if data.size == 0:
            data = np.zeros((0, 3))
        if data.ndim != 2 or data.shape[1] not in (3, 6):
            raise ValueError(f"Expected (N,3) or (N,6) map array in {path}, got shape {data.shape}")
        pts = data[:, :3]
        if data.shape[1] == 6:
            cols = np.clip(data[:, 3:6], 0, 255).astype(np.uint8)
    else:
        raise ValueError(f"Unsupported map format: {ext}")

    if pts.shape[0] == 0:
        raise EmptyModel(f"map file has no points: {path}")
    LOG.info("loaded %d landmarks from %s", pts.shape[0], path)
    return LandmarkModel(points=pts, descriptors=des, colors=cols)


def save_model(model: LandmarkModel, path: str) -> None:
    """Write .npz (points, colors, descriptors) or .npy (xyz or xyz rgb columns)."""
    if os.path.splitext(path)[1].lower() == ".npz":
        arrays = {"points": model.points}
        if model.colors is not None:
            arrays["colors"] = model.colors
        if model.descriptors is not None:
            arrays["descriptors"] = model.descriptors
        np.savez(path, **arrays)
        return

    data = model.points
    if model.colors is not None:
        data = np.hstack([data, model.colors.astype(np.float64)])
    np.save(path, data)


def model_from_keyframe(
    kf: Keyframe,
    *,
    stride: int = 4,
    with_descriptors: bool = False,
    orb_cfg: dict | None = None,
) -> LandmarkModel:
    """
    World-frame landmarks built from one RGB-D keyframe.

    Without descriptors the depth image is back-projected on a `stride` grid.
    With descriptors only ORB keypoints having a valid depth become landmarks,
    each carrying its descriptor for putative matching.
    """
    R, t = kf.T_w_c[:3, :3], kf.T_w_c[:3, 3]

    if not with_descriptors:
        pts, cols = kf.cloud(stride)
        model = LandmarkModel(points=pts @ R.T + t, colors=cols)
    else:
        gray = cv2.cvtColor(kf.rgb, cv2.COLOR_BGR2GRAY)
        kp, des = orb_detect(gray, **(orb_cfg or {}))
        if des is None:
            raise EmptyModel("no ORB features on the keyframe")

        h, w = kf.depth.shape
        px = np.round(kp).astype(np.int64)
        px[:, 0] = np.clip(px[:, 0], 0, w - 1)
        px[:, 1] = np.clip(px[:, 1], 0, h - 1)
        z = kf.depth[px[:, 1], px[:, 0]].astype(np.float64)
        ok = np.isfinite(z) & (z > 0.0)

        fx, fy, cx, cy = kf.K[0, 0], kf.K[1, 1], kf.K[0, 2], kf.K[1, 2]
        u, v, z = kp[ok, 0], kp[ok, 1], z[ok]
        pts = np.column_stack([(u - cx) * z / fx, (v - cy) * z / fy, z])
        cols = kf.rgb[px[ok, 1], px[ok, 0]].reshape(-1, 3)
        model = LandmarkModel(points=pts @ R.T + t, descriptors=des[ok], colors=cols)

    if model.is_empty:
        raise EmptyModel("keyframe produced no landmarks (no valid depth)")
    LOG.info("built %d landmarks from keyframe", len(model))
    return model
