from __future__ import annotations

import os
from dataclasses import dataclass

import cv2
import numpy as np
import yaml
from scipy.spatial.transform import Rotation

from ..geom.se3 import Rt_to_T, inv_T, orthonormalize
from ..system.state import Pose

DEPTH_SCALE = 0.001  # uint16 depth png is in millimetres


@dataclass
class Keyframe:
    rgb: np.ndarray     # (H,W,3) uint8, OpenCV channel order
    depth: np.ndarray   # (H,W) float32 metres, 0 = no reading
    K: np.ndarray       # 3x3
    T_w_c: np.ndarray   # 4x4 camera -> world

    @property
    def image_size(self) -> tuple[int, int]:
        return int(self.depth.shape[1]), int(self.depth.shape[0])

    @property
    def pose(self) -> Pose:
        """World -> camera extrinsic of the keyframe."""
        return Pose.from_E(inv_T(self.T_w_c))

    def cloud(self, stride: int = 1) -> tuple[np.ndarray, np.ndarray]:
        """Camera-frame points and their colours."""
        return backproject(self.depth, self.rgb, self.K, stride=stride)

    def world_cloud(self, stride: int = 1) -> tuple[np.ndarray, np.ndarray]:
        pts, cols = self.cloud(stride)
        R, t = self.T_w_c[:3, :3], self.T_w_c[:3, 3]
        return pts @ R.T + t, cols


def backproject(
    depth: np.ndarray,
    rgb: np.ndarray | None,
    K: np.ndarray,
    *,
    stride: int = 1,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Depth image -> (N,3) camera-frame points with (N,3) uint8 colours.
    Pixels without a finite positive depth are skipped.
    """
    d = np.asarray(depth, dtype=np.float64)
    h, w = d.shape
    vs, us = np.mgrid[0:h:stride, 0:w:stride]
    z = d[vs, us]
    ok = np.isfinite(z) & (z > 0.0)
    us, vs, z = us[ok].astype(np.float64), vs[ok].astype(np.float64), z[ok]

    fx, fy, cx, cy = K[0, 0], K[1, 1], K[0, 2], K[1, 2]
    pts = np.column_stack([(us - cx) * z / fx, (vs - cy) * z / fy, z])

    if rgb is None:
        cols = np.full((pts.shape[0], 3), 255, dtype=np.uint8)
    else:
        cols = np.asarray(rgb, dtype=np.uint8)[vs.astype(np.int64), us.astype(np.int64)].reshape(-1, 3)
    return pts, cols


def keyframe_name(keyframe_number: int, num_of_chars: int = 4) -> str:
    return str(int(keyframe_number)).zfill(num_of_chars)


def keyframe_paths(keyframe_path: str, keyframe_number: int, num_of_chars: int = 4) -> tuple[str, str]:
    """Directories of keyframe n and n+1 under keyframe_path."""
    cur = os.path.join(keyframe_path, keyframe_name(keyframe_number, num_of_chars))
    nxt = os.path.join(keyframe_path, keyframe_name(keyframe_number + 1, num_of_chars))
    return cur, nxt


def _pose_from_yaml(data: dict) -> np.ndarray:
    t = np.asarray(data.get("translation", [0.0, 0.0, 0.0]), dtype=np.float64).reshape(3)
    if "rotation" in data:
        R = np.asarray(data["rotation"], dtype=np.float64).reshape(3, 3)
    elif "quaternion" in data:
        R = Rotation.from_quat(np.asarray(data["quaternion"], dtype=np.float64)).as_matrix()
    else:
        R = np.eye(3)
    return Rt_to_T(orthonormalize(R), t)


def load_keyframe(path: str, *, depth_scale: float = DEPTH_SCALE) -> Keyframe:
    """
    Read a keyframe directory: rgb.png, depth.png (uint16), intr.yaml (K) and
    pose.yaml (camera -> world translation plus rotation or quaternion xyzw).
    """
    if not os.path.isdir(path):
        raise FileNotFoundError(f"Missing keyframe dir: {path}")

    rgb = cv2.imread(os.path.join(path, "rgb.png"), cv2.IMREAD_COLOR)
    if rgb is None:
        raise FileNotFoundError(f"Failed to read image: {os.path.join(path, 'rgb.png')}")
    depth_raw = cv2.imread(os.path.join(path, "depth.png"), cv2.IMREAD_UNCHANGED)
    if depth_raw is None:
        raise FileNotFoundError(f"Failed to read image: {os.path.join(path, 'depth.png')}")

    with open(os.path.join(path, "intr.yaml"), "r", encoding="utf-8") as f:
        intr = yaml.safe_load(f)
    with open(os.path.join(path, "pose.yaml"), "r", encoding="utf-8") as f:
        pose = yaml.safe_load(f) or {}

    K = np.asarray(intr["K"], dtype=np.float64).reshape(3, 3)
    depth = depth_raw.astype(np.float32) * np.float32(depth_scale)
    return Keyframe(rgb=rgb, depth=depth, K=K, T_w_c=_pose_from_yaml(pose))


def save_keyframe(kf: Keyframe, path: str, *, depth_scale: float = DEPTH_SCALE) -> None:
    os.makedirs(path, exist_ok=True)
    cv2.imwrite(os.path.join(path, "rgb.png"), kf.rgb)
    depth_u16 = np.clip(np.round(kf.depth / depth_scale), 0, np.iinfo(np.uint16).max).astype(np.uint16)
    cv2.imwrite(os.path.join(path, "depth.png"), depth_u16)
    with open(os.path.join(path, "intr.yaml"), "w", encoding="utf-8") as f:
        yaml.safe_dump({"K": np.asarray(kf.K, dtype=np.float64).tolist()}, f, sort_keys=False)
    with open(os.path.join(path, "pose.yaml"), "w", encoding="utf-8") as f:
        yaml.safe_dump({
            "translation": kf.T_w_c[:3, 3].tolist(),
            "rotation": kf.T_w_c[:3, :3].tolist(),
        }, f, sort_keys=False)
