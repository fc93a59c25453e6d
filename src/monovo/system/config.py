from __future__ import annotations

import copy
import logging
import sys

import numpy as np
import yaml

DEFAULT_CONFIG: dict = {
    "camera": {
        "fx": 525.0,
        "fy": 525.0,
        "cx": 319.5,
        "cy": 239.5,
        "width": 640,
        "height": 480,
    },
    "ransac": {
        "min_inliers": 6,
        "max_iterations": 500,
        "distance_threshold": 2.0,
        "early_accept_ratio": 0.9,
        "seed": 0,
    },
    "motion": {
        "max_iterations": 10,
        "distance_threshold": 8.0,
        "min_correspondences": 6,
        "final_pass_ratio": 0.5,
        "prune_matches": True,
        "rotation_tol": 1e-6,
        "translation_tol": 1e-6,
    },
    "tracking": {
        "max_degraded_frames": 3,
        "assume_initial_pose": False,
        "initial_pose": {"rvec": [0.0, 0.0, 0.0], "translation": [0.0, 0.0, 0.0]},
    },
    "orb": {
        "nfeatures": 2000,
        "scaleFactor": 1.2,
        "nlevels": 8,
        "edgeThreshold": 31,
        "fastThreshold": 20,
        "ratio": 0.8,
        "max_matches": 3000,
        "mutual_check": False,
    },
    "map": {
        "path": None,
        "keyframe_stride": 4,
    },
    "dataset": {
        "sequence": "tum",
        "start": 0,
        "step": 1,
        "max_frames": None,
    },
    "replay": {
        "max_points": 2000,
        "perturb_rvec": [0.01, -0.01, 0.005],
        "perturb_translation": [0.02, 0.0, -0.02],
    },
    "logging": {
        "level": "INFO",
    },
}


def _deep_merge(base: dict, override: dict) -> dict:
    out = copy.deepcopy(base)
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = copy.deepcopy(v)
    return out


def load_config(path: str | None = None, overrides: dict | None = None) -> dict:
    """DEFAULT_CONFIG, then the YAML file at `path`, then `overrides`."""
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    if path is not None:
        with open(path, "r", encoding="utf-8") as f:
            user = yaml.safe_load(f) or {}
        if not isinstance(user, dict):
            raise ValueError(f"Config root must be a mapping: {path}")
        cfg = _deep_merge(cfg, user)
    if overrides:
        cfg = _deep_merge(cfg, overrides)
    return cfg


def camera_from_cfg(cfg: dict) -> tuple[np.ndarray, tuple[int, int] | None]:
    cam = cfg["camera"]
    fx = float(cam["fx"])
    fy = float(cam["fy"])
    cx = float(cam["cx"])
    cy = float(cam["cy"])
    K = np.array([[fx, 0.0, cx], [0.0, fy, cy], [0.0, 0.0, 1.0]], dtype=np.float64)
    size = None
    if cam.get("width") is not None and cam.get("height") is not None:
        size = (int(cam["width"]), int(cam["height"]))
    return K, size


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper()),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
        force=True,
    )
