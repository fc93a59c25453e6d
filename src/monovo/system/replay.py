# src/monovo/system/replay.py
from __future__ import annotations

import logging
from dataclasses import dataclass

import cv2
import numpy as np

from .errors import PoseInitializationFailed
from .state import LandmarkModel, Pose
from ..dataset.keyframe import Keyframe
from ..geom.se3 import rotation_angle
from ..modules.motion import estimate_motion
from ..modules.ransac_pnp import estimate_first_pose
from ..modules.virtual_image import render_virtual_image

LOG = logging.getLogger(__name__)


@dataclass
class ReplayReport:
    found: bool
    reason: str
    num_features: int = 0
    num_inliers: int = 0
    rot_err_deg: float | None = None
    trans_err: float | None = None
    pose: Pose | None = None
    rgb: np.ndarray | None = None
    depth: np.ndarray | None = None


def perturb_pose(pose: Pose, rvec: np.ndarray, dt: np.ndarray) -> Pose:
    """Left-multiply a small rotation (Rodrigues vector) and add a translation offset."""
    dR, _ = cv2.Rodrigues(np.asarray(rvec, dtype=np.float64).reshape(3, 1))
    return Pose(dR @ pose.R, dR @ pose.t + np.asarray(dt, dtype=np.float64).reshape(3))


def replay_keyframe(
    kf: Keyframe,
    hypothesis: Pose,
    cfg: dict,
    *,
    rng: np.random.Generator | None = None,
    stride: int = 1,
) -> ReplayReport:
    """
    Validate initialization and refinement against a stored keyframe.

    The keyframe cloud is rendered as a virtual image under `hypothesis`; its
    occupied pixels become the frame's features, paired with the landmark that
    produced them. RANSAC then motion refinement must recover `hypothesis`.
    """
    rng = np.random.default_rng(cfg["ransac"].get("seed", None)) if rng is None else rng

    pts, cols = kf.world_cloud(stride)
    max_points = cfg["replay"].get("max_points", None)
    if max_points is not None and pts.shape[0] > int(max_points):
        keep = np.sort(rng.choice(pts.shape[0], int(max_points), replace=False))
        pts, cols = pts[keep], cols[keep]
    model = LandmarkModel(points=pts, colors=cols)

    rgb, depth, index_map = render_virtual_image(pts, cols, kf.K, hypothesis.E, kf.image_size)
    vs, us = np.nonzero(index_map >= 0)
    features = np.column_stack([us, vs]).astype(np.float64)
    pairs = np.column_stack([index_map[vs, us], np.arange(features.shape[0])])
    report = ReplayReport(found=False, reason="", num_features=int(features.shape[0]), rgb=rgb, depth=depth)

    rc, mc = cfg["ransac"], cfg["motion"]
    try:
        hyp = estimate_first_pose(
            kf.K, model, features,
            min_inliers=int(rc.get("min_inliers", 6)),
            max_iterations=int(rc.get("max_iterations", 500)),
            distance_threshold=float(rc.get("distance_threshold", 2.0)),
            pairs=pairs,
            early_accept_ratio=float(rc.get("early_accept_ratio", 0.9)),
            rng=rng,
            image_size=kf.image_size,
        )
    except PoseInitializationFailed as ex:
        LOG.warning("replay: initialization failed (%s)", ex)
        report.reason = ex.reason
        return report

    pose = hyp.pose
    res = estimate_motion(
        pose, model, features, kf.K,
        image_size=kf.image_size,
        max_iterations=int(mc.get("max_iterations", 10)),
        distance_threshold=float(mc.get("distance_threshold", 8.0)),
        min_correspondences=int(mc.get("min_correspondences", 6)),
        final_pass_ratio=float(mc.get("final_pass_ratio", 0.5)),
        prune_matches=bool(mc.get("prune_matches", True)),
        rotation_tol=float(mc.get("rotation_tol", 1e-6)),
        translation_tol=float(mc.get("translation_tol", 1e-6)),
    )

    report.found = res.found
    report.reason = res.reason
    report.num_inliers = hyp.evidence.num_inliers
    report.pose = pose
    report.rot_err_deg = float(np.degrees(rotation_angle(pose.R @ hypothesis.R.T)))
    report.trans_err = float(np.linalg.norm(pose.t - hypothesis.t))
    LOG.info("replay: rot err %.4f deg, trans err %.4f", report.rot_err_deg, report.trans_err)
    return report
