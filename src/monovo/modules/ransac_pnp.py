# src/monovo/modules/ransac_pnp.py
from __future__ import annotations

import logging

import cv2
import numpy as np

from ..geom.projection import reprojection_errors, visible_points
from ..system.errors import EmptyModel, IllConditionedPoseSolve, PoseInitializationFailed
from ..system.proposal import Evidence, PoseHypothesis
from ..system.state import LandmarkModel, Pose
from .nn_match import nn_match
from .pnp import solve_pnp

LOG = logging.getLogger(__name__)

SAMPLE_SIZE = 6


def fitness(
    K: np.ndarray,
    E: np.ndarray,
    distance_threshold: float,
    min_inliers: int,
    points_3d: np.ndarray,
    features_2d: np.ndarray,
    *,
    image_size: tuple[int, int] | None = None,
) -> tuple[bool, np.ndarray, np.ndarray]:
    """
    Score a pose hypothesis by how many projected landmarks land on a detected feature.

    Projections are matched to the features with duplicate pruning, so each
    feature supports at most one landmark.

    Returns:
        accepted: inlier count >= min_inliers
        inliers_3d: (K,3) landmarks whose projection is within distance_threshold px
        inliers_2d: (K,2) the features they matched, row aligned with inliers_3d
    """
    vis_3d, vis_2d = visible_points(points_3d, E, K, image_size)
    feats = np.asarray(features_2d, dtype=np.float64).reshape(-1, 2)

    idx, dist, _ = nn_match(vis_2d, feats, prune_duplicates=True)
    good = (idx >= 0) & (dist <= distance_threshold)

    inliers_3d = vis_3d[good]
    inliers_2d = feats[idx[good]]
    return bool(inliers_3d.shape[0] >= min_inliers), inliers_3d, inliers_2d


def _putative_pairs(n_model: int, n_features: int, pairs: np.ndarray | None) -> np.ndarray:
    if pairs is None:
        # features pre-matched against the model: feature i <-> landmark i
        n = min(n_model, n_features)
        return np.column_stack([np.arange(n), np.arange(n)]).astype(np.int64)

    p = np.asarray(pairs, dtype=np.int64).reshape(-1, 2)
    ok = (p[:, 0] >= 0) & (p[:, 0] < n_model) & (p[:, 1] >= 0) & (p[:, 1] < n_features)
    if not np.all(ok):
        raise ValueError(f"pairs reference {int((~ok).sum())} out-of-range indices")
    return p


def _evidence(K: np.ndarray, pose: Pose, in3d: np.ndarray, in2d: np.ndarray, n_total: int) -> Evidence:
    n = int(in3d.shape[0])
    med = float(np.median(reprojection_errors(in3d, in2d, pose.E, K))) if n else None
    return Evidence(num_inliers=n, inlier_ratio=float(n) / float(n_total + 1e-9), reproj_median_px=med)


def estimate_first_pose(
    K: np.ndarray,
    model: LandmarkModel | np.ndarray,
    features_2d: np.ndarray,
    *,
    min_inliers: int = 6,
    max_iterations: int = 500,
    distance_threshold: float = 2.0,
    pairs: np.ndarray | None = None,
    early_accept_ratio: float = 0.9,
    rng: np.random.Generator | None = None,
    image_size: tuple[int, int] | None = None,
) -> PoseHypothesis:
    """
    Hypothesize-and-test search for the first camera pose.

    Each iteration draws 6 putative (landmark, feature) pairs, solves an EPnP
    candidate from them and scores it with `fitness` over the whole model.
    The largest accepted inlier set wins (the earliest on ties); the search
    stops early once it covers `early_accept_ratio` of the model. The winner
    is then refined by iterative PnP on its inliers.

    Args:
        K: (3,3) intrinsics
        model: landmarks, LandmarkModel or (N,3) array
        features_2d: (M,2) detected features of the current frame
        pairs: (P,2) putative (model_idx, feature_idx) pairs; None means the
            features are index aligned with the model
        rng: sampling source; pass a seeded Generator for repeatable results

    Raises:
        EmptyModel: the model has no points
        PoseInitializationFailed: no hypothesis reached min_inliers
    """
    points = model.points if isinstance(model, LandmarkModel) else np.asarray(model, dtype=np.float64).reshape(-1, 3)
    if points.shape[0] == 0:
        raise EmptyModel("cannot initialize pose against an empty landmark model")

    K64 = np.asarray(K, dtype=np.float64)
    feats = np.asarray(features_2d, dtype=np.float64).reshape(-1, 2)
    putative = _putative_pairs(points.shape[0], feats.shape[0], pairs)
    if putative.shape[0] < SAMPLE_SIZE:
        raise PoseInitializationFailed(
            f"need {SAMPLE_SIZE} putative pairs to sample, got {putative.shape[0]}"
        )

    rng = np.random.default_rng() if rng is None else rng
    early_accept = early_accept_ratio * points.shape[0]

    best: tuple[Pose, np.ndarray, np.ndarray] | None = None
    best_n = -1
    it = 0
    for it in range(1, max_iterations + 1):
        sel = putative[rng.choice(putative.shape[0], SAMPLE_SIZE, replace=False)]
        obj = points[sel[:, 0]]
        img = feats[sel[:, 1]]

        try:
            cand = solve_pnp(obj, img, K64, flags=cv2.SOLVEPNP_EPNP)
        except IllConditionedPoseSolve as ex:
            LOG.debug("ransac iter %d: sample rejected (%s)", it, ex)
            continue

        accepted, in3d, in2d = fitness(
            K64, cand.E, distance_threshold, min_inliers, points, feats, image_size=image_size
        )
        if accepted and in3d.shape[0] > best_n:
            best, best_n = (cand, in3d, in2d), int(in3d.shape[0])
            LOG.debug("ransac iter %d: %d inliers", it, best_n)
            if best_n >= early_accept:
                break

    if best is None:
        raise PoseInitializationFailed(
            f"no hypothesis reached {min_inliers} inliers in {max_iterations} iterations"
        )

    pose, in3d, in2d = best
    try:
        refined = solve_pnp(in3d, in2d, K64, flags=cv2.SOLVEPNP_ITERATIVE, guess=pose)
    except IllConditionedPoseSolve as ex:
        LOG.debug("inlier refinement skipped (%s)", ex)
    else:
        _, r3d, r2d = fitness(K64, refined.E, distance_threshold, min_inliers, points, feats, image_size=image_size)
        if r3d.shape[0] >= best_n:
            pose, in3d, in2d = refined, r3d, r2d

    ev = _evidence(K64, pose, in3d, in2d, points.shape[0])
    LOG.info("initial pose: %d/%d inliers after %d iterations", ev.num_inliers, points.shape[0], it)
    return PoseHypothesis(pose=pose, evidence=ev, inliers_3d=in3d, inliers_2d=in2d, iterations=it, reason="INIT_OK")
