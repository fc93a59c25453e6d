# src/monovo/modules/motion.py
from __future__ import annotations

import logging

import numpy as np

from ..geom.projection import reprojection_errors
from ..geom.se3 import rotation_angle
from ..system.errors import EmptyModel, IllConditionedPoseSolve, InsufficientCorrespondences
from ..system.proposal import MotionResult
from ..system.state import LandmarkModel, Pose
from .correspondences import get_correspondences
from .pnp import solve_pnp

LOG = logging.getLogger(__name__)


def _mean_err(corr_3d: np.ndarray, corr_2d: np.ndarray, pose: Pose, K: np.ndarray) -> float:
    e = reprojection_errors(corr_3d, corr_2d, pose.E, K)
    return float(np.mean(e)) if np.all(np.isfinite(e)) else np.inf


def _assign(pose: Pose, src: Pose) -> None:
    pose.R[...] = src.R
    pose.t[...] = src.t


def estimate_motion(
    pose: Pose,
    model: LandmarkModel | np.ndarray,
    features_2d: np.ndarray,
    K: np.ndarray,
    *,
    image_size: tuple[int, int] | None = None,
    max_iterations: int = 10,
    distance_threshold: float = 8.0,
    min_correspondences: int = 6,
    final_pass_ratio: float = 0.5,
    prune_matches: bool = True,
    rotation_tol: float = 1e-6,
    translation_tol: float = 1e-6,
) -> MotionResult:
    """
    Refine `pose` in place against the current frame's features.

    Every iteration re-resolves correspondences under the current pose and
    re-solves PnP from it. An update is kept only if it does not raise the
    mean reprojection error of that iteration's correspondences. Once the
    change drops below the tolerances one stricter final pass runs; the last
    allowed iteration is always a final pass.

    On too few correspondences or an ill-conditioned solve the pose is put
    back to its value at entry and the result is marked not found. A final
    pass that comes up short after a pass at the normal threshold succeeded
    is skipped instead, keeping the refined pose.
    """
    points = model.points if isinstance(model, LandmarkModel) else np.asarray(model, dtype=np.float64).reshape(-1, 3)
    if points.shape[0] == 0:
        raise EmptyModel("cannot track against an empty landmark model")

    K64 = np.asarray(K, dtype=np.float64)
    start = pose.copy()

    final_next = False
    n_corr = 0
    n_ok: int | None = None  # correspondences of the last pass at the normal threshold
    err: float | None = None
    it = 0
    for it in range(1, max_iterations + 1):
        is_final = final_next or it == max_iterations
        corr_3d, corr_2d, found = get_correspondences(
            points, features_2d, pose.E, K64,
            image_size=image_size,
            distance_threshold=distance_threshold,
            min_correspondences=min_correspondences,
            final_pass_ratio=final_pass_ratio,
            prune_matches=prune_matches,
            is_final_pass=is_final,
        )
        n_corr = int(corr_3d.shape[0])
        if not found and is_final and n_ok is not None:
            # precision pass only: keep the pose refined so far
            LOG.debug("iter %d: final pass kept %d correspondences, skipped", it, n_corr)
            n_corr = n_ok
            break
        if not found:
            LOG.debug("iter %d: %d correspondences, below %d", it, n_corr, min_correspondences)
            _assign(pose, start)
            return MotionResult(False, InsufficientCorrespondences.reason, it, n_corr, err)

        if not is_final:
            n_ok = n_corr

        err_before = _mean_err(corr_3d, corr_2d, pose, K64)
        try:
            cand = solve_pnp(corr_3d, corr_2d, K64, guess=pose)
        except IllConditionedPoseSolve as ex:
            LOG.debug("iter %d: %s", it, ex)
            _assign(pose, start)
            return MotionResult(False, ex.reason, it, n_corr, err)

        err_after = _mean_err(corr_3d, corr_2d, cand, K64)
        if err_after > err_before + 1e-9:
            err = err_before
            if is_final:
                break
            final_next = True
            continue

        d_rot = rotation_angle(cand.R @ pose.R.T)
        d_t = float(np.linalg.norm(cand.t - pose.t))
        _assign(pose, cand)
        err = err_after

        if is_final:
            break
        if d_rot < rotation_tol and d_t < translation_tol:
            final_next = True

    return MotionResult(True, "MOTION_OK", it, n_corr, err)
