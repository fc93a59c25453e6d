# src/monovo/system/runner.py
from __future__ import annotations

import logging

import numpy as np

from .errors import EmptyModel, PoseInitializationFailed
from .policy import TrackingPolicy
from .proposal import Evidence, FrameResult
from .state import FrameData, LandmarkModel, SystemState, TrackingState
from .telemetry import Telemetry
from ..geom.se3 import inv_T
from ..modules.motion import estimate_motion
from ..modules.prior_pose import propose_prior_pose
from ..modules.ransac_pnp import estimate_first_pose

LOG = logging.getLogger(__name__)


def init_state(
    K: np.ndarray,
    model: LandmarkModel,
    cfg: dict,
    *,
    image_size: tuple[int, int] | None = None,
) -> SystemState:
    """
    Fresh tracking session over a fixed landmark model.

    With tracking.assume_initial_pose the session starts in TRACKING at
    tracking.initial_pose and RANSAC is never run for the first frame.
    """
    if model.is_empty:
        raise EmptyModel("a tracking session needs a non-empty landmark model")

    state = SystemState(
        K=np.asarray(K, dtype=np.float64),
        model=model,
        image_size=image_size,
        rng=np.random.default_rng(cfg["ransac"].get("seed", None)),
    )
    if bool(cfg["tracking"].get("assume_initial_pose", False)):
        state.pose = propose_prior_pose(cfg["tracking"].get("initial_pose"))
        state.tracking = TrackingState.TRACKING
        LOG.info("starting in TRACKING from the configured initial pose")
    return state


def _initialize(state: SystemState, cfg: dict, frame: FrameData) -> tuple[bool, str, Evidence]:
    rc = cfg["ransac"]
    hyp = estimate_first_pose(
        state.K,
        state.model,
        frame.features_2d,
        min_inliers=int(rc.get("min_inliers", 6)),
        max_iterations=int(rc.get("max_iterations", 500)),
        distance_threshold=float(rc.get("distance_threshold", 2.0)),
        pairs=frame.pairs,
        early_accept_ratio=float(rc.get("early_accept_ratio", 0.9)),
        rng=state.rng,
        image_size=state.image_size,
    )
    state.pose = hyp.pose
    return True, hyp.reason, hyp.evidence


def _track(state: SystemState, cfg: dict, frame: FrameData) -> tuple[bool, str, Evidence]:
    mc = cfg["motion"]
    res = estimate_motion(
        state.pose,
        state.model,
        frame.features_2d,
        state.K,
        image_size=state.image_size,
        max_iterations=int(mc.get("max_iterations", 10)),
        distance_threshold=float(mc.get("distance_threshold", 8.0)),
        min_correspondences=int(mc.get("min_correspondences", 6)),
        final_pass_ratio=float(mc.get("final_pass_ratio", 0.5)),
        prune_matches=bool(mc.get("prune_matches", True)),
        rotation_tol=float(mc.get("rotation_tol", 1e-6)),
        translation_tol=float(mc.get("translation_tol", 1e-6)),
    )
    ev = Evidence(
        num_inliers=res.num_correspondences,
        inlier_ratio=float(res.num_correspondences) / float(len(state.model) + 1e-9),
        reproj_median_px=None,
    )
    return res.found, res.reason, ev


def step(
    state: SystemState,
    policy: TrackingPolicy,
    cfg: dict,
    telemetry: Telemetry,
    frame: FrameData,
) -> FrameResult:
    """
    Process one frame to completion.

    UNINITIALIZED / LOST run RANSAC initialization, TRACKING runs motion
    refinement only. Frames are serialized on state.lock and a frame that is
    not newer than the last processed one is rejected without touching state.

    Raises:
        EmptyModel: the session's landmark model is empty
    """
    with state.lock:
        if state.model.is_empty:
            raise EmptyModel("landmark model is empty")

        if state.last_ts is not None and frame.ts <= state.last_ts:
            LOG.warning("frame %d (ts=%.6f) arrived after ts=%.6f, dropped", frame.idx, frame.ts, state.last_ts)
            result = FrameResult(
                frame.idx, float(frame.ts), state.pose.copy(), state.tracking,
                valid=False, found=False, reason="REJECT_OUT_OF_ORDER",
            )
            telemetry.log_frame(frame.idx, {"ts": float(frame.ts), "state": state.tracking.value,
                                            "found": False, "reason": result.reason})
            return result
        state.last_ts = float(frame.ts)

        prev = state.tracking
        if prev in (TrackingState.UNINITIALIZED, TrackingState.LOST):
            state.tracking = TrackingState.INITIALIZING
            try:
                found, reason, ev = _initialize(state, cfg, frame)
            except PoseInitializationFailed as ex:
                LOG.debug("frame %d: %s", frame.idx, ex)
                state.tracking = prev
                found, reason, ev = False, ex.reason, Evidence()
            else:
                state.tracking = policy.on_initialized(state, prev)
            finally:
                if state.tracking == TrackingState.INITIALIZING:
                    state.tracking = prev
        else:
            found, reason, ev = _track(state, cfg, frame)
            state.tracking = policy.on_frame(state, found)

        if state.tracking != prev:
            telemetry.log_transition(frame.idx, prev.value, state.tracking.value)

        valid = state.tracking == TrackingState.TRACKING
        if valid:
            state.traj_T_w_c.append(inv_T(state.pose.T))
            state.ts_list.append(float(frame.ts))

        telemetry.log_frame(frame.idx, {
            "ts": float(frame.ts),
            "state": state.tracking.value,
            "found": bool(found),
            "reason": str(reason),
            "num_features": int(frame.features_2d.shape[0]),
            "num_inliers": int(ev.num_inliers),
            "inlier_ratio": float(ev.inlier_ratio),
            "reproj_median_px": (None if ev.reproj_median_px is None else float(ev.reproj_median_px)),
            "consecutive_degraded": int(state.consecutive_degraded),
        })
        return FrameResult(
            frame.idx, float(frame.ts), state.pose.copy(), state.tracking,
            valid=valid, found=bool(found), reason=str(reason), evidence=ev,
        )
