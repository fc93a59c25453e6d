import logging

from .state import SystemState, TrackingState

LOG = logging.getLogger(__name__)


class TrackingPolicy:
    """Decides TRACKING -> LOST from the run of consecutive degraded frames."""

    def __init__(self, cfg: dict):
        self.cfg = cfg
        self.max_degraded = int(cfg["tracking"].get("max_degraded_frames", 3))

    def on_frame(self, state: SystemState, found: bool) -> TrackingState:
        if found:
            state.consecutive_degraded = 0
            return state.tracking

        state.consecutive_degraded += 1
        if state.tracking == TrackingState.TRACKING and state.consecutive_degraded > self.max_degraded:
            LOG.warning("tracking lost after %d degraded frames", state.consecutive_degraded)
            return TrackingState.LOST
        return state.tracking

    def on_initialized(self, state: SystemState, prev: TrackingState) -> TrackingState:
        if prev == TrackingState.LOST:
            LOG.info("tracking recovered")
        state.consecutive_degraded = 0
        return TrackingState.TRACKING
