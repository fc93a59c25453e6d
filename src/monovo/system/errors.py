class TrackingError(RuntimeError):
    """Base class for estimation failures. `reason` is the code written to results and telemetry."""
    reason = "REJECT_TRACKING"


class PoseInitializationFailed(TrackingError):
    reason = "REJECT_INIT_NO_CONSENSUS"


class InsufficientCorrespondences(TrackingError):
    reason = "REJECT_TOO_FEW_CORRESPONDENCES"


class IllConditionedPoseSolve(TrackingError):
    reason = "REJECT_ILL_CONDITIONED_SOLVE"


class EmptyModel(TrackingError):
    # fatal for the session, always propagated
    reason = "REJECT_EMPTY_MODEL"
