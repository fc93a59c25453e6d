from dataclasses import dataclass, field
import numpy as np

from .state import Pose, TrackingState

@dataclass
class Evidence:
    num_inliers: int = 0
    inlier_ratio: float = 0.0
    reproj_median_px: float | None = None

@dataclass
class PoseHypothesis:
    pose: Pose
    evidence: Evidence
    inliers_3d: np.ndarray = field(default_factory=lambda: np.zeros((0, 3)))
    inliers_2d: np.ndarray = field(default_factory=lambda: np.zeros((0, 2)))
    iterations: int = 0
    reason: str = ""

@dataclass
class MotionResult:
    found: bool
    reason: str
    iterations: int = 0
    num_correspondences: int = 0
    reproj_mean_px: float | None = None

@dataclass
class FrameResult:
    idx: int
    ts: float
    pose: Pose
    state: TrackingState
    valid: bool
    found: bool
    reason: str
    evidence: Evidence = field(default_factory=Evidence)
