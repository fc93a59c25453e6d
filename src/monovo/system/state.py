import threading
from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from ..geom.se3 import E_to_Rt, Rt_to_E, Rt_to_T


class TrackingState(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    TRACKING = "tracking"
    LOST = "lost"


@dataclass
class Pose:
    """Camera extrinsic, world -> camera: x_c = R @ X + t."""
    R: np.ndarray  # 3x3
    t: np.ndarray  # (3,)

    def __post_init__(self):
        self.R = np.array(self.R, dtype=np.float64).reshape(3, 3)
        self.t = np.array(self.t, dtype=np.float64).reshape(3)

    @classmethod
    def identity(cls) -> "Pose":
        return cls(np.eye(3), np.zeros(3))

    @classmethod
    def from_E(cls, E: np.ndarray) -> "Pose":
        return cls(*E_to_Rt(E))

    @property
    def E(self) -> np.ndarray:
        return Rt_to_E(self.R, self.t)

    @property
    def T(self) -> np.ndarray:
        return Rt_to_T(self.R, self.t)

    def copy(self) -> "Pose":
        return Pose(self.R.copy(), self.t.copy())


@dataclass
class LandmarkModel:
    points: np.ndarray                      # (N,3) world frame
    descriptors: np.ndarray | None = None   # (N,32) ORB desc
    colors: np.ndarray | None = None        # (N,3) uint8 rgb

    def __post_init__(self):
        pts = np.asarray(self.points, dtype=np.float64)
        self.points = pts.reshape(-1, 3) if pts.size else np.zeros((0, 3), np.float64)
        if self.descriptors is not None and len(self.descriptors) != len(self.points):
            raise ValueError("descriptors must have one row per landmark")
        if self.colors is not None and len(self.colors) != len(self.points):
            raise ValueError("colors must have one row per landmark")

    def __len__(self) -> int:
        return int(self.points.shape[0])

    @property
    def is_empty(self) -> bool:
        return len(self) == 0


@dataclass
class FrameData:
    idx: int
    ts: float
    features_2d: np.ndarray                 # (M,2) pixels
    pairs: np.ndarray | None = None         # (P,2) putative (model_idx, feature_idx)

    def __post_init__(self):
        f = np.asarray(self.features_2d, dtype=np.float64)
        self.features_2d = f.reshape(-1, 2) if f.size else np.zeros((0, 2), np.float64)


@dataclass
class SystemState:
    K: np.ndarray  # 3x3
    model: LandmarkModel
    image_size: tuple[int, int] | None = None   # (width, height)
    pose: Pose = field(default_factory=Pose.identity)
    tracking: TrackingState = TrackingState.UNINITIALIZED
    consecutive_degraded: int = 0
    last_ts: float | None = None

    rng: np.random.Generator = field(default_factory=np.random.default_rng, repr=False, compare=False)

    traj_T_w_c: list[np.ndarray] = field(default_factory=list)
    ts_list: list[float] = field(default_factory=list)

    # one frame at a time
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)
