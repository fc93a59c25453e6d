import cv2
import numpy as np
from ..geom.se3 import orthonormalize
from ..system.state import Pose

def propose_prior_pose(init_cfg: dict | None) -> Pose:
    """Pose from tracking.initial_pose: `rotation` (3x3) or `rvec`, plus `translation`."""
    init_cfg = init_cfg or {}
    if "rotation" in init_cfg:
        R = np.asarray(init_cfg["rotation"], dtype=np.float64).reshape(3, 3)
    elif "rvec" in init_cfg:
        R, _ = cv2.Rodrigues(np.asarray(init_cfg["rvec"], dtype=np.float64).reshape(3, 1))
    else:
        R = np.eye(3)
    t = np.asarray(init_cfg.get("translation", [0.0, 0.0, 0.0]), dtype=np.float64).reshape(3)
    return Pose(orthonormalize(R), t)
