# src/monovo/modules/pnp.py
from __future__ import annotations

import cv2
import numpy as np

from ..geom.se3 import orthonormality_error, orthonormalize
from ..system.errors import IllConditionedPoseSolve
from ..system.state import Pose

# Rodrigues output further than this from SO(3) is treated as a broken solve
MAX_ORTHO_ERROR = 1e-3


def solve_pnp(
    points_3d: np.ndarray,
    points_2d: np.ndarray,
    K: np.ndarray,
    *,
    flags: int = cv2.SOLVEPNP_ITERATIVE,
    guess: Pose | None = None,
) -> Pose:
    """
    Perspective-n-point solve, minimising reprojection error over the pairs.

    With `guess` the solver starts from that pose (useExtrinsicGuess).
    Raises IllConditionedPoseSolve when OpenCV fails, returns non-finite
    values or a rotation that is not a rotation, or when the solution puts
    any of the points behind the camera.
    """
    obj = np.ascontiguousarray(points_3d, dtype=np.float64).reshape(-1, 3)
    img = np.ascontiguousarray(points_2d, dtype=np.float64).reshape(-1, 2)
    K64 = np.asarray(K, dtype=np.float64)

    rvec0 = tvec0 = None
    if guess is not None:
        rvec0, _ = cv2.Rodrigues(guess.R)
        tvec0 = guess.t.reshape(3, 1).copy()

    try:
        ok, rvec, tvec = cv2.solvePnP(
            obj, img, K64, None,
            rvec=rvec0, tvec=tvec0,
            useExtrinsicGuess=guess is not None,
            flags=flags,
        )
    except cv2.error as ex:
        raise IllConditionedPoseSolve(f"solvePnP failed on {obj.shape[0]} points") from ex

    if not ok or not (np.all(np.isfinite(rvec)) and np.all(np.isfinite(tvec))):
        raise IllConditionedPoseSolve("solvePnP returned no finite solution")

    R, _ = cv2.Rodrigues(rvec)
    if not np.all(np.isfinite(R)) or orthonormality_error(R) > MAX_ORTHO_ERROR:
        raise IllConditionedPoseSolve("solved rotation is not orthonormal")

    pose = Pose(orthonormalize(R), tvec.reshape(3))
    if np.any((obj @ pose.R.T + pose.t)[:, 2] <= 0.0):
        raise IllConditionedPoseSolve("solution places points behind the camera")
    return pose
