# src/monovo/modules/correspondences.py
from __future__ import annotations

import numpy as np

from ..geom.projection import visible_mask
from .nn_match import nn_match


def get_correspondences(
    model_3d: np.ndarray,
    features_2d: np.ndarray,
    E: np.ndarray,
    K: np.ndarray,
    *,
    image_size: tuple[int, int] | None,
    distance_threshold: float,
    min_correspondences: int,
    final_pass_ratio: float = 0.5,
    prune_matches: bool = True,
    is_final_pass: bool = False,
) -> tuple[np.ndarray, np.ndarray, bool]:
    """
    3D-2D correspondences under the current pose estimate.

    The model is projected through E, restricted to points visible in the
    image and each projection is paired with its nearest feature. The final
    pass scales the distance threshold by final_pass_ratio and always prunes
    duplicate matches.

    Returns:
        corr_3d: (K,3) landmarks
        corr_2d: (K,2) features, row aligned with corr_3d
        found: K >= min_correspondences
    """
    X = np.asarray(model_3d, dtype=np.float64).reshape(-1, 3)
    feats = np.asarray(features_2d, dtype=np.float64).reshape(-1, 2)

    mask, uv = visible_mask(X, E, K, image_size)
    vis_3d, vis_2d = X[mask], uv[mask]

    thresh = distance_threshold * final_pass_ratio if is_final_pass else distance_threshold
    prune = True if is_final_pass else prune_matches

    idx, dist, _ = nn_match(vis_2d, feats, prune_duplicates=prune)
    good = (idx >= 0) & (dist <= thresh)

    corr_3d = vis_3d[good]
    corr_2d = feats[idx[good]]
    return corr_3d, corr_2d, bool(corr_3d.shape[0] >= min_correspondences)
