# src/monovo/modules/nn_match.py
from __future__ import annotations

import numpy as np
from scipy.spatial import cKDTree


def nn_match(
    query_pts: np.ndarray,
    reference_pts: np.ndarray,
    *,
    prune_duplicates: bool = True,
) -> tuple[np.ndarray, np.ndarray, dict]:
    """
    Nearest-neighbour matching of 2D query points against 2D reference points.

    A KD-tree is built over the reference set on every call, so the reference
    set may change freely between calls.

    Args:
        query_pts: (N,2) points to match (e.g. projected landmarks)
        reference_pts: (M,2) points to match against (e.g. detected features)
        prune_duplicates: if True, a reference point is claimed by at most one
            query, the closest one; equal distances go to the lower query index.

    Returns:
        indices: (N,) int64 index into reference_pts, -1 when unmatched
        distances: (N,) float64 Euclidean distance, inf when unmatched
        info: dict with num_query, num_reference, num_matched, num_pruned, found
    """
    q = np.asarray(query_pts, dtype=np.float64).reshape(-1, 2)
    r = np.asarray(reference_pts, dtype=np.float64).reshape(-1, 2)

    indices = np.full(q.shape[0], -1, dtype=np.int64)
    distances = np.full(q.shape[0], np.inf, dtype=np.float64)
    info = {
        "num_query": int(q.shape[0]),
        "num_reference": int(r.shape[0]),
        "num_matched": 0,
        "num_pruned": 0,
        "found": False,
    }

    if q.shape[0] == 0 or r.shape[0] == 0:
        return indices, distances, info

    tree = cKDTree(r)
    dist, idx = tree.query(q, k=1)
    indices[:] = idx
    distances[:] = dist

    if prune_duplicates:
        # sort by distance, then query index; first occurrence of each reference wins
        order = np.lexsort((np.arange(q.shape[0]), distances))
        _, first = np.unique(indices[order], return_index=True)
        keep = np.zeros(q.shape[0], dtype=bool)
        keep[order[first]] = True
        info["num_pruned"] = int(q.shape[0] - keep.sum())
        indices[~keep] = -1
        distances[~keep] = np.inf

    info["num_matched"] = int((indices >= 0).sum())
    info["found"] = info["num_matched"] > 0
    return indices, distances, info
