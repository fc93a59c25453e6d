# src/monovo/modules/virtual_image.py
from __future__ import annotations

import numpy as np

from ..geom.projection import project_points


def render_virtual_image(
    points_3d: np.ndarray,
    colors: np.ndarray | None,
    K: np.ndarray,
    E: np.ndarray,
    image_size: tuple[int, int],
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Rasterize a coloured point cloud as seen from extrinsic E.

    Each point lands on the pixel nearest to its projection. When several
    points share a pixel the smallest depth wins (lower point index on equal
    depth). Colours keep the channel order of `colors`; None renders white.

    Returns:
        rgb: (H,W,3) uint8, zeros where no point landed
        depth: (H,W) float32 camera-frame depth, 0 where no point landed
        index_map: (H,W) int64 index of the winning point, -1 where empty
    """
    w, h = int(image_size[0]), int(image_size[1])
    X = np.asarray(points_3d, dtype=np.float64).reshape(-1, 3)
    E64 = np.asarray(E, dtype=np.float64)[:3, :4]

    rgb = np.zeros((h, w, 3), dtype=np.uint8)
    depth = np.zeros((h, w), dtype=np.float32)
    index_map = np.full((h, w), -1, dtype=np.int64)
    if X.shape[0] == 0:
        return rgb, depth, index_map

    if colors is None:
        cols = np.full((X.shape[0], 3), 255, dtype=np.uint8)
    else:
        cols = np.asarray(colors, dtype=np.uint8).reshape(-1, 3)
        if cols.shape[0] != X.shape[0]:
            raise ValueError("colors must have one row per point")

    uv, in_front = project_points(X, E64, K)
    z = X @ E64[2, :3] + E64[2, 3]

    px = np.zeros((X.shape[0], 2), dtype=np.int64)
    px[in_front] = np.round(uv[in_front]).astype(np.int64)
    ok = in_front & (px[:, 0] >= 0) & (px[:, 0] < w) & (px[:, 1] >= 0) & (px[:, 1] < h)
    sel = np.nonzero(ok)[0]
    if sel.size == 0:
        return rgb, depth, index_map

    # z-buffer: closest first, then first occurrence per pixel
    order = sel[np.lexsort((sel, z[sel]))]
    flat = px[order, 1] * w + px[order, 0]
    _, first = np.unique(flat, return_index=True)
    win = order[first]

    u, v = px[win, 0], px[win, 1]
    rgb[v, u] = cols[win]
    depth[v, u] = z[win].astype(np.float32)
    index_map[v, u] = win
    return rgb, depth, index_map
