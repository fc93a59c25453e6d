# src/monovo/modules/orb_match.py
from __future__ import annotations

import cv2
import numpy as np


def orb_detect(
    img_gray_u8: np.ndarray,
    *,
    nfeatures: int = 2000,
    scaleFactor: float = 1.2,
    nlevels: int = 8,
    edgeThreshold: int = 31,
    fastThreshold: int = 20,
    mask: np.ndarray | None = None,
) -> tuple[np.ndarray, np.ndarray | None]:
    """
    ORB keypoints and descriptors for one grayscale image.

    Returns:
        pts: (N,2) float64 pixel coords
        des: (N,32) uint8 descriptors, None when nothing was detected
    """
    if img_gray_u8 is None:
        raise ValueError("Input image is None")
    if img_gray_u8.ndim != 2:
        raise ValueError("orb_detect expects a grayscale image (H,W).")

    orb = cv2.ORB_create(
        nfeatures=nfeatures,
        scaleFactor=scaleFactor,
        nlevels=nlevels,
        edgeThreshold=edgeThreshold,
        fastThreshold=fastThreshold,
    )
    kp, des = orb.detectAndCompute(img_gray_u8, mask)
    if not kp or des is None:
        return np.zeros((0, 2), np.float64), None
    pts = np.array([k.pt for k in kp], dtype=np.float64)
    return pts, des


def match_descriptors(
    des_model: np.ndarray | None,
    des_frame: np.ndarray | None,
    *,
    ratio: float = 0.8,
    mutual_check: bool = False,
    max_matches: int | None = 3000,
) -> np.ndarray:
    """
    Putative landmark-feature pairs from ORB descriptors (Lowe ratio test).

    Returns:
        pairs: (P,2) int64 (model_idx, feature_idx), best first
    """
    empty = np.zeros((0, 2), np.int64)
    if des_model is None or des_frame is None or len(des_model) < 2 or len(des_frame) < 2:
        return empty

    bf = cv2.BFMatcher(cv2.NORM_HAMMING, crossCheck=False)

    def _knn_ratio_matches(d0: np.ndarray, d1: np.ndarray):
        good = []
        for pair in bf.knnMatch(d0, d1, k=2):
            if len(pair) < 2:
                continue
            m, n = pair
            if m.distance < ratio * n.distance:
                good.append(m)
        return good

    matches = _knn_ratio_matches(des_model, des_frame)

    if mutual_check:
        rev = {(m.trainIdx, m.queryIdx) for m in _knn_ratio_matches(des_frame, des_model)}
        matches = [m for m in matches if (m.queryIdx, m.trainIdx) in rev]

    matches.sort(key=lambda m: m.distance)
    if max_matches is not None and len(matches) > max_matches:
        matches = matches[:max_matches]
    if not matches:
        return empty
    return np.array([(m.queryIdx, m.trainIdx) for m in matches], dtype=np.int64)
