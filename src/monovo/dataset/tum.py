from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Iterator, List, Tuple

import cv2
import numpy as np

from .keyframe import Keyframe

TUM_DEPTH_FACTOR = 5000.0  # depth png units per metre


@dataclass
class TumEntry:
    ts: float
    path: str


def _read_list_txt(list_txt_path: str) -> List[TumEntry]:
    entries: List[TumEntry] = []
    base = os.path.dirname(list_txt_path)

    with open(list_txt_path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if (not line) or line.startswith("#"):
                continue
            parts = line.split()
            if len(parts) < 2:
                continue
            entries.append(TumEntry(ts=float(parts[0]), path=os.path.join(base, parts[1])))
    return entries


class TumRgbSequence:
    """TUM RGB-D sequence directory: rgb.txt plus optional depth.txt."""

    def __init__(self, seq_dir: str, *, max_dt: float = 0.02):
        self.seq_dir = seq_dir
        rgb_txt = os.path.join(seq_dir, "rgb.txt")
        if not os.path.isfile(rgb_txt):
            raise FileNotFoundError(f"Missing rgb.txt: {rgb_txt}")
        self.entries = _read_list_txt(rgb_txt)

        depth_txt = os.path.join(seq_dir, "depth.txt")
        self.depth_entries = _read_list_txt(depth_txt) if os.path.isfile(depth_txt) else []
        self.max_dt = max_dt

    def __len__(self) -> int:
        return len(self.entries)

    def associated_depth(self, i: int) -> TumEntry | None:
        """Depth entry closest in time to rgb entry i, None beyond max_dt."""
        if not self.depth_entries:
            return None
        ts = self.entries[i].ts
        best = min(self.depth_entries, key=lambda d: abs(d.ts - ts))
        return best if abs(best.ts - ts) <= self.max_dt else None

    def keyframe(self, i: int, K: np.ndarray) -> Keyframe:
        """RGB-D frame i as a keyframe whose camera defines the world frame."""
        d = self.associated_depth(i)
        if d is None:
            raise FileNotFoundError(f"No depth image within {self.max_dt}s of rgb frame {i}")
        rgb = cv2.imread(self.entries[i].path, cv2.IMREAD_COLOR)
        if rgb is None:
            raise FileNotFoundError(f"Failed to read image: {self.entries[i].path}")
        depth = cv2.imread(d.path, cv2.IMREAD_UNCHANGED)
        if depth is None:
            raise FileNotFoundError(f"Failed to read image: {d.path}")
        return Keyframe(
            rgb=rgb,
            depth=depth.astype(np.float32) / TUM_DEPTH_FACTOR,
            K=np.asarray(K, dtype=np.float64),
            T_w_c=np.eye(4),
        )

    def iter_gray(
        self,
        *,
        start: int = 0,
        step: int = 1,
        max_frames: int | None = None,
    ) -> Iterator[Tuple[int, float, np.ndarray]]:
        end = len(self.entries) if max_frames is None else min(len(self.entries), start + max_frames * step)
        idx = 0
        for i in range(start, end, step):
            e = self.entries[i]
            img = cv2.imread(e.path, cv2.IMREAD_GRAYSCALE)
            if img is None:
                raise FileNotFoundError(f"Failed to read image: {e.path}")
            yield idx, e.ts, img
            idx += 1
