from __future__ import annotations

import argparse
import json
from pathlib import Path

import cv2
import numpy as np
import matplotlib.pyplot as plt
import yaml

from monovo.dataset.keyframe import Keyframe, keyframe_name, save_keyframe
from monovo.dataset.map_io import load_model, model_from_keyframe, save_model
from monovo.dataset.tum import TumRgbSequence
from monovo.geom.projection import visible_points
from monovo.geom.se3 import R_to_quat_xyzw
from monovo.modules.orb_match import match_descriptors, orb_detect
from monovo.system.config import camera_from_cfg, load_config, setup_logging
from monovo.system.policy import TrackingPolicy
from monovo.system.runner import init_state, step
from monovo.system.state import FrameData, LandmarkModel, Pose
from monovo.system.telemetry import Telemetry


class TrajectoryVisualizer:
    def __init__(self):
        plt.ion()
        self.fig = plt.figure(figsize=(12, 5))
        self.ax1 = self.fig.add_subplot(121, projection='3d')
        self.ax2 = self.fig.add_subplot(122)

    def update(self, traj_T_w_c: list[np.ndarray], lost: bool = False):
        if len(traj_T_w_c) < 2:
            return

        positions = np.array([T[:3, 3] for T in traj_T_w_c])
        x, y, z = positions[:, 0], positions[:, 1], positions[:, 2]
        color = 'r' if lost else 'b'

        self.ax1.clear()
        self.ax1.set_xlabel('X (m)')
        self.ax1.set_ylabel('Y (m)')
        self.ax1.set_zlabel('Z (m)')
        self.ax1.set_title(f'Camera trajectory ({len(traj_T_w_c)} tracked frames)')
        self.ax1.plot(x, y, z, f'{color}-', linewidth=1.5, alpha=0.7)
        self.ax1.scatter(x[0], y[0], z[0], c='g', s=100, marker='o', label='Start')
        self.ax1.scatter(x[-1], y[-1], z[-1], c='r', s=100, marker='o', label='Current')
        self.ax1.legend()

        self.ax2.clear()
        self.ax2.set_xlabel('X (m)')
        self.ax2.set_ylabel('Z (m)')
        self.ax2.set_title('Top-Down View (X-Z)' + (' [LOST]' if lost else ''))
        self.ax2.plot(x, z, f'{color}-', linewidth=1.5, alpha=0.7)
        self.ax2.scatter(x[0], z[0], c='g', s=100, marker='o', label='Start')
        self.ax2.scatter(x[-1], z[-1], c='r', s=100, marker='o', label='Current')
        self.ax2.grid(True)
        self.ax2.legend()
        self.ax2.axis('equal')

        plt.pause(0.001)

    def close(self):
        plt.ioff()
        plt.show()


def _write_traj_tum(traj_T_w_c: list[np.ndarray], ts_list: list[float], out_path: str) -> None:
    assert len(traj_T_w_c) == len(ts_list)
    with open(out_path, "w", encoding="utf-8") as f:
        for T, ts in zip(traj_T_w_c, ts_list):
            t = T[:3, 3]
            q = R_to_quat_xyzw(T[:3, :3])  # x y z w
            f.write(f"{ts:.6f} {t[0]:.6f} {t[1]:.6f} {t[2]:.6f} {q[0]:.6f} {q[1]:.6f} {q[2]:.6f} {q[3]:.6f}\n")


def _orb_detect_kwargs(orb_cfg: dict) -> dict:
    return {
        "nfeatures": int(orb_cfg.get("nfeatures", 2000)),
        "scaleFactor": float(orb_cfg.get("scaleFactor", 1.2)),
        "nlevels": int(orb_cfg.get("nlevels", 8)),
        "edgeThreshold": int(orb_cfg.get("edgeThreshold", 31)),
        "fastThreshold": int(orb_cfg.get("fastThreshold", 20)),
    }


def _frame_pairs(model: LandmarkModel, des: np.ndarray | None, orb_cfg: dict) -> np.ndarray:
    """
    Putative (model_idx, feature_idx) pairs for one frame.

    A map without descriptors yields no pairs: ORB output order says nothing
    about map order, so RANSAC re-initialization fails and LOST is kept.
    """
    if model.descriptors is None:
        return np.zeros((0, 2), np.int64)
    return match_descriptors(
        model.descriptors,
        des,
        ratio=float(orb_cfg.get("ratio", 0.8)),
        mutual_check=bool(orb_cfg.get("mutual_check", False)),
        max_matches=int(orb_cfg["max_matches"]) if orb_cfg.get("max_matches") is not None else None,
    )


def _save_map_artifacts(model: LandmarkModel, kf: Keyframe, out_dir: Path, keyframe_number: int) -> tuple[Path, Path]:
    """map.npz for --map reuse, plus the source keyframe in the layout monovo-replay reads."""
    map_path = out_dir / "map.npz"
    kf_path = out_dir / "keyframes" / keyframe_name(keyframe_number)
    save_model(model, str(map_path))
    save_keyframe(kf, str(kf_path))
    return map_path, kf_path


def _draw_correspondences(
    img_gray: np.ndarray,
    features_2d: np.ndarray,
    model: LandmarkModel,
    pose: Pose,
    K: np.ndarray,
    image_size: tuple[int, int] | None,
) -> np.ndarray:
    """Detected features (green crosses) and projected landmarks (red tilted crosses) on the frame."""
    vis = cv2.cvtColor(img_gray, cv2.COLOR_GRAY2BGR)
    for u, v in np.round(features_2d).astype(int):
        cv2.drawMarker(vis, (int(u), int(v)), (0, 255, 0), cv2.MARKER_CROSS, 6, 1)
    _, proj = visible_points(model.points, pose.E, K, image_size)
    for u, v in np.round(proj).astype(int):
        cv2.drawMarker(vis, (int(u), int(v)), (0, 0, 255), cv2.MARKER_TILTED_CROSS, 6, 1)
    return vis


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--config", type=str, default="configs/default.yaml")
    ap.add_argument("--tum_dir", type=str, required=True, help="Path to TUM sequence dir, e.g. .../freiburg1_xyz")
    ap.add_argument("--map", type=str, default=None, help="Landmark map file; default builds it from the first RGB-D frame")
    ap.add_argument("--out_dir", type=str, default="outputs")
    ap.add_argument("--visualize", action="store_true", help="Enable real-time trajectory visualization")
    ap.add_argument("--viz_update_every", type=int, default=10, help="Update visualization every N frames")
    ap.add_argument("--log_every", type=int, default=50, help="Log progress every N frames")
    ap.add_argument("--show_matches", action="store_true", help="Show detected features and projected landmarks per frame")
    args = ap.parse_args()

    print(f"[INFO] Loading config: {args.config}")
    cfg = load_config(args.config)
    setup_logging(cfg["logging"].get("level", "INFO"))

    seq_name = cfg["dataset"]["sequence"]
    out_dir = Path(args.out_dir) / seq_name
    out_dir.mkdir(parents=True, exist_ok=True)
    print(f"[INFO] Output dir: {out_dir}")

    K, image_size = camera_from_cfg(cfg)

    print(f"[INFO] Loading TUM sequence: {args.tum_dir}")
    seq = TumRgbSequence(args.tum_dir)
    print(f"[INFO] Sequence frames: {len(seq)}")

    start = int(cfg["dataset"].get("start", 0))
    step_stride = int(cfg["dataset"].get("step", 1))
    max_frames = cfg["dataset"].get("max_frames", None)
    if max_frames is not None:
        max_frames = int(max_frames)

    orb_cfg = cfg["orb"]
    map_path = args.map or cfg["map"].get("path")
    if map_path:
        model = load_model(map_path)
    else:
        print(f"[INFO] Building map from RGB-D frame {start}")
        kf = seq.keyframe(start, K)
        model = model_from_keyframe(
            kf,
            stride=int(cfg["map"].get("keyframe_stride", 4)),
            with_descriptors=True,
            orb_cfg=_orb_detect_kwargs(orb_cfg),
        )
        saved_map, saved_kf = _save_map_artifacts(model, kf, out_dir, start)
        print(f"[OK] wrote: {saved_map}")
        print(f"[OK] wrote: {saved_kf}")
    print(f"[INFO] Landmarks: {len(model)}")

    if model.descriptors is None and not cfg["tracking"].get("assume_initial_pose", False):
        raise SystemExit("[ERROR] Map has no descriptors: set tracking.assume_initial_pose and tracking.initial_pose")
    if model.descriptors is None:
        print("[WARN] Map has no descriptors: re-initialization after tracking loss is disabled")

    state = init_state(K, model, cfg, image_size=image_size)
    policy = TrackingPolicy(cfg)
    telemetry = Telemetry()

    visualizer = TrajectoryVisualizer() if args.visualize else None
    frame_count = 0

    print(f"[INFO] Starting loop: start={start} step={step_stride} max_frames={max_frames}")
    for idx, ts, img_gray in seq.iter_gray(start=start, step=step_stride, max_frames=max_frames):
        pts, des = orb_detect(img_gray, **_orb_detect_kwargs(orb_cfg))
        pairs = _frame_pairs(model, des, orb_cfg)
        result = step(state, policy, cfg, telemetry, FrameData(idx=idx, ts=ts, features_2d=pts, pairs=pairs))
        frame_count += 1

        if args.log_every > 0 and (frame_count % args.log_every == 0):
            print(f"[INFO] Frame {frame_count} / {max_frames if max_frames else '?'} state={result.state.value} reason={result.reason}")

        if visualizer is not None and frame_count % args.viz_update_every == 0:
            visualizer.update(state.traj_T_w_c, lost=not result.valid)

        if args.show_matches:
            cv2.imshow("monovo matches", _draw_correspondences(img_gray, pts, model, state.pose, K, image_size))
            cv2.waitKey(1)

    traj_path = str(out_dir / "traj.txt")
    metrics_path = str(out_dir / "metrics.json")
    cfg_path = str(out_dir / "config_used.yaml")

    _write_traj_tum(state.traj_T_w_c, state.ts_list, traj_path)

    with open(metrics_path, "w", encoding="utf-8") as f:
        json.dump({"frames": telemetry.frames, "transitions": telemetry.transitions}, f, indent=2)

    with open(cfg_path, "w", encoding="utf-8") as f:
        yaml.safe_dump(cfg, f, sort_keys=False)

    print(f"[OK] wrote: {traj_path}")
    print(f"[OK] wrote: {metrics_path}")

    if args.show_matches:
        cv2.destroyAllWindows()

    if visualizer is not None:
        print("[INFO] Showing final trajectory. Close the window to exit.")
        visualizer.update(state.traj_T_w_c)
        visualizer.close()


if __name__ == "__main__":
    main()
