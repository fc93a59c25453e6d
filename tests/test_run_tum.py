import numpy as np

from monovo.dataset.keyframe import Keyframe, load_keyframe
from monovo.dataset.map_io import load_model
from monovo.scripts.run_tum import _draw_correspondences, _frame_pairs, _save_map_artifacts
from monovo.system.policy import TrackingPolicy
from monovo.system.runner import init_state, step
from monovo.system.state import FrameData, LandmarkModel, TrackingState
from monovo.system.telemetry import Telemetry


def test_map_without_descriptors_gives_no_pairs(model, cfg):
    des = np.random.default_rng(0).integers(0, 256, (50, 32), dtype=np.uint8)
    pairs = _frame_pairs(model, des, cfg["orb"])
    assert pairs.shape == (0, 2) and pairs.dtype == np.int64


def test_map_with_descriptors_pairs_by_descriptor(model_points, cfg):
    des = np.random.default_rng(1).integers(0, 256, (20, 32), dtype=np.uint8)
    model = LandmarkModel(points=model_points, descriptors=des)
    order = np.random.default_rng(2).permutation(20)

    pairs = _frame_pairs(model, des[order], cfg["orb"])
    assert pairs.shape == (20, 2)
    np.testing.assert_array_equal(order[pairs[:, 1]], pairs[:, 0])


def test_lost_without_descriptors_stays_lost(K, image_size, model, features, cfg):
    state = init_state(K, model, cfg, image_size=image_size)
    policy, tel = TrackingPolicy(cfg), Telemetry()
    step(state, policy, cfg, tel, FrameData(idx=0, ts=0.0, features_2d=features))
    for i in range(1, 5):
        step(state, policy, cfg, tel, FrameData(idx=i, ts=float(i), features_2d=features[:3]))
    assert state.tracking == TrackingState.LOST

    # ORB order unrelated to map order: features reversed
    scrambled = features[::-1]
    res = step(state, policy, cfg, tel, FrameData(
        idx=5, ts=5.0, features_2d=scrambled, pairs=_frame_pairs(model, None, cfg["orb"]),
    ))
    assert not res.valid
    assert res.reason == "REJECT_INIT_NO_CONSENSUS"
    assert state.tracking == TrackingState.LOST


def test_built_map_and_keyframe_are_saved(tmp_path, model_points, K):
    des = np.random.default_rng(3).integers(0, 256, (20, 32), dtype=np.uint8)
    model = LandmarkModel(points=model_points, descriptors=des)
    kf = Keyframe(
        rgb=np.zeros((48, 64, 3), np.uint8),
        depth=np.full((48, 64), 2.0, np.float32),
        K=K,
        T_w_c=np.eye(4),
    )

    map_path, kf_path = _save_map_artifacts(model, kf, tmp_path, 12)
    assert kf_path.name == "0012"

    loaded = load_model(str(map_path))
    np.testing.assert_allclose(loaded.points, model_points)
    np.testing.assert_array_equal(loaded.descriptors, des)
    np.testing.assert_allclose(load_keyframe(str(kf_path)).depth, 2.0, atol=1e-6)


def test_correspondence_overlay_marks_features_and_landmarks(model, features, true_pose, K, image_size):
    img = np.zeros((480, 640), np.uint8)
    vis = _draw_correspondences(img, features[:5], model, true_pose, K, image_size)
    assert vis.shape == (480, 640, 3)

    u, v = np.round(features[0]).astype(int)
    # feature 0 and the projection of landmark 0 share a pixel
    assert vis[v, u].any()
    assert vis[..., 1].any() and vis[..., 2].any()
