import os

import cv2
import numpy as np
import pytest
import yaml

from monovo.dataset.keyframe import Keyframe, keyframe_name, keyframe_paths, load_keyframe, save_keyframe
from monovo.dataset.map_io import load_model, model_from_keyframe, save_model
from monovo.dataset.tum import TUM_DEPTH_FACTOR, TumRgbSequence
from monovo.geom.se3 import Rt_to_T
from monovo.system.errors import EmptyModel
from monovo.system.state import LandmarkModel


@pytest.fixture
def small_K():
    return np.array([[100.0, 0.0, 80.0], [0.0, 100.0, 60.0], [0.0, 0.0, 1.0]])


@pytest.fixture
def keyframe(small_K):
    rng = np.random.default_rng(4)
    rgb = rng.integers(0, 256, size=(120, 160, 3), dtype=np.uint8)
    depth = np.zeros((120, 160), np.float32)
    depth[::10, ::10] = 1.5
    depth[5::10, 5::10] = 2.25
    R, _ = cv2.Rodrigues(np.array([[0.1], [0.2], [-0.05]]))
    return Keyframe(rgb=rgb, depth=depth, K=small_K, T_w_c=Rt_to_T(R, np.array([0.5, -0.2, 1.0])))


def test_keyframe_names():
    assert keyframe_name(7) == "0007"
    assert keyframe_name(12, num_of_chars=6) == "000012"
    cur, nxt = keyframe_paths("kfs", 9)
    assert cur == os.path.join("kfs", "0009")
    assert nxt == os.path.join("kfs", "0010")


def test_keyframe_save_load(tmp_path, keyframe):
    path = str(tmp_path / keyframe_name(0))
    save_keyframe(keyframe, path)
    kf = load_keyframe(path)

    np.testing.assert_array_equal(kf.rgb, keyframe.rgb)
    np.testing.assert_allclose(kf.depth, keyframe.depth, atol=1e-6)
    np.testing.assert_allclose(kf.K, keyframe.K)
    np.testing.assert_allclose(kf.T_w_c, keyframe.T_w_c, atol=1e-12)
    assert kf.image_size == (160, 120)


def test_keyframe_pose_from_quaternion(tmp_path, keyframe):
    path = str(tmp_path / "0001")
    save_keyframe(keyframe, path)
    # 90 deg about z, xyzw
    s = float(np.sqrt(0.5))
    with open(os.path.join(path, "pose.yaml"), "w", encoding="utf-8") as f:
        yaml.safe_dump({"translation": [1.0, 2.0, 3.0], "quaternion": [0.0, 0.0, s, s]}, f)

    kf = load_keyframe(path)
    np.testing.assert_allclose(kf.T_w_c[:3, :3], [[0, -1, 0], [1, 0, 0], [0, 0, 1]], atol=1e-12)
    np.testing.assert_allclose(kf.T_w_c[:3, 3], [1.0, 2.0, 3.0])
    # world -> camera is the inverse
    np.testing.assert_allclose(kf.pose.T @ kf.T_w_c, np.eye(4), atol=1e-12)


def test_missing_keyframe_dir(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_keyframe(str(tmp_path / "nope"))


def test_world_cloud_backprojects_valid_depth(keyframe):
    pts, cols = keyframe.world_cloud()
    assert pts.shape == (int((keyframe.depth > 0).sum()), 3)
    assert cols.shape == (pts.shape[0], 3) and cols.dtype == np.uint8

    # back into the camera and onto the image
    E = keyframe.pose.E
    cam = pts @ E[:, :3].T + E[:, 3]
    uv = cam[:, :2] / cam[:, 2:3] * 100.0 + [80.0, 60.0]
    np.testing.assert_allclose(uv, np.round(uv), atol=1e-9)
    assert set(np.round(cam[:, 2], 6)) == {1.5, 2.25}


def test_model_roundtrip_with_colors(tmp_path):
    rng = np.random.default_rng(0)
    model = LandmarkModel(points=rng.normal(size=(30, 3)), colors=rng.integers(0, 256, (30, 3)).astype(np.uint8))
    path = str(tmp_path / "map.npy")
    save_model(model, path)

    loaded = load_model(path)
    np.testing.assert_allclose(loaded.points, model.points)
    np.testing.assert_array_equal(loaded.colors, model.colors)


def test_load_model_from_text(tmp_path):
    path = tmp_path / "map.txt"
    path.write_text("0 0 1\n1 0 2\n0 1 3\n", encoding="utf-8")
    model = load_model(str(path))
    assert len(model) == 3 and model.colors is None
    np.testing.assert_allclose(model.points[2], [0.0, 1.0, 3.0])


def test_load_model_errors(tmp_path):
    empty = str(tmp_path / "empty.npy")
    np.save(empty, np.zeros((0, 3)))
    with pytest.raises(EmptyModel):
        load_model(empty)

    bad_shape = str(tmp_path / "bad.npy")
    np.save(bad_shape, np.zeros((4, 2)))
    with pytest.raises(ValueError):
        load_model(bad_shape)

    other = tmp_path / "map.csv"
    other.write_text("1,2,3\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_model(str(other))

    with pytest.raises(FileNotFoundError):
        load_model(str(tmp_path / "missing.npy"))


def test_model_from_keyframe_dense(keyframe):
    model = model_from_keyframe(keyframe, stride=5)
    pts, _ = keyframe.world_cloud(5)
    np.testing.assert_allclose(model.points, pts)
    assert model.descriptors is None


def test_model_from_keyframe_with_descriptors(small_K):
    rng = np.random.default_rng(8)
    gray = cv2.GaussianBlur(rng.integers(0, 256, (240, 320), dtype=np.uint8), (3, 3), 0)
    kf = Keyframe(
        rgb=cv2.cvtColor(gray, cv2.COLOR_GRAY2BGR),
        depth=np.full((240, 320), 2.0, np.float32),
        K=small_K,
        T_w_c=np.eye(4),
    )
    model = model_from_keyframe(kf, with_descriptors=True)
    assert len(model) > 0
    assert model.descriptors.shape == (len(model), 32)
    np.testing.assert_allclose(model.points[:, 2], 2.0)


def test_model_from_keyframe_without_depth(keyframe):
    kf = Keyframe(rgb=keyframe.rgb, depth=np.zeros_like(keyframe.depth), K=keyframe.K, T_w_c=keyframe.T_w_c)
    with pytest.raises(EmptyModel):
        model_from_keyframe(kf)


def _write_tum(tmp_path, n=3):
    (tmp_path / "rgb").mkdir()
    (tmp_path / "depth").mkdir()
    rgb_lines, depth_lines = ["# color images"], ["# depth maps"]
    for i in range(n):
        ts = 100.0 + 0.1 * i
        img = np.full((48, 64, 3), 40 * i, np.uint8)
        cv2.imwrite(str(tmp_path / "rgb" / f"{i}.png"), img)
        cv2.imwrite(str(tmp_path / "depth" / f"{i}.png"), np.full((48, 64), 10000, np.uint16))
        rgb_lines.append(f"{ts:.6f} rgb/{i}.png")
        depth_lines.append(f"{ts + 0.005:.6f} depth/{i}.png")
    (tmp_path / "rgb.txt").write_text("\n".join(rgb_lines) + "\n", encoding="utf-8")
    (tmp_path / "depth.txt").write_text("\n".join(depth_lines) + "\n", encoding="utf-8")


def test_tum_sequence(tmp_path, small_K):
    _write_tum(tmp_path)
    seq = TumRgbSequence(str(tmp_path))
    assert len(seq) == 3

    frames = list(seq.iter_gray(start=1, step=1, max_frames=5))
    assert [f[0] for f in frames] == [0, 1]
    assert frames[0][1] == pytest.approx(100.1)
    assert frames[0][2].shape == (48, 64)

    assert seq.associated_depth(2).path.endswith(os.path.join("depth", "2.png"))
    kf = seq.keyframe(0, small_K)
    np.testing.assert_allclose(kf.depth, 10000 / TUM_DEPTH_FACTOR)
    np.testing.assert_array_equal(kf.T_w_c, np.eye(4))


def test_tum_sequence_requires_rgb_list(tmp_path):
    with pytest.raises(FileNotFoundError):
        TumRgbSequence(str(tmp_path))
