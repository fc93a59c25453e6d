import logging
from pathlib import Path

import cv2
import numpy as np
import pytest

from monovo.modules.prior_pose import propose_prior_pose
from monovo.system.config import DEFAULT_CONFIG, camera_from_cfg, load_config, setup_logging


def test_defaults_without_file():
    cfg = load_config()
    assert cfg == DEFAULT_CONFIG
    assert cfg is not DEFAULT_CONFIG
    cfg["ransac"]["min_inliers"] = 99
    assert DEFAULT_CONFIG["ransac"]["min_inliers"] != 99


def test_yaml_file_merges_over_defaults(tmp_path):
    path = tmp_path / "cfg.yaml"
    path.write_text("ransac:\n  max_iterations: 50\ncamera:\n  width: null\n", encoding="utf-8")

    cfg = load_config(str(path), overrides={"ransac": {"seed": 7}})
    assert cfg["ransac"]["max_iterations"] == 50
    assert cfg["ransac"]["seed"] == 7
    assert cfg["ransac"]["distance_threshold"] == DEFAULT_CONFIG["ransac"]["distance_threshold"]

    K, size = camera_from_cfg(cfg)
    assert size is None
    np.testing.assert_allclose(K, [[525.0, 0.0, 319.5], [0.0, 525.0, 239.5], [0.0, 0.0, 1.0]])


def test_non_mapping_config_is_rejected(tmp_path):
    path = tmp_path / "cfg.yaml"
    path.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(str(path))


def test_shipped_config_loads():
    cfg = load_config(str(Path(__file__).resolve().parents[1] / "configs" / "default.yaml"))
    K, size = camera_from_cfg(cfg)
    assert size == (640, 480)
    assert K[2, 2] == 1.0
    assert cfg["motion"]["final_pass_ratio"] < 1.0


def test_prior_pose_from_rvec_or_rotation():
    pose = propose_prior_pose({"rvec": [0.0, 0.0, np.pi / 2], "translation": [1, 2, 3]})
    R, _ = cv2.Rodrigues(np.array([[0.0], [0.0], [np.pi / 2]]))
    np.testing.assert_allclose(pose.R, R, atol=1e-12)
    np.testing.assert_allclose(pose.t, [1.0, 2.0, 3.0])

    pose = propose_prior_pose({"rotation": np.eye(3).tolist()})
    np.testing.assert_allclose(pose.R, np.eye(3))
    np.testing.assert_allclose(pose.t, np.zeros(3))

    pose = propose_prior_pose(None)
    np.testing.assert_allclose(pose.E, np.hstack([np.eye(3), np.zeros((3, 1))]))


def test_setup_logging_sets_root_level():
    setup_logging("debug")
    assert logging.getLogger().level == logging.DEBUG
    setup_logging("WARNING")
    assert logging.getLogger().level == logging.WARNING
