import cv2
import numpy as np
import pytest

from monovo.geom.projection import project_points
from monovo.system.config import load_config
from monovo.system.state import LandmarkModel, Pose

IMAGE_SIZE = (640, 480)


def make_pose(rvec, t) -> Pose:
    R, _ = cv2.Rodrigues(np.asarray(rvec, dtype=np.float64).reshape(3, 1))
    return Pose(R, t)


@pytest.fixture
def K():
    return np.array([[500.0, 0.0, 320.0], [0.0, 500.0, 240.0], [0.0, 0.0, 1.0]])


@pytest.fixture
def image_size():
    return IMAGE_SIZE


@pytest.fixture
def true_pose():
    return make_pose([0.05, -0.03, 0.02], [0.1, -0.05, 0.2])


@pytest.fixture
def model_points():
    # 5x4 grid with random depth: non-coplanar, projections stay > 25 px apart
    rng = np.random.default_rng(42)
    xs = np.array([-0.9, -0.45, 0.0, 0.45, 0.9])
    ys = np.array([-0.675, -0.225, 0.225, 0.675])
    gx, gy = np.meshgrid(xs, ys)
    z = rng.uniform(4.5, 5.5, gx.size)
    return np.column_stack([gx.ravel(), gy.ravel(), z])


@pytest.fixture
def model(model_points):
    return LandmarkModel(points=model_points)


@pytest.fixture
def features(model_points, true_pose, K):
    uv, in_front = project_points(model_points, true_pose.E, K)
    assert in_front.all()
    return uv


@pytest.fixture
def cfg():
    return load_config(overrides={
        "camera": {"fx": 500.0, "fy": 500.0, "cx": 320.0, "cy": 240.0, "width": 640, "height": 480},
        "ransac": {"min_inliers": 6, "distance_threshold": 1.0, "seed": 3},
        "motion": {"min_correspondences": 6, "distance_threshold": 8.0},
        "tracking": {"max_degraded_frames": 3},
    })
