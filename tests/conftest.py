import numpy as np
import pytest

from camera_calibration import CameraCalibration
from organized_cloud import OrganizedCloud

GRID_W = 40
GRID_H = 30


def grid_xy(width, height, spacing=0.01):
    cols, rows = np.meshgrid(np.arange(width), np.arange(height))
    return cols * spacing, rows * spacing


@pytest.fixture
def planar_cloud():
    """모든 point 가 z = 0 위에 있는 organized cloud (noise 없음)."""
    x, y = grid_xy(GRID_W, GRID_H)
    pts = np.stack([x, y, np.zeros_like(x)], axis=2)
    return OrganizedCloud(pts)


@pytest.fixture
def holey_table_cloud():
    """z = 1 평면 + NaN 구멍 + 평면 위 물체 (outlier)."""
    rng = np.random.default_rng(7)
    x, y = grid_xy(GRID_W, GRID_H)
    pts = np.stack([x, y, np.ones_like(x)], axis=2)

    invalid = rng.random((GRID_H, GRID_W)) < 0.2
    pts[invalid] = np.nan

    # 물체: 평면에서 5~15cm 떨어진 box
    pts[5:12, 10:18, 2] = 1.0 - rng.uniform(0.05, 0.15, size=(7, 8))
    return OrganizedCloud(pts), invalid


@pytest.fixture
def two_patch_frame():
    """
    같은 z = 1 평면 위 두 patch, 가운데 비평면 gap 으로 분리.
    왼쪽 patch cols 0..24, gap cols 25..34, 오른쪽 patch cols 35..59.
    """
    rng = np.random.default_rng(0)
    width, height = 60, 40
    x, y = grid_xy(width, height)
    pts = np.stack([x, y, np.ones_like(x)], axis=2)
    normals = np.zeros_like(pts)
    normals[..., 2] = -1.0

    gap = (slice(None), slice(25, 35))
    pts[gap + (2,)] = 1.0 + rng.uniform(0.2, 0.5, size=(height, 10))
    random_normals = rng.normal(size=(height, 10, 3))
    normals[gap] = random_normals / np.linalg.norm(random_normals, axis=2, keepdims=True)
    return OrganizedCloud(pts), normals


@pytest.fixture
def calibration():
    return CameraCalibration.from_intrinsics(500.0, 500.0, 320.0, 240.0, width=640, height=480)


@pytest.fixture
def tilted_plane():
    """
    z = 1 + 0.3 x 로 기운 평면 (160 x 120, 간격 5mm) 에 depth noise 를 더한 cloud 를 만드는 함수.
    반환 함수: noise [m] -> (cloud, 카메라 쪽 unit normal)
    """
    def make(noise, width=160, height=120, seed=3):
        rng = np.random.default_rng(seed)
        x, y = grid_xy(width, height, spacing=0.005)
        x = x - x.mean()
        y = y - y.mean()
        z = 1.0 + 0.3 * x + rng.normal(scale=noise, size=x.shape)
        normal = np.array([0.3, 0.0, -1.0]) / np.sqrt(1.09)
        return OrganizedCloud(np.stack([x, y, z], axis=2)), normal
    return make
