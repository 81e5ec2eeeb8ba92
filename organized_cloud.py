import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
import open3d as o3d

logger = logging.getLogger(__name__)


@dataclass
class OrganizedCloud:
    """
    sensor pixel grid 그대로 배열된 point cloud.

    points : (H, W, 3) float, invalid sample 은 NaN (제거하지 않음)
    colors : (H, W, 3) uint8 또는 None
    linear index = row * width + col
    """
    points: np.ndarray
    colors: Optional[np.ndarray] = None

    def __post_init__(self):
        self.points = np.asarray(self.points, dtype=np.float32)
        if self.points.ndim != 3 or self.points.shape[2] != 3:
            raise ValueError(f"organized cloud must be (H, W, 3), got {self.points.shape}")
        if self.colors is not None:
            self.colors = np.asarray(self.colors, dtype=np.uint8)
            if self.colors.shape != self.points.shape:
                raise ValueError(f"colors {self.colors.shape} do not match points {self.points.shape}")

    @property
    def height(self):
        return self.points.shape[0]

    @property
    def width(self):
        return self.points.shape[1]

    @property
    def size(self):
        return self.width * self.height

    @property
    def grid_size(self):
        return self.width, self.height

    def flat_points(self):
        return self.points.reshape(-1, 3)

    def valid_mask(self):
        """(H, W) bool, x/y/z 모두 finite 인 곳."""
        return np.isfinite(self.points).all(axis=2)

    def compact(self):
        return IndexMapping.from_valid(self.valid_mask().ravel())

    def to_o3d(self, mapping=None):
        """valid point 만 담은 o3d.geometry.PointCloud (compact index 순서)."""
        if mapping is None:
            mapping = self.compact()
        pcd = o3d.geometry.PointCloud()
        pcd.points = o3d.utility.Vector3dVector(
            self.flat_points()[mapping.to_original].astype(np.float64))
        if self.colors is not None:
            pcd.colors = o3d.utility.Vector3dVector(
                self.colors.reshape(-1, 3)[mapping.to_original].astype(np.float64) / 255.0)
        return pcd


class IndexMapping:
    """
    invalid sample 을 제거한 compact cloud 와 원본 grid 사이의 index 변환.

    to_original[k]  = compact index k 의 원본 linear index (단조 증가)
    to_compact[i]   = 원본 index i 의 compact index, invalid 면 -1
    """

    def __init__(self, to_original, size):
        self.to_original = np.asarray(to_original, dtype=np.int64)
        self.size = int(size)
        self.to_compact = np.full(self.size, -1, dtype=np.int64)
        self.to_compact[self.to_original] = np.arange(self.to_original.size, dtype=np.int64)

    @classmethod
    def from_valid(cls, valid):
        valid = np.asarray(valid, dtype=bool).ravel()
        return cls(np.flatnonzero(valid), valid.size)

    def __len__(self):
        return int(self.to_original.size)

    def remap(self, compact_indices):
        """compact index -> 원본 linear index (정렬 유지)."""
        compact_indices = np.asarray(compact_indices, dtype=np.int64)
        return self.to_original[compact_indices]

    def restrict(self, original_indices):
        """원본 index 중 valid 한 것만 남김."""
        original_indices = np.asarray(original_indices, dtype=np.int64)
        return original_indices[self.to_compact[original_indices] >= 0]


def estimate_normals(cloud, radius=0.05, max_nn=30):
    """
    valid point 마다 KD-tree 이웃 (반경 radius, 최대 max_nn 개) PCA 로 normal 추정.

    입력:
      cloud  : OrganizedCloud (H, W)
      radius : 이웃 검색 반경 (m)
      max_nn : 이웃 최대 개수

    반환: (H, W, 3) float32, 카메라 원점 방향으로 정렬.
          NaN point 의 cell 은 NaN.
    """
    H, W = cloud.height, cloud.width
    normals = np.full((H * W, 3), np.nan, dtype=np.float32)
    mapping = cloud.compact()
    if len(mapping) < 3:
        logger.debug("too few valid points (%d) for normals", len(mapping))
        return normals.reshape(H, W, 3)

    # 1) valid point 만으로 Open3D PointCloud 생성 및 노멀 추정
    pcd = cloud.to_o3d(mapping)
    pcd.estimate_normals(
        search_param=o3d.geometry.KDTreeSearchParamHybrid(
            radius=radius,
            max_nn=max_nn
        )
    )

    # 2) 카메라 원점 쪽으로: n·(0 - p) >= 0
    pcd.orient_normals_towards_camera_location(np.zeros(3))

    # 3) compact index -> 원본 grid
    normals[mapping.to_original] = np.asarray(pcd.normals, dtype=np.float32)
    logger.debug("estimated %d normals on %dx%d grid", len(mapping), W, H)
    return normals.reshape(H, W, 3)
