from dataclasses import dataclass
from typing import NamedTuple, Optional

import numpy as np

COLLINEAR_EPS = 1e-9


class Rect(NamedTuple):
    """Axis-aligned box in grid space: x = column, y = row (cv::Rect 와 동일)."""
    x: int
    y: int
    width: int
    height: int

    @property
    def empty(self):
        return self.width <= 0 or self.height <= 0


def index_to_row_col(index, width):
    """linear index -> (row, col). index 는 int 또는 ndarray."""
    return index // width, index % width


def compute_mask_and_roi(inliers, grid_size):
    """
    inlier index 집합으로 ROI 와 mask 를 만듦.

    입력:
      inliers   : 원본 organized grid 의 linear index (1D)
      grid_size : (width, height)

    반환:
      mask : uint8 (roi.height, roi.width), inlier 위치 255
      roi  : Rect(minCol, minRow, maxCol-minCol+1, maxRow-minRow+1)

    inliers 가 비어 있으면 (0,0) mask 와 Rect(0,0,0,0). 호출 쪽에서 확인할 것.
    """
    width, height = grid_size
    inliers = np.asarray(inliers, dtype=np.int64).ravel()
    if inliers.size == 0:
        return np.zeros((0, 0), dtype=np.uint8), Rect(0, 0, 0, 0)

    rows, cols = index_to_row_col(inliers, width)
    min_row, max_row = int(rows.min()), int(rows.max())
    min_col, max_col = int(cols.min()), int(cols.max())

    roi = Rect(min_col, min_row, max_col - min_col + 1, max_row - min_row + 1)
    mask = np.zeros((roi.height, roi.width), dtype=np.uint8)
    mask[rows - min_row, cols - min_col] = 255
    return mask, roi


def mask_to_indices(mask, roi, width):
    """compute_mask_and_roi 의 역변환. 정렬된 linear index 반환."""
    rows, cols = np.nonzero(mask)
    indices = (rows + roi.y) * width + (cols + roi.x)
    return np.sort(indices.astype(np.int64))


def fit_plane_lsq(points):
    """
    Least-squares plane (PCA).

    반환: (model, curvature)
          point 가 3개 미만이거나 한 직선 위에 있으면 None
      model     = (a, b, c, d), |(a,b,c)| = 1
      curvature = 가장 작은 고유값 / 고유값 합
    """
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    if points.shape[0] < 3:
        return None

    centroid = points.mean(axis=0)
    centered = points - centroid
    cov = centered.T @ centered / points.shape[0]
    eigvals, eigvecs = np.linalg.eigh(cov)
    # 두 번째 고유값까지 0 이면 직선 (또는 한 점), 평면이 정해지지 않음
    if eigvals[1] <= COLLINEAR_EPS * max(eigvals[2], 0.0):
        return None
    # 가장 작은 고유값 방향이 법선
    normal = eigvecs[:, 0]
    normal = normal / np.linalg.norm(normal)
    d = -float(np.dot(normal, centroid))

    total = float(eigvals.sum())
    curvature = float(max(eigvals[0], 0.0) / total) if total > 0 else 0.0
    return np.array([normal[0], normal[1], normal[2], d], dtype=np.float64), curvature


def point_plane_distance(points, model):
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    model = np.asarray(model, dtype=np.float64)
    return np.abs(points @ model[:3] + model[3])


def orient_offset_nonpositive(model):
    """d < 0 이면 그대로, 아니면 네 계수 모두 부호 반전 -> 항상 d <= 0."""
    model = np.asarray(model, dtype=np.float64)
    if model[3] < 0:
        return model.copy()
    return -model


@dataclass(frozen=True, eq=False)
class PlaneDescriptor:
    model: np.ndarray
    inliers: np.ndarray
    roi: Optional[Rect] = None
    mask: Optional[np.ndarray] = None

    def __post_init__(self):
        model = np.array(self.model, dtype=np.float64).reshape(4)
        inliers = np.array(self.inliers, dtype=np.int64).ravel()
        model.setflags(write=False)
        inliers.setflags(write=False)
        object.__setattr__(self, "model", model)
        object.__setattr__(self, "inliers", inliers)
        if self.mask is not None:
            mask = np.array(self.mask, dtype=np.uint8)
            mask.setflags(write=False)
            object.__setattr__(self, "mask", mask)

    @property
    def offset(self):
        return float(self.model[3])

    @property
    def num_inliers(self):
        return int(self.inliers.size)

    @classmethod
    def from_inliers(cls, model, inliers, grid_size):
        mask, roi = compute_mask_and_roi(inliers, grid_size)
        return cls(model=model, inliers=inliers, roi=roi, mask=mask)

    @classmethod
    def from_model(cls, model):
        # fiducial 평면: pixel 단위 support 없음
        return cls(model=model, inliers=np.empty(0, dtype=np.int64))
