import logging
from dataclasses import dataclass

import numpy as np

from organized_cloud import OrganizedCloud

logger = logging.getLogger(__name__)

"""
****************hyper parameter****************
depth_scale : raw depth 값을 meter 로 바꾸는 비율 (RealSense z16 = 1000)
min_depth   : 이보다 가까운 depth 는 invalid (NaN) [m]
max_depth   : 이보다 먼 depth 는 invalid (NaN) [m], None 이면 제한 없음
"""


@dataclass(frozen=True, eq=False)
class CameraCalibration:
    camera_matrix: np.ndarray
    dist_coeffs: np.ndarray
    width: int = 0
    height: int = 0

    def __post_init__(self):
        K = np.array(self.camera_matrix, dtype=np.float64).reshape(3, 3)
        D = np.array(self.dist_coeffs, dtype=np.float64).reshape(1, -1)
        K.setflags(write=False)
        D.setflags(write=False)
        object.__setattr__(self, "camera_matrix", K)
        object.__setattr__(self, "dist_coeffs", D)
        if K[0, 0] <= 0 or K[1, 1] <= 0:
            raise ValueError(f"focal lengths must be positive, got fx={K[0, 0]} fy={K[1, 1]}")

    @property
    def fx(self):
        return float(self.camera_matrix[0, 0])

    @property
    def fy(self):
        return float(self.camera_matrix[1, 1])

    @property
    def cx(self):
        return float(self.camera_matrix[0, 2])

    @property
    def cy(self):
        return float(self.camera_matrix[1, 2])

    @classmethod
    def from_intrinsics(cls, fx, fy, cx, cy, width=0, height=0, dist_coeffs=None):
        K = np.array([[fx, 0.0, cx],
                      [0.0, fy, cy],
                      [0.0, 0.0, 1.0]], dtype=np.float64)
        if dist_coeffs is None:
            dist_coeffs = np.zeros(5, dtype=np.float64)
        return cls(K, dist_coeffs, int(width), int(height))

    @classmethod
    def from_realsense(cls, intr):
        """pyrealsense2 intrinsics (width, height, fx, fy, ppx, ppy, coeffs)."""
        coeffs = getattr(intr, "coeffs", None)
        return cls.from_intrinsics(intr.fx, intr.fy, intr.ppx, intr.ppy,
                                   width=intr.width, height=intr.height,
                                   dist_coeffs=list(coeffs) if coeffs is not None else None)

    @classmethod
    def from_camera_info(cls, info):
        """ROS CameraInfo 형태의 dict: K (9), D, width, height."""
        K = np.asarray(info["K"], dtype=np.float64).reshape(3, 3)
        D = info.get("D")
        if D is None or len(D) == 0:
            D = [0.0] * 5
        return cls(K, D, int(info.get("width", 0)), int(info.get("height", 0)))


def create_lookup(calibration, width=None, height=None):
    """
    depth pixel -> 3D 방향 lookup table.

    반환:
      lookup_x : (W,) (c - cx) / fx
      lookup_y : (H,) (r - cy) / fy
    """
    width = int(width or calibration.width)
    height = int(height or calibration.height)
    if width <= 0 or height <= 0:
        raise ValueError(f"image size unknown for lookup table: {width}x{height}")

    lookup_x = (np.arange(width, dtype=np.float32) - calibration.cx) / calibration.fx
    lookup_y = (np.arange(height, dtype=np.float32) - calibration.cy) / calibration.fy
    return lookup_x.astype(np.float32), lookup_y.astype(np.float32)


def create_point_cloud(depth_image, color_image, lookup, depth_scale=1000.0, min_depth=0.0, max_depth=None):
    """
    depth (+ color) 이미지를 organized point cloud 로 변환.
    depth 가 0 이거나 [min_depth, max_depth] 밖이면 NaN point.
    """
    lookup_x, lookup_y = lookup
    depth = np.asarray(depth_image).astype(np.float32) / float(depth_scale)
    H, W = depth.shape[:2]
    if lookup_x.shape[0] != W or lookup_y.shape[0] != H:
        raise ValueError(f"lookup table {lookup_x.shape[0]}x{lookup_y.shape[0]} does not match depth {W}x{H}")

    valid = np.isfinite(depth) & (depth > 0) & (depth >= min_depth)
    if max_depth is not None:
        valid &= depth <= max_depth

    z = np.where(valid, depth, np.nan).astype(np.float32)
    points = np.empty((H, W, 3), dtype=np.float32)
    points[..., 0] = lookup_x[None, :] * z
    points[..., 1] = lookup_y[:, None] * z
    points[..., 2] = z

    colors = None
    if color_image is not None:
        colors = np.asarray(color_image, dtype=np.uint8)
        if colors.shape[:2] != (H, W):
            raise ValueError(f"color {colors.shape[:2]} does not match depth {(H, W)}")
        if colors.ndim == 2:
            colors = np.repeat(colors[..., None], 3, axis=2)

    logger.debug("projected %d / %d valid depth pixels", int(valid.sum()), H * W)
    return OrganizedCloud(points, colors)
