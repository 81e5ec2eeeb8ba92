# plane_detection_region_growing.py

import logging
import math

import numpy as np
from scipy import ndimage
from scipy.sparse import coo_matrix
from scipy.sparse.csgraph import connected_components

from plane_geometry import PlaneDescriptor, fit_plane_lsq, orient_offset_nonpositive

logger = logging.getLogger(__name__)

_CROSS = ndimage.generate_binary_structure(2, 1)


class MultiRegionSegmenter:
    """
    organized cloud + normal 로 여러 평면 region 을 한번에 분할.

    1) 이웃 (4-connected) 끼리 normal 각도 < angular_threshold,
       plane offset (p·n) 차이 < distance_threshold 이면 연결
    2) connected component 중 min_plane_inliers 이상, 곡률 < max_curvature 만 평면
    3) 경계 refinement: 평면까지 거리 < distance_threshold 인 이웃 pixel 을 흡수
    """

    def __init__(self, min_plane_inliers=1000, angular_threshold_deg=3.0,
                 distance_threshold=0.02, max_curvature=0.01):
        self.min_plane_inliers = int(min_plane_inliers)
        self.angular_threshold = math.radians(float(angular_threshold_deg))
        self.distance_threshold = float(distance_threshold)
        self.max_curvature = float(max_curvature)

    @classmethod
    def from_config(cls, config):
        return cls(min_plane_inliers=config.min_plane_inliers,
                   angular_threshold_deg=config.angular_threshold_deg,
                   distance_threshold=config.distance_threshold,
                   max_curvature=config.max_curvature)

    def segment(self, cloud, normals):
        """
        입력:
          cloud   : OrganizedCloud (H, W)
          normals : (H, W, 3), invalid 은 NaN

        반환:
          planes: List of (plane_model, inliers)
            plane_model = (a, b, c, d), d <= 0
            inliers     = 원본 grid 의 정렬된 linear index
        """
        normals = np.asarray(normals, dtype=np.float64)
        if normals.shape != cloud.points.shape:
            raise ValueError(f"normals {normals.shape} do not match cloud {cloud.points.shape}")

        pts = cloud.points.astype(np.float64)
        H, W, _ = pts.shape
        point_valid = np.isfinite(pts).all(axis=2)

        # 1) 노멀 정규화, cell 별 plane offset
        with np.errstate(invalid="ignore", divide="ignore"):
            norm = np.linalg.norm(normals, axis=2)
            valid = point_valid & np.isfinite(normals).all(axis=2) & (norm > 1e-12)
            n = np.where(valid[..., None], normals / np.where(valid, norm, 1.0)[..., None], 0.0)
        offset = np.where(valid, np.sum(np.where(valid[..., None], pts, 0.0) * n, axis=2), 0.0)

        labels = self._label_components(n, offset, valid)

        # 2) 크기, 곡률로 region 선택
        counts = np.bincount(labels[valid], minlength=labels.max() + 1) if valid.any() else np.zeros(0, int)
        regions = []
        for label in np.flatnonzero(counts >= max(self.min_plane_inliers, 1)):
            seed = labels == label
            fit = fit_plane_lsq(pts[seed])
            if fit is None:
                continue
            model, curvature = fit
            if curvature >= self.max_curvature:
                logger.debug("region %d rejected, curvature %.5f", label, curvature)
                continue
            regions.append((orient_offset_nonpositive(model), seed))

        if not regions:
            logger.info("No plane found in the cloud")
            return []

        # 3) 경계 refinement
        claimed = np.zeros((H, W), dtype=bool)
        for _, seed in regions:
            claimed |= seed

        finite_pts = np.where(point_valid[..., None], pts, 0.0)
        planes = []
        for model, seed in regions:
            with np.errstate(invalid="ignore"):
                dist = np.abs(finite_pts @ model[:3] + model[3])
            candidates = point_valid & ~claimed & (dist < self.distance_threshold)
            grown = seed
            if candidates.any():
                grown = ndimage.binary_dilation(seed, structure=_CROSS, iterations=0,
                                                mask=seed | candidates)
                claimed |= grown
            planes.append((model, np.flatnonzero(grown.ravel())))

        logger.debug("segmented %d planar regions", len(planes))
        return planes

    def _label_components(self, n, offset, valid):
        """이웃 연결 조건으로 connected component labeling. invalid cell 은 -1."""
        H, W = valid.shape
        index = np.arange(H * W).reshape(H, W)
        cos_threshold = math.cos(self.angular_threshold)

        rows, cols = [], []
        for a, b in (((slice(None), slice(None, -1)), (slice(None), slice(1, None))),
                     ((slice(None, -1), slice(None)), (slice(1, None), slice(None)))):
            ok = valid[a] & valid[b]
            ok &= np.sum(n[a] * n[b], axis=2) > cos_threshold
            ok &= np.abs(offset[a] - offset[b]) < self.distance_threshold
            rows.append(index[a][ok])
            cols.append(index[b][ok])

        rows = np.concatenate(rows)
        cols = np.concatenate(cols)
        graph = coo_matrix((np.ones(rows.size, dtype=np.int8), (rows, cols)), shape=(H * W, H * W))
        _, labels = connected_components(graph, directed=False)

        labels = labels.reshape(H, W)
        labels[~valid] = -1
        return labels

    def estimate(self, frame):
        if frame.cloud is None or frame.normals is None:
            logger.warning("multi-region mode needs an organized cloud and normals")
            return []
        planes = self.segment(frame.cloud, frame.normals)
        return [PlaneDescriptor.from_inliers(model, inliers, frame.cloud.grid_size)
                for model, inliers in planes]


def largest_plane(planes):
    """inlier 수가 가장 많은 plane 의 index, 없으면 None. 동률이면 앞의 것."""
    if not planes:
        return None
    biggest = 0
    for i in range(1, len(planes)):
        if planes[i].num_inliers > planes[biggest].num_inliers:
            biggest = i
    return biggest
