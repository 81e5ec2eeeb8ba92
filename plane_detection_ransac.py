# plane_detection_ransac.py

import logging

import numpy as np
import open3d as o3d

from plane_geometry import (PlaneDescriptor, fit_plane_lsq, orient_offset_nonpositive,
                            point_plane_distance)

logger = logging.getLogger(__name__)

RANSAC_N = 3


class SinglePlaneFitter:
    """
    RANSAC 으로 가장 큰 평면 하나를 찾음.

    1) NaN point 제거 (compact index -> 원본 index mapping 저장)
    2) open3d segment_plane (RANSAC)
    3) inlier 로 least-squares 재추정 후 inlier 재선택
    4) compact inlier 를 원본 grid index 로 되돌림
    """

    def __init__(self, distance_threshold=0.02, max_iterations=200, orient=False, seed=None):
        self.distance_threshold = float(distance_threshold)
        self.max_iterations = int(max_iterations)
        self.orient = bool(orient)
        self.seed = seed

    @classmethod
    def from_config(cls, config):
        return cls(distance_threshold=config.distance_threshold,
                   max_iterations=config.max_iterations,
                   orient=config.orient_single_plane,
                   seed=config.seed)

    def fit(self, cloud):
        """
        입력:
          cloud : OrganizedCloud

        반환:
          (plane_model, inliers) 또는 평면이 없으면 None
            plane_model = (a, b, c, d)
            inliers     = 원본 grid 의 정렬된 linear index
        """
        mapping = cloud.compact()
        if len(mapping) < RANSAC_N:
            logger.info("No plane found in the cloud (%d valid points)", len(mapping))
            return None

        pts = cloud.flat_points()[mapping.to_original].astype(np.float64)
        pcd = cloud.to_o3d(mapping)

        if self.seed is not None:
            o3d.utility.random.seed(int(self.seed))

        plane_model, inliers_compact = pcd.segment_plane(
            distance_threshold=self.distance_threshold,
            ransac_n=RANSAC_N,
            num_iterations=self.max_iterations
        )
        inliers_compact = np.sort(np.asarray(inliers_compact, dtype=np.int64))
        if inliers_compact.size == 0:
            logger.info("No plane found in the cloud")
            return None

        model = self._optimize(np.asarray(plane_model, dtype=np.float64), pts, inliers_compact)
        if model is not None:
            inliers_compact = np.flatnonzero(point_plane_distance(pts, model) <= self.distance_threshold)
        else:
            model = np.asarray(plane_model, dtype=np.float64)
            model = model / np.linalg.norm(model[:3])

        if inliers_compact.size == 0:
            logger.info("No plane found in the cloud")
            return None

        if self.orient:
            model = orient_offset_nonpositive(model)

        inliers = mapping.remap(inliers_compact)
        logger.debug("Number of inliers in plane: %d / %d", inliers.size, len(mapping))
        return model, inliers

    def _optimize(self, solver_model, pts, inliers_compact):
        """inlier 로 평면 재추정. normal 부호는 solver 결과와 맞춤."""
        fit = fit_plane_lsq(pts[inliers_compact])
        if fit is None:
            return None
        model, _ = fit
        if np.dot(model[:3], solver_model[:3]) < 0:
            model = -model
        return model

    def estimate(self, frame):
        if frame.cloud is None:
            logger.warning("single-plane mode needs an organized cloud, none supplied")
            return []
        result = self.fit(frame.cloud)
        if result is None:
            return []
        model, inliers = result
        return [PlaneDescriptor.from_inliers(model, inliers, frame.cloud.grid_size)]
