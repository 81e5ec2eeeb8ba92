import logging
from dataclasses import dataclass

import cv2
import numpy as np

from plane_geometry import PlaneDescriptor

logger = logging.getLogger(__name__)

MIN_CORRESPONDENCES = 4


@dataclass
class MarkerCorrespondences:
    """
    검출된 marker 의 2D-3D 대응점.

    image_points : (N, 2) pixel 좌표
    world_points : (N, 3) marker 좌표계 (marker 평면은 z = 0)
    """
    image_points: np.ndarray
    world_points: np.ndarray

    def __post_init__(self):
        self.image_points = np.asarray(self.image_points, dtype=np.float64).reshape(-1, 2)
        self.world_points = np.asarray(self.world_points, dtype=np.float64).reshape(-1, 3)
        if self.image_points.shape[0] != self.world_points.shape[0]:
            raise ValueError(f"{self.image_points.shape[0]} image points but "
                             f"{self.world_points.shape[0]} world points")

    def __len__(self):
        return int(self.image_points.shape[0])


class FiducialPoseEstimator:
    """
    marker pose 로부터 marker 평면 (z = 0) 을 카메라 좌표계에서 구함.
    직전 frame 의 pose 를 다음 solvePnPRansac 의 초기값으로 사용.
    """

    def __init__(self, iterations=100, reprojection_error=1.0):
        self.iterations = int(iterations)
        self.reprojection_error = float(reprojection_error)
        self.rvec = None
        self.tvec = None

    @classmethod
    def from_config(cls, config):
        return cls(iterations=config.pnp_iterations,
                   reprojection_error=config.pnp_reprojection_error)

    def reset(self):
        self.rvec = None
        self.tvec = None

    def solve_pose(self, marker, calibration):
        """반환: (rvec, tvec) 또는 실패 시 None."""
        use_guess = self.rvec is not None and self.tvec is not None
        rvec = self.rvec.copy() if use_guess else np.zeros((3, 1), dtype=np.float64)
        tvec = self.tvec.copy() if use_guess else np.zeros((3, 1), dtype=np.float64)

        try:
            ok, rvec, tvec, inliers = cv2.solvePnPRansac(
                marker.world_points, marker.image_points,
                np.array(calibration.camera_matrix), np.array(calibration.dist_coeffs),
                rvec, tvec,
                useExtrinsicGuess=use_guess,
                iterationsCount=self.iterations,
                reprojectionError=self.reprojection_error)
        except cv2.error as e:
            logger.info("solvePnPRansac failed: %s", e)
            ok = False

        # 퇴화된 대응점이면 ok 이어도 pose 가 NaN 일 수 있음
        if not ok or not (np.all(np.isfinite(rvec)) and np.all(np.isfinite(tvec))):
            self.reset()
            return None

        self.rvec = np.asarray(rvec, dtype=np.float64).reshape(3, 1)
        self.tvec = np.asarray(tvec, dtype=np.float64).reshape(3, 1)
        logger.debug("marker pose: %d / %d correspondences consistent",
                     0 if inliers is None else len(inliers), len(marker))
        return self.rvec, self.tvec

    def estimate_plane(self, marker, calibration):
        """marker 평면 model (a, b, c, d), 없으면 None."""
        if marker is None or len(marker) < MIN_CORRESPONDENCES:
            logger.info("no board found!")
            return None

        pose = self.solve_pose(marker, calibration)
        if pose is None:
            logger.info("marker pose could not be solved")
            return None

        rvec, tvec = pose
        R, _ = cv2.Rodrigues(rvec)
        normal = R @ np.array([0.0, 0.0, 1.0])
        distance = float(normal @ tvec.ravel())

        # 부호 반전: offset 이 카메라 쪽을 향하도록
        return -np.array([normal[0], normal[1], normal[2], distance], dtype=np.float64)

    def estimate(self, frame):
        if frame.calibration is None:
            logger.warning("fiducial mode needs camera calibration, none supplied")
            return []
        model = self.estimate_plane(frame.marker, frame.calibration)
        if model is None:
            return []
        return [PlaneDescriptor.from_model(model)]
