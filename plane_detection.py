import logging
import time
from dataclasses import dataclass, field, replace
from typing import List, Optional

import numpy as np

from camera_calibration import CameraCalibration, create_lookup, create_point_cloud
from fiducial_pose import FiducialPoseEstimator, MarkerCorrespondences
from organized_cloud import OrganizedCloud, estimate_normals
from plane_config import Mode, PlaneConfig
from plane_detection_ransac import SinglePlaneFitter
from plane_detection_region_growing import MultiRegionSegmenter, largest_plane
from plane_geometry import PlaneDescriptor

logger = logging.getLogger(__name__)

"""

****************Plane Detection****************
정확한 평면 방정식, 평면 하나     --> SINGLE_PLANE (RANSAC)
여러 평면, 실시간                --> MULTI_REGION (Region Growing)
calibration board 가 보임        --> FIDUCIAL (solvePnPRansac)

frame 마다 한번 호출: SelectStrategy -> RunStrategy -> DeriveDescriptors -> Done
필요한 입력이 없으면 예외 대신 "no plane" 으로 끝남.

"""

STRATEGIES = {
    Mode.FIDUCIAL: FiducialPoseEstimator,
    Mode.SINGLE_PLANE: SinglePlaneFitter,
    Mode.MULTI_REGION: MultiRegionSegmenter,
}


@dataclass
class FrameInputs:
    cloud: Optional[OrganizedCloud] = None
    normals: Optional[np.ndarray] = None
    depth: Optional[np.ndarray] = None
    color: Optional[np.ndarray] = None
    calibration: Optional[CameraCalibration] = None
    marker: Optional[MarkerCorrespondences] = None


@dataclass
class PlaneResult:
    planes: List[PlaneDescriptor] = field(default_factory=list)
    primary: Optional[int] = None

    @property
    def found(self):
        return len(self.planes) > 0

    @property
    def primary_plane(self):
        if self.primary is None:
            return None
        return self.planes[self.primary]


class PlaneEstimator:
    """
    설정된 mode 하나로 frame 마다 평면을 추정.
    mode 는 생성 시 정해지고 실행 중에 바뀌지 않음.
    """

    def __init__(self, config=None):
        self.config = config if config is not None else PlaneConfig()
        self.mode = self.config.mode
        self.strategy = STRATEGIES[self.mode].from_config(self.config)
        self.found_plane = False

        # calibration 에서 만든 lookup table, grid 크기나 K 가 바뀔 때만 다시 만듦
        self._lookup = None
        self._lookup_key = None

    def lookup_for(self, calibration, width, height):
        key = (int(width), int(height), calibration.camera_matrix.tobytes())
        if self._lookup is None or key != self._lookup_key:
            logger.debug("building lookup tables for %dx%d", width, height)
            self._lookup = create_lookup(calibration, width, height)
            self._lookup_key = key
        return self._lookup

    def _prepare(self, frame):
        """cloud / normals 가 없으면 가능한 경우 만들어 채움."""
        if self.mode is Mode.FIDUCIAL:
            return frame

        if frame.cloud is None and frame.depth is not None and frame.calibration is not None:
            depth = np.asarray(frame.depth)
            H, W = depth.shape[:2]
            lookup = self.lookup_for(frame.calibration, W, H)
            cloud = create_point_cloud(depth, frame.color, lookup,
                                       depth_scale=self.config.depth_scale,
                                       min_depth=self.config.min_depth,
                                       max_depth=self.config.max_depth)
            frame = replace(frame, cloud=cloud)

        if (self.mode is Mode.MULTI_REGION and frame.normals is None
                and frame.cloud is not None and self.config.estimate_normals):
            frame = replace(frame, normals=estimate_normals(frame.cloud, radius=self.config.normal_radius))

        return frame

    def process(self, frame):
        start = time.perf_counter()
        frame = self._prepare(frame)

        planes = self.strategy.estimate(frame)
        primary = largest_plane(planes)
        result = PlaneResult(planes=planes, primary=primary)

        self.found_plane = result.found
        if not result.found:
            logger.info("no plane found (mode=%s)", self.mode.value)
        logger.debug("%s: %d plane(s) in %.1f ms", self.mode.value, len(planes),
                     (time.perf_counter() - start) * 1000.0)
        return result
