import logging

import numpy as np
import pytest

from camera_calibration import CameraCalibration
from fiducial_pose import FiducialPoseEstimator, MarkerCorrespondences
from plane_config import Mode, PlaneConfig, PlaneConfigError
from plane_detection import FrameInputs, PlaneEstimator
from plane_detection_ransac import SinglePlaneFitter
from plane_detection_region_growing import MultiRegionSegmenter


@pytest.mark.parametrize("mode, strategy", [
    (Mode.FIDUCIAL, FiducialPoseEstimator),
    (Mode.SINGLE_PLANE, SinglePlaneFitter),
    (Mode.MULTI_REGION, MultiRegionSegmenter),
])
def test_strategy_selected_from_config(mode, strategy):
    estimator = PlaneEstimator(PlaneConfig(mode=mode))
    assert isinstance(estimator.strategy, strategy)


def test_invalid_config_rejected_before_any_frame():
    with pytest.raises(PlaneConfigError):
        PlaneEstimator(PlaneConfig(mode="SINGLE_PLANE", distance_threshold=-1.0))


@pytest.mark.parametrize("mode", list(Mode))
def test_missing_inputs_is_no_plane(mode, caplog):
    estimator = PlaneEstimator(PlaneConfig(mode=mode))
    with caplog.at_level(logging.INFO):
        result = estimator.process(FrameInputs())
    assert not result.found
    assert result.planes == [] and result.primary is None
    assert estimator.found_plane is False
    assert "no plane found" in caplog.text


def test_multi_region_frame(two_patch_frame):
    cloud, normals = two_patch_frame
    estimator = PlaneEstimator(PlaneConfig(mode=Mode.MULTI_REGION, min_plane_inliers=100))
    result = estimator.process(FrameInputs(cloud=cloud, normals=normals))

    assert result.found and estimator.found_plane
    assert len(result.planes) == 2
    assert result.primary == 0
    for plane in result.planes:
        assert plane.offset <= 0
        assert plane.mask.shape == (plane.roi.height, plane.roi.width)
        assert int((plane.mask > 0).sum()) == plane.num_inliers


def test_multi_region_without_normals(two_patch_frame):
    cloud, _ = two_patch_frame
    result = PlaneEstimator(PlaneConfig(mode="MPS", min_plane_inliers=100)).process(FrameInputs(cloud=cloud))
    assert not result.found


def test_multi_region_estimates_missing_normals(planar_cloud):
    # z = 1 평면으로 옮겨서 카메라 앞에 둠
    pts = planar_cloud.points.copy()
    pts[..., 2] = 1.0
    planar_cloud.points = pts

    config = PlaneConfig(mode=Mode.MULTI_REGION, min_plane_inliers=100, estimate_normals=True)
    result = PlaneEstimator(config).process(FrameInputs(cloud=planar_cloud))

    assert len(result.planes) == 1
    # 가장자리 point 도 이웃으로 normal 이 추정되어 전체 grid 가 한 평면
    assert result.planes[0].num_inliers == planar_cloud.size
    np.testing.assert_allclose(result.planes[0].model, [0.0, 0.0, 1.0, -1.0], atol=1e-5)


def test_multi_region_on_noisy_depth(tilted_plane):
    cloud, normal = tilted_plane(noise=0.001)
    config = PlaneConfig(mode=Mode.MULTI_REGION, min_plane_inliers=500, estimate_normals=True)
    result = PlaneEstimator(config).process(FrameInputs(cloud=cloud))

    assert result.found
    plane = result.primary_plane
    assert plane.num_inliers >= 0.9 * cloud.size
    assert abs(plane.model[:3] @ normal) > np.cos(np.radians(1.0))


def test_single_plane_from_depth_image():
    calib = CameraCalibration.from_intrinsics(50.0, 50.0, 20.0, 15.0, width=40, height=30)
    depth = np.full((30, 40), 1200, dtype=np.uint16)
    depth[:5, :5] = 0

    config = PlaneConfig(mode=Mode.SINGLE_PLANE, distance_threshold=0.005, seed=0)
    estimator = PlaneEstimator(config)
    result = estimator.process(FrameInputs(depth=depth, calibration=calib))

    assert result.found
    plane = result.primary_plane
    invalid = np.zeros((30, 40), dtype=bool)
    invalid[:5, :5] = True
    np.testing.assert_array_equal(plane.inliers, np.flatnonzero(~invalid.ravel()))
    assert plane.roi == (0, 0, 40, 30)
    assert plane.mask[:5, :5].max() == 0
    np.testing.assert_allclose(np.abs(plane.model), [0.0, 0.0, 1.0, 1.2], atol=1e-5)


def test_lookup_cache_rebuilt_only_on_change():
    calib = CameraCalibration.from_intrinsics(50.0, 50.0, 20.0, 15.0, width=40, height=30)
    estimator = PlaneEstimator(PlaneConfig(mode=Mode.SINGLE_PLANE, seed=0))
    depth = np.full((30, 40), 1000, dtype=np.uint16)

    estimator.process(FrameInputs(depth=depth, calibration=calib))
    first = estimator._lookup
    estimator.process(FrameInputs(depth=depth, calibration=calib))
    assert estimator._lookup is first

    other = CameraCalibration.from_intrinsics(60.0, 60.0, 20.0, 15.0, width=40, height=30)
    estimator.process(FrameInputs(depth=depth, calibration=other))
    assert estimator._lookup is not first

    rebuilt = estimator._lookup
    estimator.process(FrameInputs(depth=np.full((20, 40), 1000, dtype=np.uint16), calibration=other))
    assert estimator._lookup is not rebuilt
    assert estimator._lookup[1].shape == (20,)


def test_fiducial_frame_without_marker(calibration):
    estimator = PlaneEstimator(PlaneConfig(mode=Mode.FIDUCIAL))
    result = estimator.process(FrameInputs(calibration=calibration))
    assert not result.found
    assert estimator.found_plane is False


def test_fiducial_degenerate_marker_is_not_found(calibration):
    estimator = PlaneEstimator(PlaneConfig(mode=Mode.FIDUCIAL))
    marker = MarkerCorrespondences(np.zeros((5, 2)), np.zeros((5, 3)))
    result = estimator.process(FrameInputs(calibration=calibration, marker=marker))
    assert not result.found
    assert estimator.found_plane is False
