import enum
import logging
import math
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

"""
****************Plane Estimation Mode****************
FIDUCIAL      --> calibration board / marker 에서 카메라 pose 를 풀고 평면 하나를 구함 (inlier 없음)
SINGLE_PLANE  --> RANSAC, 가장 큰 평면 하나
MULTI_REGION  --> organized region growing, 여러 평면을 동시에


****************hyper parameter****************
min_plane_inliers     : region 으로 인정할 최소 point 수 (MULTI_REGION)
max_iterations        : RANSAC 반복 횟수 (SINGLE_PLANE)
distance_threshold    : 평면까지 거리 허용치 [m]
                        너무 작으면 노이즈에 민감해져 평면을 잘게 쪼갬.
max_curvature         : region 의 최대 곡률 (가장 작은 고유값 / 고유값 합)
angular_threshold_deg : 이웃 normal 간 최대 각도 차이 [deg]
normal_radius         : normal 추정 시 이웃 검색 반경 [m] (estimate_normals 사용 시)
                        grid 간격보다 충분히 커야 noise 가 평균됨.
"""


class PlaneConfigError(ValueError):
    pass


class Mode(enum.Enum):
    FIDUCIAL = "FIDUCIAL"
    SINGLE_PLANE = "SINGLE_PLANE"
    MULTI_REGION = "MULTI_REGION"

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        text = str(value).strip().upper()
        text = _MODE_ALIASES.get(text, text)
        try:
            return cls(text)
        except ValueError:
            raise PlaneConfigError(f"unknown plane estimation mode: {value!r}") from None


# names used by the older annotator configs
_MODE_ALIASES = {
    "BOARD": "FIDUCIAL",
    "PCL": "SINGLE_PLANE",
    "MPS": "MULTI_REGION",
}


@dataclass(frozen=True)
class PlaneConfig:
    mode: Mode = Mode.MULTI_REGION
    min_plane_inliers: int = 1000
    max_iterations: int = 200
    distance_threshold: float = 0.02
    max_curvature: float = 0.01
    angular_threshold_deg: float = 3.0

    orient_single_plane: bool = False
    estimate_normals: bool = False
    normal_radius: float = 0.05

    # depth -> organized cloud
    depth_scale: float = 1000.0
    min_depth: float = 0.0
    max_depth: Optional[float] = None

    # solvePnPRansac
    pnp_iterations: int = 100
    pnp_reprojection_error: float = 1.0

    seed: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, "mode", Mode.parse(self.mode))
        for f in fields(self):
            if f.name != "mode":
                object.__setattr__(self, f.name, _coerce(f.name, getattr(self, f.name)))

        if self.min_plane_inliers < 0:
            raise PlaneConfigError(f"min_plane_inliers must be >= 0, got {self.min_plane_inliers}")
        if self.max_iterations <= 0:
            raise PlaneConfigError(f"max_iterations must be > 0, got {self.max_iterations}")
        if not self.distance_threshold > 0:
            raise PlaneConfigError(f"distance_threshold must be > 0, got {self.distance_threshold}")
        if not self.max_curvature > 0:
            raise PlaneConfigError(f"max_curvature must be > 0, got {self.max_curvature}")
        if not 0 < self.angular_threshold_deg <= 180:
            raise PlaneConfigError(f"angular_threshold_deg must be in (0, 180], got {self.angular_threshold_deg}")
        if not self.normal_radius > 0:
            raise PlaneConfigError(f"normal_radius must be > 0, got {self.normal_radius}")
        if not self.depth_scale > 0:
            raise PlaneConfigError(f"depth_scale must be > 0, got {self.depth_scale}")
        if self.min_depth < 0:
            raise PlaneConfigError(f"min_depth must be >= 0, got {self.min_depth}")
        if self.max_depth is not None and not self.max_depth > self.min_depth:
            raise PlaneConfigError(f"max_depth must be > min_depth, got {self.max_depth}")
        if self.pnp_iterations <= 0:
            raise PlaneConfigError(f"pnp_iterations must be > 0, got {self.pnp_iterations}")
        if not self.pnp_reprojection_error > 0:
            raise PlaneConfigError(f"pnp_reprojection_error must be > 0, got {self.pnp_reprojection_error}")

    @classmethod
    def from_dict(cls, data):
        data = dict(data or {})
        # config files may wrap everything in a "plane_estimation:" section
        if "plane_estimation" in data and isinstance(data["plane_estimation"], dict):
            data = dict(data["plane_estimation"])

        known = {f.name: f for f in fields(cls)}
        unknown = sorted(set(data) - set(known))
        if unknown:
            raise PlaneConfigError(f"unknown config option(s): {', '.join(unknown)}")

        return cls(**data)


_INT_KEYS = ("min_plane_inliers", "max_iterations", "pnp_iterations")
_FLOAT_KEYS = ("distance_threshold", "max_curvature", "angular_threshold_deg",
               "normal_radius", "depth_scale", "min_depth", "pnp_reprojection_error")
_BOOL_KEYS = ("orient_single_plane", "estimate_normals")


def _coerce(key, value):
    try:
        if key in _INT_KEYS:
            if isinstance(value, bool) or float(value) != int(float(value)):
                raise ValueError(value)
            return int(float(value))
        if key in _FLOAT_KEYS:
            return _to_float(value)
        if key in _BOOL_KEYS:
            if isinstance(value, str):
                low = value.strip().lower()
                if low in ("true", "yes", "on", "1"):
                    return True
                if low in ("false", "no", "off", "0"):
                    return False
                raise ValueError(value)
            return bool(value)
        if key == "max_depth":
            return None if value is None else _to_float(value)
        if key == "seed":
            if isinstance(value, bool):
                raise ValueError(value)
            return None if value is None else int(value)
    except (TypeError, ValueError, OverflowError):
        raise PlaneConfigError(f"invalid value for {key}: {value!r}") from None
    return value


def _to_float(value):
    # true/false 가 1.0/0.0 으로 바뀌지 않게
    if isinstance(value, bool):
        raise ValueError(value)
    value = float(value)
    if math.isnan(value):
        raise ValueError(value)
    return value


def load_config(path):
    """
    YAML 파일에서 PlaneConfig 를 읽음.
    파일이 없으면 기본값.
    """
    path = Path(path)
    if not path.exists():
        logger.info("config %s not found, using defaults", path)
        return PlaneConfig()

    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise PlaneConfigError(f"{path}: expected a mapping at the top level")

    config = PlaneConfig.from_dict(data)
    logger.info("loaded plane config from %s (mode=%s)", path, config.mode.value)
    return config
