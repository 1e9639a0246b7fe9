"""
Configuration bundle for the tracking pipeline.

Every threshold used by the detectors, the calibration step and the Kalman
tracker is a named field here, so that tuning happens in one place.
"""

from dataclasses import dataclass, field, asdict, fields
from typing import Dict, Optional, Tuple


@dataclass(frozen=True)
class ColorBand:
    """
    HSV acceptance band. Hue in degrees [0, 360), saturation/value in [0, 1].

    A band with hue_min > hue_max wraps through 0 (reds).
    """
    hue_min: float
    hue_max: float
    sat_min: float
    val_min: float
    min_rgb_sum: int = 0

    def __post_init__(self):
        if not 0.0 <= self.hue_min <= 360.0 or not 0.0 <= self.hue_max <= 360.0:
            raise ValueError(f"Invalid hue range: {self.hue_min}-{self.hue_max}. Must be within 0-360.")

        if not 0.0 <= self.sat_min <= 1.0:
            raise ValueError(f"Invalid sat_min: {self.sat_min}. Must be between 0.0 and 1.0.")

        if not 0.0 <= self.val_min <= 1.0:
            raise ValueError(f"Invalid val_min: {self.val_min}. Must be between 0.0 and 1.0.")

        if self.min_rgb_sum < 0 or self.min_rgb_sum > 765:
            raise ValueError(f"Invalid min_rgb_sum: {self.min_rgb_sum}. Must be between 0 and 765.")


# Ochre printed target and a saturated red/orange ball
TARGET_BAND = ColorBand(hue_min=18.0, hue_max=60.0, sat_min=0.12, val_min=0.35, min_rgb_sum=120)
BALL_BAND = ColorBand(hue_min=340.0, hue_max=18.0, sat_min=0.5, val_min=0.3)


@dataclass
class BlobConfig:
    """Thresholds for the color, luminance and motion blob detectors."""
    stride: int = 2
    color_bands: Dict[str, ColorBand] = field(
        default_factory=lambda: {"target": TARGET_BAND, "ball": BALL_BAND})
    min_color_pixels: int = 40
    dark_cutoff: Optional[int] = None
    bright_cutoff: Optional[int] = 215
    min_luminance_pixels: int = 40
    background_frames: int = 10
    motion_threshold: int = 60
    min_motion_pixels: int = 40
    strategies: Tuple[str, ...] = ("color", "motion")

    def __post_init__(self):
        if self.stride < 1:
            raise ValueError(f"Invalid stride: {self.stride}. Must be at least 1.")

        for name in ("min_color_pixels", "min_luminance_pixels", "min_motion_pixels"):
            if getattr(self, name) < 1:
                raise ValueError(f"Invalid {name}: {getattr(self, name)}. Must be at least 1.")

        if self.background_frames < 1:
            raise ValueError(f"Invalid background_frames: {self.background_frames}. Must be at least 1.")

        for name in ("dark_cutoff", "bright_cutoff"):
            value = getattr(self, name)
            if value is not None and not 0 <= value <= 255:
                raise ValueError(f"Invalid {name}: {value}. Must be between 0 and 255.")

        unknown = set(self.strategies) - {"color", "luminance", "motion"}
        if unknown:
            raise ValueError(f"Unknown blob strategies: {sorted(unknown)}")

        self.strategies = tuple(self.strategies)
        self.color_bands = {
            kind: band if isinstance(band, ColorBand) else ColorBand(**band)
            for kind, band in self.color_bands.items()
        }


@dataclass
class HoughConfig:
    """Radius sweep and vote threshold for the circle detector (radii in source pixels)."""
    r_min: float = 10.0
    r_max: float = 60.0
    r_step: float = 2.0
    angle_samples: int = 45
    min_score: float = 0.3
    max_width: int = 480
    blur_radius: int = 1
    edge_fraction: float = 0.25
    kind: str = "target"

    def __post_init__(self):
        if self.r_min <= 0 or self.r_max < self.r_min:
            raise ValueError(f"Invalid radius range: {self.r_min}-{self.r_max}")

        if self.r_step <= 0:
            raise ValueError(f"Invalid r_step: {self.r_step}. Must be positive.")

        if self.angle_samples < 8:
            raise ValueError(f"Invalid angle_samples: {self.angle_samples}. Must be at least 8.")

        if not 0.0 < self.edge_fraction < 1.0:
            raise ValueError(f"Invalid edge_fraction: {self.edge_fraction}. Must be between 0.0 and 1.0.")

        if self.max_width < 16:
            raise ValueError(f"Invalid max_width: {self.max_width}")


@dataclass
class EllipseConfig:
    """Edge extraction settings for the ellipse fitter."""
    min_points: int = 20
    max_points: int = 2000
    max_width: int = 480
    blur_radius: int = 1
    edge_fraction: float = 0.25
    padding: int = 4
    discriminant_eps: float = 1e-12

    def __post_init__(self):
        if self.min_points < 6:
            raise ValueError(f"Invalid min_points: {self.min_points}. A conic needs at least 6 points.")

        if self.max_points < self.min_points:
            raise ValueError(f"Invalid max_points: {self.max_points}. Must be >= min_points.")

        if not 0.0 < self.edge_fraction < 1.0:
            raise ValueError(f"Invalid edge_fraction: {self.edge_fraction}. Must be between 0.0 and 1.0.")


@dataclass
class KalmanConfig:
    """Noise levels of the constant-velocity tracker."""
    q_pos: float = 1e-5
    q_vel: float = 1e-3
    r: float = 1e-6
    prior_cov: float = 1e3
    init_cov: float = 1e-1
    det_eps: float = 1e-12
    fallback_inverse: float = 1e12
    min_dt: float = 1e-6

    def __post_init__(self):
        for name in ("q_pos", "q_vel", "r", "prior_cov", "init_cov", "min_dt"):
            if getattr(self, name) <= 0:
                raise ValueError(f"Invalid {name}: {getattr(self, name)}. Must be positive.")


@dataclass
class PipelineConfig:
    """
    Top-level bundle handed to a TrackingSession.

    Candidates of calibration_kind only set the pixel scale; candidates of
    track_kind (or motion, when none of that kind is found) form the trajectory.
    """
    detector: str = "blob"
    calibration_kind: str = "target"
    track_kind: str = "ball"
    reference_diameter_m: float = 0.15
    min_calibration_diameter_px: float = 3.0
    min_calibration_pixels: int = 200
    fit_target_ellipse: bool = True
    gravity: float = 9.81
    blob: BlobConfig = field(default_factory=BlobConfig)
    hough: HoughConfig = field(default_factory=HoughConfig)
    ellipse: EllipseConfig = field(default_factory=EllipseConfig)
    kalman: KalmanConfig = field(default_factory=KalmanConfig)

    def __post_init__(self):
        if self.detector not in ("blob", "hough"):
            raise ValueError(f"Invalid detector: {self.detector}. Must be 'blob' or 'hough'.")

        if not self.calibration_kind or self.calibration_kind == "motion":
            raise ValueError(f"Invalid calibration_kind: {self.calibration_kind!r}. "
                             f"Must name a detected object, not motion.")

        if not self.track_kind:
            raise ValueError(f"Invalid track_kind: {self.track_kind!r}")

        if self.reference_diameter_m <= 0 or self.reference_diameter_m > 10:
            raise ValueError(f"Invalid reference_diameter_m: {self.reference_diameter_m}")

        if self.min_calibration_diameter_px <= 0:
            raise ValueError(f"Invalid min_calibration_diameter_px: {self.min_calibration_diameter_px}")

        if self.gravity <= 0:
            raise ValueError(f"Invalid gravity: {self.gravity}")

    @classmethod
    def from_dict(cls, data: Dict) -> "PipelineConfig":
        """
        Build a configuration from a (JSON-decoded) dictionary.

        Nested sections ("blob", "hough", "ellipse", "kalman") may be given
        partially; missing keys keep their defaults.

        Raises:
            ValueError: If a key is unknown or a value is invalid
        """
        sections = {"blob": BlobConfig, "hough": HoughConfig,
                    "ellipse": EllipseConfig, "kalman": KalmanConfig}
        known = {f.name for f in fields(cls)}

        kwargs = {}
        for key, value in data.items():
            if key not in known:
                raise ValueError(f"Unknown configuration key: {key}")
            if key in sections:
                section_cls = sections[key]
                section_known = {f.name for f in fields(section_cls)}
                bad = set(value) - section_known
                if bad:
                    raise ValueError(f"Unknown {key} configuration keys: {sorted(bad)}")
                if key == "blob" and "strategies" in value:
                    value = dict(value, strategies=tuple(value["strategies"]))
                kwargs[key] = section_cls(**value)
            else:
                kwargs[key] = value

        return cls(**kwargs)

    def to_dict(self) -> Dict:
        """Plain-dictionary form, suitable for json.dumps."""
        data = asdict(self)
        data["blob"]["strategies"] = list(self.blob.strategies)
        return data
