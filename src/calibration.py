"""
Pixel-to-meter calibration from a target of known diameter.
"""

from typing import Dict, Optional
from dataclasses import dataclass

from blob_detector import DetectionCandidate


@dataclass(frozen=True)
class CalibrationState:
    """Frozen scale factor for one tracking session."""
    meters_per_pixel: float
    reference_diameter_pixels: float


def pixel_diameter(candidate: DetectionCandidate) -> Optional[float]:
    """Bounding-box extent of a blob, or 2 * radius of a circle."""
    return candidate.diameter


class CalibrationEstimator:
    """
    Derives meters-per-pixel once and keeps it.

    The first detection with a usable diameter sets the scale; later
    detections never overwrite it until reset() is called.
    """

    def __init__(self,
                 reference_diameter_m: float = 0.15,
                 min_diameter_px: float = 3.0,
                 min_pixels: int = 200,
                 kind: str = "target"):
        """
        Args:
            reference_diameter_m: Real diameter of the target (meters)
            min_diameter_px: Smallest pixel diameter trusted for calibration
            min_pixels: Accepted-pixel count a blob needs before its bounding
                box is trusted (circle detections are exempt)
            kind: Detection kind that shows the reference object; other
                kinds are never used for calibration

        Raises:
            ValueError: If parameters are invalid
        """
        if reference_diameter_m <= 0:
            raise ValueError(f"Invalid reference_diameter_m: {reference_diameter_m}. Must be positive.")

        if min_diameter_px <= 0:
            raise ValueError(f"Invalid min_diameter_px: {min_diameter_px}. Must be positive.")

        self.reference_diameter_m = reference_diameter_m
        self.min_diameter_px = min_diameter_px
        self.min_pixels = min_pixels
        self.kind = kind
        self.state: Optional[CalibrationState] = None

    @property
    def is_calibrated(self) -> bool:
        return self.state is not None

    def estimate(self, diameter_px: Optional[float]) -> Optional[float]:
        """Meters per pixel for a diameter, or None if the diameter is too small."""
        if diameter_px is None or diameter_px < self.min_diameter_px:
            return None
        return self.reference_diameter_m / diameter_px

    def calibrate(self, diameter_px: float) -> Optional[CalibrationState]:
        """Freeze the scale from a pixel diameter unless already calibrated."""
        if self.state is not None:
            return self.state

        meters_per_pixel = self.estimate(diameter_px)
        if meters_per_pixel is None:
            return None

        self.state = CalibrationState(
            meters_per_pixel=meters_per_pixel,
            reference_diameter_pixels=float(diameter_px),
        )
        return self.state

    def observe(self, candidate: Optional[DetectionCandidate]) -> Optional[CalibrationState]:
        """
        Offer a detection for calibration.

        Returns:
            The current CalibrationState (new or previously frozen), or None
            while still uncalibrated
        """
        if self.state is not None or candidate is None:
            return self.state

        if candidate.kind != self.kind:
            return None

        if candidate.bbox is not None and candidate.pixel_count < self.min_pixels:
            return None

        return self.calibrate(pixel_diameter(candidate))

    def to_meters(self, pixels: float) -> Optional[float]:
        if self.state is None:
            return None
        return pixels * self.state.meters_per_pixel

    def to_pixels(self, meters: float) -> Optional[float]:
        if self.state is None:
            return None
        return meters / self.state.meters_per_pixel

    def reset(self):
        self.state = None

    def get_calibration_status(self) -> Dict:
        """
        Get current calibration status.

        Returns:
            Dictionary with calibration information
        """
        return {
            "is_calibrated": self.state is not None,
            "meters_per_pixel": self.state.meters_per_pixel if self.state else None,
            "reference_diameter_pixels": self.state.reference_diameter_pixels if self.state else None,
            "reference_diameter_m": self.reference_diameter_m,
        }
