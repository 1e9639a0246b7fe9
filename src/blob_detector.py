"""
Blob detection by thresholding:
- Color (HSV band per object kind)
- Luminance (dark/bright printed targets)
- Motion (background subtraction against a running mean of the first N frames)

Each strategy yields at most one centroid candidate per frame. Candidates from
different strategies are compared by pixel count relative to each strategy's
own minimum, since their sampling densities differ.
"""

import cv2
import numpy as np
from typing import Dict, List, Optional, Tuple
from dataclasses import dataclass, field

from config import BlobConfig, ColorBand
from image_preprocessor import Frame, to_grayscale


@dataclass
class DetectionCandidate:
    """Represents a potential object detection."""
    x: float
    y: float
    score: float
    pixel_count: int
    kind: str
    radius: Optional[float] = None
    bbox: Optional[Tuple[float, float, float, float]] = None
    pixels: Optional[np.ndarray] = field(default=None, repr=False)
    method: str = "color"

    @property
    def diameter(self) -> Optional[float]:
        """Bounding-box extent of accepted pixels, else twice the radius."""
        if self.bbox is not None:
            min_x, min_y, max_x, max_y = self.bbox
            return float(max(max_x - min_x, max_y - min_y))
        if self.radius is not None:
            return 2.0 * self.radius
        return None


def _centroid_candidate(mask: np.ndarray,
                        stride: int,
                        min_pixels: int,
                        kind: str,
                        method: str) -> Optional[DetectionCandidate]:
    """Turn a (strided) acceptance mask into a centroid candidate."""
    ys, xs = np.nonzero(mask)
    count = int(xs.size)

    if count < min_pixels:
        return None

    xs = xs * stride
    ys = ys * stride
    bbox = (float(xs.min()), float(ys.min()), float(xs.max()), float(ys.max()))
    extent = max(bbox[2] - bbox[0], bbox[3] - bbox[1])

    return DetectionCandidate(
        x=float(xs.mean()),
        y=float(ys.mean()),
        score=count / float(min_pixels),
        pixel_count=count,
        kind=kind,
        radius=extent / 2.0,
        bbox=bbox,
        pixels=np.column_stack((xs, ys)).astype(np.float64),
        method=method,
    )


class ColorThresholdDetector:
    """Accepts pixels whose HSV values fall inside one color band."""

    def __init__(self, band: ColorBand, kind: str, min_pixels: int = 40, stride: int = 2):
        self.band = band
        self.kind = kind
        self.min_pixels = min_pixels
        self.stride = stride

    def mask(self, frame: Frame) -> np.ndarray:
        rgb = frame.as_array()[::self.stride, ::self.stride, :3]

        # float32 input gives H in degrees, S and V in [0, 1]
        hsv = cv2.cvtColor(rgb.astype(np.float32) / 255.0, cv2.COLOR_RGB2HSV)
        hue, sat, val = hsv[..., 0], hsv[..., 1], hsv[..., 2]

        if self.band.hue_min <= self.band.hue_max:
            in_hue = (hue >= self.band.hue_min) & (hue <= self.band.hue_max)
        else:
            in_hue = (hue >= self.band.hue_min) | (hue <= self.band.hue_max)

        accepted = in_hue & (sat >= self.band.sat_min) & (val >= self.band.val_min)

        if self.band.min_rgb_sum:
            accepted &= rgb.astype(np.int32).sum(axis=2) >= self.band.min_rgb_sum

        return accepted

    def detect(self, frame: Frame) -> Optional[DetectionCandidate]:
        return _centroid_candidate(self.mask(frame), self.stride, self.min_pixels,
                                   self.kind, "color")


class LuminanceThresholdDetector:
    """Accepts pixels darker than dark_cutoff or brighter than bright_cutoff."""

    def __init__(self,
                 dark_cutoff: Optional[int] = None,
                 bright_cutoff: Optional[int] = 215,
                 min_pixels: int = 40,
                 stride: int = 2,
                 kind: str = "target"):
        if dark_cutoff is None and bright_cutoff is None:
            raise ValueError("At least one of dark_cutoff or bright_cutoff must be set")

        self.dark_cutoff = dark_cutoff
        self.bright_cutoff = bright_cutoff
        self.min_pixels = min_pixels
        self.stride = stride
        self.kind = kind

    def detect(self, frame: Frame) -> Optional[DetectionCandidate]:
        gray = to_grayscale(frame)[::self.stride, ::self.stride]

        accepted = np.zeros(gray.shape, dtype=bool)
        if self.dark_cutoff is not None:
            accepted |= gray < self.dark_cutoff
        if self.bright_cutoff is not None:
            accepted |= gray > self.bright_cutoff

        return _centroid_candidate(accepted, self.stride, self.min_pixels,
                                   self.kind, "luminance")


class BackgroundSubtractor:
    """
    Motion detector against a static background model.

    The model is the per-pixel mean of the first `frames_needed` frames.
    Until it has converged, detect() only accumulates and returns None.
    """

    def __init__(self,
                 frames_needed: int = 10,
                 threshold: int = 60,
                 min_pixels: int = 40,
                 stride: int = 2):
        self.frames_needed = frames_needed
        self.threshold = threshold
        self.min_pixels = min_pixels
        self.stride = stride
        self.reset()

    @property
    def converged(self) -> bool:
        return self.background is not None

    def reset(self):
        """Drop the background model and start accumulating again."""
        self._sum = None
        self._count = 0
        self.background = None

    def _sampled(self, frame: Frame) -> np.ndarray:
        return frame.as_array()[::self.stride, ::self.stride, :3].astype(np.float32)

    def detect(self, frame: Frame) -> Optional[DetectionCandidate]:
        rgb = self._sampled(frame)

        if self._sum is not None and self._sum.shape != rgb.shape:
            self.reset()

        if not self.converged:
            self._sum = rgb.copy() if self._sum is None else self._sum + rgb
            self._count += 1
            if self._count >= self.frames_needed:
                self.background = self._sum / self._count
            return None

        difference = np.abs(rgb - self.background).sum(axis=2)
        return _centroid_candidate(difference > self.threshold, self.stride,
                                   self.min_pixels, "motion", "motion")


def select_best(candidates: List[DetectionCandidate]) -> Optional[DetectionCandidate]:
    """
    Pick the candidate with the highest count relative to its own minimum.

    Ties go to the larger raw pixel count, then to the earlier candidate.
    """
    if not candidates:
        return None
    return max(candidates, key=lambda c: (c.score, c.pixel_count))


class BlobDetector:
    """Runs the enabled threshold strategies on a frame and selects one candidate."""

    def __init__(self, config: Optional[BlobConfig] = None):
        self.config = config if config is not None else BlobConfig()
        cfg = self.config

        self.color_detectors: Dict[str, ColorThresholdDetector] = {
            kind: ColorThresholdDetector(band, kind, cfg.min_color_pixels, cfg.stride)
            for kind, band in cfg.color_bands.items()
        }

        self.luminance_detector = None
        if "luminance" in cfg.strategies:
            self.luminance_detector = LuminanceThresholdDetector(
                dark_cutoff=cfg.dark_cutoff,
                bright_cutoff=cfg.bright_cutoff,
                min_pixels=cfg.min_luminance_pixels,
                stride=cfg.stride,
            )

        self.background = BackgroundSubtractor(
            frames_needed=cfg.background_frames,
            threshold=cfg.motion_threshold,
            min_pixels=cfg.min_motion_pixels,
            stride=cfg.stride,
        )

    def detect_all(self, frame: Frame) -> List[DetectionCandidate]:
        """Every candidate produced by the enabled strategies for this frame."""
        candidates = []

        if "color" in self.config.strategies:
            for detector in self.color_detectors.values():
                candidate = detector.detect(frame)
                if candidate is not None:
                    candidates.append(candidate)

        if self.luminance_detector is not None:
            candidate = self.luminance_detector.detect(frame)
            if candidate is not None:
                candidates.append(candidate)

        if "motion" in self.config.strategies:
            # Always fed, so the background model keeps accumulating
            candidate = self.background.detect(frame)
            if candidate is not None:
                candidates.append(candidate)

        return candidates

    def detect(self, frame: Frame) -> Optional[DetectionCandidate]:
        return select_best(self.detect_all(frame))

    def reset(self):
        self.background.reset()
