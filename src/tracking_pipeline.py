"""
Per-session tracking pipeline.

Per frame: detect -> calibrate from the reference object (first usable
detection only) -> convert the tracked object to meters -> Kalman filter ->
accumulate a filtered sample.
After the run: regression on the filtered trajectory -> derived quantities.

A TrackingSession owns its calibration, Kalman state and background model;
nothing is shared between sessions.
"""

import time
import numpy as np
from typing import Dict, List, Optional, Tuple
from dataclasses import dataclass

from axis_estimator import AxisEstimate, principal_axis
from blob_detector import BlobDetector, DetectionCandidate, select_best
from calibration import CalibrationEstimator, CalibrationState
from circle_detector import HoughCircleDetector
from config import PipelineConfig
from ellipse_fitter import EllipseFitter, EllipseParams
from image_preprocessor import Frame
from kalman_tracker import KalmanTracker2D
from kinematics import KinematicsAnalyzer


@dataclass
class RawSample:
    """Unfiltered detection; meter coordinates only once calibrated."""
    t: float
    x_pixel: float
    y_pixel: float
    x_meters: Optional[float] = None
    y_meters: Optional[float] = None
    kind: str = ""


@dataclass
class FilteredSample:
    """Kalman-smoothed position and velocity at time t (meters, m/s)."""
    t: float
    x: float
    y: float
    vx: float
    vy: float

    @property
    def speed(self) -> float:
        return float(np.hypot(self.vx, self.vy))


class SequenceSource:
    """Frame source over an in-memory iterable of (Frame, t) pairs."""

    def __init__(self, items):
        self._items = iter(items)

    def next_frame(self) -> Optional[Tuple[Frame, float]]:
        return next(self._items, None)


class TrackingSession:
    """
    Tracks one object through a sequence of frames.

    Frames are pulled from any object with a next_frame() method returning
    (Frame, timestamp_seconds) or None at end of stream.
    """

    EXPORT_HEADER = ("t(s)", "x(m)", "y(m)", "vx(m/s)", "vy(m/s)")
    ORIENTATION_MIN_PIXELS = 10

    def __init__(self,
                 config: Optional[PipelineConfig] = None,
                 blob_detector: Optional[BlobDetector] = None,
                 circle_detector: Optional[HoughCircleDetector] = None,
                 ellipse_fitter: Optional[EllipseFitter] = None,
                 verbose: bool = True):
        """
        Initialize a session with dependency injection.

        Args:
            config: Pipeline configuration (defaults if None)
            blob_detector: BlobDetector instance (built from config if None)
            circle_detector: HoughCircleDetector instance (built from config if None)
            ellipse_fitter: EllipseFitter instance (built from config if None)
            verbose: Print progress and calibration messages
        """
        self.config = config if config is not None else PipelineConfig()
        cfg = self.config

        self.blob_detector = blob_detector if blob_detector is not None else BlobDetector(cfg.blob)
        self.circle_detector = circle_detector if circle_detector is not None else HoughCircleDetector(cfg.hough)
        self.ellipse_fitter = ellipse_fitter if ellipse_fitter is not None else EllipseFitter(cfg.ellipse)
        self.calibration = CalibrationEstimator(
            reference_diameter_m=cfg.reference_diameter_m,
            min_diameter_px=cfg.min_calibration_diameter_px,
            min_pixels=cfg.min_calibration_pixels,
            kind=cfg.calibration_kind,
        )
        self.kalman = KalmanTracker2D(cfg.kalman)
        self.analyzer = KinematicsAnalyzer(gravity=cfg.gravity)
        self.verbose = verbose

        self._clear()

    def _clear(self):
        self.raw_samples: List[RawSample] = []
        self.samples: List[FilteredSample] = []
        self.frames_processed = 0
        self.frames_detected = 0
        self.target_ellipse: Optional[EllipseParams] = None
        self.target_orientation: Optional[AxisEstimate] = None
        self._last_frame_t: Optional[float] = None
        self._last_update_t: Optional[float] = None

    def _log(self, message: str):
        if self.verbose:
            print(message)

    def detect_all(self, frame: Frame) -> List[DetectionCandidate]:
        """Every candidate the configured detector finds in one frame."""
        if self.config.detector == "hough":
            circle = self.circle_detector.detect_frame(frame)
            if circle is None:
                return []
            return [circle.to_candidate(self.config.hough.kind)]

        return self.blob_detector.detect_all(frame)

    def select_reference(self, candidates: List[DetectionCandidate]) -> Optional[DetectionCandidate]:
        """Best candidate showing the calibration object."""
        return select_best([c for c in candidates if c.kind == self.config.calibration_kind])

    def select_tracked(self, candidates: List[DetectionCandidate]) -> Optional[DetectionCandidate]:
        """
        Best candidate of the tracked kind; motion only when there is none.

        A motion box also covers the object's ghost in the background model,
        so it never displaces a color or shape detection of the tracked object.
        """
        tracked = select_best([c for c in candidates if c.kind == self.config.track_kind])
        if tracked is not None:
            return tracked
        return select_best([c for c in candidates if c.kind == "motion"])

    def detect(self, frame: Frame) -> Optional[DetectionCandidate]:
        """Tracked-object detection for one frame."""
        return self.select_tracked(self.detect_all(frame))

    def _on_calibrated(self, frame: Frame, candidate: DetectionCandidate, state: CalibrationState):
        self._log(f"Calibrated: {state.meters_per_pixel:.6f} m/pixel "
                  f"(target diameter {state.reference_diameter_pixels:.1f} px, {candidate.method})")

        if candidate.pixels is not None:
            self.target_orientation = principal_axis(candidate.pixels,
                                                     min_points=self.ORIENTATION_MIN_PIXELS)

        if not self.config.fit_target_ellipse:
            return

        bbox = candidate.bbox
        if bbox is None and candidate.radius is not None:
            r = candidate.radius
            bbox = (candidate.x - r, candidate.y - r, candidate.x + r, candidate.y + r)

        self.target_ellipse = self.ellipse_fitter.fit_frame(frame, bbox)
        if self.target_ellipse is not None:
            self._log(f"  Target plane inclination: {self.target_ellipse.inclination_deg:.1f} deg")

    def process_frame(self, frame: Frame, t: float) -> Optional[FilteredSample]:
        """
        Push one frame through the pipeline.

        Returns:
            The new FilteredSample, or None if the frame was skipped (no
            detection, not yet calibrated, or non-increasing timestamp)
        """
        self.frames_processed += 1

        if self._last_frame_t is not None and t <= self._last_frame_t:
            self._log(f"  Skipped frame at t={t:.4f}s: timestamp not after {self._last_frame_t:.4f}s")
            return None
        self._last_frame_t = t

        candidates = self.detect_all(frame)

        if not self.calibration.is_calibrated:
            reference = self.select_reference(candidates)
            state = self.calibration.observe(reference)
            if state is not None:
                self._on_calibrated(frame, reference, state)

        candidate = self.select_tracked(candidates)
        if candidate is None:
            return None
        self.frames_detected += 1

        raw = RawSample(
            t=t,
            x_pixel=candidate.x,
            y_pixel=candidate.y,
            x_meters=self.calibration.to_meters(candidate.x),
            y_meters=self.calibration.to_meters(candidate.y),
            kind=candidate.kind,
        )
        self.raw_samples.append(raw)

        if raw.x_meters is None:
            return None

        dt = 0.0 if self._last_update_t is None else t - self._last_update_t
        self.kalman.step((raw.x_meters, raw.y_meters), dt)
        self._last_update_t = t

        state = self.kalman.get_state()
        sample = FilteredSample(t=t, x=state["x"], y=state["y"], vx=state["vx"], vy=state["vy"])
        self.samples.append(sample)
        return sample

    def run(self, source, max_frames: Optional[int] = None) -> List[FilteredSample]:
        """
        Pull frames until the source is exhausted (or max_frames is reached).

        Stopping early leaves every sample gathered so far usable.
        """
        count = 0
        while max_frames is None or count < max_frames:
            item = source.next_frame()
            if item is None:
                break

            frame, t = item
            self.process_frame(frame, t)
            count += 1

            if count % 30 == 0:
                self._log(f"  Progress: {count} frames - detected in {self.frames_detected}, "
                          f"{len(self.samples)} filtered samples")

        rate = (self.frames_detected / count * 100) if count > 0 else 0
        self._log(f"Tracking complete: object detected in {self.frames_detected}/{count} frames ({rate:.1f}%)")
        return self.samples

    def auto_calibrate(self, source, samples: int = 8, delay_s: float = 0.0) -> Optional[Dict]:
        """
        Sample several frames, calibrate from the strongest detection of the
        calibration object and estimate its orientation as the median PCA angle.

        The background model is cleared afterwards, so tracking starts a fresh
        one even when it re-reads the same frames.

        Args:
            source: Frame source (next_frame() -> (Frame, t) | None)
            samples: Number of frames to try
            delay_s: Pause between samples

        Returns:
            Dictionary with meters_per_pixel and orientation, or None if no
            frame produced a detection
        """
        if samples < 1:
            raise ValueError(f"Invalid samples: {samples}. Must be at least 1.")

        results: List[Tuple[Frame, DetectionCandidate]] = []
        for i in range(samples):
            item = source.next_frame()
            if item is None:
                break

            frame, _ = item
            candidate = self.select_reference(self.detect_all(frame))
            if candidate is not None:
                results.append((frame, candidate))

            if delay_s > 0 and i < samples - 1:
                time.sleep(delay_s)

        # Calibration frames must not seed the motion model used while tracking
        self.blob_detector.reset()

        if not results:
            self._log("Auto-calibration failed: no detection in sampled frames")
            return None

        frame, best = max(results, key=lambda r: (r[1].score, r[1].pixel_count))
        if not self.calibration.is_calibrated:
            state = self.calibration.observe(best)
            if state is not None:
                self._on_calibrated(frame, best, state)

        angles = []
        for _, candidate in results:
            if candidate.pixels is None:
                continue
            axis = principal_axis(candidate.pixels, min_points=self.ORIENTATION_MIN_PIXELS)
            if axis is not None:
                angles.append(axis.angle_rad)

        median_angle = None
        if angles:
            angles.sort()
            median_angle = angles[len(angles) // 2]

        return {
            "meters_per_pixel": self.calibration.state.meters_per_pixel if self.calibration.state else None,
            "angle_rad": median_angle,
            "angle_deg": float(np.degrees(median_angle)) if median_angle is not None else None,
            "inclination_deg": self.target_ellipse.inclination_deg if self.target_ellipse else None,
            "samples_used": len(results),
        }

    def analyze(self) -> Dict:
        """Regression and derived quantities over the filtered trajectory."""
        result = self.analyzer.analyze(self.samples)
        if "error" in result:
            return result

        result["calibration"] = self.calibration.get_calibration_status()
        result["target_inclination_deg"] = (
            self.target_ellipse.inclination_deg if self.target_ellipse else None)
        result["target_orientation_deg"] = (
            self.target_orientation.angle_deg if self.target_orientation else None)
        return result

    def export_rows(self) -> List[Tuple[float, float, float, float, float]]:
        """Filtered samples as (t, x, y, vx, vy) rows, matching EXPORT_HEADER."""
        return [(s.t, s.x, s.y, s.vx, s.vy) for s in self.samples]

    def reset(self):
        """Start a new session: forget calibration, filter state and background."""
        self.calibration.reset()
        self.kalman.reset()
        self.blob_detector.reset()
        self._clear()
