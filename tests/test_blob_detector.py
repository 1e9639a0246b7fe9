"""
Unit tests for blob_detector module.
"""

import pytest
import numpy as np
import sys
import os

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from blob_detector import (
    BackgroundSubtractor, BlobDetector, ColorThresholdDetector, DetectionCandidate,
    LuminanceThresholdDetector, select_best,
)
from config import BlobConfig, TARGET_BAND, BALL_BAND
from image_preprocessor import Frame

ORANGE = (230, 160, 40)


def render(width, height, disks=(), background=(0, 0, 0)):
    """Render filled disks given as (cx, cy, radius, rgb) on a flat background."""
    image = np.zeros((height, width, 4), dtype=np.uint8)
    image[..., :3] = background
    image[..., 3] = 255
    yy, xx = np.mgrid[0:height, 0:width]
    for cx, cy, radius, rgb in disks:
        image[(xx - cx) ** 2 + (yy - cy) ** 2 <= radius ** 2, :3] = rgb
    return Frame.from_rgba(image)


class TestColorThresholdDetector:
    """Test cases for HSV color detection."""

    def test_detects_target_color(self):
        """Test centroid and bounding box of an ochre disk."""
        frame = render(200, 160, [(100, 80, 20, ORANGE)])
        detector = ColorThresholdDetector(TARGET_BAND, "target", min_pixels=40, stride=2)

        candidate = detector.detect(frame)

        assert candidate is not None
        assert candidate.kind == "target"
        assert abs(candidate.x - 100) <= 1
        assert abs(candidate.y - 80) <= 1
        assert candidate.diameter == pytest.approx(40)
        assert candidate.score == pytest.approx(candidate.pixel_count / 40)
        assert candidate.pixels.shape == (candidate.pixel_count, 2)

    def test_wrong_color_ignored(self):
        """Test that a blue disk does not match the target band."""
        frame = render(200, 160, [(100, 80, 20, (30, 60, 220))])
        detector = ColorThresholdDetector(TARGET_BAND, "target")

        assert detector.detect(frame) is None

    def test_too_few_pixels(self):
        """Test the minimum pixel count."""
        frame = render(200, 160, [(100, 80, 3, ORANGE)])
        detector = ColorThresholdDetector(TARGET_BAND, "target", min_pixels=40, stride=2)

        assert detector.detect(frame) is None

    def test_dark_pixels_rejected_by_rgb_floor(self):
        """Test the RGB-sum floor on dim pixels of the right hue."""
        frame = render(200, 160, [(100, 80, 20, (90, 28, 0))])
        detector = ColorThresholdDetector(TARGET_BAND, "target")

        assert detector.detect(frame) is None

    def test_red_band_wraps_through_zero(self):
        """Test that hues on both sides of 0 degrees match the ball band."""
        detector = ColorThresholdDetector(BALL_BAND, "ball", min_pixels=40, stride=1)

        pure_red = render(100, 100, [(50, 50, 10, (220, 30, 30))])
        crimson = render(100, 100, [(50, 50, 10, (220, 30, 62))])

        assert detector.detect(pure_red) is not None
        assert detector.detect(crimson) is not None


class TestLuminanceThresholdDetector:
    """Test cases for luminance detection."""

    def test_bright_target(self):
        """Test detection of a white disk on a mid-gray background."""
        frame = render(200, 160, [(60, 90, 15, (255, 255, 255))], background=(100, 100, 100))
        candidate = LuminanceThresholdDetector(bright_cutoff=215).detect(frame)

        assert candidate is not None
        assert candidate.method == "luminance"
        assert abs(candidate.x - 60) <= 1
        assert abs(candidate.y - 90) <= 1

    def test_dark_target(self):
        """Test detection of a black disk with the dark cutoff."""
        frame = render(200, 160, [(120, 60, 15, (0, 0, 0))], background=(180, 180, 180))
        detector = LuminanceThresholdDetector(dark_cutoff=40, bright_cutoff=None)

        candidate = detector.detect(frame)

        assert candidate is not None
        assert abs(candidate.x - 120) <= 1

    def test_requires_a_cutoff(self):
        """Test that disabling both cutoffs is invalid."""
        with pytest.raises(ValueError):
            LuminanceThresholdDetector(dark_cutoff=None, bright_cutoff=None)


class TestBackgroundSubtractor:
    """Test cases for motion detection."""

    def test_waits_for_convergence(self):
        """Test that nothing is reported until N frames are accumulated."""
        subtractor = BackgroundSubtractor(frames_needed=3)
        blank = render(120, 100)

        for _ in range(3):
            assert subtractor.detect(blank) is None
        assert subtractor.converged

    def test_detects_moving_object(self):
        """Test detection of an object absent from the background model."""
        subtractor = BackgroundSubtractor(frames_needed=3, threshold=60, min_pixels=40)
        for _ in range(3):
            subtractor.detect(render(120, 100))

        candidate = subtractor.detect(render(120, 100, [(70, 40, 12, (150, 150, 150))]))

        assert candidate is not None
        assert candidate.kind == "motion"
        assert abs(candidate.x - 70) <= 1
        assert abs(candidate.y - 40) <= 1

    def test_static_scene(self):
        """Test that an unchanged scene reports no motion."""
        scene = render(120, 100, [(50, 50, 10, ORANGE)])
        subtractor = BackgroundSubtractor(frames_needed=2)
        subtractor.detect(scene)
        subtractor.detect(scene)

        assert subtractor.detect(scene) is None

    def test_frame_size_change_restarts_model(self):
        """Test that a new frame size resets accumulation."""
        subtractor = BackgroundSubtractor(frames_needed=2)
        subtractor.detect(render(120, 100))
        subtractor.detect(render(120, 100))

        assert subtractor.detect(render(60, 50)) is None
        assert not subtractor.converged


class TestSelection:
    """Test cases for candidate selection."""

    def test_relative_count_wins(self):
        """Test comparing count / minimum instead of raw count."""
        dense = DetectionCandidate(x=0, y=0, score=100 / 100.0, pixel_count=100, kind="motion")
        sparse = DetectionCandidate(x=5, y=5, score=60 / 20.0, pixel_count=60, kind="target")

        assert select_best([dense, sparse]) is sparse

    def test_tie_goes_to_larger_count(self):
        """Test the raw pixel count tie-break."""
        a = DetectionCandidate(x=0, y=0, score=2.0, pixel_count=80, kind="ball")
        b = DetectionCandidate(x=0, y=0, score=2.0, pixel_count=120, kind="target")

        assert select_best([a, b]) is b

    def test_empty(self):
        """Test that no candidates selects nothing."""
        assert select_best([]) is None

    def test_diameter_from_radius(self):
        """Test the diameter fallback for circle candidates."""
        candidate = DetectionCandidate(x=0, y=0, score=1.0, pixel_count=10, kind="ball", radius=7.5)
        assert candidate.diameter == 15.0


class TestBlobDetector:
    """Test cases for the combined detector."""

    def test_color_detection(self):
        """Test detection with the default configuration."""
        detector = BlobDetector()
        candidate = detector.detect(render(200, 160, [(100, 80, 20, ORANGE)]))

        assert candidate is not None
        assert candidate.kind == "target"

    def test_motion_fallback(self):
        """Test that motion finds an object no color band accepts."""
        detector = BlobDetector(BlobConfig(background_frames=3))
        for _ in range(3):
            assert detector.detect(render(160, 120)) is None

        candidate = detector.detect(render(160, 120, [(80, 60, 15, (140, 140, 140))]))

        assert candidate is not None
        assert candidate.kind == "motion"

    def test_luminance_strategy(self):
        """Test enabling the luminance strategy."""
        config = BlobConfig(strategies=("luminance",), bright_cutoff=215)
        detector = BlobDetector(config)

        frame = render(160, 120, [(40, 40, 12, (255, 255, 255))], background=(90, 90, 90))
        candidate = detector.detect(frame)

        assert candidate is not None
        assert candidate.method == "luminance"

    def test_reset_clears_background(self):
        """Test that reset drops the background model."""
        detector = BlobDetector(BlobConfig(background_frames=1))
        detector.detect(render(80, 60))
        assert detector.background.converged

        detector.reset()

        assert not detector.background.converged


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
