"""
Unit tests for video_processor module.
"""

import pytest
import numpy as np
import json
import sys
import os

import cv2

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from config import PipelineConfig
from video_processor import VideoFileSource, load_config, main, process_video


def write_video(path, n=20, fps=25.0):
    """Write an MJPG clip of an orange disk moving down; None if unsupported."""
    writer = cv2.VideoWriter(path, cv2.VideoWriter_fourcc(*"MJPG"), fps, (200, 320))
    if not writer.isOpened():
        return None

    for i in range(n):
        image = np.zeros((320, 200, 3), dtype=np.uint8)
        # BGR
        cv2.circle(image, (100, 60 + 10 * i), 20, (40, 160, 230), -1)
        writer.write(image)
    writer.release()
    return path


class TestLoadConfig:
    """Test cases for load_config."""

    def test_defaults_without_path(self):
        """Test that no path gives the default configuration."""
        assert load_config(None) == PipelineConfig()

    def test_load_file(self, tmp_path):
        """Test loading a partial JSON configuration."""
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"detector": "hough", "reference_diameter_m": 0.22}))

        config = load_config(str(path))

        assert config.detector == "hough"
        assert config.reference_diameter_m == 0.22

    def test_missing_file(self, tmp_path):
        """Test that a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "missing.json"))

    def test_invalid_json(self, tmp_path):
        """Test that malformed JSON raises ValueError."""
        path = tmp_path / "bad.json"
        path.write_text("{detector: ")

        with pytest.raises(ValueError):
            load_config(str(path))

    def test_not_an_object(self, tmp_path):
        """Test that a JSON list is rejected."""
        path = tmp_path / "list.json"
        path.write_text("[1, 2]")

        with pytest.raises(ValueError):
            load_config(str(path))


class TestProcessVideo:
    """Test cases for process_video and VideoFileSource."""

    def test_missing_video(self, tmp_path):
        """Test that a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            process_video(str(tmp_path / "missing.mp4"), verbose=False)

    def test_invalid_path(self):
        """Test that an empty path raises ValueError."""
        with pytest.raises(ValueError):
            process_video("", verbose=False)

    def test_unreadable_video(self, tmp_path):
        """Test that a non-video file cannot be opened."""
        path = tmp_path / "notes.txt"
        path.write_text("not a video")

        with pytest.raises(ValueError):
            VideoFileSource(str(path))

    def test_end_to_end(self, tmp_path):
        """Test tracking through a rendered video file."""
        path = write_video(str(tmp_path / "clip.avi"))
        if path is None:
            pytest.skip("MJPG writer unavailable")

        config = PipelineConfig.from_dict({"track_kind": "target", "blob": {"strategies": ["color"]}})
        result = process_video(path, config=config, verbose=False)

        assert result["success"]
        assert result["frames_processed"] == 20
        assert result["auto_calibration"] is not None
        assert result["columns"] == ["t(s)", "x(m)", "y(m)", "vx(m/s)", "vy(m/s)"]
        assert len(result["samples"]) == 20
        assert result["analysis"]["axis_angle_deg"] == pytest.approx(90.0, abs=5.0)

    def test_frame_timestamps(self, tmp_path):
        """Test that timestamps follow frame_index / fps."""
        path = write_video(str(tmp_path / "clip.avi"), n=3)
        if path is None:
            pytest.skip("MJPG writer unavailable")

        with VideoFileSource(path, fps=10.0) as source:
            times = []
            item = source.next_frame()
            while item is not None:
                times.append(item[1])
                item = source.next_frame()

        assert times == pytest.approx([0.0, 0.1, 0.2])


class TestMain:
    """Test cases for the command-line entry point."""

    def test_missing_video_returns_error(self, tmp_path):
        """Test the exit status for a missing video."""
        assert main(["--video", str(tmp_path / "missing.mp4")]) == 1

    def test_writes_output(self, tmp_path):
        """Test writing the JSON report."""
        path = write_video(str(tmp_path / "clip.avi"))
        if path is None:
            pytest.skip("MJPG writer unavailable")

        config_path = tmp_path / "config.json"
        config_path.write_text(json.dumps({"blob": {"strategies": ["color"]}}))
        output = tmp_path / "result.json"

        status = main(["--video", path, "--config", str(config_path), "--track", "target",
                       "--output", str(output)])

        assert status == 0
        assert json.loads(output.read_text())["success"]
