"""
Video file front end: reads frames with OpenCV, runs a tracking session and
reports calibration, filtered samples and kinematic fits as JSON.
"""

import os
import argparse
import json
from dataclasses import asdict
from typing import Dict, Optional, Tuple

import cv2

from config import PipelineConfig
from image_preprocessor import Frame
from tracking_pipeline import TrackingSession


class VideoFileSource:
    """Pull-style frame source over a video file; t = frame_index / fps."""

    def __init__(self, video_path: str, fps: Optional[float] = None):
        """
        Args:
            video_path: Path to input video file
            fps: Override the container frame rate

        Raises:
            ValueError: If the video cannot be opened or reports an invalid FPS
        """
        if not isinstance(video_path, str) or not video_path:
            raise ValueError(f"Invalid video path: {video_path}")

        self.cap = cv2.VideoCapture(video_path)
        if not self.cap.isOpened():
            raise ValueError(f"Could not open video file: {video_path}")

        self.fps = fps if fps is not None else self.cap.get(cv2.CAP_PROP_FPS)
        if self.fps <= 0 or self.fps > 240:
            self.cap.release()
            raise ValueError(f"Invalid FPS: {self.fps}")

        self.frame_index = 0

    def next_frame(self) -> Optional[Tuple[Frame, float]]:
        ret, image = self.cap.read()
        if not ret:
            return None

        t = self.frame_index / self.fps
        self.frame_index += 1
        return Frame.from_bgr(image), t

    def release(self):
        self.cap.release()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False


def load_config(path: Optional[str]) -> PipelineConfig:
    """
    Load a JSON configuration file (defaults if path is None).

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the JSON is malformed or holds invalid settings
    """
    if path is None:
        return PipelineConfig()

    if not os.path.isfile(path):
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, "r") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in config file {path}: {e}")

    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must hold a JSON object")

    return PipelineConfig.from_dict(data)


def process_video(video_path: str,
                  config: Optional[PipelineConfig] = None,
                  auto_calibrate: bool = True,
                  calibration_samples: int = 8,
                  fps: Optional[float] = None,
                  max_frames: Optional[int] = None,
                  verbose: bool = True) -> Dict:
    """
    Track an object through a video file end-to-end.

    Args:
        video_path: Path to input video file
        config: Pipeline configuration
        auto_calibrate: Calibrate from the best of the first frames before tracking
        calibration_samples: Frames sampled by auto-calibration
        fps: Override the container frame rate
        max_frames: Stop after this many frames
        verbose: Print progress

    Returns:
        Dictionary with processing results

    Raises:
        ValueError: If input parameters are invalid
        FileNotFoundError: If video file doesn't exist
    """
    if not isinstance(video_path, str) or not video_path.strip():
        raise ValueError(f"Invalid video path: {video_path}")

    if not os.path.exists(video_path):
        raise FileNotFoundError(f"Video file not found: {video_path}")

    if not os.path.isfile(video_path):
        raise ValueError(f"Path is not a file: {video_path}")

    session = TrackingSession(config, verbose=verbose)

    if verbose:
        print(f"\n{'='*60}")
        print(f"Processing video: {os.path.basename(video_path)}")
        print(f"{'='*60}\n")

    calibration = None
    if auto_calibrate:
        if verbose:
            print("Step 1: Auto-calibrating...")
        with VideoFileSource(video_path, fps=fps) as source:
            calibration = session.auto_calibrate(source, samples=calibration_samples)

    if verbose:
        print("Step 2: Tracking...")
    with VideoFileSource(video_path, fps=fps) as source:
        session.run(source, max_frames=max_frames)

    if verbose:
        print("Step 3: Fitting kinematics...")
    analysis = session.analyze()

    if "error" in analysis:
        if verbose:
            print(f"ERROR: {analysis['error']}")
        return {
            "success": False,
            "error": analysis["error"],
            "frames_processed": session.frames_processed,
            "frames_detected": session.frames_detected,
            "calibration": session.calibration.get_calibration_status(),
        }

    if verbose:
        accel = analysis["acceleration"]
        incline = analysis["incline_angle_deg"]
        print(f"✓ Mean speed: {analysis['mean_speed']:.3f} m/s")
        if accel is not None:
            print(f"  Acceleration: {accel:.3f} m/s^2 (incline {incline:.1f} deg)")
        print(f"  Direction: {analysis['axis_angle_deg']:.1f} deg\n")

    return {
        "success": True,
        "video_file": video_path,
        "frames_processed": session.frames_processed,
        "frames_detected": session.frames_detected,
        "auto_calibration": calibration,
        "analysis": analysis,
        "columns": list(TrackingSession.EXPORT_HEADER),
        "samples": session.export_rows(),
        "raw_samples": [asdict(s) for s in session.raw_samples],
    }


def main(argv=None):
    """Command-line interface for video processing."""
    parser = argparse.ArgumentParser(
        description="Track an object in a video and fit its kinematics"
    )
    parser.add_argument(
        "--video", "-v",
        required=True,
        help="Path to video file"
    )
    parser.add_argument(
        "--config", "-c",
        help="JSON configuration file"
    )
    parser.add_argument(
        "--detector", "-d",
        choices=["blob", "hough"],
        help="Detector to use (overrides config)"
    )
    parser.add_argument(
        "--track",
        help="Kind of object to track, e.g. ball or target (overrides config)"
    )
    parser.add_argument(
        "--diameter",
        type=float,
        help="Real target diameter in meters (overrides config)"
    )
    parser.add_argument(
        "--fps",
        type=float,
        help="Override the video frame rate"
    )
    parser.add_argument(
        "--max-frames",
        type=int,
        help="Stop after this many frames"
    )
    parser.add_argument(
        "--no-calibrate",
        action="store_true",
        help="Skip multi-frame auto-calibration (calibrate on first detection)"
    )
    parser.add_argument(
        "--output", "-o",
        help="Write results as JSON to this file"
    )

    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
        if args.detector or args.track or args.diameter:
            data = config.to_dict()
            if args.detector:
                data["detector"] = args.detector
            if args.track:
                data["track_kind"] = args.track
            if args.diameter:
                data["reference_diameter_m"] = args.diameter
            config = PipelineConfig.from_dict(data)
    except (ValueError, FileNotFoundError) as e:
        parser.error(str(e))

    try:
        result = process_video(
            video_path=args.video,
            config=config,
            auto_calibrate=not args.no_calibrate,
            fps=args.fps,
            max_frames=args.max_frames,
        )
    except (ValueError, FileNotFoundError) as e:
        print(f"\nProcessing failed: {e}")
        return 1

    if args.output:
        with open(args.output, "w") as f:
            json.dump(result, f, indent=2)
        print(f"Results saved to: {args.output}")

    if not result["success"]:
        print(f"\nProcessing failed: {result.get('error', 'Unknown error')}")
        return 1

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
