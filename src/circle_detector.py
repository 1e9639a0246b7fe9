"""
Circle localization with a per-radius Hough transform.

Each radius of the sweep gets its own 2-D accumulator, which keeps memory at
O(width * height) instead of a joint (x, y, r) volume. Angles are sub-sampled
(45 samples = 8 degree steps by default) and full-resolution frames are
downscaled before voting.
"""

import cv2
import numpy as np
from typing import Iterable, Optional
from dataclasses import dataclass

from blob_detector import DetectionCandidate
from config import HoughConfig
from image_preprocessor import Frame, adaptive_edges, downscale, to_grayscale


@dataclass
class CircleDetection:
    """Best circle found in an edge map."""
    x: float
    y: float
    radius: float
    score: float
    votes: float

    def to_candidate(self, kind: str = "target") -> DetectionCandidate:
        return DetectionCandidate(
            x=self.x,
            y=self.y,
            score=self.score,
            pixel_count=int(self.votes),
            kind=kind,
            radius=self.radius,
            method="hough",
        )


class HoughCircleDetector:
    """Finds the single best-supported circle over a radius range."""

    def __init__(self, config: Optional[HoughConfig] = None):
        self.config = config if config is not None else HoughConfig()

        thetas = np.linspace(0.0, 2.0 * np.pi, self.config.angle_samples, endpoint=False)
        self._cos = np.cos(thetas)
        self._sin = np.sin(thetas)

    def _radii(self, r_min: float, r_max: float, r_step: float) -> np.ndarray:
        return np.arange(r_min, r_max + 1e-9, r_step)

    def detect(self,
               edges: np.ndarray,
               r_min: Optional[float] = None,
               r_max: Optional[float] = None,
               r_step: Optional[float] = None) -> Optional[CircleDetection]:
        """
        Vote for circle centers in a binary edge map.

        For every radius, each edge pixel casts one vote per sampled angle at
        (x - r*cos(t), y - r*sin(t)). The accumulator is summed over 3x3
        neighbourhoods to absorb the rounding of the sparse angular sampling,
        and its peak is scored as votes per unit of circumference (2*pi*r).

        Args:
            edges: Binary edge map (non-zero = edge)
            r_min, r_max, r_step: Radius sweep in edge-map pixels
                (defaults from the configuration)

        Returns:
            Highest-scoring circle, or None when there are no edges or no
            radius reaches config.min_score
        """
        r_min = self.config.r_min if r_min is None else r_min
        r_max = self.config.r_max if r_max is None else r_max
        r_step = self.config.r_step if r_step is None else r_step

        ys, xs = np.nonzero(edges)
        if xs.size == 0:
            return None

        height, width = edges.shape[:2]
        best = None

        for radius in self._radii(r_min, r_max, r_step):
            cx = np.rint(xs[:, None] - radius * self._cos[None, :]).astype(np.int64).ravel()
            cy = np.rint(ys[:, None] - radius * self._sin[None, :]).astype(np.int64).ravel()

            inside = (cx >= 0) & (cx < width) & (cy >= 0) & (cy < height)
            if not inside.any():
                continue

            accumulator = np.bincount(cy[inside] * width + cx[inside],
                                      minlength=width * height)
            accumulator = accumulator.astype(np.float32).reshape(height, width)
            accumulator = cv2.boxFilter(accumulator, -1, (3, 3), normalize=False,
                                        borderType=cv2.BORDER_CONSTANT)

            peak = int(np.argmax(accumulator))
            votes = float(accumulator.flat[peak])
            score = votes / (2.0 * np.pi * radius)

            if score < self.config.min_score:
                continue

            if best is None or score > best.score:
                best = CircleDetection(
                    x=float(peak % width),
                    y=float(peak // width),
                    radius=float(radius),
                    score=score,
                    votes=votes,
                )

        return best

    def detect_frame(self, frame: Frame) -> Optional[CircleDetection]:
        """
        Full chain on a raw frame: downscale, grayscale, adaptive edges, vote.

        Coordinates and radius are returned in source-frame pixels.
        """
        small, scale = downscale(frame.as_array(), self.config.max_width)
        edges = adaptive_edges(to_grayscale(small),
                               fraction=self.config.edge_fraction,
                               blur_radius=self.config.blur_radius)

        circle = self.detect(
            edges,
            r_min=max(1.0, self.config.r_min * scale),
            r_max=max(1.0, self.config.r_max * scale),
            r_step=max(0.5, self.config.r_step * scale),
        )
        if circle is None or scale == 1.0:
            return circle

        return CircleDetection(
            x=circle.x / scale,
            y=circle.y / scale,
            radius=circle.radius / scale,
            score=circle.score,
            votes=circle.votes,
        )

    def detect_best(self, frames: Iterable[Frame]) -> Optional[CircleDetection]:
        """Run detection over several frames and keep the best-scoring circle."""
        best = None
        for frame in frames:
            circle = self.detect_frame(frame)
            if circle is not None and (best is None or circle.score > best.score):
                best = circle
        return best
