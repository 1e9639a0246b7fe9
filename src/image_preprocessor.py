"""
Image preprocessing for the detectors: grayscale conversion, box blur,
Sobel gradient magnitude, thresholding and downscaling.

All functions are pure: they never modify their inputs.
"""

import cv2
import numpy as np
from typing import Tuple, Union
from dataclasses import dataclass


@dataclass(frozen=True)
class Frame:
    """A raw video frame: width x height pixels in RGBA byte order."""
    width: int
    height: int
    pixels: Union[bytes, bytearray, memoryview, np.ndarray]

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Invalid frame size: {self.width}x{self.height}")

        size = self.pixels.size if isinstance(self.pixels, np.ndarray) else len(self.pixels)
        if size != self.width * self.height * 4:
            raise ValueError(
                f"Pixel buffer holds {size} bytes, expected {self.width * self.height * 4} "
                f"for a {self.width}x{self.height} RGBA frame")

    def as_array(self) -> np.ndarray:
        """View the buffer as a (height, width, 4) uint8 array."""
        if isinstance(self.pixels, np.ndarray):
            data = self.pixels.astype(np.uint8, copy=False)
        else:
            data = np.frombuffer(self.pixels, dtype=np.uint8)
        return data.reshape(self.height, self.width, 4)

    @classmethod
    def from_rgba(cls, image: np.ndarray) -> "Frame":
        height, width = image.shape[:2]
        return cls(width=width, height=height, pixels=np.ascontiguousarray(image, dtype=np.uint8))

    @classmethod
    def from_bgr(cls, image: np.ndarray) -> "Frame":
        """Wrap an OpenCV BGR image (as returned by VideoCapture.read)."""
        return cls.from_rgba(cv2.cvtColor(image, cv2.COLOR_BGR2RGBA))


def to_grayscale(frame: Union[Frame, np.ndarray]) -> np.ndarray:
    """Luminosity transform 0.299R + 0.587G + 0.114B, one byte per pixel."""
    rgba = frame.as_array() if isinstance(frame, Frame) else frame
    return cv2.cvtColor(rgba, cv2.COLOR_RGBA2GRAY)


def box_blur(gray: np.ndarray, radius: int) -> np.ndarray:
    """
    Square mean filter of side 2*radius+1.

    Border pixels are clamped to the image edge (replicated), never wrapped.
    """
    if radius < 0:
        raise ValueError(f"Invalid blur radius: {radius}. Must be non-negative.")

    if radius == 0:
        return gray.copy()

    size = 2 * radius + 1
    return cv2.blur(gray, (size, size), borderType=cv2.BORDER_REPLICATE)


def sobel_magnitude(gray: np.ndarray) -> np.ndarray:
    """
    3x3 Sobel gradient magnitude as float32.

    The 1-pixel border is left at zero.
    """
    gx = cv2.Sobel(gray, cv2.CV_32F, 1, 0, ksize=3)
    gy = cv2.Sobel(gray, cv2.CV_32F, 0, 1, ksize=3)
    magnitude = cv2.magnitude(gx, gy)

    magnitude[0, :] = 0
    magnitude[-1, :] = 0
    magnitude[:, 0] = 0
    magnitude[:, -1] = 0
    return magnitude


def binarize(values: np.ndarray, threshold: float) -> np.ndarray:
    """Return a uint8 bitmap set to 1 where values >= threshold."""
    return (values >= threshold).astype(np.uint8)


def adaptive_edges(gray: np.ndarray, fraction: float = 0.25, blur_radius: int = 1) -> np.ndarray:
    """
    Edge bitmap thresholded at a fraction of this frame's strongest gradient.

    A frame without any gradient yields an empty bitmap.
    """
    magnitude = sobel_magnitude(box_blur(gray, blur_radius))
    peak = float(magnitude.max()) if magnitude.size else 0.0

    if peak <= 0.0:
        return np.zeros(gray.shape, dtype=np.uint8)

    return binarize(magnitude, fraction * peak)


def downscale(image: np.ndarray, max_width: int) -> Tuple[np.ndarray, float]:
    """
    Shrink an image to at most max_width columns.

    Returns:
        (image, scale) where scale = new_width / old_width (1.0 if unchanged)
    """
    width = image.shape[1]
    if width <= max_width:
        return image, 1.0

    scale = max_width / float(width)
    height = max(1, int(round(image.shape[0] * scale)))
    resized = cv2.resize(image, (max_width, height), interpolation=cv2.INTER_AREA)
    return resized, scale


def edge_points(bitmap: np.ndarray) -> np.ndarray:
    """Coordinates of set pixels as an (N, 2) float array of (x, y)."""
    ys, xs = np.nonzero(bitmap)
    return np.column_stack((xs, ys)).astype(np.float64)
