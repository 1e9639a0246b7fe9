"""
Direct least-squares ellipse fitting.

A circular target seen off-axis projects to an ellipse; the ratio of its axes
gives the inclination of the target plane relative to the camera.
"""

import numpy as np
from typing import Optional, Tuple
from dataclasses import dataclass

from config import EllipseConfig
from image_preprocessor import Frame, adaptive_edges, downscale, edge_points, to_grayscale

# Inverse of the ellipse constraint matrix [[0, 0, 2], [0, -1, 0], [2, 0, 0]]
_CONSTRAINT_INV = np.array([
    [0.0, 0.0, 0.5],
    [0.0, -1.0, 0.0],
    [0.5, 0.0, 0.0],
])


@dataclass
class EllipseParams:
    """
    Geometric ellipse: center, semi-axes (major >= minor > 0) and tilt.

    tilt is the angle of the MAJOR axis from +x in radians, in (-pi/2, pi/2].
    With the conic scaled so that A + C > 0, 0.5*atan2(B, A - C) is the
    minor-axis angle, so tilt = 0.5*atan2(B, A - C) + pi/2 (wrapped).
    """
    cx: float
    cy: float
    semi_major: float
    semi_minor: float
    tilt: float

    @property
    def inclination_deg(self) -> float:
        return inclination_from_axes(self.semi_major, self.semi_minor)


def inclination_from_axes(semi_major: float, semi_minor: float) -> float:
    """Plane inclination in degrees: arccos(minor / major)."""
    ratio = np.clip(semi_minor / semi_major, 0.0, 1.0)
    return float(np.degrees(np.arccos(ratio)))


def _fit_conic(points: np.ndarray) -> Optional[np.ndarray]:
    """Return conic coefficients (A, B, C, D, E, F) or None when degenerate."""
    x = points[:, 0]
    y = points[:, 1]

    quadratic = np.column_stack((x * x, x * y, y * y))
    linear = np.column_stack((x, y, np.ones_like(x)))

    s1 = quadratic.T @ quadratic
    s2 = quadratic.T @ linear
    s3 = linear.T @ linear

    # Collinear points make S3 (near) singular
    if np.linalg.cond(s3) > 1e10:
        return None

    try:
        t = -np.linalg.inv(s3) @ s2.T
    except np.linalg.LinAlgError:
        return None

    m = _CONSTRAINT_INV @ (s1 + s2 @ t)

    try:
        eigvals, eigvecs = np.linalg.eig(m)
    except np.linalg.LinAlgError:
        return None

    eigvecs = np.real(eigvecs)
    # 4AC - B^2 > 0 singles out the ellipse-producing eigenvector
    condition = 4.0 * eigvecs[0] * eigvecs[2] - eigvecs[1] ** 2
    candidates = np.nonzero(condition > 0)[0]
    if candidates.size == 0:
        return None

    abc = eigvecs[:, candidates[np.argmax(condition[candidates])]]
    def_ = t @ abc
    return np.concatenate((abc, def_))


def conic_to_ellipse(coeffs: np.ndarray, eps: float = 1e-12) -> Optional[EllipseParams]:
    """
    Closed-form center, axes and tilt of the conic Ax^2 + Bxy + Cy^2 + Dx + Ey + F = 0.

    Returns None if the conic is not a real ellipse or a denominator vanishes.
    """
    a, b, c, d, e, f = (float(v) for v in coeffs)
    if a + c < 0:
        a, b, c, d, e, f = -a, -b, -c, -d, -e, -f

    disc = b * b - 4.0 * a * c
    if disc >= -eps:
        return None

    x0 = (2.0 * c * d - b * e) / disc
    y0 = (2.0 * a * e - b * d) / disc

    root = np.hypot(a - c, b)
    common = 2.0 * (a * e * e + c * d * d - b * d * e + disc * f)
    major_sq = common * ((a + c) + root)
    minor_sq = common * ((a + c) - root)
    if major_sq <= 0 or minor_sq <= 0:
        return None

    semi_major = -np.sqrt(major_sq) / disc
    semi_minor = -np.sqrt(minor_sq) / disc
    if not (np.isfinite(semi_major) and np.isfinite(semi_minor)) or semi_minor <= 0:
        return None

    # 0.5*atan2(B, A-C) points along the minor axis once A+C > 0
    tilt = 0.5 * np.arctan2(b, a - c) + np.pi / 2.0
    if tilt > np.pi / 2.0:
        tilt -= np.pi

    return EllipseParams(
        cx=float(x0),
        cy=float(y0),
        semi_major=float(semi_major),
        semi_minor=float(semi_minor),
        tilt=float(tilt),
    )


def fit_ellipse(points: np.ndarray,
                min_points: int = 20,
                eps: float = 1e-12) -> Optional[EllipseParams]:
    """
    Fit an ellipse to boundary points with the direct least-squares method.

    Points are centered and scaled to unit spread before building the scatter
    matrix, then the result is mapped back to the input coordinates.

    Args:
        points: (N, 2) array of (x, y)
        min_points: Fewer points than this give no result
        eps: Tolerance on the conic discriminant

    Returns:
        EllipseParams, or None for too few points or a non-elliptic fit
    """
    points = np.asarray(points, dtype=np.float64)
    if points.ndim != 2 or points.shape[0] < max(6, min_points):
        return None

    center = points.mean(axis=0)
    spread = float(np.sqrt(((points - center) ** 2).sum(axis=1).mean()))
    if spread <= 0 or not np.isfinite(spread):
        return None

    normalized = (points - center) / spread
    coeffs = _fit_conic(normalized)
    if coeffs is None:
        return None

    ellipse = conic_to_ellipse(coeffs, eps=eps)
    if ellipse is None:
        return None

    return EllipseParams(
        cx=ellipse.cx * spread + center[0],
        cy=ellipse.cy * spread + center[1],
        semi_major=ellipse.semi_major * spread,
        semi_minor=ellipse.semi_minor * spread,
        tilt=ellipse.tilt,
    )


class EllipseFitter:
    """Extracts edge points from a frame region and fits the target ellipse."""

    def __init__(self, config: Optional[EllipseConfig] = None):
        self.config = config if config is not None else EllipseConfig()

    def fit(self, points: np.ndarray) -> Optional[EllipseParams]:
        return fit_ellipse(points, min_points=self.config.min_points,
                           eps=self.config.discriminant_eps)

    def fit_frame(self,
                  frame: Frame,
                  bbox: Optional[Tuple[float, float, float, float]] = None) -> Optional[EllipseParams]:
        """
        Fit an ellipse to the edges of a frame, optionally restricted to a box.

        Args:
            frame: Source frame
            bbox: (min_x, min_y, max_x, max_y) in source pixels; padded by
                config.padding before cropping

        Returns:
            EllipseParams in source-frame pixels, or None
        """
        rgba = frame.as_array()
        offset_x, offset_y = 0, 0

        if bbox is not None:
            pad = self.config.padding
            x0 = max(0, int(np.floor(bbox[0])) - pad)
            y0 = max(0, int(np.floor(bbox[1])) - pad)
            x1 = min(frame.width, int(np.ceil(bbox[2])) + pad + 1)
            y1 = min(frame.height, int(np.ceil(bbox[3])) + pad + 1)
            if x1 - x0 < 3 or y1 - y0 < 3:
                return None
            rgba = rgba[y0:y1, x0:x1]
            offset_x, offset_y = x0, y0

        small, scale = downscale(np.ascontiguousarray(rgba), self.config.max_width)
        edges = adaptive_edges(to_grayscale(small),
                               fraction=self.config.edge_fraction,
                               blur_radius=self.config.blur_radius)
        points = edge_points(edges)

        if points.shape[0] > self.config.max_points:
            step = int(np.ceil(points.shape[0] / self.config.max_points))
            points = points[::step]

        ellipse = self.fit(points)
        if ellipse is None:
            return None

        return EllipseParams(
            cx=ellipse.cx / scale + offset_x,
            cy=ellipse.cy / scale + offset_y,
            semi_major=ellipse.semi_major / scale,
            semi_minor=ellipse.semi_minor / scale,
            tilt=ellipse.tilt,
        )
