"""
Principal direction of a 2-D point cloud (PCA on the 2x2 covariance).
"""

import numpy as np
from typing import Optional, Sequence
from dataclasses import dataclass


@dataclass
class AxisEstimate:
    """Principal axis through the mean of a point cloud; angle in (-pi/2, pi/2]."""
    mean_x: float
    mean_y: float
    angle_rad: float
    sxx: float
    syy: float
    sxy: float
    isotropic: bool = False

    @property
    def angle_deg(self) -> float:
        return float(np.degrees(self.angle_rad))

    @property
    def direction(self) -> np.ndarray:
        return np.array([np.cos(self.angle_rad), np.sin(self.angle_rad)])


def principal_axis(points: Sequence[Sequence[float]],
                   min_points: int = 2,
                   isotropy_eps: float = 1e-9) -> Optional[AxisEstimate]:
    """
    Estimate the principal axis angle 0.5 * atan2(2*Sxy, Sxx - Syy).

    Angles are measured from the +x axis in image coordinates (y down), so
    straight-down motion reads as 90 degrees.

    Args:
        points: (N, 2) sequence of (x, y)
        min_points: Fewer points give None
        isotropy_eps: Relative tolerance under which the covariance is
            treated as isotropic; the angle then defaults to 0

    Returns:
        AxisEstimate, or None if there are too few points
    """
    pts = np.asarray(points, dtype=np.float64)
    if pts.ndim != 2 or pts.shape[0] < max(1, min_points):
        return None

    mean = pts.mean(axis=0)
    dx = pts[:, 0] - mean[0]
    dy = pts[:, 1] - mean[1]

    sxx = float((dx * dx).sum())
    syy = float((dy * dy).sum())
    sxy = float((dx * dy).sum())

    scale = max(sxx + syy, np.finfo(float).tiny)
    isotropic = abs(sxx - syy) <= isotropy_eps * scale and abs(sxy) <= isotropy_eps * scale

    if isotropic:
        angle = 0.0
    else:
        angle = 0.5 * np.arctan2(2.0 * sxy, sxx - syy)
        # An axis has no sign; keep +90 rather than -90 for vertical lines
        if angle <= -np.pi / 2.0 + 1e-12:
            angle += np.pi

    return AxisEstimate(
        mean_x=float(mean[0]),
        mean_y=float(mean[1]),
        angle_rad=float(angle),
        sxx=sxx,
        syy=syy,
        sxy=sxy,
        isotropic=isotropic,
    )
