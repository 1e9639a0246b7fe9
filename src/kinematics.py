"""
Derived physical quantities from a filtered trajectory: speed, acceleration
and the incline angle implied by the acceleration.
"""

import numpy as np
from typing import Dict, Optional, Sequence

from axis_estimator import principal_axis
from curve_fitter import fit_linear, fit_quadratic


def incline_from_acceleration(acceleration: Optional[float], gravity: float = 9.81) -> Optional[float]:
    """Incline angle in degrees for a body sliding/rolling with a = g*sin(angle)."""
    if acceleration is None:
        return None
    ratio = float(np.clip(acceleration / gravity, -1.0, 1.0))
    return float(np.degrees(np.arcsin(ratio)))


class KinematicsAnalyzer:
    """Fits kinematic models to a filtered trajectory."""

    def __init__(self, gravity: float = 9.81):
        """
        Args:
            gravity: Gravitational acceleration in the trajectory's units/s^2

        Raises:
            ValueError: If gravity is not positive
        """
        if gravity <= 0:
            raise ValueError(f"Invalid gravity: {gravity}. Must be positive.")

        self.gravity = gravity

    def analyze(self, samples: Sequence) -> Dict:
        """
        Analyze a trajectory of filtered samples (objects with t, x, y, vx, vy).

        Along-track displacement is the projection onto the trajectory's
        principal axis. The quadratic position fit needs 3 samples, the
        linear speed fit 2; quantities that cannot be computed are None.

        Returns:
            Dictionary with fits and derived quantities, or {"error": ...}
            when there are fewer than 2 samples
        """
        if not samples or len(samples) < 2:
            return {"error": "Insufficient trajectory data"}

        t = np.array([s.t for s in samples], dtype=np.float64)
        xy = np.array([[s.x, s.y] for s in samples], dtype=np.float64)
        speed = np.hypot([s.vx for s in samples], [s.vy for s in samples])
        t_rel = t - t[0]

        axis = principal_axis(xy)
        along = (xy - xy[0]) @ axis.direction
        if along[-1] < 0:
            along = -along

        velocity_fit = fit_linear(t_rel, speed)
        position_fit = fit_quadratic(t_rel, along)

        acceleration_from_velocity = None
        if velocity_fit is not None and not velocity_fit.degenerate:
            acceleration_from_velocity = velocity_fit.a

        if position_fit is not None:
            acceleration = position_fit.acceleration
            initial_velocity = position_fit.b
        else:
            acceleration = acceleration_from_velocity
            initial_velocity = None

        duration = float(t_rel[-1])

        return {
            "samples": len(samples),
            "duration_s": duration,
            "distance": float(along[-1] - along[0]),
            "mean_speed": float(speed.mean()),
            "final_speed": float(speed[-1]),
            "axis_angle_deg": axis.angle_deg,
            "velocity_fit": velocity_fit.coefficients if velocity_fit else None,
            "position_fit": position_fit.coefficients if position_fit else None,
            "acceleration": acceleration,
            "acceleration_from_velocity": acceleration_from_velocity,
            "initial_velocity": initial_velocity,
            "incline_angle_deg": incline_from_acceleration(acceleration, self.gravity),
        }
