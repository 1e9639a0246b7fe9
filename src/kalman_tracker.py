"""
Constant-velocity Kalman filter for 2-D position measurements.

State: [x, vx, y, vy]
Measurement: [x, y]
"""

import numpy as np
from typing import Dict, Optional, Sequence

from config import KalmanConfig

# Position-only observation
H = np.array([
    [1.0, 0.0, 0.0, 0.0],
    [0.0, 0.0, 1.0, 0.0],
])


def transition_matrix(dt: float) -> np.ndarray:
    return np.array([
        [1.0, dt, 0.0, 0.0],
        [0.0, 1.0, 0.0, 0.0],
        [0.0, 0.0, 1.0, dt],
        [0.0, 0.0, 0.0, 1.0],
    ])


def inv2x2(m: np.ndarray, eps: float = 1e-12, fallback: float = 1e12) -> np.ndarray:
    """Closed-form 2x2 inverse; a near-singular matrix maps to fallback * I."""
    a, b = m[0, 0], m[0, 1]
    c, d = m[1, 0], m[1, 1]
    det = a * d - b * c

    if abs(det) < eps:
        return np.eye(2) * fallback

    return np.array([
        [d / det, -b / det],
        [-c / det, a / det],
    ])


class KalmanTracker2D:
    """Smooths (x, y) measurements into position and velocity."""

    def __init__(self, config: Optional[KalmanConfig] = None):
        self.config = config if config is not None else KalmanConfig()
        cfg = self.config

        self.Q = np.diag([cfg.q_pos, cfg.q_vel, cfg.q_pos, cfg.q_vel])
        self.R = np.eye(2) * cfg.r

        # Weak prior until the first measurement
        self.x = np.zeros((4, 1))
        self.P = np.eye(4) * cfg.prior_cov
        self.initialized = False

    def initialize(self, measurement: Sequence[float]):
        """Set position from a measurement, zero velocity, small covariance."""
        mx, my = float(measurement[0]), float(measurement[1])
        self.x = np.array([[mx], [0.0], [my], [0.0]])
        self.P = np.eye(4) * self.config.init_cov
        self.initialized = True

    def predict(self, dt: float):
        """Propagate the state over dt seconds (floored to config.min_dt)."""
        dt = max(float(dt), self.config.min_dt)
        F = transition_matrix(dt)
        self.x = F @ self.x
        self.P = F @ self.P @ F.T + self.Q

    def update(self, measurement: Sequence[float]):
        """Correct the state with an (x, y) measurement."""
        z = np.array([[float(measurement[0])], [float(measurement[1])]])

        residual = z - H @ self.x
        S = H @ self.P @ H.T + self.R
        K = self.P @ H.T @ inv2x2(S, self.config.det_eps, self.config.fallback_inverse)

        self.x = self.x + K @ residual
        self.P = (np.eye(4) - K @ H) @ self.P
        # Keep P symmetric against round-off
        self.P = 0.5 * (self.P + self.P.T)

    def step(self, measurement: Sequence[float], dt: float):
        """Initialize on the first measurement, otherwise predict then update."""
        if not self.initialized:
            self.initialize(measurement)
            return
        self.predict(dt)
        self.update(measurement)

    def get_state(self) -> Dict[str, float]:
        return {
            "x": float(self.x[0, 0]),
            "vx": float(self.x[1, 0]),
            "y": float(self.x[2, 0]),
            "vy": float(self.x[3, 0]),
        }

    def reset(self):
        self.x = np.zeros((4, 1))
        self.P = np.eye(4) * self.config.prior_cov
        self.initialized = False
