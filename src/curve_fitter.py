"""
Least-squares regression for kinematic fits:
- Linear y = a*t + b from closed-form sums
- Quadratic y = a*t^2 + b*t + c from the 3x3 normal equations

Position modeled as x(t) = 1/2*a*t^2 + v0*t + x0 means the fitted quadratic
coefficient is half the physical acceleration.
"""

import numpy as np
from typing import List, Optional, Sequence
from dataclasses import dataclass


@dataclass
class LinearFit:
    a: float
    b: float
    degenerate: bool = False

    @property
    def coefficients(self) -> List[float]:
        return [self.a, self.b]

    def evaluate(self, t):
        return self.a * np.asarray(t, dtype=np.float64) + self.b


@dataclass
class QuadraticFit:
    a: float
    b: float
    c: float

    @property
    def coefficients(self) -> List[float]:
        return [self.a, self.b, self.c]

    @property
    def acceleration(self) -> float:
        """Physical acceleration under the 1/2*a*t^2 convention."""
        return 2.0 * self.a

    def evaluate(self, t):
        t = np.asarray(t, dtype=np.float64)
        return self.a * t * t + self.b * t + self.c


def fit_linear(t: Sequence[float], y: Sequence[float], eps: float = 1e-12) -> Optional[LinearFit]:
    """
    Fit y = a*t + b.

    Returns:
        LinearFit; None with fewer than 2 samples. When all t coincide the
        fit is degenerate and falls back to a = 0, b = mean(y).
    """
    t = np.asarray(t, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)

    if t.size != y.size:
        raise ValueError(f"Length mismatch: {t.size} times, {y.size} values")

    n = t.size
    if n < 2:
        return None

    sum_t = t.sum()
    sum_y = y.sum()
    sum_tt = (t * t).sum()
    sum_ty = (t * y).sum()

    denominator = n * sum_tt - sum_t * sum_t
    if abs(denominator) <= eps * max(1.0, n * sum_tt):
        return LinearFit(a=0.0, b=float(sum_y / n), degenerate=True)

    a = (n * sum_ty - sum_t * sum_y) / denominator
    b = (sum_y - a * sum_t) / n
    return LinearFit(a=float(a), b=float(b))


def solve_linear_system(matrix: Sequence[Sequence[float]],
                        rhs: Sequence[float],
                        eps: float = 1e-12) -> Optional[List[float]]:
    """
    Gaussian elimination with partial pivoting.

    Returns:
        Solution vector, or None if some column has no pivot above eps
    """
    a = np.array(matrix, dtype=np.float64)
    b = np.array(rhs, dtype=np.float64)
    n = b.size

    for col in range(n):
        pivot = col + int(np.argmax(np.abs(a[col:, col])))
        if abs(a[pivot, col]) < eps:
            return None

        if pivot != col:
            a[[col, pivot]] = a[[pivot, col]]
            b[[col, pivot]] = b[[pivot, col]]

        for row in range(col + 1, n):
            factor = a[row, col] / a[col, col]
            a[row, col:] -= factor * a[col, col:]
            b[row] -= factor * b[col]

    x = np.zeros(n)
    for row in range(n - 1, -1, -1):
        x[row] = (b[row] - a[row, row + 1:] @ x[row + 1:]) / a[row, row]

    return [float(v) for v in x]


def fit_quadratic(t: Sequence[float], y: Sequence[float], eps: float = 1e-12) -> Optional[QuadraticFit]:
    """
    Fit y = a*t^2 + b*t + c via the normal equations.

    Returns:
        QuadraticFit, or None with fewer than 3 samples or a singular system
    """
    t = np.asarray(t, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)

    if t.size != y.size:
        raise ValueError(f"Length mismatch: {t.size} times, {y.size} values")

    if t.size < 3:
        return None

    s = [float((t ** k).sum()) for k in range(5)]
    normal = [
        [s[4], s[3], s[2]],
        [s[3], s[2], s[1]],
        [s[2], s[1], s[0]],
    ]
    rhs = [float((t * t * y).sum()), float((t * y).sum()), float(y.sum())]

    solution = solve_linear_system(normal, rhs, eps=eps)
    if solution is None:
        return None

    a, b, c = solution
    return QuadraticFit(a=a, b=b, c=c)
