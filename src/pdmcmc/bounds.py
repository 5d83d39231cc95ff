"""
Bound Specifications

Two kinds of hard constraints are supported by the reflective samplers:

GraphicalParameterBound:
    Per-dimension fixed lower/upper bounds plus a graph of "connected"
    coordinate pairs whose relative order must never change. Fixed bounds
    produce scalar reflections; connected pairs produce collisions.

BoundedSpace (convex regions):
    A region described by the time a straight line takes to leave it and
    the outward normal at the exit point. Ball and Polytope are provided.

All specifications are read-only during sampling.
"""

from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .error_handling import BoundViolationError

import logging
logger = logging.getLogger('pdmcmc')


# ============================================================================
# GRAPH BOUNDS
# ============================================================================

class GraphicalParameterBound:
    """
    Fixed bounds plus order constraints between connected coordinates.

    Args:
        lower: Lower bounds (dim,); -inf where unbounded. None = all -inf
        upper: Upper bounds (dim,); +inf where unbounded. None = all +inf
        connections: Iterable of (i, j) pairs that must never cross
        dim: Dimension, required when neither lower nor upper is given

    Example:
        # x0 <= x1 <= x2, all positive
        bounds = GraphicalParameterBound(lower=[0, 0, 0], connections=[(0, 1), (1, 2)])
    """

    def __init__(self, lower=None, upper=None,
                 connections: Optional[Iterable[Tuple[int, int]]] = None,
                 dim: Optional[int] = None):
        if dim is None:
            if lower is not None:
                dim = len(lower)
            elif upper is not None:
                dim = len(upper)
            else:
                raise ValueError("GraphicalParameterBound needs lower, upper or dim")

        self.dim = int(dim)
        self.lower = np.full(self.dim, -np.inf) if lower is None else np.asarray(lower, dtype=float)
        self.upper = np.full(self.dim, np.inf) if upper is None else np.asarray(upper, dtype=float)

        if self.lower.shape != (self.dim,) or self.upper.shape != (self.dim,):
            raise ValueError(f"Bounds must have shape ({self.dim},)")
        if np.any(self.lower > self.upper):
            bad = np.flatnonzero(self.lower > self.upper).tolist()
            raise ValueError(f"Lower bound exceeds upper bound at index(es) {bad}")

        self._connected: Dict[int, List[int]] = {}
        for i, j in (connections or ()):
            i, j = int(i), int(j)
            if i == j:
                raise ValueError(f"Coordinate {i} cannot be connected to itself")
            if not (0 <= i < self.dim and 0 <= j < self.dim):
                raise ValueError(f"Connection ({i}, {j}) out of range for dim {self.dim}")
            self._connected.setdefault(i, []).append(j)
            self._connected.setdefault(j, []).append(i)
        for i in self._connected:
            self._connected[i] = sorted(set(self._connected[i]))

    def fixed_lower_bound(self, index: int) -> float:
        return float(self.lower[index])

    def fixed_upper_bound(self, index: int) -> float:
        return float(self.upper[index])

    def connected_indices(self, index: int) -> Optional[List[int]]:
        return self._connected.get(index)

    @property
    def has_connections(self) -> bool:
        return bool(self._connected)

    @property
    def has_fixed_bounds(self) -> bool:
        return bool(np.any(np.isfinite(self.lower)) or np.any(np.isfinite(self.upper)))

    def contains(self, position) -> bool:
        position = np.asarray(position, dtype=float)
        return bool(np.all(position >= self.lower) and np.all(position <= self.upper))

    def check(self, position) -> None:
        """Raise BoundViolationError if position is outside a fixed bound."""
        position = np.asarray(position, dtype=float)
        outside = np.flatnonzero((position < self.lower) | (position > self.upper))
        if outside.size:
            i = int(outside[0])
            raise BoundViolationError(
                f"Coordinate {i} = {position[i]} outside fixed bounds "
                f"[{self.lower[i]}, {self.upper[i]}] ({outside.size} violation(s))"
            )


# ============================================================================
# CONVEX REGIONS
# ============================================================================

class BoundedSpace:
    """Interface for convex regions with a computable exit time."""

    def contains(self, position) -> bool:
        raise NotImplementedError

    def forward_distance_to_boundary(self, position, velocity) -> float:
        """Time t >= 0 at which position + t * velocity leaves the region."""
        raise NotImplementedError

    def normal_at(self, position, velocity=None) -> np.ndarray:
        """Outward normal at a boundary point (velocity disambiguates corners)."""
        raise NotImplementedError

    def check(self, position) -> None:
        if not self.contains(position):
            raise BoundViolationError(
                f"Position {np.asarray(position).tolist()} is outside {type(self).__name__}"
            )


class Ball(BoundedSpace):
    """Closed ball ||x - center|| <= radius."""

    def __init__(self, center, radius: float):
        self.center = np.asarray(center, dtype=float)
        if not radius > 0:
            raise ValueError(f"Ball radius must be > 0, got {radius}")
        self.radius = float(radius)

    def contains(self, position):
        delta = np.asarray(position, dtype=float) - self.center
        return bool(delta @ delta <= self.radius ** 2 * (1.0 + 1e-12))

    def forward_distance_to_boundary(self, position, velocity):
        delta = np.asarray(position, dtype=float) - self.center
        velocity = np.asarray(velocity, dtype=float)

        a = velocity @ velocity
        if a == 0.0:
            return np.inf
        b = 2.0 * (velocity @ delta)
        c = delta @ delta - self.radius ** 2
        disc = max(b * b - 4.0 * a * c, 0.0)
        root = np.sqrt(disc)

        # Larger root of a t^2 + b t + c; pick the form without cancellation
        if b >= 0.0:
            t = -2.0 * c / (b + root) if (b + root) > 0.0 else 0.0
        else:
            t = (-b + root) / (2.0 * a)

        if t < 0.0:
            logger.debug(f"Clamping negative ball exit time {t:.3g} to zero")
            t = 0.0
        return float(t)

    def normal_at(self, position, velocity=None):
        return np.asarray(position, dtype=float) - self.center


class Polytope(BoundedSpace):
    """
    Convex polytope {x : A x <= b}.

    Args:
        A: Constraint matrix (n_constraints, dim)
        b: Right-hand side (n_constraints,)
    """

    def __init__(self, A, b):
        self.A = np.atleast_2d(np.asarray(A, dtype=float))
        self.b = np.asarray(b, dtype=float)
        if self.b.shape != (self.A.shape[0],):
            raise ValueError(f"b must have shape ({self.A.shape[0]},), got {self.b.shape}")

    @classmethod
    def box(cls, lower: Sequence[float], upper: Sequence[float]):
        """Axis-aligned box lower <= x <= upper."""
        lower = np.asarray(lower, dtype=float)
        upper = np.asarray(upper, dtype=float)
        eye = np.eye(lower.shape[0])
        return cls(np.vstack([eye, -eye]), np.concatenate([upper, -lower]))

    def slack(self, position):
        return self.b - self.A @ np.asarray(position, dtype=float)

    def contains(self, position):
        return bool(np.all(self.slack(position) >= -1e-12))

    def forward_distance_to_boundary(self, position, velocity):
        rate = self.A @ np.asarray(velocity, dtype=float)
        slack = self.slack(position)
        leaving = rate > 0.0
        if not np.any(leaving):
            return np.inf
        times = slack[leaving] / rate[leaving]
        t = float(np.min(times))
        if t < 0.0:
            logger.debug(f"Clamping negative polytope exit time {t:.3g} to zero")
            t = 0.0
        return t

    def normal_at(self, position, velocity=None):
        # Face with the smallest slack among those being approached
        distance = np.abs(self.slack(position))
        if velocity is not None:
            approaching = self.A @ np.asarray(velocity, dtype=float) > 0.0
            if np.any(approaching):
                distance = np.where(approaching, distance, np.inf)
        face = int(np.argmin(distance))
        return self.A[face].copy()
