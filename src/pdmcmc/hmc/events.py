"""
Event Finder

Closed-form times to the next event of each kind along a straight-line
segment x + t v. Nothing here mutates its inputs.

Zig-Zag (unbounded horizon, returns MinimumTravelInformation):
- next_gradient_bounce: velocity sign flips driven by the gradient
- next_boundary_bounce: hitting a fixed lower/upper bound
- next_collision_bounce: two connected coordinates meeting

Bounded leapfrog (within an interval, returns ReflectionEvent):
- next_fixed_reflection / next_collision: graph bounds
- next_graph_event: earliest of the two
- next_space_reflection: exit from a convex BoundedSpace

Gradient-event rate
-------------------
For a Gaussian target the rate of a sign flip on coordinate i grows linearly
along the segment, lambda_i(t) = max(0, a + b t) with a = -signed_gradient_i
and b = signed_action_i. The event time solves the integrated rate
a t + b t^2 / 2 = T for T ~ Exp(1) (see get_switch_time).
"""

from typing import Optional

import numpy as np

from .types import EventType, MinimumTravelInformation, ReflectionEvent, ReflectionType

import logging
logger = logging.getLogger('pdmcmc')


def _clamp_negative(times: np.ndarray, what: str) -> np.ndarray:
    negative = times < 0.0
    if np.any(negative):
        logger.debug(f"Clamping {int(np.sum(negative))} negative {what} time(s) to zero "
                     f"(min {float(np.min(times[negative])):.3g})")
        times = np.where(negative, 0.0, times)
    return times


# ============================================================================
# SWITCH TIMES
# ============================================================================

def get_switch_time(a: float, b: float, T: float) -> float:
    """
    Time t at which the integrated rate of max(0, a + b s) reaches T.

    Returns +inf when the rate never accumulates T:
        b == 0 and a <= 0, or b < 0 and a <= 0, or b < 0 and the positive
        part of the rate integrates to less than T.
    """
    if b > 0.0:
        if a < 0.0:
            t = -a / b + np.sqrt(2.0 * T / b)
        else:
            t = -a / b + np.sqrt(a * a / (b * b) + 2.0 * T / b)
    elif b == 0.0:
        if a > 0.0:
            t = T / a
        else:
            return np.inf
    else:
        if a <= 0.0:
            return np.inf
        t1 = -a / b
        if T <= a * t1 + b * t1 * t1 / 2.0:
            t = -a / b - np.sqrt(max(a * a / (b * b) + 2.0 * T / b, 0.0))
        else:
            return np.inf

    if t < 0.0:
        logger.debug(f"Clamping negative switch time {t:.3g} to zero")
        t = 0.0
    return float(t)


def switch_times(a, b, T) -> np.ndarray:
    """Vectorised get_switch_time over matching arrays a, b, T."""
    a, b, T = np.broadcast_arrays(np.asarray(a, dtype=float),
                                  np.asarray(b, dtype=float),
                                  np.asarray(T, dtype=float))
    times = np.full(a.shape, np.inf)

    pos = b > 0.0
    if np.any(pos):
        ap, bp, Tp = a[pos], b[pos], T[pos]
        times[pos] = np.where(
            ap < 0.0,
            -ap / bp + np.sqrt(2.0 * Tp / bp),
            -ap / bp + np.sqrt(ap * ap / (bp * bp) + 2.0 * Tp / bp),
        )

    linear = (b == 0.0) & (a > 0.0)
    times[linear] = T[linear] / a[linear]

    neg = (b < 0.0) & (a > 0.0)
    if np.any(neg):
        an, bn, Tn = a[neg], b[neg], T[neg]
        t1 = -an / bn
        reachable = Tn <= an * t1 + bn * t1 * t1 / 2.0
        disc = np.maximum(an * an / (bn * bn) + 2.0 * Tn / bn, 0.0)
        times[neg] = np.where(reachable, t1 - np.sqrt(disc), np.inf)

    return _clamp_negative(times, 'switch')


# ============================================================================
# ZIG-ZAG EVENTS
# ============================================================================

def next_gradient_bounce(signed_gradient, signed_action, exponentials,
                         mask: Optional[np.ndarray] = None) -> MinimumTravelInformation:
    """
    Earliest gradient-driven sign flip over the active dimensions.

    Args:
        signed_gradient: gradient_i * velocity_i
        signed_action: (precision @ velocity)_i * velocity_i
        exponentials: One Exp(1) draw per dimension
        mask: 0/1 vector; masked dimensions never flip

    Ties go to the lowest index.
    """
    times = switch_times(-np.asarray(signed_gradient, dtype=float), signed_action, exponentials)
    if mask is not None:
        times = np.where(mask > 0, times, np.inf)
    if times.size == 0:
        return MinimumTravelInformation.never(EventType.GRADIENT)
    index = int(np.argmin(times))
    if not np.isfinite(times[index]):
        return MinimumTravelInformation.never(EventType.GRADIENT)
    return MinimumTravelInformation(float(times[index]), index, EventType.GRADIENT)


def next_boundary_bounce(position, velocity, bounds,
                         mask: Optional[np.ndarray] = None) -> MinimumTravelInformation:
    """
    Earliest time a coordinate reaches the fixed bound it is moving towards.

    Only the bound in the direction of travel is considered, so a coordinate
    that was just reflected off a bound does not re-trigger it.
    """
    position = np.asarray(position, dtype=float)
    velocity = np.asarray(velocity, dtype=float)

    target = np.where(velocity > 0.0, bounds.upper,
                      np.where(velocity < 0.0, bounds.lower, np.nan))
    moving = (velocity != 0.0) & np.isfinite(target)
    if mask is not None:
        moving &= mask > 0
    if not np.any(moving):
        return MinimumTravelInformation.never(EventType.BOUNDARY)

    times = np.full(position.shape, np.inf)
    times[moving] = (target[moving] - position[moving]) / velocity[moving]
    times = _clamp_negative(times, 'boundary')

    index = int(np.argmin(times))
    return MinimumTravelInformation(float(times[index]), index, EventType.BOUNDARY,
                                    location=float(target[index]))


def next_collision_bounce(position, velocity, bounds,
                          mask: Optional[np.ndarray] = None) -> MinimumTravelInformation:
    """
    Earliest meeting of two connected coordinates (i, j), j > i.

    Coordinates that already coincide do not re-trigger. A masked coordinate
    is a fixed wall for its active partner: meeting it is a BOUNDARY event
    of the partner located at the frozen value. The search visits every edge
    once, O(d * degree) per call.
    """
    position = np.asarray(position, dtype=float)
    velocity = np.asarray(velocity, dtype=float)

    best = MinimumTravelInformation.never(EventType.COLLISION)
    for i in range(position.shape[0]):
        for j in bounds.connected_indices(i) or ():
            if j <= i:
                continue
            frozen_i = mask is not None and mask[i] == 0
            frozen_j = mask is not None and mask[j] == 0
            if frozen_i and frozen_j:
                continue
            gap = position[j] - position[i]
            closing = (0.0 if frozen_i else velocity[i]) - (0.0 if frozen_j else velocity[j])
            if gap == 0.0 or closing == 0.0:
                continue
            t = gap / closing
            if not 0.0 <= t < best.time:
                continue
            if frozen_i or frozen_j:
                active, wall = (j, i) if frozen_i else (i, j)
                best = MinimumTravelInformation(float(t), active, EventType.BOUNDARY,
                                                location=float(position[wall]))
            else:
                best = MinimumTravelInformation(float(t), i, EventType.COLLISION,
                                                location=float(position[i] + t * velocity[i]),
                                                partner=int(j))
    return best


# ============================================================================
# BOUNDED LEAPFROG EVENTS
# ============================================================================

def next_fixed_reflection(position, velocity, bounds, interval: float,
                          mask: Optional[np.ndarray] = None) -> ReflectionEvent:
    """
    First fixed-bound reflection strictly within interval, or NONE.

    Only the bound a coordinate moves towards is checked: a coordinate
    reflected onto a bound moves away from it and does not re-trigger, while
    one resting on a bound and moving outwards reflects at t = 0.
    """
    position = np.asarray(position, dtype=float)
    velocity = np.asarray(velocity, dtype=float)

    target = np.where(velocity > 0.0, bounds.upper,
                      np.where(velocity < 0.0, bounds.lower, np.nan))
    candidates = np.isfinite(target)
    if mask is not None:
        candidates &= np.asarray(mask) > 0

    best = ReflectionEvent.none(interval)
    for i in np.flatnonzero(candidates):
        t = (target[i] - position[i]) / velocity[i]
        if t < 0.0:
            logger.debug(f"Clamping negative reflection time {t:.3g} to zero")
            t = 0.0
        if t < best.time:
            best = ReflectionEvent(ReflectionType.REFLECTION, float(t), (int(i),),
                                   location=np.array([target[i]]))
    return best


def next_collision(position, velocity, bounds, interval: float,
                   mask: Optional[np.ndarray] = None) -> ReflectionEvent:
    """
    First collision of connected coordinates strictly within interval, or NONE.

    A masked coordinate never moves: an active partner reaching it reflects
    off its value like a fixed bound, and the masked momentum is untouched.
    """
    position = np.asarray(position, dtype=float)
    velocity = np.asarray(velocity, dtype=float)
    if mask is not None:
        velocity = velocity * mask
    intended = position + interval * velocity

    best = ReflectionEvent.none(interval)
    for i in range(position.shape[0]):
        for j in bounds.connected_indices(i) or ():
            if j <= i:
                continue
            frozen_i = mask is not None and mask[i] == 0
            frozen_j = mask is not None and mask[j] == 0
            if frozen_i and frozen_j:
                continue
            xi, xj = position[i], position[j]
            yi, yj = intended[i], intended[j]
            if xi == xj or not ((xi > xj and yi <= yj) or (xi < xj and yi >= yj)):
                continue
            t = (xj - xi) / (velocity[i] - velocity[j])
            if t >= best.time:
                continue
            if frozen_i or frozen_j:
                active, wall = (j, i) if frozen_i else (i, j)
                best = ReflectionEvent(ReflectionType.REFLECTION, float(t), (active,),
                                       location=np.array([position[wall]]))
            else:
                best = ReflectionEvent(ReflectionType.COLLISION, float(t), (i, j),
                                       location=np.array([xi + t * velocity[i]]))
    return best


def next_graph_event(position, velocity, bounds, interval: float,
                     mask: Optional[np.ndarray] = None) -> ReflectionEvent:
    """Earliest of the fixed-bound reflection and the collision (ties: collision)."""
    reflection = next_fixed_reflection(position, velocity, bounds, interval, mask)
    collision = next_collision(position, velocity, bounds, interval, mask)
    return reflection if reflection.time < collision.time else collision


def next_space_reflection(position, velocity, space, interval: float,
                          mask: Optional[np.ndarray] = None) -> ReflectionEvent:
    """Reflection off the boundary of a convex region within interval, or NONE."""
    position = np.asarray(position, dtype=float)
    velocity = np.asarray(velocity, dtype=float)

    t = space.forward_distance_to_boundary(position, velocity)
    if t > interval:
        return ReflectionEvent.none(interval)

    location = position + t * velocity
    normal = np.asarray(space.normal_at(location, velocity), dtype=float)
    if mask is None:
        indices = tuple(range(position.shape[0]))
    else:
        indices = tuple(int(i) for i in np.flatnonzero(mask))
    return ReflectionEvent(ReflectionType.MULTIVARIATE_REFLECTION, float(t), indices,
                           location=location, normal=normal)
