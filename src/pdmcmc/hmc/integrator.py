"""
Trajectory Integrators

ZigZagIntegrator
    Event state machine for the Zig-Zag process. Owns copies of the
    position, velocity and the sign-folded gradient/action buffers for one
    trajectory. Each do_bounce() call either finishes the trajectory or
    resolves exactly one event:

        RUNNING --event--> RUNNING --time exhausted--> DONE

    Buffer invariant (signed by the current velocity):
        signed_gradient[i] == grad_i(position) * velocity[i]
        signed_action[i]   == (precision @ velocity)[i] * velocity[i]
    maintained incrementally in O(d) plus one precision column per event.

LeapFrogEngine / BoundedLeapFrogEngine
    Kick and drift sub-steps for the HMC operators. The bounded engine
    replaces the drift by a reflection loop driven by the event finder.
"""

from typing import Optional, Tuple

import numpy as np
import jax.random as random

from ..bounds import GraphicalParameterBound
from ..error_handling import (
    BounceLimitExceededError,
    NumericInstabilityError,
    check_finite,
)
from .events import (
    next_boundary_bounce,
    next_collision_bounce,
    next_gradient_bounce,
    next_graph_event,
    next_space_reflection,
)
from .reflection import apply_reflection
from .types import BounceState, EventType, MinimumTravelInformation, ReflectionType

import logging
logger = logging.getLogger('pdmcmc')


# ============================================================================
# ZIG-ZAG
# ============================================================================

class ZigZagIntegrator:
    """
    Exact piecewise-linear integrator for a Gaussian target.

    Args:
        position: Start position (copied)
        velocity: Start velocity (copied); non-zero on every active dimension
        gradient: Gradient of the log density at position
        action: precision @ velocity at the start
        precision_provider: PrecisionProductProvider (get_column is used per event)
        mask: Optional 0/1 vector of active dimensions
        bounds: Optional GraphicalParameterBound (fixed bounds, connections)
        max_bounces: Maximum number of events in one trajectory
        debug: Log every event at debug level
    """

    def __init__(self, position, velocity, gradient, action, precision_provider,
                 mask: Optional[np.ndarray] = None,
                 bounds: Optional[GraphicalParameterBound] = None,
                 max_bounces: int = 10000, debug: bool = False):
        self.position = np.array(position, dtype=float)
        self.velocity = np.array(velocity, dtype=float)
        self.signed_gradient = np.asarray(gradient, dtype=float) * self.velocity
        self.signed_action = np.asarray(action, dtype=float) * self.velocity

        self.precision_provider = precision_provider
        self.mask = None if mask is None else np.asarray(mask, dtype=float)
        self.bounds = bounds
        self.max_bounces = int(max_bounces)
        self.debug = debug
        self.n_events = 0

        dim = self.position.shape[0]
        self._active = np.ones(dim, dtype=bool) if self.mask is None else self.mask > 0

    # ------------------------------------------------------------------
    # Event search
    # ------------------------------------------------------------------

    def next_event(self, key) -> MinimumTravelInformation:
        """Earliest event over all configured types (ties: gradient first)."""
        exponentials = np.asarray(random.exponential(key, self.position.shape), dtype=float)
        first = next_gradient_bounce(self.signed_gradient, self.signed_action,
                                     exponentials, self.mask)

        if self.bounds is not None:
            if self.bounds.has_fixed_bounds:
                boundary = next_boundary_bounce(self.position, self.velocity, self.bounds, self.mask)
                if boundary.time < first.time:
                    first = boundary
            if self.bounds.has_connections:
                collision = next_collision_bounce(self.position, self.velocity, self.bounds, self.mask)
                if collision.time < first.time:
                    first = collision
        return first

    def _check_state(self):
        check_finite('signed gradient', self.signed_gradient)
        check_finite('signed action', self.signed_action)
        stalled = np.flatnonzero(self._active & (self.velocity == 0.0))
        if stalled.size:
            raise NumericInstabilityError(
                f"Zero velocity on active dimension(s) {stalled.tolist()[:10]}"
            )

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def do_bounce(self, state: BounceState, key) -> BounceState:
        """
        Advance to the next event or to the end of the remaining time.

        A state with no remaining time is returned unchanged as DONE without
        consuming randomness or touching the buffers.
        """
        if not state.is_time_remaining:
            return BounceState.done()

        self._check_state()
        first = self.next_event(key)

        if first.time >= state.remaining_time:
            self._advance(state.remaining_time)
            return BounceState.done()

        if self.n_events >= self.max_bounces:
            raise BounceLimitExceededError(self.max_bounces, state.remaining_time)

        if first.type == EventType.COLLISION:
            self.collide(first.time, first.index, first.partner, first.location)
        else:
            self.update_dynamics(first.time, first.index)
            if first.type == EventType.BOUNDARY:
                self.position[first.index] = first.location
        self.n_events += 1

        if self.debug:
            logger.debug(f"{first.type} event at index {first.index}, "
                         f"t={first.time:.6g}, remaining={state.remaining_time - first.time:.6g}")

        return BounceState(max(state.remaining_time - first.time, 0.0), first.type, first.index)

    def integrate(self, total_time: float, key) -> BounceState:
        """Run do_bounce() until the travel time is used up."""
        state = BounceState(float(total_time))
        while state.is_time_remaining:
            key, subkey = random.split(key)
            state = self.do_bounce(state, subkey)
        return state

    # ------------------------------------------------------------------
    # Buffer updates
    # ------------------------------------------------------------------

    def _advance(self, time: float):
        self.position += time * self.velocity
        self.signed_gradient -= time * self.signed_action

    def update_dynamics(self, time: float, index: int):
        """Move by time, then flip velocity[index] and fold the flip into the buffers."""
        v = self.velocity
        column = np.asarray(self.precision_provider.get_column(index), dtype=float)

        self._advance(time)
        self.signed_action -= 2.0 * v[index] * column * v
        self.signed_gradient[index] = -self.signed_gradient[index]
        self.signed_action[index] = -self.signed_action[index]
        v[index] = -v[index]

    def collide(self, time: float, i: int, j: int, location: float):
        """
        Move by time, clamp the pair to the meeting point, reverse both velocities.

        Negating v_i and v_j keeps every speed at 1/sqrt(mass) and turns the
        approach (v_i - v_j) into an equal separation, for any masses.
        """
        self._advance(time)
        self.position[i] = location
        self.position[j] = location
        self.update_dynamics(0.0, i)
        self.update_dynamics(0.0, j)

    def raw_gradient(self) -> np.ndarray:
        """Gradient at the current position, unfolded from the signed buffer."""
        v = self.velocity
        return np.divide(self.signed_gradient, v, out=np.zeros_like(v), where=v != 0.0)


# ============================================================================
# LEAPFROG
# ============================================================================

class LeapFrogEngine:
    """Unbounded kick/drift sub-steps, optionally masked."""

    def __init__(self, preconditioner, mask: Optional[np.ndarray] = None):
        self.preconditioner = preconditioner
        self.mask = None if mask is None else np.asarray(mask, dtype=float)
        self.n_events = 0

    def _masked(self, values):
        return values if self.mask is None else values * self.mask

    def velocity(self, momentum) -> np.ndarray:
        return self._masked(self.preconditioner.velocity(momentum))

    def update_momentum(self, momentum, gradient, step: float) -> np.ndarray:
        return np.asarray(momentum, dtype=float) + step * self._masked(np.asarray(gradient, dtype=float))

    def update_position(self, position, momentum, step: float) -> Tuple[np.ndarray, np.ndarray]:
        position = np.asarray(position, dtype=float) + step * self.velocity(momentum)
        return position, np.array(momentum, dtype=float)

    def check_start(self, position) -> None:
        """Bounded engines validate the start position; nothing to check here."""


class BoundedLeapFrogEngine(LeapFrogEngine):
    """
    Drift with reflections at a bound specification.

    GraphicalParameterBound -> fixed-bound reflections and collisions
    BoundedSpace            -> reflections off the region's boundary
    """

    def __init__(self, preconditioner, bounds, mask: Optional[np.ndarray] = None,
                 max_bounces: int = 10000, debug: bool = False):
        super().__init__(preconditioner, mask)
        self.bounds = bounds
        self.max_bounces = int(max_bounces)
        self.debug = debug

    def next_event(self, position, velocity, interval: float):
        if isinstance(self.bounds, GraphicalParameterBound):
            return next_graph_event(position, velocity, self.bounds, interval, self.mask)
        return next_space_reflection(position, velocity, self.bounds, interval, self.mask)

    def update_position(self, position, momentum, step: float) -> Tuple[np.ndarray, np.ndarray]:
        position = np.array(position, dtype=float)
        momentum = np.array(momentum, dtype=float)

        collapsed = 0.0
        while collapsed < step:
            remaining = step - collapsed
            event = self.next_event(position, self.velocity(momentum), remaining)
            position, momentum = apply_reflection(event, position, momentum,
                                                  self.preconditioner, self.mask)
            if event.type == ReflectionType.NONE:
                break

            self.n_events += 1
            if self.n_events > self.max_bounces:
                raise BounceLimitExceededError(self.max_bounces, remaining - event.time)
            if self.debug:
                logger.debug(f"{event.type} at indices {event.indices}, t={event.time:.6g}")
            collapsed += event.time
        return position, momentum

    def check_start(self, position) -> None:
        self.bounds.check(position)
