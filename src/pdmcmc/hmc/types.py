"""
Trajectory Data Structures and Type Definitions.

This module contains the core data structures shared by the event finder,
the integrators and the operators:
- EventType: Kind of event that ended a Zig-Zag trajectory segment
- BounceState: Remaining travel time and the last event of a trajectory
- MinimumTravelInformation: Result of one event-finder query
- ReflectionType / ReflectionEvent: Tagged union of reflective-HMC events
- TrajectoryResult: Outcome of one leapfrog trajectory
- StepResult: Outcome of one operator step
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Optional, Tuple

import numpy as np


class EventType(IntEnum):
    """Events that end a straight-line Zig-Zag segment."""
    NONE = 0        # Travel time exhausted
    GRADIENT = 1    # Velocity sign flip driven by the gradient
    BOUNDARY = 2    # Reflection at a fixed bound
    COLLISION = 3   # Two connected coordinates meet

    def __str__(self):
        return self.name.title()


@dataclass(frozen=True)
class BounceState:
    """
    State of one Zig-Zag trajectory between events.

    The trajectory is DONE when remaining_time == 0, in which case the last
    event is NONE with index -1.
    """
    remaining_time: float
    last_event_type: EventType = EventType.NONE
    last_event_index: int = -1

    def __post_init__(self):
        if not self.remaining_time >= 0.0:
            raise ValueError(f"remaining_time must be >= 0, got {self.remaining_time}")

    @property
    def is_time_remaining(self) -> bool:
        return self.remaining_time > 0.0

    @classmethod
    def done(cls) -> 'BounceState':
        return cls(0.0, EventType.NONE, -1)


@dataclass(frozen=True)
class MinimumTravelInformation:
    """
    Earliest candidate event of one type.

    time == +inf means no such event. location carries the exact value a
    coordinate is clamped to (bound value or collision point), if any;
    partner is the second coordinate of a collision.
    """
    time: float
    index: int = -1
    type: EventType = EventType.NONE
    location: float = float('nan')
    partner: int = -1

    @classmethod
    def never(cls, event_type: EventType = EventType.NONE) -> 'MinimumTravelInformation':
        return cls(float('inf'), -1, event_type)


class ReflectionType(IntEnum):
    """Events inside one bounded leapfrog position update."""
    NONE = 0                      # Free flight to the end of the interval
    REFLECTION = 1                # Scalar reflection at a fixed bound
    COLLISION = 2                 # Elastic collision of two connected coordinates
    MULTIVARIATE_REFLECTION = 3   # Reflection off a curved/convex boundary

    def __str__(self):
        return self.name.replace('_', ' ').title()


@dataclass(frozen=True)
class ReflectionEvent:
    """
    One event of a bounded position update.

    Fields:
        type: ReflectionType
        time: Time from the current position to the event
        indices: Coordinates involved (one for REFLECTION, two for COLLISION,
                 all active coordinates for MULTIVARIATE_REFLECTION)
        location: Exact coordinate value(s) at the event: a scalar bound or
                  collision point, or the full boundary position
        normal: Outward normal (MULTIVARIATE_REFLECTION only)
    """
    type: ReflectionType
    time: float
    indices: Tuple[int, ...] = ()
    location: Optional[np.ndarray] = None
    normal: Optional[np.ndarray] = None

    @classmethod
    def none(cls, time: float) -> 'ReflectionEvent':
        return cls(ReflectionType.NONE, float(time))


@dataclass
class TrajectoryResult:
    """
    Outcome of one leapfrog trajectory from a fixed (position, momentum).

    log_density_* and kinetic_* are the two Hamiltonian terms at the start
    and the end; H = -log_density + kinetic.
    """
    position: np.ndarray
    momentum: np.ndarray
    log_density_start: float
    log_density_end: float
    kinetic_start: float
    kinetic_end: float
    max_speed: float = 0.0
    n_events: int = 0

    @property
    def hamiltonian_start(self) -> float:
        return -self.log_density_start + self.kinetic_start

    @property
    def hamiltonian_end(self) -> float:
        return -self.log_density_end + self.kinetic_end

    @property
    def log_acceptance_ratio(self) -> float:
        return self.hamiltonian_start - self.hamiltonian_end

    @property
    def acceptance_probability(self) -> float:
        ratio = self.log_acceptance_ratio
        if np.isnan(ratio):
            return 0.0
        return float(min(1.0, np.exp(min(ratio, 0.0))))


@dataclass
class StepResult:
    """Outcome of one propose_step() call."""
    accepted: bool
    parameter: np.ndarray
    log_acceptance_ratio: float = 0.0
    n_events: int = 0
    error: Optional[str] = field(default=None)
