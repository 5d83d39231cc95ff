"""
Reflection Dispatch

apply_reflection() moves a particle to a ReflectionEvent and resolves it.
Each ReflectionType maps to one pure handler in REFLECTION_DISPATCH:

    handler(event, position, momentum, preconditioner) -> (position, momentum)

Handlers receive a position that has already been advanced by event.time and
return new arrays. All momentum changes go through the preconditioner, so
kinetic energy is conserved under any mass matrix.
"""

from typing import Callable, Dict, Optional, Tuple

import numpy as np

from .types import ReflectionEvent, ReflectionType


def _free_flight(event, position, momentum, preconditioner):
    return position, momentum


def _fixed_bound_reflection(event, position, momentum, preconditioner):
    (index,) = event.indices
    position[index] = event.location[0]
    normal = np.zeros(preconditioner.dim)
    normal[index] = 1.0
    return position, preconditioner.reflect(momentum, normal)


def _pairwise_collision(event, position, momentum, preconditioner):
    i, j = event.indices
    position[i] = event.location[0]
    position[j] = event.location[0]
    return position, preconditioner.resolve_collision((i, j), momentum)


def _multivariate_reflection(event, position, momentum, preconditioner):
    indices = list(event.indices)
    position[indices] = event.location[indices]
    return position, preconditioner.reflect(momentum, event.normal, indices=indices)


REFLECTION_DISPATCH: Dict[ReflectionType, Callable] = {
    ReflectionType.NONE: _free_flight,
    ReflectionType.REFLECTION: _fixed_bound_reflection,
    ReflectionType.COLLISION: _pairwise_collision,
    ReflectionType.MULTIVARIATE_REFLECTION: _multivariate_reflection,
}


def apply_reflection(event: ReflectionEvent, position, momentum, preconditioner,
                     mask: Optional[np.ndarray] = None) -> Tuple[np.ndarray, np.ndarray]:
    """
    Advance by event.time along the current velocity, then resolve the event.

    Args:
        event: Next event of the bounded position update
        position: Position at the start of the segment (not modified)
        momentum: Momentum at the start of the segment (not modified)
        preconditioner: MassPreconditioner used for velocity and reflections
        mask: Optional 0/1 vector; masked coordinates do not move

    Returns:
        (new_position, new_momentum)
    """
    velocity = preconditioner.velocity(momentum)
    if mask is not None:
        velocity = velocity * mask
    new_position = np.asarray(position, dtype=float) + event.time * velocity
    new_momentum = np.array(momentum, dtype=float)

    handler = REFLECTION_DISPATCH[event.type]
    return handler(event, new_position, new_momentum, preconditioner)
