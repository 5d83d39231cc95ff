"""
HMC Subpackage - Piecewise-deterministic trajectory samplers.

This package contains the trajectory machinery:
- types: Event and result data structures (BounceState, ReflectionEvent, ...)
- events: Closed-form event times (switch times, bounds, collisions)
- reflection: ReflectionType dispatch table and apply_reflection
- integrator: Zig-Zag state machine and leapfrog engines
- timescale: Travel-time schedules and estimation
- operators: HMC, reflective HMC and Zig-Zag operators
- chain: Minimal chain driver
"""

# Import types first (needed by other modules)
from .types import (
    EventType,
    BounceState,
    MinimumTravelInformation,
    ReflectionType,
    ReflectionEvent,
    TrajectoryResult,
    StepResult,
)

from .events import (
    get_switch_time,
    switch_times,
    next_gradient_bounce,
    next_boundary_bounce,
    next_collision_bounce,
    next_fixed_reflection,
    next_collision,
    next_graph_event,
    next_space_reflection,
)
from .reflection import REFLECTION_DISPATCH, apply_reflection
from .integrator import ZigZagIntegrator, LeapFrogEngine, BoundedLeapFrogEngine
from .timescale import PowerMethod, estimate_travel_time, draw_total_travel_time
from .operators import (
    TrajectoryOperator,
    HamiltonianMonteCarloOperator,
    ReflectiveHamiltonianMonteCarloOperator,
    IrreversibleZigZagOperator,
)
from .chain import ChainResult, run_chain
