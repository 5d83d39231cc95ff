"""
pdmcmc - Piecewise-Deterministic Trajectory Samplers

Public API:
    Operators:
        HamiltonianMonteCarloOperator - Reversible HMC with Metropolis-Hastings
        ReflectiveHamiltonianMonteCarloOperator - HMC reflecting at bounds
        IrreversibleZigZagOperator - Zig-Zag process for Gaussian targets
        run_chain - Repeated propose_step() with a parameter history

    Settings:
        OperatorOptions - Immutable per-operator configuration
        build_operator_options - Validated OperatorOptions from a dict
        TravelTimeSchedule - Enum for Zig-Zag travel-time draws
        InstabilityHandler - Enum for REJECT / FAIL on numerical instability

    Targets & Preconditioners:
        DifferentiableTarget, GaussianTarget, DensePrecisionProvider
        IdentityPreconditioner, DiagonalPreconditioner, FullPreconditioner

    Bounds & Transforms:
        GraphicalParameterBound, Ball, Polytope
        IdentityTransform, LogTransform, LogitTransform

    Registration:
        register_target - Register a named target
        make_target - Build a GradientSource for a registered target
        list_targets - List all registered targets

Example:
    from pdmcmc import GaussianTarget, IdentityPreconditioner, HamiltonianMonteCarloOperator, run_chain

    target = GaussianTarget(mean=np.zeros(2), precision=np.eye(2))
    op = HamiltonianMonteCarloOperator(target, IdentityPreconditioner(2),
                                       {'n_steps': 10, 'step_size': 0.1, 'rng_seed': 1})
    chain = run_chain(op, 1000)
    print(chain.acceptance_rate)
"""
# CRITICAL: Import jax_config FIRST to set environment variables before JAX loads
from . import jax_config  # noqa: F401

import jax

# Event times need double precision even if JAX was imported before us
jax.config.update("jax_enable_x64", True)

from .settings import (
    OperatorOptions,
    TravelTimeSchedule,
    InstabilityHandler,
    build_operator_options,
    gen_rng_keys,
)
from .error_handling import (
    SamplerError,
    NumericInstabilityError,
    BounceLimitExceededError,
    BoundViolationError,
    InvalidOperatorStateError,
    validate_operator_config,
)
from .preconditioning import (
    MassPreconditioner,
    IdentityPreconditioner,
    DiagonalPreconditioner,
    FullPreconditioner,
)
from .targets import (
    GradientSource,
    PrecisionProductProvider,
    DifferentiableTarget,
    DensePrecisionProvider,
    GaussianTarget,
)
from .bounds import GraphicalParameterBound, BoundedSpace, Ball, Polytope
from .transforms import Transform, IdentityTransform, LogTransform, LogitTransform
from .registry import register_target, get_target, list_targets, make_target

# Main entry points
from .hmc import (
    HamiltonianMonteCarloOperator,
    ReflectiveHamiltonianMonteCarloOperator,
    IrreversibleZigZagOperator,
    EventType,
    BounceState,
    ReflectionType,
    ReflectionEvent,
    StepResult,
    TrajectoryResult,
    ChainResult,
    run_chain,
    estimate_travel_time,
)
