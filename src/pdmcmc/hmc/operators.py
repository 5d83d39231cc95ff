"""
Operator Façades

One Monte-Carlo step per propose_step() call:

HamiltonianMonteCarloOperator
    Momentum ~ N(0, M), n_steps leapfrog steps, Metropolis-Hastings on
    H = -log pi + K. Optional Transform: the trajectory runs in unconstrained
    coordinates with the Jacobian-corrected density.

ReflectiveHamiltonianMonteCarloOperator
    HMC whose drift reflects off a bound specification (graph bounds or a
    convex BoundedSpace).

IrreversibleZigZagOperator
    Zig-Zag process for Gaussian targets. Velocity +-1/sqrt(mass), travel
    time from the configured schedule, always accepted.

Failure handling (all operators):
    BounceLimitExceededError  -> warning, step rejected
    NumericInstabilityError   -> step rejected (REJECT) or re-raised (FAIL)
    BoundViolationError       -> propagates
On any rejection the parameter is restored to its value at step start.
"""

from typing import Any, Dict, Optional, Union

import numpy as np
import jax.numpy as jnp
import jax.random as random

from ..bounds import GraphicalParameterBound
from ..error_handling import (
    BounceLimitExceededError,
    InvalidOperatorStateError,
    NumericInstabilityError,
    check_finite,
    report_rejected_step,
)
from ..settings import InstabilityHandler, OperatorOptions, build_operator_options, gen_rng_keys
from .integrator import BoundedLeapFrogEngine, LeapFrogEngine, ZigZagIntegrator
from .timescale import draw_total_travel_time
from .types import StepResult, TrajectoryResult

import logging
logger = logging.getLogger('pdmcmc')


class TrajectoryOperator:
    """
    Shared plumbing: options, key stream, step counter, failure handling.

    Args:
        gradient_source: GradientSource owning the parameter
        preconditioner: MassPreconditioner
        options: OperatorOptions or a config dict for build_operator_options
        mask: Optional 0/1 vector of active dimensions
        key: jax.random key; defaults to one derived from options.rng_seed
        bounds: Optional bound specification
        transform: Optional Transform
    """

    operator_label = 'trajectoryOperator'

    def __init__(self, gradient_source, preconditioner,
                 options: Union[OperatorOptions, Dict[str, Any], None] = None,
                 mask=None, key=None, bounds=None, transform=None):
        if bounds is not None and transform is not None:
            raise InvalidOperatorStateError(
                f"{type(self).__name__} does not support a bound specification "
                f"together with a coordinate transform"
            )
        if gradient_source is None or preconditioner is None:
            raise InvalidOperatorStateError(
                f"{type(self).__name__} requires a gradient source and a preconditioner"
            )

        if not isinstance(options, OperatorOptions):
            options = build_operator_options(options)
        self.options = options

        dim = gradient_source.dimension
        if preconditioner.dim != dim:
            raise InvalidOperatorStateError(
                f"Preconditioner dimension {preconditioner.dim} != parameter dimension {dim}"
            )
        if mask is not None:
            mask = np.asarray(mask, dtype=float)
            if mask.shape != (dim,) or not np.all((mask == 0.0) | (mask == 1.0)):
                raise ValueError(f"Mask must be a 0/1 vector of length {dim}")

        self.gradient_source = gradient_source
        self.preconditioner = preconditioner
        self.mask = mask
        self.bounds = bounds
        self.transform = transform
        self.key = gen_rng_keys(options.rng_seed)[0] if key is None else key
        self.step_count = 0

    def _next_key(self):
        self.key, subkey = random.split(self.key)
        return subkey

    def get_operator_name(self) -> str:
        name = getattr(self.gradient_source, 'name', 'parameter')
        return f"{self.operator_label}({name})"

    def get_step_count(self) -> int:
        return self.step_count

    def propose_step(self) -> StepResult:
        """Run one step; the parameter holds the chain's new state afterwards."""
        self.step_count += 1
        start = self.gradient_source.get_parameter()
        try:
            return self._propose(start)
        except BounceLimitExceededError as error:
            self.gradient_source.set_parameter(start)
            report_rejected_step(self.get_operator_name(), self.step_count, error)
            return StepResult(False, start, -np.inf, error.max_bounces, error=str(error))
        except NumericInstabilityError as error:
            self.gradient_source.set_parameter(start)
            if self.options.instability_handler == InstabilityHandler.FAIL:
                raise
            report_rejected_step(self.get_operator_name(), self.step_count, error)
            return StepResult(False, start, -np.inf, error=str(error))

    def _propose(self, start: np.ndarray) -> StepResult:
        raise NotImplementedError


# ============================================================================
# HAMILTONIAN MONTE CARLO
# ============================================================================

class HamiltonianMonteCarloOperator(TrajectoryOperator):
    """
    Reversible HMC with a leapfrog integrator.

    Example:
        target = GaussianTarget(mean=np.zeros(2), precision=np.eye(2))
        op = HamiltonianMonteCarloOperator(target, IdentityPreconditioner(2),
                                           {'n_steps': 10, 'step_size': 0.1})
        result = op.propose_step()
    """

    operator_label = 'hamiltonianMonteCarloOperator'

    def __init__(self, gradient_source, preconditioner, options=None,
                 mask=None, transform=None, key=None):
        super().__init__(gradient_source, preconditioner, options,
                         mask=mask, key=key, transform=transform)
        self.engine = LeapFrogEngine(preconditioner, self.mask)

    # ------------------------------------------------------------------
    # Working coordinates
    # ------------------------------------------------------------------

    def _to_working(self, parameter):
        if self.transform is None:
            return np.array(parameter, dtype=float)
        return self.transform.to_unconstrained(parameter)

    def _to_parameter(self, position):
        if self.transform is None:
            return np.array(position, dtype=float)
        return self.transform.to_constrained(position)

    def _evaluate(self, position):
        """Log density and gradient in working coordinates, via the gradient source."""
        self.gradient_source.set_parameter(self._to_parameter(position))
        log_density = self.gradient_source.log_density()
        gradient = self.gradient_source.gradient_log_density()
        check_finite('gradient', gradient)
        if self.transform is not None:
            log_density += self.transform.log_density_correction(position)
            gradient = self.transform.transform_gradient(gradient, position)
        return log_density, gradient

    # ------------------------------------------------------------------
    # Trajectory
    # ------------------------------------------------------------------

    def draw_momentum(self, key) -> np.ndarray:
        momentum = self.preconditioner.draw_momentum(key)
        return momentum if self.mask is None else momentum * self.mask

    def simulate(self, position, momentum) -> TrajectoryResult:
        """
        Leapfrog trajectory from a fixed (position, momentum), no accept/reject.

        position is in working coordinates. The gradient source is left at the
        trajectory's end point.
        """
        engine = self.engine
        engine.n_events = 0
        step_size = self.options.step_size

        position = np.array(position, dtype=float)
        momentum = np.array(momentum, dtype=float)
        log_density_start, gradient = self._evaluate(position)
        kinetic_start = self.preconditioner.kinetic_energy(momentum)

        max_speed = 0.0
        momentum = engine.update_momentum(momentum, gradient, step_size / 2.0)
        for step in range(self.options.n_steps):
            max_speed = max(max_speed, float(np.linalg.norm(engine.velocity(momentum))))
            position, momentum = engine.update_position(position, momentum, step_size)
            log_density, gradient = self._evaluate(position)
            if step < self.options.n_steps - 1:
                momentum = engine.update_momentum(momentum, gradient, step_size)
        momentum = engine.update_momentum(momentum, gradient, step_size / 2.0)

        result = TrajectoryResult(
            position=position,
            momentum=momentum,
            log_density_start=float(log_density_start),
            log_density_end=float(log_density),
            kinetic_start=kinetic_start,
            kinetic_end=self.preconditioner.kinetic_energy(momentum),
            max_speed=max_speed,
            n_events=engine.n_events,
        )
        if np.isnan(result.log_acceptance_ratio):
            raise NumericInstabilityError("Hamiltonian is NaN at the end of the trajectory")

        if self.options.debug:
            logger.debug(f"{self.get_operator_name()}: H {result.hamiltonian_start:.6g} -> "
                         f"{result.hamiltonian_end:.6g}, {result.n_events} event(s)")
        return result

    def _propose(self, start):
        self.engine.check_start(start)
        momentum_key, accept_key = random.split(self._next_key())

        trajectory = self.simulate(self._to_working(start), self.draw_momentum(momentum_key))
        log_ratio = trajectory.log_acceptance_ratio
        log_u = float(jnp.log(random.uniform(accept_key)))
        accepted = bool(log_u < log_ratio)

        if accepted:
            self.gradient_source.set_parameter(self._to_parameter(trajectory.position))
        else:
            self.gradient_source.set_parameter(start)
        return StepResult(accepted, self.gradient_source.get_parameter(),
                          float(log_ratio), trajectory.n_events)


class ReflectiveHamiltonianMonteCarloOperator(HamiltonianMonteCarloOperator):
    """
    HMC whose drift reflects elastically at a bound specification.

    Without bounds it behaves exactly like HamiltonianMonteCarloOperator.
    Combining bounds with a transform raises InvalidOperatorStateError.
    """

    operator_label = 'reflectiveHamiltonianMonteCarloOperator'

    def __init__(self, gradient_source, preconditioner, options=None,
                 mask=None, bounds=None, transform=None, key=None):
        TrajectoryOperator.__init__(self, gradient_source, preconditioner, options,
                                    mask=mask, key=key, bounds=bounds, transform=transform)
        if bounds is None:
            self.engine = LeapFrogEngine(preconditioner, self.mask)
        else:
            self.engine = BoundedLeapFrogEngine(preconditioner, bounds, self.mask,
                                                max_bounces=self.options.max_bounces,
                                                debug=self.options.debug)


# ============================================================================
# ZIG-ZAG
# ============================================================================

class IrreversibleZigZagOperator(TrajectoryOperator):
    """
    Irreversible Zig-Zag sampler for Gaussian targets.

    Args:
        gradient_source: GradientSource (gradient read once per step)
        preconditioner: MassPreconditioner (only its mass vector is used)
        precision_provider: PrecisionProductProvider of the target
        options: OperatorOptions or config dict
        mask: Optional 0/1 vector of active dimensions
        bounds: Optional GraphicalParameterBound
        key: Optional jax.random key
    """

    operator_label = 'irreversibleZigZagOperator'

    def __init__(self, gradient_source, preconditioner, precision_provider,
                 options=None, mask=None, bounds: Optional[GraphicalParameterBound] = None,
                 key=None):
        super().__init__(gradient_source, preconditioner, options,
                         mask=mask, key=key, bounds=bounds)
        if precision_provider is None:
            raise InvalidOperatorStateError(f"{type(self).__name__} requires a precision provider")
        if bounds is not None and not isinstance(bounds, GraphicalParameterBound):
            raise InvalidOperatorStateError(
                f"{type(self).__name__} supports GraphicalParameterBound only, "
                f"got {type(bounds).__name__}"
            )
        self.precision_provider = precision_provider
        self.last_travel_time = 0.0

    def draw_velocity(self, key) -> np.ndarray:
        """+-1/sqrt(mass_i) with independent fair signs; zero on masked dimensions."""
        flips = np.asarray(random.bernoulli(key, 0.5, (self.preconditioner.dim,)))
        velocity = np.where(flips, 1.0, -1.0) / np.sqrt(self.preconditioner.mass)
        return velocity if self.mask is None else velocity * self.mask

    def _propose(self, start):
        if self.bounds is not None:
            self.bounds.check(start)
        velocity_key, time_key, trajectory_key = random.split(self._next_key(), 3)

        velocity = self.draw_velocity(velocity_key)
        gradient = self.gradient_source.gradient_log_density()
        check_finite('gradient', gradient)
        action = self.precision_provider.get_product(velocity)

        integrator = ZigZagIntegrator(
            start, velocity, gradient, action, self.precision_provider,
            mask=self.mask,
            bounds=self.bounds,
            max_bounces=self.options.max_bounces,
            debug=self.options.debug,
        )
        self.last_travel_time = draw_total_travel_time(self.options, time_key)
        integrator.integrate(self.last_travel_time, trajectory_key)
        check_finite('position', integrator.position)

        self.gradient_source.set_parameter(integrator.position)
        return StepResult(True, self.gradient_source.get_parameter(), 0.0, integrator.n_events)
