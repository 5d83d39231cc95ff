"""
Operator Tests

Tests the HMC, reflective HMC and Zig-Zag operators end to end, including
failure handling and the chain driver.
Run with: pytest tests/test_operators.py -v
"""

import logging

import numpy as np
import jax.numpy as jnp
import jax.random as random
import pytest

from pdmcmc.bounds import Ball, GraphicalParameterBound, Polytope
from pdmcmc.error_handling import (
    BoundViolationError,
    InvalidOperatorStateError,
    NumericInstabilityError,
)
from pdmcmc.hmc.chain import run_chain
from pdmcmc.hmc.operators import (
    HamiltonianMonteCarloOperator,
    IrreversibleZigZagOperator,
    ReflectiveHamiltonianMonteCarloOperator,
)
from pdmcmc.hmc.timescale import PowerMethod, draw_total_travel_time, estimate_travel_time
from pdmcmc.preconditioning import DiagonalPreconditioner, IdentityPreconditioner
from pdmcmc.settings import build_operator_options
from pdmcmc.targets import DensePrecisionProvider, DifferentiableTarget, GaussianTarget, GradientSource
from pdmcmc.transforms import LogTransform
from pdmcmc import test_targets


class NaNGradientSource(GradientSource):
    """GradientSource whose gradient is NaN everywhere."""

    def __init__(self, dim):
        self._parameter = np.ones(dim)

    @property
    def dimension(self):
        return self._parameter.shape[0]

    def get_parameter(self):
        return self._parameter.copy()

    def set_parameter(self, values):
        self._parameter = np.array(values, dtype=float)

    def log_density(self):
        return 0.0

    def gradient_log_density(self):
        return np.full(self.dimension, np.nan)


# ============================================================================
# HMC TRAJECTORY TESTS
# ============================================================================

class TestHamiltonianMonteCarlo:

    def oscillator(self, n_steps, step_size):
        target = GaussianTarget(mean=np.zeros(1), precision=np.eye(1), name='oscillator')
        options = build_operator_options({'n_steps': n_steps, 'step_size': step_size})
        return HamiltonianMonteCarloOperator(target, IdentityPreconditioner(1), options)

    def test_trajectory_matches_analytic_leapfrog(self):
        op = self.oscillator(10, 0.1)
        result = op.simulate([1.0], [0.5])
        q, p = test_targets.harmonic_oscillator_leapfrog(1.0, 0.5, 0.1, 10)
        np.testing.assert_allclose(result.position, [q], rtol=1e-12)
        np.testing.assert_allclose(result.momentum, [p], rtol=1e-12)

    def test_energy_error_is_second_order(self):
        q0, p0 = 1.0, 0.5
        errors = []
        for n_steps, step_size in [(10, 0.1), (20, 0.05)]:
            result = self.oscillator(n_steps, step_size).simulate([q0], [p0])
            delta = result.hamiltonian_end - result.hamiltonian_start
            # Leapfrog conserves (1 - h^2/4) q^2 + p^2 on this potential
            q_end = result.position[0]
            np.testing.assert_allclose(delta, step_size ** 2 / 8.0 * (q_end ** 2 - q0 ** 2), rtol=1e-8)
            errors.append(abs(delta))

        assert errors[0] < 0.1 ** 2
        assert 3.5 < errors[0] / errors[1] < 4.5

    def test_end_to_end_turning_point(self, standard_normal_2d, unit_preconditioner_2d, hmc_options):
        """From (1, 1) at rest, 10 steps of 0.1 on a unit Gaussian can only lose energy."""
        op = HamiltonianMonteCarloOperator(standard_normal_2d, unit_preconditioner_2d, hmc_options)
        result = op.simulate([1.0, 1.0], [0.0, 0.0])

        distance = np.linalg.norm(result.position - np.array([1.0, 1.0]))
        assert distance < 10 * 0.1 * result.max_speed
        assert result.log_acceptance_ratio > 0.0
        assert result.acceptance_probability == 1.0

    def test_rejected_step_restores_parameter(self, standard_normal_2d, unit_preconditioner_2d):
        # Leapfrog is unstable for step_size > 2 on a unit Gaussian
        op = HamiltonianMonteCarloOperator(standard_normal_2d, unit_preconditioner_2d,
                                           {'n_steps': 10, 'step_size': 10.0})
        result = op.propose_step()
        assert not result.accepted
        np.testing.assert_array_equal(result.parameter, [1.0, 1.0])
        np.testing.assert_array_equal(standard_normal_2d.get_parameter(), [1.0, 1.0])
        assert op.get_step_count() == 1

    def test_samples_correlated_gaussian(self, correlated_normal_3d):
        op = HamiltonianMonteCarloOperator(correlated_normal_3d, IdentityPreconditioner(3),
                                           {'n_steps': 7, 'step_size': 0.2, 'rng_seed': 3})
        chain = run_chain(op, 2000)

        mean, covariance = test_targets.correlated_normal_3d_moments()
        assert chain.acceptance_rate > 0.7
        np.testing.assert_allclose(chain.history.mean(axis=0), mean, atol=0.15)
        np.testing.assert_allclose(np.diag(np.cov(chain.history.T)), np.diag(covariance), rtol=0.2)

    def test_mask_freezes_coordinate(self, standard_normal_2d, unit_preconditioner_2d):
        op = HamiltonianMonteCarloOperator(standard_normal_2d, unit_preconditioner_2d,
                                           {'n_steps': 5, 'step_size': 0.2}, mask=[1, 0])
        chain = run_chain(op, 50)
        np.testing.assert_array_equal(chain.history[:, 1], 1.0)
        assert np.unique(chain.history[:, 0]).size > 1

    def test_transform_matches_unconstrained_target(self):
        # Log-normal in x is a standard normal in y = log(x)
        def log_normal(x):
            return jnp.sum(-0.5 * jnp.log(x) ** 2 - jnp.log(x))

        options = {'n_steps': 8, 'step_size': 0.15}
        transformed = HamiltonianMonteCarloOperator(
            DifferentiableTarget(log_normal, [1.0, 2.0], name='lognormal'),
            IdentityPreconditioner(2), options, transform=LogTransform())
        reference = HamiltonianMonteCarloOperator(
            GaussianTarget(np.zeros(2), np.eye(2)), IdentityPreconditioner(2), options)

        y0, p0 = np.array([0.3, -0.4]), np.array([0.5, 1.0])
        a = transformed.simulate(y0, p0)
        b = reference.simulate(y0, p0)
        np.testing.assert_allclose(a.position, b.position, rtol=1e-10)
        np.testing.assert_allclose(a.log_acceptance_ratio, b.log_acceptance_ratio, atol=1e-10)

    def test_transform_keeps_parameter_in_support(self):
        def log_density(x):
            return jnp.sum(2.0 * jnp.log(x) - x)  # Gamma(3, 1)

        target = DifferentiableTarget(log_density, [1.0], name='rate')
        op = HamiltonianMonteCarloOperator(target, IdentityPreconditioner(1),
                                           {'n_steps': 5, 'step_size': 0.3},
                                           transform=LogTransform())
        chain = run_chain(op, 200)
        assert np.all(chain.history > 0.0)
        assert chain.acceptance_rate > 0.5

    def test_operator_name(self, standard_normal_2d, unit_preconditioner_2d):
        op = HamiltonianMonteCarloOperator(standard_normal_2d, unit_preconditioner_2d)
        assert op.get_operator_name() == 'hamiltonianMonteCarloOperator(gaussian)'
        assert op.get_step_count() == 0


# ============================================================================
# REFLECTIVE HMC TESTS
# ============================================================================

class TestReflectiveHamiltonianMonteCarlo:

    def test_graph_bounds_containment(self, positive_ordered_bounds):
        target = GaussianTarget(mean=np.zeros(2), precision=np.eye(2), initial=[0.5, 1.0])
        op = ReflectiveHamiltonianMonteCarloOperator(
            target, IdentityPreconditioner(2), {'n_steps': 10, 'step_size': 0.2},
            bounds=positive_ordered_bounds)
        chain = run_chain(op, 300)

        assert np.all(chain.history >= 0.0)
        assert np.all(chain.history <= 3.0)
        assert np.all(chain.history[:, 0] <= chain.history[:, 1])
        assert chain.n_events.sum() > 0
        assert chain.acceptance_rate > 0.5

    def test_ball_containment(self):
        ball = Ball([0.0, 0.0], 0.5)
        target = GaussianTarget(mean=np.zeros(2), precision=np.eye(2), initial=[0.1, 0.1])
        op = ReflectiveHamiltonianMonteCarloOperator(
            target, DiagonalPreconditioner([1.0, 2.0]), {'n_steps': 10, 'step_size': 0.1},
            bounds=ball)
        chain = run_chain(op, 200)
        assert all(ball.contains(x) for x in chain.history)
        assert chain.n_events.sum() > 0

    def test_polytope_containment(self):
        box = Polytope.box([0.0, 0.0], [1.0, 1.0])
        target = GaussianTarget(mean=np.zeros(2), precision=np.eye(2), initial=[0.5, 0.5])
        op = ReflectiveHamiltonianMonteCarloOperator(
            target, IdentityPreconditioner(2), {'n_steps': 10, 'step_size': 0.1},
            bounds=box)
        chain = run_chain(op, 200)
        assert all(box.contains(x) for x in chain.history)

    def test_without_bounds_matches_plain_hmc(self, standard_normal_2d, unit_preconditioner_2d,
                                               hmc_options):
        plain = HamiltonianMonteCarloOperator(standard_normal_2d, unit_preconditioner_2d, hmc_options)
        reflective = ReflectiveHamiltonianMonteCarloOperator(
            GaussianTarget(np.zeros(2), np.eye(2), initial=[1.0, 1.0]),
            unit_preconditioner_2d, hmc_options)
        a = plain.simulate([1.0, 1.0], [0.3, -0.2])
        b = reflective.simulate([1.0, 1.0], [0.3, -0.2])
        np.testing.assert_array_equal(a.position, b.position)

    def test_start_outside_bounds_raises(self):
        target = GaussianTarget(mean=np.zeros(1), precision=np.eye(1), initial=[-1.0])
        op = ReflectiveHamiltonianMonteCarloOperator(
            target, IdentityPreconditioner(1), bounds=GraphicalParameterBound(lower=[0.0]))
        with pytest.raises(BoundViolationError):
            op.propose_step()

    def test_bounds_with_transform_is_invalid(self, standard_normal_2d, unit_preconditioner_2d,
                                              positive_ordered_bounds):
        with pytest.raises(InvalidOperatorStateError):
            ReflectiveHamiltonianMonteCarloOperator(
                standard_normal_2d, unit_preconditioner_2d,
                bounds=positive_ordered_bounds, transform=LogTransform())

    def test_bounce_limit_rejects_step(self, caplog):
        bounds = GraphicalParameterBound(lower=[0.0, 0.0], upper=[0.01, 0.01])
        target = GaussianTarget(mean=np.zeros(2), precision=np.eye(2), initial=[0.005, 0.005])
        op = ReflectiveHamiltonianMonteCarloOperator(
            target, IdentityPreconditioner(2),
            {'n_steps': 10, 'step_size': 0.1, 'max_bounces': 3}, bounds=bounds)

        with caplog.at_level(logging.WARNING, logger='pdmcmc'):
            result = op.propose_step()

        assert not result.accepted
        np.testing.assert_array_equal(result.parameter, [0.005, 0.005])
        assert 'BounceLimitExceededError' in caplog.text


# ============================================================================
# ZIG-ZAG TESTS
# ============================================================================

class TestIrreversibleZigZag:

    def make_operator(self, target, seed=11, **kwargs):
        return IrreversibleZigZagOperator(
            target, IdentityPreconditioner(target.dimension), target.precision_provider(),
            {'travel_time': 1.0, 'rng_seed': seed}, **kwargs)

    def test_always_accepts(self, correlated_normal_3d):
        op = self.make_operator(correlated_normal_3d)
        chain = run_chain(op, 50)
        assert chain.acceptance_rate == 1.0
        assert chain.n_events.sum() > 0

    def test_reproducible_under_seed(self):
        histories = []
        for _ in range(2):
            target = GaussianTarget(test_targets.CORRELATED_MEAN, test_targets.CORRELATED_PRECISION)
            histories.append(run_chain(self.make_operator(target, seed=5), 30).history)
        np.testing.assert_array_equal(histories[0], histories[1])

        other = GaussianTarget(test_targets.CORRELATED_MEAN, test_targets.CORRELATED_PRECISION)
        assert not np.array_equal(run_chain(self.make_operator(other, seed=6), 30).history,
                                  histories[0])

    def test_samples_standard_normal(self):
        target = GaussianTarget(np.zeros(2), np.eye(2))
        chain = run_chain(self.make_operator(target, seed=2), 2000)
        np.testing.assert_allclose(chain.history.mean(axis=0), [0.0, 0.0], atol=0.15)
        np.testing.assert_allclose(chain.history.var(axis=0), [1.0, 1.0], rtol=0.25)

    def test_mask_freezes_coordinate(self, correlated_normal_3d):
        start = correlated_normal_3d.get_parameter()
        op = self.make_operator(correlated_normal_3d, mask=[1, 0, 1])
        chain = run_chain(op, 30)
        np.testing.assert_array_equal(chain.history[:, 1], start[1])

    def test_velocity_scaled_by_mass(self, correlated_normal_3d, key):
        op = IrreversibleZigZagOperator(
            correlated_normal_3d, DiagonalPreconditioner([1.0, 4.0, 0.25]),
            correlated_normal_3d.precision_provider())
        velocity = op.draw_velocity(key)
        np.testing.assert_allclose(np.abs(velocity), [1.0, 0.5, 2.0])

    def test_fixed_bounds_containment(self):
        bounds = GraphicalParameterBound(lower=[-0.5, 0.0], upper=[0.5, np.inf])
        target = GaussianTarget(np.zeros(2), np.eye(2), initial=[0.0, 0.5])
        chain = run_chain(self.make_operator(target, bounds=bounds), 200)
        assert np.all(chain.history[:, 0] >= -0.5) and np.all(chain.history[:, 0] <= 0.5)
        assert np.all(chain.history[:, 1] >= 0.0)

    def test_rejects_convex_region(self, standard_normal_2d):
        with pytest.raises(InvalidOperatorStateError):
            self.make_operator(standard_normal_2d, bounds=Ball([0.0, 0.0], 1.0))

    def test_requires_precision_provider(self, standard_normal_2d, unit_preconditioner_2d):
        with pytest.raises(InvalidOperatorStateError):
            IrreversibleZigZagOperator(standard_normal_2d, unit_preconditioner_2d, None)


# ============================================================================
# FAILURE HANDLING TESTS
# ============================================================================

class TestInstabilityHandling:

    def test_reject_handler(self, caplog):
        source = NaNGradientSource(2)
        op = HamiltonianMonteCarloOperator(source, IdentityPreconditioner(2))
        with caplog.at_level(logging.WARNING, logger='pdmcmc'):
            result = op.propose_step()
        assert not result.accepted
        assert 'Non-finite gradient' in result.error
        np.testing.assert_array_equal(source.get_parameter(), [1.0, 1.0])
        assert 'rejected' in caplog.text

    def test_fail_handler(self):
        source = NaNGradientSource(2)
        op = HamiltonianMonteCarloOperator(source, IdentityPreconditioner(2),
                                           {'instability_handler': 'FAIL'})
        with pytest.raises(NumericInstabilityError):
            op.propose_step()
        np.testing.assert_array_equal(source.get_parameter(), [1.0, 1.0])

    def test_zig_zag_reject_handler(self):
        source = NaNGradientSource(2)
        op = IrreversibleZigZagOperator(source, IdentityPreconditioner(2),
                                        DensePrecisionProvider(np.eye(2)))
        result = op.propose_step()
        assert not result.accepted

    def test_dimension_mismatch(self, standard_normal_2d):
        with pytest.raises(InvalidOperatorStateError):
            HamiltonianMonteCarloOperator(standard_normal_2d, IdentityPreconditioner(3))

    def test_bad_mask(self, standard_normal_2d, unit_preconditioner_2d):
        with pytest.raises(ValueError, match="Mask"):
            HamiltonianMonteCarloOperator(standard_normal_2d, unit_preconditioner_2d, mask=[1, 0.5])


# ============================================================================
# TRAVEL TIME TESTS
# ============================================================================

class TestTravelTime:

    def test_estimate_on_known_spectrum(self, key):
        provider = DensePrecisionProvider(test_targets.ANISOTROPIC_PRECISION)
        # lambda_min(P) = 4 -> 1 / sqrt(4)
        assert estimate_travel_time(provider, 2, key) == pytest.approx(0.5, rel=0.02)
        assert estimate_travel_time(provider, 2, key, scalar=3.0) == pytest.approx(1.5, rel=0.02)

    def test_power_method_dominant_eigenvalue(self, key):
        precision = np.diag([1.0, 1.0, 10.0])
        power_method = PowerMethod(max_iterations=100, tolerance=1e-6)
        estimate = power_method.dominant_eigenvalue(lambda v: precision @ v, 3, key)
        assert estimate == pytest.approx(10.0, rel=1e-3)

    def test_fixed_schedule(self, key):
        options = build_operator_options({'travel_time': 2.5})
        assert draw_total_travel_time(options, key) == 2.5

    def test_uniform_jitter_schedule(self, key):
        options = build_operator_options({'travel_time': 2.0, 'travel_time_schedule': 'uniform_jitter',
                                          'random_time_width': 0.5})
        draws = [draw_total_travel_time(options, k) for k in random.split(key, 200)]
        assert min(draws) >= 1.5 and max(draws) <= 2.5
        assert len(set(draws)) > 1

    def test_exponential_schedule(self, key):
        options = build_operator_options({'travel_time': 2.0, 'travel_time_schedule': 'EXPONENTIAL'})
        draws = np.array([draw_total_travel_time(options, k) for k in random.split(key, 2000)])
        assert np.all(draws >= 0.0)
        assert draws.mean() == pytest.approx(2.0, rel=0.1)
