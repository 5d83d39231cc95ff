"""
Pytest configuration and shared fixtures for pdmcmc tests.
"""

import pytest
import numpy as np
import jax.random as random

import pdmcmc  # noqa: F401  (enables 64-bit mode before any test builds arrays)
from pdmcmc.bounds import GraphicalParameterBound
from pdmcmc.preconditioning import IdentityPreconditioner
from pdmcmc.registry import register_target, _REGISTRY
from pdmcmc.settings import build_operator_options
from pdmcmc.targets import GaussianTarget
from pdmcmc import test_targets


@pytest.fixture
def rng_seed():
    """Default RNG seed for reproducible tests."""
    return 42


@pytest.fixture
def key(rng_seed):
    """jax.random key derived from rng_seed."""
    return random.PRNGKey(rng_seed)


@pytest.fixture
def hmc_options():
    """The 2-D end-to-end configuration: 10 leapfrog steps of size 0.1."""
    return build_operator_options({'n_steps': 10, 'step_size': 0.1, 'rng_seed': 42})


@pytest.fixture
def standard_normal_2d():
    """Unit 2-D Gaussian starting at (1, 1)."""
    return GaussianTarget(mean=np.zeros(2), precision=np.eye(2), initial=[1.0, 1.0])


@pytest.fixture
def correlated_normal_3d():
    """Correlated 3-D Gaussian starting at its mean."""
    return GaussianTarget(mean=test_targets.CORRELATED_MEAN,
                          precision=test_targets.CORRELATED_PRECISION,
                          name='correlated')


@pytest.fixture
def unit_preconditioner_2d():
    return IdentityPreconditioner(2)


@pytest.fixture
def positive_ordered_bounds():
    """0 <= x0, x1 <= 3 with x0 and x1 connected (their order never changes)."""
    return GraphicalParameterBound(lower=[0.0, 0.0], upper=[3.0, 3.0], connections=[(0, 1)])


@pytest.fixture
def register_test_targets():
    """
    Fixture to register test targets and clean up after test.

    Usage:
        def test_something(register_test_targets):
            # Test targets are now registered
            ...
    """
    # Save any existing registrations
    original_registrations = {}
    for name, config in test_targets.TEST_TARGETS.items():
        if name in _REGISTRY:
            original_registrations[name] = _REGISTRY.pop(name)
        register_target(name, config)

    yield  # Run the test

    # Restore original registry state
    for name in test_targets.TEST_TARGETS.keys():
        if name in original_registrations:
            _REGISTRY[name] = original_registrations[name]
        elif name in _REGISTRY:
            del _REGISTRY[name]
