"""
Gradient sources and precision product providers.

Operators only talk to targets through two small interfaces:

GradientSource:
    dimension, get_parameter(), set_parameter(values),
    log_density(), gradient_log_density()
    (log density and gradient are evaluated at the current parameter)

PrecisionProductProvider:
    get_product(velocity) -> precision @ velocity
    get_column(index)     -> precision[:, index]

The reference implementations here build both from JAX functions:
DifferentiableTarget wraps any log-density function with a jitted
jax.value_and_grad, GaussianTarget adds the matching dense precision.
"""

from typing import Callable

import numpy as np
import jax
import jax.numpy as jnp


class GradientSource:
    """Interface: a parameter vector with a differentiable log density."""

    @property
    def dimension(self) -> int:
        raise NotImplementedError

    def get_parameter(self) -> np.ndarray:
        raise NotImplementedError

    def set_parameter(self, values) -> None:
        raise NotImplementedError

    def log_density(self) -> float:
        raise NotImplementedError

    def gradient_log_density(self) -> np.ndarray:
        raise NotImplementedError


class PrecisionProductProvider:
    """Interface: products with, and columns of, a precision matrix."""

    def get_product(self, velocity) -> np.ndarray:
        raise NotImplementedError

    def get_column(self, index: int) -> np.ndarray:
        raise NotImplementedError


class DifferentiableTarget(GradientSource):
    """
    GradientSource backed by a JAX log-density function.

    The value and gradient are computed together by a jitted
    jax.value_and_grad and cached until the parameter changes.

    Args:
        log_density_fn: fn(x: jnp.ndarray) -> scalar log density
        initial: Initial parameter vector
        name: Label used in operator names and log messages
        precision: Optional precision matrix of a Gaussian log density;
                   needed by precision_provider()
    """

    def __init__(self, log_density_fn: Callable, initial, name: str = 'parameter',
                 precision=None):
        initial = np.array(initial, dtype=float)
        if initial.ndim != 1:
            raise ValueError(f"Parameter must be a vector, got shape {initial.shape}")
        self.name = name
        self.log_density_fn = log_density_fn
        self._value_and_grad = jax.jit(jax.value_and_grad(log_density_fn))
        self._parameter = initial
        self._cache = None
        self.precision = None if precision is None else np.asarray(precision, dtype=float)

    @property
    def dimension(self):
        return self._parameter.shape[0]

    def get_parameter(self):
        return self._parameter.copy()

    def set_parameter(self, values):
        values = np.array(values, dtype=float)
        if values.shape != self._parameter.shape:
            raise ValueError(
                f"Parameter '{self.name}' has shape {self._parameter.shape}, got {values.shape}"
            )
        self._parameter = values
        self._cache = None

    def _evaluate(self):
        if self._cache is None:
            value, grad = self._value_and_grad(jnp.asarray(self._parameter))
            self._cache = (float(value), np.asarray(grad, dtype=float))
        return self._cache

    def log_density(self):
        return self._evaluate()[0]

    def gradient_log_density(self):
        return self._evaluate()[1].copy()

    def precision_provider(self) -> 'DensePrecisionProvider':
        if self.precision is None:
            raise ValueError(f"Target '{self.name}' has no precision matrix")
        return DensePrecisionProvider(self.precision)


class DensePrecisionProvider(PrecisionProductProvider):
    """PrecisionProductProvider for an explicit symmetric precision matrix."""

    def __init__(self, precision):
        precision = np.asarray(precision, dtype=float)
        if precision.ndim != 2 or precision.shape[0] != precision.shape[1]:
            raise ValueError(f"Precision must be square, got shape {precision.shape}")
        self.precision = precision

    @property
    def dimension(self):
        return self.precision.shape[0]

    def get_product(self, velocity):
        return self.precision @ np.asarray(velocity, dtype=float)

    def get_column(self, index):
        return self.precision[:, index].copy()


class GaussianTarget(DifferentiableTarget):
    """
    Multivariate normal target N(mean, precision^-1), unnormalised.

        log p(x) = -0.5 (x - mean)^T P (x - mean)

    Its gradient is linear along straight-line trajectories, which is what the
    Zig-Zag event finder assumes; precision_provider() returns the matching
    PrecisionProductProvider.
    """

    def __init__(self, mean, precision, initial=None, name: str = 'gaussian'):
        mean = np.asarray(mean, dtype=float)
        precision = np.asarray(precision, dtype=float)
        if precision.shape != (mean.shape[0], mean.shape[0]):
            raise ValueError(
                f"Precision shape {precision.shape} does not match mean of length {mean.shape[0]}"
            )
        self.mean = mean

        mean_j = jnp.asarray(mean)
        precision_j = jnp.asarray(precision)

        def log_density_fn(x):
            delta = x - mean_j
            return -0.5 * jnp.dot(delta, precision_j @ delta)

        super().__init__(log_density_fn, mean if initial is None else initial,
                         name=name, precision=precision)

    @classmethod
    def from_covariance(cls, mean, covariance, initial=None, name: str = 'gaussian'):
        return cls(mean, np.linalg.inv(np.asarray(covariance, dtype=float)),
                   initial=initial, name=name)
