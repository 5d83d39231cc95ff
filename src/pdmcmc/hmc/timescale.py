"""
Travel time for Zig-Zag trajectories.

draw_total_travel_time() turns OperatorOptions into one trajectory length:
    FIXED           travel_time
    UNIFORM_JITTER  travel_time * (1 + width * (U - 0.5)),  U ~ Uniform(0, 1)
    EXPONENTIAL     travel_time * E,                          E ~ Exp(1)

estimate_travel_time() suggests a base travel_time from the target's
precision: the longest marginal scale of the posterior is
sqrt(lambda_max(Sigma)) = 1 / sqrt(lambda_min(P)). Only get_product() is
used, so it works for any PrecisionProductProvider.
"""

from dataclasses import dataclass
from typing import Callable

import numpy as np
import jax.random as random

from ..settings import OperatorOptions, TravelTimeSchedule

import logging
logger = logging.getLogger('pdmcmc')


@dataclass(frozen=True)
class PowerMethod:
    """
    Power iteration for the dominant eigenvalue of a symmetric operator.

    Stops when the Rayleigh quotient changes by less than tolerance
    (relative) between iterations, or after max_iterations.
    """
    max_iterations: int = 50
    tolerance: float = 0.01

    def dominant_eigenvalue(self, product: Callable, dim: int, key) -> float:
        vector = np.asarray(random.normal(key, (dim,)), dtype=float)
        vector /= np.linalg.norm(vector)

        eigenvalue = 0.0
        for iteration in range(self.max_iterations):
            image = np.asarray(product(vector), dtype=float)
            estimate = float(vector @ image)
            norm = np.linalg.norm(image)
            if norm == 0.0:
                return 0.0
            vector = image / norm
            if iteration > 0 and abs(estimate - eigenvalue) <= self.tolerance * abs(estimate):
                return estimate
            eigenvalue = estimate

        logger.debug(f"Power method stopped after {self.max_iterations} iterations "
                     f"(estimate {eigenvalue:.6g})")
        return eigenvalue


def estimate_travel_time(precision_provider, dim: int, key, scalar: float = 1.0,
                         power_method: PowerMethod = PowerMethod()) -> float:
    """
    scalar / sqrt(lambda_min(P)) for a positive-definite precision P.

    lambda_min comes from a shifted iteration: with L ~ lambda_max(P), the
    dominant eigenvalue of (L I - P) is L - lambda_min.

    Raises:
        ValueError: If the estimated smallest eigenvalue is not positive
    """
    max_key, min_key = random.split(key)
    largest = power_method.dominant_eigenvalue(precision_provider.get_product, dim, max_key)

    def shifted(vector):
        return largest * vector - np.asarray(precision_provider.get_product(vector), dtype=float)

    smallest = largest - power_method.dominant_eigenvalue(shifted, dim, min_key)
    if not smallest > 0.0:
        raise ValueError(
            f"Precision does not look positive definite (lambda_min estimate {smallest:.6g})"
        )

    travel_time = scalar / np.sqrt(smallest)
    logger.info(f"Estimated travel time {travel_time:.6g} "
                f"(lambda_min={smallest:.6g}, lambda_max={largest:.6g})")
    return float(travel_time)


def draw_total_travel_time(options: OperatorOptions, key) -> float:
    """Total travel time of one trajectory under options.travel_time_schedule."""
    schedule = options.travel_time_schedule
    if schedule == TravelTimeSchedule.FIXED:
        return float(options.travel_time)
    if schedule == TravelTimeSchedule.UNIFORM_JITTER:
        u = float(random.uniform(key))
        return float(options.travel_time * (1.0 + options.random_time_width * (u - 0.5)))
    if schedule == TravelTimeSchedule.EXPONENTIAL:
        return float(options.travel_time * random.exponential(key))
    raise ValueError(f"Unknown travel time schedule: {schedule}")
