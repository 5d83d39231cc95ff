"""
Minimal chain driver: repeated propose_step() calls on one operator.
"""

import time
from dataclasses import dataclass
from datetime import timedelta

import numpy as np

import logging
logger = logging.getLogger('pdmcmc')


@dataclass
class ChainResult:
    """
    Fields:
        history: Parameter after each step (n_iterations, dim)
        accepted: Acceptance flag per step (n_iterations,)
        n_events: Events (bounces, reflections) per step (n_iterations,)
        wall_time: Seconds spent in the loop
    """
    history: np.ndarray
    accepted: np.ndarray
    n_events: np.ndarray
    wall_time: float = 0.0

    @property
    def acceptance_rate(self) -> float:
        if self.accepted.size == 0:
            return 0.0
        return float(np.mean(self.accepted))


def run_chain(operator, n_iterations: int, log_every: int = 0) -> ChainResult:
    """
    Run n_iterations steps of operator and collect the parameter history.

    Args:
        operator: Any operator exposing propose_step()
        n_iterations: Number of steps
        log_every: Log progress every this many steps (0 = only the summary)

    Returns:
        ChainResult
    """
    if n_iterations < 0:
        raise ValueError(f"n_iterations must be >= 0, got {n_iterations}")

    dim = operator.gradient_source.dimension
    history = np.empty((n_iterations, dim))
    accepted = np.zeros(n_iterations, dtype=bool)
    n_events = np.zeros(n_iterations, dtype=int)

    logger.info(f"\n--- {operator.get_operator_name()}: {n_iterations} steps ---")
    start_time = time.perf_counter()
    for i in range(n_iterations):
        result = operator.propose_step()
        history[i] = result.parameter
        accepted[i] = result.accepted
        n_events[i] = result.n_events
        if log_every and (i + 1) % log_every == 0:
            logger.info(f"  Step {i + 1}/{n_iterations} "
                        f"(acceptance so far {np.mean(accepted[:i + 1]):.1%})")
    wall_time = time.perf_counter() - start_time

    chain = ChainResult(history, accepted, n_events, wall_time)
    logger.info(f"  Acceptance rate: {chain.acceptance_rate:.1%}")
    logger.info(f"  Events per step: {np.mean(n_events) if n_iterations else 0.0:.2f}")
    logger.info(f"  Total Wall Time: {timedelta(seconds=int(wall_time))} ({wall_time:.2f}s)")
    return chain
