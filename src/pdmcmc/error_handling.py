"""
Error Handling and Validation Utilities for Trajectory Samplers

This module defines the exceptions raised by integrators and operators and
the validation function for operator configuration dicts.

Exception policy:
    NumericInstabilityError   - recoverable; operators reject the step (or
                                re-raise under InstabilityHandler.FAIL)
    BounceLimitExceededError  - recoverable; operators log and reject the step
    BoundViolationError       - programming error; never caught by operators
    InvalidOperatorStateError - raised at construction for unsupported setups
"""

from typing import Any, Dict

import numpy as np

import logging
logger = logging.getLogger('pdmcmc')


class SamplerError(RuntimeError):
    """Base class for all trajectory sampler errors."""


class NumericInstabilityError(SamplerError):
    """Non-finite gradient, buffer or energy, or a stalled active dimension."""


class BounceLimitExceededError(SamplerError):
    """A single trajectory produced more events than max_bounces."""

    def __init__(self, max_bounces: int, remaining_time: float):
        self.max_bounces = max_bounces
        self.remaining_time = remaining_time
        super().__init__(
            f"Trajectory exceeded {max_bounces} events "
            f"with {remaining_time:.6g} travel time remaining"
        )


class BoundViolationError(SamplerError):
    """The parameter lies outside its bound specification at step start."""


class InvalidOperatorStateError(SamplerError):
    """The operator was configured with an unsupported combination."""


def validate_operator_config(config: Dict[str, Any]) -> None:
    """
    Validates that an operator configuration is sensible.

    Args:
        config: Configuration dictionary (lowercase keys, defaults filled in)

    Raises:
        ValueError: If configuration is invalid
    """
    from .settings import OPTION_DEFAULTS, TravelTimeSchedule, InstabilityHandler

    errors = []

    unknown = sorted(set(config) - set(OPTION_DEFAULTS))
    if unknown:
        errors.append(f"Unknown option(s): {unknown}")

    if 'n_steps' in config:
        if not isinstance(config['n_steps'], (int, np.integer)) or config['n_steps'] < 1:
            errors.append(f"n_steps must be an integer >= 1, got {config['n_steps']}")

    if 'step_size' in config:
        if not np.isfinite(config['step_size']) or config['step_size'] <= 0:
            errors.append(f"step_size must be > 0, got {config['step_size']}")

    if 'travel_time' in config:
        if not np.isfinite(config['travel_time']) or config['travel_time'] < 0:
            errors.append(f"travel_time must be >= 0, got {config['travel_time']}")

    if 'random_time_width' in config:
        width = config['random_time_width']
        if width < 0 or width > 2:
            errors.append(f"random_time_width must be in [0, 2], got {width}")

    if 'max_bounces' in config:
        if not isinstance(config['max_bounces'], (int, np.integer)) or config['max_bounces'] < 1:
            errors.append(f"max_bounces must be an integer >= 1, got {config['max_bounces']}")

    if 'travel_time_schedule' in config:
        try:
            TravelTimeSchedule(config['travel_time_schedule'])
        except ValueError:
            errors.append(
                f"travel_time_schedule must be one of "
                f"{list(TravelTimeSchedule.__members__)}, got {config['travel_time_schedule']!r}"
            )

    if 'instability_handler' in config:
        try:
            InstabilityHandler(config['instability_handler'])
        except ValueError:
            errors.append(
                f"instability_handler must be one of "
                f"{list(InstabilityHandler.__members__)}, got {config['instability_handler']!r}"
            )

    if errors:
        raise ValueError("Invalid operator configuration:\n  " + "\n  ".join(errors))


def check_finite(name: str, values) -> None:
    """Raise NumericInstabilityError if any entry of values is NaN or Inf."""
    values = np.asarray(values)
    if not np.all(np.isfinite(values)):
        bad = np.flatnonzero(~np.isfinite(values))
        raise NumericInstabilityError(
            f"Non-finite {name} at index(es) {bad.tolist()[:10]}"
        )


def report_rejected_step(operator_name: str, step_count: int, error: SamplerError) -> None:
    """Log a step that was rejected because its trajectory failed."""
    logger.warning(
        f"[WARN] {operator_name}: step {step_count} rejected "
        f"({type(error).__name__}: {error})"
    )
