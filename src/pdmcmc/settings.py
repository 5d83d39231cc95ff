"""
Operator settings configuration.

This module defines the configuration struct handed to every operator at
construction time, the enums that select runtime behaviour, and a builder
that turns a plain (lowercase-keyed) dict into validated options.

Options are immutable for the operator's lifetime. Debug switches live here
rather than as module-level flags so two operators in the same process can be
configured independently.

To add a new option:
1. Add a field (with default) to OperatorOptions
2. Add its default value to OPTION_DEFAULTS
3. Add a check to validate_operator_config if it has a valid range
"""

from dataclasses import dataclass, fields
from enum import IntEnum
from typing import Any, Dict, Optional, Tuple

import jax
import jax.random as random


class TravelTimeSchedule(IntEnum):
    """
    How the Zig-Zag operator draws the total travel time of a trajectory.
    """
    FIXED = 0            # Always travel_time
    UNIFORM_JITTER = 1   # travel_time * (1 + width * (U - 0.5)), U ~ Uniform(0, 1)
    EXPONENTIAL = 2      # travel_time * E, E ~ Exp(1)

    def __str__(self):
        return self.name.replace('_', ' ').title()


class InstabilityHandler(IntEnum):
    """
    What an operator does when a trajectory hits a numerical instability.
    """
    REJECT = 0   # Treat the step as rejected, keep the chain running
    FAIL = 1     # Re-raise NumericInstabilityError to the caller

    def __str__(self):
        return self.name.title()


@dataclass(frozen=True)
class OperatorOptions:
    """
    Immutable runtime options for one operator instance.

    Fields:
        n_steps: Number of leapfrog steps per HMC trajectory
        step_size: Leapfrog step size
        travel_time: Base total travel time for Zig-Zag trajectories
        travel_time_schedule: How the Zig-Zag travel time is drawn
        random_time_width: Jitter width for UNIFORM_JITTER (0 = fixed)
        max_bounces: Maximum events per trajectory before giving up
        instability_handler: REJECT or FAIL on numerical instability
        rng_seed: Seed for the operator's jax.random key stream
        debug: Log every event at debug level
    """
    n_steps: int = 10
    step_size: float = 0.1
    travel_time: float = 1.0
    travel_time_schedule: TravelTimeSchedule = TravelTimeSchedule.FIXED
    random_time_width: float = 0.0
    max_bounces: int = 10000
    instability_handler: InstabilityHandler = InstabilityHandler.REJECT
    rng_seed: int = 42
    debug: bool = False

    def __post_init__(self):
        if isinstance(self.travel_time_schedule, int):
            object.__setattr__(self, 'travel_time_schedule',
                               TravelTimeSchedule(self.travel_time_schedule))
        if isinstance(self.instability_handler, int):
            object.__setattr__(self, 'instability_handler',
                               InstabilityHandler(self.instability_handler))


# Default values for each option (all lowercase keys)
OPTION_DEFAULTS = {f.name: f.default for f in fields(OperatorOptions)}

# String aliases accepted for enum-valued options
_ENUM_OPTIONS = {
    'travel_time_schedule': TravelTimeSchedule,
    'instability_handler': InstabilityHandler,
}


def clean_options(config: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Normalise a user config dict: lowercase keys, defaults filled in,
    enum names converted to enum members.

    Unknown keys are kept so validation can report them.
    """
    config = {str(k).lower(): v for k, v in (config or {}).items()}
    for key, default in OPTION_DEFAULTS.items():
        config.setdefault(key, default)

    for key, enum_cls in _ENUM_OPTIONS.items():
        value = config[key]
        if isinstance(value, str):
            name = value.strip().upper().replace(' ', '_')
            if name in enum_cls.__members__:
                config[key] = enum_cls[name]
    return config


def build_operator_options(config: Optional[Dict[str, Any]] = None) -> OperatorOptions:
    """
    Build validated OperatorOptions from a config dict.

    Args:
        config: Dict with any subset of OperatorOptions field names
                (case-insensitive). Enum fields accept names or ints.

    Returns:
        OperatorOptions

    Raises:
        ValueError: If any option is invalid (all problems reported at once)
    """
    # error_handling imports the enums from this module
    from .error_handling import validate_operator_config

    config = clean_options(config)
    validate_operator_config(config)
    return OperatorOptions(**{key: config[key] for key in OPTION_DEFAULTS})


def gen_rng_keys(rng_seed: int) -> Tuple[Any, Any]:
    """Generate JAX random keys from seed.

    Returns:
        (operator_key, init_key): Tuple of JAX PRNGKeys
    """
    mkey = jax.random.PRNGKey(rng_seed)
    operator_key, init_key = random.split(mkey, 2)
    return operator_key, init_key
