"""
Target Registration System

This module provides a registry of named targets that operators can sample.
User code registers targets via register_target(), and builds a fresh
GradientSource for one chain via make_target().

Example usage:
    from pdmcmc import register_target, make_target

    def my_log_density(x):
        return -0.5 * jnp.sum(x ** 2)

    register_target('my_model', {
        'log_density': my_log_density,
        'initial_vector': lambda: np.zeros(3),
        # optional:
        'precision': lambda: np.eye(3),     # enables Zig-Zag and travel-time estimation
        'analytical_moments': my_moments_fn,
    })

    target = make_target('my_model')
"""

from .targets import DifferentiableTarget

_REGISTRY = {}


def register_target(name, config):
    """
    Register a target with the sampler.

    Args:
        name: Unique target identifier string
        config: Dict with keys:

            Required:
                log_density: fn(x: jnp.ndarray) -> scalar
                initial_vector: fn() -> array of length dim

            Optional:
                precision: fn() -> (dim, dim) precision matrix of a Gaussian
                    target; make_target() then attaches a precision provider
                analytical_moments: fn() -> (mean, covariance)

    Raises:
        ValueError: If required keys are missing or name is already registered.
    """
    if name in _REGISTRY:
        raise ValueError(f"Target '{name}' is already registered")

    required_keys = ['log_density', 'initial_vector']
    missing = [k for k in required_keys if k not in config]
    if missing:
        raise ValueError(f"Missing required keys for target '{name}': {missing}")

    _REGISTRY[name] = config


def get_target(name):
    """
    Get a registered target configuration by name.

    Raises:
        KeyError: If the target is not registered
    """
    if name not in _REGISTRY:
        available = list(_REGISTRY.keys())
        raise KeyError(f"Unknown target '{name}'. Available: {available}")
    return _REGISTRY[name]


def list_targets():
    """List all registered target names."""
    return list(_REGISTRY.keys())


def clear_registry():
    """
    Clear all registered targets. Primarily for testing.
    """
    _REGISTRY.clear()


def make_target(name, initial=None) -> DifferentiableTarget:
    """
    Build a fresh GradientSource for a registered target.

    Args:
        name: Registered target name
        initial: Optional start vector (defaults to the target's initial_vector())

    Returns:
        DifferentiableTarget named after the target. If the config has a
        'precision' entry, the returned target also carries
        precision_provider().
    """
    config = get_target(name)
    start = config['initial_vector']() if initial is None else initial
    precision = config['precision']() if 'precision' in config else None
    return DifferentiableTarget(config['log_density'], start, name=name, precision=precision)
