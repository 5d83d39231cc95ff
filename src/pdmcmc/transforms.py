"""
Coordinate transforms for unbounded HMC.

HMC can run in unconstrained coordinates y = forward(x). The trajectory then
needs the log density and gradient in y:

    log p_y(y)      = log p_x(inverse(y)) + log |d inverse / dy|
    grad log p_y(y) = J^T grad log p_x(x) + grad log |d inverse / dy|

where J is the Jacobian of inverse(). Both terms come from JAX (jax.vjp for
J^T g, jax.grad for the log-Jacobian), so a transform only defines the three
jnp functions below.

Transforms cannot be combined with bound specifications (reflective HMC).
"""

import numpy as np
import jax
import jax.numpy as jnp


class Transform:
    """Bijection between constrained x and unconstrained y."""

    def forward(self, x):
        raise NotImplementedError

    def inverse(self, y):
        raise NotImplementedError

    def log_jacobian_inverse(self, y):
        """log |det d inverse(y) / dy|"""
        raise NotImplementedError

    def log_density_correction(self, y) -> float:
        return float(self.log_jacobian_inverse(jnp.asarray(y)))

    def transform_gradient(self, gradient_x, y) -> np.ndarray:
        """Map grad log p_x(x) to grad log p_y(y), x = inverse(y)."""
        y = jnp.asarray(y)
        _, vjp = jax.vjp(self.inverse, y)
        (pullback,) = vjp(jnp.asarray(gradient_x))
        return np.asarray(pullback + jax.grad(self.log_jacobian_inverse)(y), dtype=float)

    def to_unconstrained(self, x) -> np.ndarray:
        return np.asarray(self.forward(jnp.asarray(x)), dtype=float)

    def to_constrained(self, y) -> np.ndarray:
        return np.asarray(self.inverse(jnp.asarray(y)), dtype=float)


class IdentityTransform(Transform):

    def forward(self, x):
        return x

    def inverse(self, y):
        return y

    def log_jacobian_inverse(self, y):
        return jnp.zeros(())


class LogTransform(Transform):
    """Positive parameters: y = log(x)."""

    def forward(self, x):
        return jnp.log(x)

    def inverse(self, y):
        return jnp.exp(y)

    def log_jacobian_inverse(self, y):
        return jnp.sum(y)


class LogitTransform(Transform):
    """Parameters in (lower, upper): y = logit((x - lower) / (upper - lower))."""

    def __init__(self, lower=0.0, upper=1.0):
        self.lower = lower
        self.upper = upper

    def forward(self, x):
        u = (x - self.lower) / (self.upper - self.lower)
        return jnp.log(u) - jnp.log1p(-u)

    def inverse(self, y):
        return self.lower + (self.upper - self.lower) * jax.nn.sigmoid(y)

    def log_jacobian_inverse(self, y):
        scale = jnp.log(jnp.asarray(self.upper - self.lower, dtype=jnp.result_type(float)))
        return jnp.sum(scale + jax.nn.log_sigmoid(y) + jax.nn.log_sigmoid(-y))
