"""
Mass Preconditioners

A preconditioner relates momentum to velocity through a mass matrix M:

    velocity = M^-1 momentum,     K(p) = 0.5 * p^T M^-1 p

It also resolves elastic events. Every reflection (fixed-bound reflection,
pairwise collision, reflection off a curved boundary) uses the same formula:
the momentum is reflected about the event normal n in the M^-1 metric,

    p' = p - 2 (n . v) / (n^T M^-1 n) * n,       v = M^-1 p

which reverses the normal component of the velocity and leaves K unchanged.
For a collision between coordinates i and j the normal is e_i - e_j; with a
diagonal mass this is the 1-D elastic-collision formula, and with identity
mass it swaps the two momenta.

Preconditioners hold no trajectory state; all methods return new arrays.
"""

import numpy as np
import jax.numpy as jnp
import jax.random as random


class MassPreconditioner:
    """
    Base class. Subclasses provide velocity(), velocity_at(), mass,
    inverse_mass_form() and draw_momentum().
    """

    def __init__(self, dim: int):
        self.dim = int(dim)

    @property
    def mass(self) -> np.ndarray:
        raise NotImplementedError

    def velocity(self, momentum) -> np.ndarray:
        raise NotImplementedError

    def velocity_at(self, index: int, momentum) -> float:
        raise NotImplementedError

    def inverse_mass_form(self, normal) -> float:
        """n^T M^-1 n"""
        raise NotImplementedError

    def draw_momentum(self, key) -> np.ndarray:
        """Draw p ~ N(0, M)."""
        raise NotImplementedError

    def kinetic_energy(self, momentum) -> float:
        momentum = np.asarray(momentum, dtype=float)
        return 0.5 * float(momentum @ self.velocity(momentum))

    def reflect(self, momentum, normal, indices=None) -> np.ndarray:
        """
        Reflect momentum about a boundary normal in the M^-1 metric.

        Args:
            momentum: Current momentum (dim,)
            normal: Boundary normal (dim,), need not be unit length
            indices: If given, only these coordinates of the normal are used
                     (the rest are treated as zero)

        Returns:
            New momentum array with K(p') == K(p)
        """
        momentum = np.asarray(momentum, dtype=float)
        normal = np.asarray(normal, dtype=float)
        if indices is not None:
            restricted = np.zeros_like(normal)
            restricted[indices] = normal[indices]
            normal = restricted

        nn = self.inverse_mass_form(normal)
        if nn <= 0.0:
            return momentum.copy()
        vn = float(normal @ self.velocity(momentum))
        return momentum - (2.0 * vn / nn) * normal

    def resolve_collision(self, indices, momentum) -> np.ndarray:
        """
        Elastic collision between the two coordinates in indices.

        Only the two colliding momentum entries change.
        """
        i, j = indices
        normal = np.zeros(self.dim)
        normal[i] = 1.0
        normal[j] = -1.0
        return self.reflect(momentum, normal)


class IdentityPreconditioner(MassPreconditioner):
    """Unit mass in every dimension: velocity == momentum."""

    @property
    def mass(self) -> np.ndarray:
        return np.ones(self.dim)

    def velocity(self, momentum) -> np.ndarray:
        return np.array(momentum, dtype=float)

    def velocity_at(self, index, momentum):
        return float(momentum[index])

    def inverse_mass_form(self, normal):
        normal = np.asarray(normal, dtype=float)
        return float(normal @ normal)

    def draw_momentum(self, key):
        return np.asarray(random.normal(key, (self.dim,)), dtype=float)


class DiagonalPreconditioner(MassPreconditioner):
    """Independent per-dimension masses."""

    def __init__(self, mass):
        mass = np.asarray(mass, dtype=float)
        if mass.ndim != 1:
            raise ValueError(f"Diagonal mass must be a vector, got shape {mass.shape}")
        if not np.all(np.isfinite(mass)) or np.any(mass <= 0):
            raise ValueError("Diagonal mass entries must be finite and > 0")
        super().__init__(mass.shape[0])
        self._mass = mass
        self._inverse_mass = 1.0 / mass

    @property
    def mass(self):
        return self._mass.copy()

    def velocity(self, momentum):
        return np.asarray(momentum, dtype=float) * self._inverse_mass

    def velocity_at(self, index, momentum):
        return float(momentum[index]) * self._inverse_mass[index]

    def inverse_mass_form(self, normal):
        normal = np.asarray(normal, dtype=float)
        return float(np.sum(normal * normal * self._inverse_mass))

    def draw_momentum(self, key):
        z = np.asarray(random.normal(key, (self.dim,)), dtype=float)
        return z * np.sqrt(self._mass)


class FullPreconditioner(MassPreconditioner):
    """
    Dense symmetric positive-definite mass matrix.

    The mass vector reported to the Zig-Zag operator is diag(M).
    """

    def __init__(self, mass_matrix):
        mass_matrix = np.asarray(mass_matrix, dtype=float)
        if mass_matrix.ndim != 2 or mass_matrix.shape[0] != mass_matrix.shape[1]:
            raise ValueError(f"Mass matrix must be square, got shape {mass_matrix.shape}")
        if not np.allclose(mass_matrix, mass_matrix.T):
            raise ValueError("Mass matrix must be symmetric")
        try:
            cholesky = np.linalg.cholesky(mass_matrix)
        except np.linalg.LinAlgError as exc:
            raise ValueError("Mass matrix must be positive definite") from exc

        super().__init__(mass_matrix.shape[0])
        self._mass_matrix = mass_matrix
        self._cholesky = jnp.asarray(cholesky)
        self._inverse_mass = np.linalg.inv(mass_matrix)

    @property
    def mass(self):
        return np.diag(self._mass_matrix).copy()

    @property
    def mass_matrix(self):
        return self._mass_matrix.copy()

    def velocity(self, momentum):
        return self._inverse_mass @ np.asarray(momentum, dtype=float)

    def velocity_at(self, index, momentum):
        return float(self._inverse_mass[index] @ np.asarray(momentum, dtype=float))

    def inverse_mass_form(self, normal):
        normal = np.asarray(normal, dtype=float)
        return float(normal @ self._inverse_mass @ normal)

    def draw_momentum(self, key):
        z = random.normal(key, (self.dim,))
        return np.asarray(self._cholesky @ z, dtype=float)
