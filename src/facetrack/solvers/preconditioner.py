"""Jacobi preconditioner and elementwise helpers for PCG.

Routine Listings
----------------
jacobi_preconditioner : function
    Inverse of the scaled diagonal of ``J^T J``, without forming it.
elementwise_multiply : function
    Elementwise product of two vectors.
"""

import jax.numpy as jnp
from beartype import beartype
from jaxtyping import Array, Float, jaxtyped

from facetrack.types import ScalarFloat


@jaxtyped(typechecker=beartype)
def jacobi_preconditioner(
    jacobian: Float[Array, " M U"],
    alpha_lhs: ScalarFloat = 2.0,
    near_zero: ScalarFloat = 1e-24,
) -> Float[Array, " U"]:
    """Diagonal Jacobi preconditioner ``1 / (alpha_lhs * diag(J^T J))``.

    ``diag(J^T J)`` is the per-column sum of squares of ``J``, so the
    normal matrix is never materialized.

    Parameters
    ----------
    jacobian : Float[Array, " M U"]
        Dense Jacobian.
    alpha_lhs : ScalarFloat, optional
        Multiplier of ``J^T J`` in the solved system. Default is 2.
    near_zero : ScalarFloat, optional
        Floor on the column sum of squares, so that an all-zero column
        (an unknown no residual depends on) yields a finite entry.
        Default is 1e-24.

    Returns
    -------
    preconditioner : Float[Array, " U"]
        Diagonal of ``M``, applied elementwise.
    """
    column_norms: Float[Array, " U"] = jnp.sum(jacobian * jacobian, axis=0)
    return 1.0 / (alpha_lhs * jnp.maximum(column_norms, near_zero))


@jaxtyped(typechecker=beartype)
def elementwise_multiply(
    a: Float[Array, " n"],
    b: Float[Array, " n"],
) -> Float[Array, " n"]:
    """Elementwise product ``a * b``."""
    return a * b
