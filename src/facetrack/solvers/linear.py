"""Linear solvers for the Gauss-Newton normal equations.

Extended Summary
----------------
Each Gauss-Newton iteration solves

    (alpha_lhs * J^T J) x = alpha_rhs * J^T r

for the update ``x``. Three interchangeable strategies share the
signature ``solver(jacobian, residuals, params) -> x``:

- ``"pcg"`` (default): Jacobi-preconditioned conjugate gradient.
- ``"cg"``: plain conjugate gradient.
- ``"lu"``: dense LU factorization with explicit inverse. Experimental.

The CG variants are matrix-free: ``J^T J p`` is applied as ``J^T (J p)``
and the normal matrix is only ever formed on the LU path.

Routine Listings
----------------
solve_pcg : function
    Jacobi-preconditioned conjugate gradient.
solve_cg : function
    Plain conjugate gradient.
solve_lu : function
    Dense LU-via-inverse reference solve.
solve_normal_equations : function
    Dispatch to one of the strategies by name.

Notes
-----
Both CG variants run at most ``min(U, params.num_pcg_iterations)``
iterations, floor the step-length denominator and the previous inner
product at ``params.near_zero``, and stop early once the (preconditioned)
residual inner product drops below ``params.tolerance``. A solve that
does not converge within its budget returns its last iterate; this is
not reported as a failure.

The LU path forms ``J^T J`` and inverts it explicitly. Face-tracking
normal equations are often close to singular when few landmarks are
visible, and the inverse is then meaningless. Use it only as a slow
reference for well-conditioned systems.

References
----------
.. [1] Shewchuk, "An Introduction to the Conjugate Gradient Method
       Without the Agonizing Pain" (1994)
"""

from functools import partial

import jax
import jax.numpy as jnp
import jax.scipy.linalg as linalg
from beartype import beartype
from beartype.typing import NamedTuple
from jaxtyping import Array, Bool, Float, Int, jaxtyped
from loguru import logger

from facetrack.types import SolverParams

from .preconditioner import elementwise_multiply, jacobi_preconditioner

LINEAR_SOLVERS: tuple[str, ...] = ("pcg", "cg", "lu")


class _ConjugateGradientState(NamedTuple):
    """Loop carry of the CG/PCG iterations."""

    iteration: Int[Array, " "]
    x: Float[Array, " U"]
    r: Float[Array, " U"]
    p: Float[Array, " U"]
    inner: Float[Array, " "]
    converged: Bool[Array, " "]


def _normal_matvec(
    jacobian: Float[Array, " M U"],
    vector: Float[Array, " U"],
    alpha_lhs: float,
) -> Float[Array, " U"]:
    """Apply ``alpha_lhs * J^T J`` as two matrix-vector products."""
    jp: Float[Array, " M"] = alpha_lhs * (jacobian @ vector)
    return jacobian.T @ jp


def _iteration_budget(
    jacobian: Float[Array, " M U"], params: SolverParams
) -> int:
    return min(jacobian.shape[1], params.num_pcg_iterations)


@partial(jax.jit, static_argnums=(2,))
@jaxtyped(typechecker=beartype)
def solve_cg(
    jacobian: Float[Array, " M U"],
    residuals: Float[Array, " M"],
    params: SolverParams,
) -> Float[Array, " U"]:
    """Solve the normal equations with plain conjugate gradient.

    Parameters
    ----------
    jacobian : Float[Array, " M U"]
        Dense Jacobian.
    residuals : Float[Array, " M"]
        Residual vector.
    params : SolverParams
        Iteration budget, tolerance, denominator floor and multipliers.

    Returns
    -------
    x : Float[Array, " U"]
        Last iterate.

    Notes
    -----
    Starting from ``x = 0``, ``r = alpha_rhs * J^T res`` and ``p = r``,
    each iteration computes

    - ``ak = rTr / max(pTAp, near_zero)``
    - ``x += ak p`` and ``r -= ak A p``
    - stop if ``rTr_new < tolerance``
    - ``bk = rTr_new / max(rTr_old, near_zero)`` and ``p = r + bk p``
    """
    r0: Float[Array, " U"] = params.alpha_rhs * (jacobian.T @ residuals)
    max_iterations: int = _iteration_budget(jacobian, params)

    def cond_fn(state: _ConjugateGradientState) -> Bool[Array, " "]:
        return (state.iteration < max_iterations) & (~state.converged)

    def body_fn(state: _ConjugateGradientState) -> _ConjugateGradientState:
        ap: Float[Array, " U"] = _normal_matvec(
            jacobian, state.p, params.alpha_lhs
        )
        pap: Float[Array, " "] = jnp.dot(state.p, ap)
        ak: Float[Array, " "] = state.inner / jnp.maximum(
            pap, params.near_zero
        )
        x: Float[Array, " U"] = state.x + ak * state.p
        r: Float[Array, " U"] = state.r - ak * ap
        rtr: Float[Array, " "] = jnp.dot(r, r)
        converged: Bool[Array, " "] = rtr < params.tolerance
        bk: Float[Array, " "] = rtr / jnp.maximum(
            state.inner, params.near_zero
        )
        p: Float[Array, " U"] = jnp.where(converged, state.p, r + bk * state.p)
        return _ConjugateGradientState(
            iteration=state.iteration + 1,
            x=x,
            r=r,
            p=p,
            inner=rtr,
            converged=converged,
        )

    initial = _ConjugateGradientState(
        iteration=jnp.asarray(0, dtype=jnp.int32),
        x=jnp.zeros_like(r0),
        r=r0,
        p=r0,
        inner=jnp.dot(r0, r0),
        converged=jnp.asarray(False),
    )
    final: _ConjugateGradientState = jax.lax.while_loop(
        cond_fn, body_fn, initial
    )
    return final.x


@partial(jax.jit, static_argnums=(2,))
@jaxtyped(typechecker=beartype)
def solve_pcg(
    jacobian: Float[Array, " M U"],
    residuals: Float[Array, " M"],
    params: SolverParams,
) -> Float[Array, " U"]:
    """Solve the normal equations with Jacobi-preconditioned CG.

    Parameters
    ----------
    jacobian : Float[Array, " M U"]
        Dense Jacobian.
    residuals : Float[Array, " M"]
        Residual vector.
    params : SolverParams
        Iteration budget, tolerance, denominator floor and multipliers.

    Returns
    -------
    x : Float[Array, " U"]
        Last iterate.

    Notes
    -----
    Identical to :func:`solve_cg` with the preconditioned residual
    ``z = M * r``, where ``M = 1 / (alpha_lhs * diag(J^T J))``: the
    search direction is built from ``z`` and every ``rTr`` becomes
    ``zTr``, including the early-exit test.
    """
    preconditioner: Float[Array, " U"] = jacobi_preconditioner(
        jacobian, params.alpha_lhs, params.near_zero
    )
    r0: Float[Array, " U"] = params.alpha_rhs * (jacobian.T @ residuals)
    z0: Float[Array, " U"] = elementwise_multiply(preconditioner, r0)
    max_iterations: int = _iteration_budget(jacobian, params)

    def cond_fn(state: _ConjugateGradientState) -> Bool[Array, " "]:
        return (state.iteration < max_iterations) & (~state.converged)

    def body_fn(state: _ConjugateGradientState) -> _ConjugateGradientState:
        ap: Float[Array, " U"] = _normal_matvec(
            jacobian, state.p, params.alpha_lhs
        )
        pap: Float[Array, " "] = jnp.dot(state.p, ap)
        ak: Float[Array, " "] = state.inner / jnp.maximum(
            pap, params.near_zero
        )
        x: Float[Array, " U"] = state.x + ak * state.p
        r: Float[Array, " U"] = state.r - ak * ap
        z: Float[Array, " U"] = elementwise_multiply(preconditioner, r)
        ztr: Float[Array, " "] = jnp.dot(z, r)
        converged: Bool[Array, " "] = ztr < params.tolerance
        bk: Float[Array, " "] = ztr / jnp.maximum(
            state.inner, params.near_zero
        )
        p: Float[Array, " U"] = jnp.where(converged, state.p, z + bk * state.p)
        return _ConjugateGradientState(
            iteration=state.iteration + 1,
            x=x,
            r=r,
            p=p,
            inner=ztr,
            converged=converged,
        )

    initial = _ConjugateGradientState(
        iteration=jnp.asarray(0, dtype=jnp.int32),
        x=jnp.zeros_like(r0),
        r=r0,
        p=z0,
        inner=jnp.dot(z0, r0),
        converged=jnp.asarray(False),
    )
    final: _ConjugateGradientState = jax.lax.while_loop(
        cond_fn, body_fn, initial
    )
    return final.x


@partial(jax.jit, static_argnums=(2,))
@jaxtyped(typechecker=beartype)
def solve_lu(
    jacobian: Float[Array, " M U"],
    residuals: Float[Array, " M"],
    params: SolverParams,
) -> Float[Array, " U"]:
    """Solve the normal equations through an explicit inverse.

    Experimental reference path, not for production tracking: it forms
    ``alpha_lhs * J^T J``, LU-factorizes it, inverts it explicitly, and
    multiplies the inverse onto ``alpha_rhs * J^T r``. The result is
    undefined when ``J^T J`` is singular or nearly so. A warning is
    logged once per compilation, when the function is traced, and only
    if the ``facetrack`` logger has been enabled.

    Parameters
    ----------
    jacobian : Float[Array, " M U"]
        Dense Jacobian.
    residuals : Float[Array, " M"]
        Residual vector.
    params : SolverParams
        Provides the multipliers.

    Returns
    -------
    x : Float[Array, " U"]
        ``(alpha_lhs J^T J)^-1 alpha_rhs J^T r``.
    """
    logger.warning(
        "LU normal-equation solve is experimental and unstable on "
        "rank-deficient systems; use 'pcg' for tracking"
    )
    jtf: Float[Array, " U"] = params.alpha_rhs * (jacobian.T @ residuals)
    jtj: Float[Array, " U U"] = params.alpha_lhs * (jacobian.T @ jacobian)
    lu_and_pivots = linalg.lu_factor(jtj)
    jtj_inv: Float[Array, " U U"] = linalg.lu_solve(
        lu_and_pivots, jnp.eye(jtj.shape[0], dtype=jtj.dtype)
    )
    return jtj_inv @ jtf


@jaxtyped(typechecker=beartype)
def solve_normal_equations(
    jacobian: Float[Array, " M U"],
    residuals: Float[Array, " M"],
    params: SolverParams,
    linear_solver: str = "pcg",
) -> Float[Array, " U"]:
    """Solve the normal equations with the named strategy.

    Parameters
    ----------
    jacobian : Float[Array, " M U"]
        Dense Jacobian.
    residuals : Float[Array, " M"]
        Residual vector.
    params : SolverParams
        Solver configuration.
    linear_solver : str, optional
        One of ``"pcg"``, ``"cg"`` or ``"lu"``. Default is ``"pcg"``.

    Returns
    -------
    x : Float[Array, " U"]
        Update vector, to be subtracted from the unknowns.

    Raises
    ------
    ValueError
        If ``linear_solver`` is not a known strategy.
    """
    if linear_solver == "pcg":
        return solve_pcg(jacobian, residuals, params)
    if linear_solver == "cg":
        return solve_cg(jacobian, residuals, params)
    if linear_solver == "lu":
        return solve_lu(jacobian, residuals, params)
    raise ValueError(f"Unknown linear solver: {linear_solver}")
