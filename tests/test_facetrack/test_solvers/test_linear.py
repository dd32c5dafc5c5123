"""Tests for the normal-equation solvers in facetrack.solvers."""

import chex
import jax
import jax.numpy as jnp
import pytest
from absl.testing import parameterized
from loguru import logger

from facetrack.solvers import (
    LINEAR_SOLVERS,
    solve_cg,
    solve_lu,
    solve_normal_equations,
    solve_pcg,
)
from facetrack.types import make_solver_params


def _system(num_rows=20, num_unknowns=6, seed=0):
    key_j, key_r = jax.random.split(jax.random.PRNGKey(seed))
    jacobian = jax.random.normal(key_j, (num_rows, num_unknowns))
    residuals = jax.random.normal(key_r, (num_rows,))
    return jacobian, residuals


def _exact(jacobian, residuals, params):
    lhs = params.alpha_lhs * jacobian.T @ jacobian
    rhs = params.alpha_rhs * jacobian.T @ residuals
    return jnp.linalg.solve(lhs, rhs)


def _energy(x, jacobian, residuals, params):
    lhs = params.alpha_lhs * jacobian.T @ jacobian
    rhs = params.alpha_rhs * jacobian.T @ residuals
    return 0.5 * x @ lhs @ x - rhs @ x


class TestSolversAgree(chex.TestCase, parameterized.TestCase):
    """All strategies solve a well-conditioned system."""

    @parameterized.named_parameters(
        ("pcg", "pcg"),
        ("cg", "cg"),
        ("lu", "lu"),
    )
    def test_matches_direct_solve(self, linear_solver) -> None:
        """Result equals the dense solution of the normal equations."""
        jacobian, residuals = _system()
        params = make_solver_params()
        x = solve_normal_equations(jacobian, residuals, params, linear_solver)
        chex.assert_shape(x, (6,))
        chex.assert_trees_all_close(
            x, _exact(jacobian, residuals, params), rtol=1e-6, atol=1e-9
        )

    def test_known_solvers(self) -> None:
        """The default strategy is listed first."""
        assert LINEAR_SOLVERS == ("pcg", "cg", "lu")

    def test_half_step_convention(self) -> None:
        """Default multipliers give minus half the least-squares step."""
        jacobian, residuals = _system(seed=3)
        x = solve_lu(jacobian, residuals, make_solver_params())
        least_squares = jnp.linalg.lstsq(jacobian, residuals)[0]
        chex.assert_trees_all_close(
            x, -0.5 * least_squares, rtol=1e-8, atol=1e-12
        )

    @chex.variants(with_jit=True, without_jit=True)
    def test_pcg_under_outer_jit(self) -> None:
        """PCG composes with an enclosing transformation."""
        jacobian, residuals = _system(seed=5)
        params = make_solver_params()
        var_fn = self.variant(lambda j, r: solve_pcg(j, r, params))
        chex.assert_trees_all_close(
            var_fn(jacobian, residuals),
            _exact(jacobian, residuals, params),
            rtol=1e-6,
            atol=1e-9,
        )

    def test_lu_warns_once_per_compilation(self) -> None:
        """The LU warning is emitted while tracing, not on every call."""
        jacobian, residuals = _system(num_rows=13, num_unknowns=5, seed=7)
        params = make_solver_params()
        messages = []
        logger.enable("facetrack")
        handler_id = logger.add(messages.append, level="WARNING")
        try:
            solve_lu(jacobian, residuals, params)
            solve_lu(jacobian + 1.0, residuals, params)
        finally:
            logger.remove(handler_id)
            logger.disable("facetrack")
        warnings = [m for m in messages if "experimental" in m]
        assert len(warnings) == 1

    def test_unknown_solver_raises(self) -> None:
        """Unrecognized strategy names are rejected."""
        jacobian, residuals = _system()
        with pytest.raises(ValueError, match="Unknown linear solver"):
            solve_normal_equations(
                jacobian, residuals, make_solver_params(), "qr"
            )


class TestConjugateGradient(chex.TestCase, parameterized.TestCase):
    """Iteration behaviour of CG and PCG."""

    @parameterized.named_parameters(
        ("cg", solve_cg),
        ("pcg", solve_pcg),
    )
    def test_energy_non_increasing_with_budget(self, solver) -> None:
        """More iterations never raise the quadratic energy."""
        jacobian, residuals = _system(num_rows=30, num_unknowns=8, seed=1)
        energies = []
        for budget in range(0, 9):
            params = make_solver_params(num_pcg_iterations=budget)
            x = solver(jacobian, residuals, params)
            energies.append(float(_energy(x, jacobian, residuals, params)))
        for previous, current in zip(energies[:-1], energies[1:]):
            assert current <= previous + 1e-10 * abs(previous)

    @parameterized.named_parameters(
        ("cg", solve_cg),
        ("pcg", solve_pcg),
    )
    def test_zero_budget_returns_zero(self, solver) -> None:
        """Without iterations the initial guess is returned."""
        jacobian, residuals = _system()
        params = make_solver_params(num_pcg_iterations=0)
        chex.assert_trees_all_close(
            solver(jacobian, residuals, params), jnp.zeros(6)
        )

    @parameterized.named_parameters(
        ("cg", solve_cg),
        ("pcg", solve_pcg),
    )
    def test_zero_rhs_stays_at_zero(self, solver) -> None:
        """A consistent system with zero residual yields a zero update."""
        jacobian, _ = _system()
        x = solver(jacobian, jnp.zeros(20), make_solver_params())
        assert bool(jnp.all(jnp.isfinite(x)))
        chex.assert_trees_all_close(x, jnp.zeros(6))

    @parameterized.named_parameters(
        ("cg", solve_cg),
        ("pcg", solve_pcg),
    )
    def test_zero_column_stays_finite(self, solver) -> None:
        """An unknown no residual depends on is left untouched."""
        jacobian, residuals = _system()
        jacobian = jacobian.at[:, 2].set(0.0)
        x = solver(jacobian, residuals, make_solver_params())
        assert bool(jnp.all(jnp.isfinite(x)))
        assert float(x[2]) == 0.0
        reduced = jnp.delete(jacobian, 2, axis=1)
        chex.assert_trees_all_close(
            jnp.delete(x, 2),
            _exact(reduced, residuals, make_solver_params()),
            rtol=1e-6,
            atol=1e-9,
        )

    def test_budget_capped_by_unknowns(self) -> None:
        """A budget above the unknown count gives the same answer."""
        jacobian, residuals = _system()
        small = solve_pcg(
            jacobian, residuals, make_solver_params(num_pcg_iterations=6)
        )
        large = solve_pcg(
            jacobian, residuals, make_solver_params(num_pcg_iterations=50)
        )
        chex.assert_trees_all_close(small, large)
