"""Linear solvers for the Gauss-Newton normal equations.

Extended Summary
----------------
Matrix-free conjugate-gradient solvers (plain and Jacobi-preconditioned)
and an experimental dense LU reference path, all sharing the signature
``solver(jacobian, residuals, params) -> update``.

Submodules
----------
linear
    CG, PCG and LU strategies and their dispatcher
preconditioner
    Jacobi preconditioner and elementwise helpers

Routine Listings
----------------
elementwise_multiply : function
    Elementwise product of two vectors
jacobi_preconditioner : function
    Inverse of the scaled diagonal of J^T J
solve_cg : function
    Plain conjugate gradient
solve_lu : function
    Dense LU-via-inverse reference solve (experimental)
solve_normal_equations : function
    Dispatch to a strategy by name
solve_pcg : function
    Jacobi-preconditioned conjugate gradient
LINEAR_SOLVERS : tuple
    Names accepted by solve_normal_equations

Notes
-----
All solvers are jitted with the solver configuration as a static
argument.
"""

from .linear import (
    LINEAR_SOLVERS,
    solve_cg,
    solve_lu,
    solve_normal_equations,
    solve_pcg,
)
from .preconditioner import elementwise_multiply, jacobi_preconditioner

__all__: list[str] = [
    "elementwise_multiply",
    "jacobi_preconditioner",
    "LINEAR_SOLVERS",
    "solve_cg",
    "solve_lu",
    "solve_normal_equations",
    "solve_pcg",
]
