"""Sparse-landmark face tracking through Gauss-Newton in JAX.

Extended Summary
----------------
Fits the rigid pose, horizontal focal scale and identity/expression
blend coefficients of a parametric face model to 2D landmarks, one
frame at a time. Each Gauss-Newton iteration builds an analytic
Jacobian of the projected landmarks and solves the normal equations
with a preconditioned conjugate gradient (or, for reference, plain CG
or a dense LU solve).

Routine Listings
----------------
:mod:`jacobian`
    Per-stage Jacobians and assembly of the full system.
:mod:`models`
    Reference face model, camera and synthetic scenes.
:mod:`solvers`
    CG, PCG and LU normal-equation solvers.
:mod:`tracking`
    Gauss-Newton driver and update rule.
:mod:`types`
    PyTrees, solver configuration and unknown layout.

Examples
--------
>>> import facetrack as ft
>>> params = ft.types.make_solver_params(num_gn_iterations=10)
>>> state, projection = ft.tracking.gauss_newton_solve(
...     features, face_model, state, projection, params
... )

Notes
-----
All computations run in 64-bit precision. The package logs through
``loguru`` and is silent until ``logger.enable("facetrack")`` is called.
"""

from importlib.metadata import version

# Enable 64-bit precision in JAX (must be set before importing submodules)
import jax  # noqa: E402
from loguru import logger  # noqa: E402

jax.config.update("jax_enable_x64", True)

from . import (  # noqa: E402, I001
    jacobian,
    models,
    solvers,
    tracking,
    types,
)

__version__: str = version("facetrack")

logger.disable("facetrack")

__all__: list[str] = [
    "__version__",
    "jacobian",
    "models",
    "solvers",
    "tracking",
    "types",
]
