"""Gauss-Newton face tracking.

Extended Summary
----------------
Per-frame fitting of pose, focal scale and blend coefficients to sparse
2D landmarks. The Jacobian is built analytically and the normal
equations are solved with the strategy named by the caller.

Submodules
----------
gauss_newton
    Outer Gauss-Newton loop and update rule

Routine Listings
----------------
apply_update : function
    Subtract an update vector from the face state and projection
gauss_newton_history : function
    Fit a frame and report the loss of every iteration
gauss_newton_iteration : function
    One linearize-solve-update step
gauss_newton_solve : function
    Fit a frame
reprojection_loss : function
    Sum of squared landmark residuals of a state
"""

from .gauss_newton import (
    apply_update,
    gauss_newton_history,
    gauss_newton_iteration,
    gauss_newton_solve,
    reprojection_loss,
)

__all__: list[str] = [
    "apply_update",
    "gauss_newton_history",
    "gauss_newton_iteration",
    "gauss_newton_solve",
    "reprojection_loss",
]
