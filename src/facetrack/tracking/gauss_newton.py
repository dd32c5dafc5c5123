"""Gauss-Newton fitting of a face model to sparse landmarks.

Extended Summary
----------------
Fits pose, focal scale and blend coefficients of a face to the observed
2D landmarks of one frame by a fixed number of Gauss-Newton iterations.
Each iteration:

1. recomputes the mesh and the model matrix from the current state,
2. evaluates the rotation derivatives at the current pose,
3. builds the Jacobian and residual (:mod:`facetrack.jacobian`),
4. solves the normal equations (:mod:`facetrack.solvers`),
5. subtracts the update from the unknowns (:func:`apply_update`).

Iterations are strictly sequential and run under ``jax.lax.scan``;
there is no convergence-based early exit at this level.

Routine Listings
----------------
apply_update : function
    Subtract an update vector from the face state and projection.
gauss_newton_iteration : function
    One linearize-solve-update step.
gauss_newton_solve : function
    Run the configured number of iterations.
gauss_newton_history : function
    Same as gauss_newton_solve, also returning the per-iteration loss.
reprojection_loss : function
    Sum of squared landmark residuals of a state.

Notes
-----
JAX arrays are immutable, so the updated face state and projection are
returned rather than written in place; callers rebind them after every
frame. The inputs themselves are never modified.

With an empty feature set the solve is a no-op: the inputs are returned
unchanged and no system is built.
"""

from functools import partial

import jax
import jax.numpy as jnp
from beartype import beartype
from beartype.typing import Tuple
from jaxtyping import Array, Float, jaxtyped
from loguru import logger

from facetrack.jacobian import build_feature_block, build_jacobian_residual
from facetrack.models import (
    compute_face,
    compute_model_matrix,
    compute_rotation_derivatives,
)
from facetrack.solvers import solve_normal_equations
from facetrack.types import (
    FaceModel,
    FaceState,
    SolverParams,
    SparseFeatures,
    UnknownLayout,
    make_unknown_layout,
)


@jaxtyped(typechecker=beartype)
def apply_update(
    face_model: FaceModel,
    face_state: FaceState,
    projection: Float[Array, " 4 4"],
    delta: Float[Array, " U"],
) -> Tuple[FaceState, Float[Array, " 4 4"]]:
    """Subtract an update vector from the unknowns.

    Parameters
    ----------
    face_model : FaceModel
        Provides the prior standard deviations.
    face_state : FaceState
        State before the update.
    projection : Float[Array, " 4 4"]
        Projection before the update.
    delta : Float[Array, " U"]
        Update in the :class:`facetrack.types.UnknownLayout` order.

    Returns
    -------
    face_state : FaceState
        Updated state. Shape coefficients are unbounded; expression
        coefficients are clamped to ``[0, 1]``.
    projection : Float[Array, " 4 4"]
        Projection with ``P[0, 0]`` updated.

    Notes
    -----
    Blend coefficient columns of the Jacobian are in basis-weight
    units, so their updates are divided by the prior standard deviation
    before being applied. All coefficient updates are independent and
    vectorized.
    """
    layout: UnknownLayout = make_unknown_layout(
        face_model.num_shape, face_model.num_expression
    )
    new_projection: Float[Array, " 4 4"] = projection.at[0, 0].add(
        -delta[layout.focal]
    )
    shape_coefficients: Float[Array, " S"] = (
        face_state.shape_coefficients
        - delta[layout.shape] / face_model.shape_std_dev
    )
    expression_coefficients: Float[Array, " E"] = jnp.clip(
        face_state.expression_coefficients
        - delta[layout.expression] / face_model.expression_std_dev,
        0.0,
        1.0,
    )
    new_state = FaceState(
        rotation=face_state.rotation - delta[layout.rotation],
        translation=face_state.translation - delta[layout.translation],
        shape_coefficients=shape_coefficients,
        expression_coefficients=expression_coefficients,
    )
    return new_state, new_projection


@jaxtyped(typechecker=beartype)
def reprojection_loss(
    features: SparseFeatures,
    face_model: FaceModel,
    face_state: FaceState,
    projection: Float[Array, " 4 4"],
) -> Float[Array, " "]:
    """Sum of squared landmark residuals of a state.

    Parameters
    ----------
    features : SparseFeatures
        Observed landmarks.
    face_model : FaceModel
        Face geometry.
    face_state : FaceState
        State to evaluate.
    projection : Float[Array, " 4 4"]
        Projection to evaluate.

    Returns
    -------
    loss : Float[Array, " "]
        ``sum((observed - projected)^2)``.
    """
    _, residuals = build_feature_block(
        features,
        face_model,
        compute_face(face_model, face_state),
        compute_model_matrix(face_state),
        projection,
        compute_rotation_derivatives(face_state.rotation),
    )
    return jnp.sum(residuals * residuals)


@jaxtyped(typechecker=beartype)
def gauss_newton_iteration(
    features: SparseFeatures,
    face_model: FaceModel,
    face_state: FaceState,
    projection: Float[Array, " 4 4"],
    params: SolverParams,
    linear_solver: str = "pcg",
) -> Tuple[FaceState, Float[Array, " 4 4"], Float[Array, " "]]:
    """One linearize-solve-update step.

    Parameters
    ----------
    features : SparseFeatures
        Observed landmarks, at least one.
    face_model : FaceModel
        Face geometry.
    face_state : FaceState
        Current state.
    projection : Float[Array, " 4 4"]
        Current projection.
    params : SolverParams
        Solver configuration.
    linear_solver : str, optional
        Normal-equation strategy. Default is ``"pcg"``.

    Returns
    -------
    face_state : FaceState
        Updated state.
    projection : Float[Array, " 4 4"]
        Updated projection.
    loss : Float[Array, " "]
        Squared residual norm at the linearization point.
    """
    vertices: Float[Array, " V 3"] = compute_face(face_model, face_state)
    model_matrix: Float[Array, " 4 4"] = compute_model_matrix(face_state)
    rotation_derivatives: Float[Array, " 3 3 3"] = (
        compute_rotation_derivatives(face_state.rotation)
    )
    jacobian, residuals = build_jacobian_residual(
        features,
        face_model,
        face_state,
        vertices,
        model_matrix,
        projection,
        rotation_derivatives,
        params,
    )
    delta: Float[Array, " U"] = solve_normal_equations(
        jacobian, residuals, params, linear_solver
    )
    new_state, new_projection = apply_update(
        face_model, face_state, projection, delta
    )
    return new_state, new_projection, jnp.sum(residuals * residuals)


@partial(jax.jit, static_argnums=(4, 5))
@jaxtyped(typechecker=beartype)
def _gauss_newton_scan(
    features: SparseFeatures,
    face_model: FaceModel,
    face_state: FaceState,
    projection: Float[Array, " 4 4"],
    params: SolverParams,
    linear_solver: str,
) -> Tuple[FaceState, Float[Array, " 4 4"], Float[Array, " T"]]:
    """Run ``params.num_gn_iterations`` iterations under ``lax.scan``."""

    def step_fn(
        carry: Tuple[FaceState, Float[Array, " 4 4"]], _: None
    ) -> Tuple[Tuple[FaceState, Float[Array, " 4 4"]], Float[Array, " "]]:
        state, proj = carry
        new_state, new_proj, loss = gauss_newton_iteration(
            features, face_model, state, proj, params, linear_solver
        )
        return (new_state, new_proj), loss

    final_state: FaceState
    final_projection: Float[Array, " 4 4"]
    losses: Float[Array, " T"]
    (final_state, final_projection), losses = jax.lax.scan(
        step_fn,
        (face_state, projection),
        None,
        length=params.num_gn_iterations,
    )
    return final_state, final_projection, losses


def _check_features(features: SparseFeatures, face_model: FaceModel) -> None:
    if int(jnp.max(features.vertex_ids)) >= face_model.num_vertices:
        raise ValueError(
            f"vertex_ids must be < {face_model.num_vertices}, the number "
            "of mesh vertices"
        )


@jaxtyped(typechecker=beartype)
def gauss_newton_history(
    features: SparseFeatures,
    face_model: FaceModel,
    face_state: FaceState,
    projection: Float[Array, " 4 4"],
    params: SolverParams,
    linear_solver: str = "pcg",
) -> Tuple[FaceState, Float[Array, " 4 4"], Float[Array, " T"]]:
    """Fit the face and report the loss of every iteration.

    Parameters
    ----------
    features : SparseFeatures
        Observed landmarks.
    face_model : FaceModel
        Face geometry.
    face_state : FaceState
        Initial state.
    projection : Float[Array, " 4 4"]
        Initial projection.
    params : SolverParams
        Solver configuration.
    linear_solver : str, optional
        ``"pcg"``, ``"cg"`` or ``"lu"``. Default is ``"pcg"``.

    Returns
    -------
    face_state : FaceState
        Fitted state.
    projection : Float[Array, " 4 4"]
        Fitted projection.
    losses : Float[Array, " T"]
        Squared residual norm before each of the ``T`` iterations.
        Empty when there are no features.

    Raises
    ------
    ValueError
        If a vertex id is out of range or ``linear_solver`` is unknown.
    """
    if features.num_features == 0:
        logger.debug("No sparse features, skipping Gauss-Newton solve")
        return face_state, projection, jnp.zeros(0)
    _check_features(features, face_model)
    layout: UnknownLayout = make_unknown_layout(
        face_model.num_shape, face_model.num_expression
    )
    logger.debug(
        "Gauss-Newton solve with {} features, {} unknowns, {} residuals, "
        "{} iterations, linear solver '{}'",
        features.num_features,
        layout.num_unknowns,
        layout.num_residuals(features.num_features),
        params.num_gn_iterations,
        linear_solver,
    )
    final_state, final_projection, losses = _gauss_newton_scan(
        features, face_model, face_state, projection, params, linear_solver
    )
    if params.num_gn_iterations > 0:
        logger.debug(
            "Gauss-Newton loss {:.3e} -> {:.3e}",
            float(losses[0]),
            float(losses[-1]),
        )
    return final_state, final_projection, losses


@jaxtyped(typechecker=beartype)
def gauss_newton_solve(
    features: SparseFeatures,
    face_model: FaceModel,
    face_state: FaceState,
    projection: Float[Array, " 4 4"],
    params: SolverParams,
    linear_solver: str = "pcg",
) -> Tuple[FaceState, Float[Array, " 4 4"]]:
    """Fit the face model to the landmarks of one frame.

    Parameters
    ----------
    features : SparseFeatures
        Observed landmarks and their vertex ids. May be empty.
    face_model : FaceModel
        Face geometry.
    face_state : FaceState
        State from the previous frame.
    projection : Float[Array, " 4 4"]
        Projection from the previous frame.
    params : SolverParams
        Solver configuration.
    linear_solver : str, optional
        ``"pcg"``, ``"cg"`` or ``"lu"``. Default is ``"pcg"``.

    Returns
    -------
    face_state : FaceState
        Fitted state, or the input state if there are no features.
    projection : Float[Array, " 4 4"]
        Fitted projection, or the input projection if there are no
        features.

    Raises
    ------
    ValueError
        If a vertex id is out of range or ``linear_solver`` is unknown.

    Examples
    --------
    >>> params = make_solver_params(num_gn_iterations=5)
    >>> state, projection = gauss_newton_solve(
    ...     features, face_model, state, projection, params
    ... )
    """
    final_state, final_projection, _ = gauss_newton_history(
        features, face_model, face_state, projection, params, linear_solver
    )
    return final_state, final_projection
