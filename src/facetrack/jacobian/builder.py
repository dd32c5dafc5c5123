"""Assembly of the Gauss-Newton Jacobian and residual.

Extended Summary
----------------
Builds, for one Gauss-Newton iteration, the dense Jacobian of the
projected landmark positions with respect to all unknowns together with
the residual vector. The rows are split into two blocks:

1. **Sparse-feature block** (rows ``2i`` and ``2i + 1`` for landmark
   ``i``): reprojection residual ``observed - screen`` and the chain-rule
   derivatives of ``screen``. One landmark is handled by
   :func:`feature_rows` and all landmarks are processed in parallel with
   ``jax.vmap``.
2. **Regularization block** (one row per blend coefficient): a single
   diagonal entry ``2 * lambda * c / sigma^2`` and a zero residual. It
   is the linearization of the quadratic prior ``lambda * (c / sigma)^2``
   around the current coefficients and must be rebuilt every iteration.

Routine Listings
----------------
feature_rows : function
    Jacobian rows and residual of one landmark.
build_feature_block : function
    Sparse-feature block for all landmarks.
build_regularizer_block : function
    Regularization block.
build_jacobian_residual : function
    Full Jacobian and residual of one iteration.

Notes
-----
Jacobian columns follow :class:`facetrack.types.UnknownLayout`. Shape and
expression columns are derivatives with respect to the basis weights
``sigma * c``; the update step divides by ``sigma`` to return to
coefficient units.
"""

import jax
import jax.numpy as jnp
from beartype import beartype
from beartype.typing import Tuple
from jaxtyping import Array, Float, jaxtyped

from facetrack.types import (
    FaceModel,
    FaceState,
    SolverParams,
    SparseFeatures,
    UnknownLayout,
    make_unknown_layout,
)

from .stages import (
    homogenization_jacobian,
    intrinsics_jacobian,
    local_jacobian,
    pose_jacobian,
    world_jacobian,
)


@jaxtyped(typechecker=beartype)
def feature_rows(
    observed: Float[Array, " 2"],
    local: Float[Array, " 3"],
    shape_rows: Float[Array, " 3 S"],
    expression_rows: Float[Array, " 3 E"],
    model_matrix: Float[Array, " 4 4"],
    projection: Float[Array, " 4 4"],
    rotation_derivatives: Float[Array, " 3 3 3"],
) -> Tuple[Float[Array, " 2 U"], Float[Array, " 2"]]:
    """Jacobian rows and residual of a single landmark.

    Parameters
    ----------
    observed : Float[Array, " 2"]
        Observed screen position.
    local : Float[Array, " 3"]
        Current model-space position of the landmark's vertex.
    shape_rows : Float[Array, " 3 S"]
        The three shape-basis rows of the vertex.
    expression_rows : Float[Array, " 3 E"]
        The three expression-basis rows of the vertex.
    model_matrix : Float[Array, " 4 4"]
        Current model-to-world transform.
    projection : Float[Array, " 4 4"]
        Current projection matrix.
    rotation_derivatives : Float[Array, " 3 3 3"]
        ``[dR/drx, dR/dry, dR/drz]`` at the current rotation.

    Returns
    -------
    rows : Float[Array, " 2 U"]
        ``[focal | pose (6) | shape (S) | expression (E)]`` columns.
    residual : Float[Array, " 2"]
        ``observed - screen``.
    """
    world: Float[Array, " 4"] = model_matrix @ jnp.append(local, 1.0)
    clip: Float[Array, " 4"] = projection @ world
    screen: Float[Array, " 2"] = clip[:2] / clip[3]
    residual: Float[Array, " 2"] = observed - screen

    j_homogenize: Float[Array, " 2 3"] = homogenization_jacobian(clip)
    j_focal: Float[Array, " 2 1"] = j_homogenize @ intrinsics_jacobian(world)
    j_clip_world: Float[Array, " 2 3"] = j_homogenize @ world_jacobian(
        projection
    )
    j_pose: Float[Array, " 2 6"] = j_clip_world @ pose_jacobian(
        local, rotation_derivatives
    )
    j_clip_local: Float[Array, " 2 3"] = j_clip_world @ local_jacobian(
        model_matrix
    )
    j_shape: Float[Array, " 2 S"] = j_clip_local @ shape_rows
    j_expression: Float[Array, " 2 E"] = j_clip_local @ expression_rows
    rows: Float[Array, " 2 U"] = jnp.concatenate(
        [j_focal, j_pose, j_shape, j_expression], axis=1
    )
    return rows, residual


@jaxtyped(typechecker=beartype)
def build_feature_block(
    features: SparseFeatures,
    face_model: FaceModel,
    vertices: Float[Array, " V 3"],
    model_matrix: Float[Array, " 4 4"],
    projection: Float[Array, " 4 4"],
    rotation_derivatives: Float[Array, " 3 3 3"],
) -> Tuple[Float[Array, " M U"], Float[Array, " M"]]:
    """Sparse-feature rows of the Jacobian and residual.

    Parameters
    ----------
    features : SparseFeatures
        Observed landmarks and their vertex ids.
    face_model : FaceModel
        Blend-shape bases.
    vertices : Float[Array, " V 3"]
        Current mesh, recomputed from the current coefficients.
    model_matrix : Float[Array, " 4 4"]
        Current model-to-world transform.
    projection : Float[Array, " 4 4"]
        Current projection matrix.
    rotation_derivatives : Float[Array, " 3 3 3"]
        Rotation derivatives at the current pose.

    Returns
    -------
    jacobian : Float[Array, " M U"]
        ``M = 2N`` rows; landmark ``i`` owns rows ``2i`` and ``2i + 1``.
    residuals : Float[Array, " M"]
        Interleaved ``(u, v)`` residuals.
    """
    num_vertices: int = face_model.num_vertices
    vertex_ids = features.vertex_ids
    shape_rows: Float[Array, " N 3 S"] = face_model.shape_basis.reshape(
        num_vertices, 3, face_model.num_shape
    )[vertex_ids]
    expression_rows: Float[Array, " N 3 E"] = (
        face_model.expression_basis.reshape(
            num_vertices, 3, face_model.num_expression
        )[vertex_ids]
    )
    rows: Float[Array, " N 2 U"]
    residuals: Float[Array, " N 2"]
    rows, residuals = jax.vmap(
        feature_rows, in_axes=(0, 0, 0, 0, None, None, None)
    )(
        features.positions,
        vertices[vertex_ids],
        shape_rows,
        expression_rows,
        model_matrix,
        projection,
        rotation_derivatives,
    )
    num_rows: int = 2 * features.num_features
    return rows.reshape(num_rows, -1), residuals.reshape(num_rows)


@jaxtyped(typechecker=beartype)
def build_regularizer_block(
    face_model: FaceModel,
    face_state: FaceState,
    params: SolverParams,
) -> Tuple[Float[Array, " K U"], Float[Array, " K"]]:
    """Regularization rows of the Jacobian and residual.

    Parameters
    ----------
    face_model : FaceModel
        Prior standard deviations of the coefficients.
    face_state : FaceState
        Current coefficients.
    params : SolverParams
        Provides the regularization weight exponent.

    Returns
    -------
    jacobian : Float[Array, " K U"]
        ``K = S + E`` rows, each with one entry
        ``2 * lambda * c / sigma^2`` on its coefficient column.
    residuals : Float[Array, " K"]
        All zeros.
    """
    layout: UnknownLayout = make_unknown_layout(
        face_model.num_shape, face_model.num_expression
    )
    coefficients: Float[Array, " K"] = jnp.concatenate(
        [face_state.shape_coefficients, face_state.expression_coefficients]
    )
    std_devs: Float[Array, " K"] = jnp.concatenate(
        [face_model.shape_std_dev, face_model.expression_std_dev]
    )
    inv_sigma: Float[Array, " K"] = 1.0 / std_devs
    diagonal: Float[Array, " K"] = (
        inv_sigma * inv_sigma * coefficients * params.regularisation_weight * 2
    )
    rows = jnp.arange(layout.num_coefficients)
    jacobian: Float[Array, " K U"] = jnp.zeros(
        (layout.num_coefficients, layout.num_unknowns)
    )
    jacobian = jacobian.at[rows, layout.shape_offset + rows].set(diagonal)
    return jacobian, jnp.zeros(layout.num_coefficients)


@jaxtyped(typechecker=beartype)
def build_jacobian_residual(
    features: SparseFeatures,
    face_model: FaceModel,
    face_state: FaceState,
    vertices: Float[Array, " V 3"],
    model_matrix: Float[Array, " 4 4"],
    projection: Float[Array, " 4 4"],
    rotation_derivatives: Float[Array, " 3 3 3"],
    params: SolverParams,
) -> Tuple[Float[Array, " M U"], Float[Array, " M"]]:
    """Full Jacobian and residual of one Gauss-Newton iteration.

    Parameters
    ----------
    features : SparseFeatures
        Observed landmarks and their vertex ids.
    face_model : FaceModel
        Bases and prior standard deviations.
    face_state : FaceState
        Current coefficients, used by the regularization block.
    vertices : Float[Array, " V 3"]
        Current mesh.
    model_matrix : Float[Array, " 4 4"]
        Current model-to-world transform.
    projection : Float[Array, " 4 4"]
        Current projection matrix.
    rotation_derivatives : Float[Array, " 3 3 3"]
        Rotation derivatives at the current pose.
    params : SolverParams
        Solver configuration.

    Returns
    -------
    jacobian : Float[Array, " M U"]
        ``M = 2N + S + E`` rows by ``U = 7 + S + E`` columns.
    residuals : Float[Array, " M"]
        Feature residuals followed by zeros.
    """
    feature_jacobian, feature_residuals = build_feature_block(
        features,
        face_model,
        vertices,
        model_matrix,
        projection,
        rotation_derivatives,
    )
    prior_jacobian, prior_residuals = build_regularizer_block(
        face_model, face_state, params
    )
    jacobian: Float[Array, " M U"] = jnp.concatenate(
        [feature_jacobian, prior_jacobian], axis=0
    )
    residuals: Float[Array, " M"] = jnp.concatenate(
        [feature_residuals, prior_residuals]
    )
    return jacobian, residuals
