"""Synthetic faces and scenes for testing and validation.

Extended Summary
----------------
Generates small random blend-shape face models and noiseless landmark
observations of them, so that the tracker can be exercised against a
known ground truth.

Routine Listings
----------------
make_synthetic_face_model : function
    Random face model placed in front of the camera.
observe_features : function
    Noiseless landmarks of a face state seen through a projection.
"""

import jax
import jax.numpy as jnp
from beartype import beartype
from jaxtyping import Array, Float, Int, PRNGKeyArray, jaxtyped

from facetrack.types import (
    FaceModel,
    FaceState,
    SparseFeatures,
    make_face_model,
    make_sparse_features,
)

from .camera import project_points
from .face import compute_face, compute_model_matrix


@jaxtyped(typechecker=beartype)
def make_synthetic_face_model(
    key: PRNGKeyArray,
    num_vertices: int,
    num_shape: int,
    num_expression: int,
    depth: float = -5.0,
    basis_scale: float = 0.05,
) -> FaceModel:
    """Create a random face model in front of the camera.

    Vertices are spread over ``[-1, 1]`` in x and y, and over a slab of
    unit thickness around ``depth`` in z, so that the perspective
    division sees varying depths.

    Parameters
    ----------
    key : PRNGKeyArray
        Random key.
    num_vertices : int
        Number of mesh vertices.
    num_shape : int
        Number of shape coefficients.
    num_expression : int
        Number of expression coefficients.
    depth : float, optional
        Mean z of the mesh in model space. Default is -5.
    basis_scale : float, optional
        Standard deviation of the random basis entries. Default is 0.05.

    Returns
    -------
    face_model : FaceModel
        Validated random face model.
    """
    keys = jax.random.split(key, 5)
    xy: Float[Array, " V 2"] = jax.random.uniform(
        keys[0], (num_vertices, 2), minval=-1.0, maxval=1.0
    )
    z: Float[Array, " V 1"] = depth + jax.random.uniform(
        keys[1], (num_vertices, 1), minval=-0.5, maxval=0.5
    )
    mean_shape: Float[Array, " V 3"] = jnp.concatenate([xy, z], axis=1)
    shape_basis = basis_scale * jax.random.normal(
        keys[2], (3 * num_vertices, num_shape)
    )
    expression_basis = basis_scale * jax.random.normal(
        keys[3], (3 * num_vertices, num_expression)
    )
    std_devs = jax.random.uniform(
        keys[4], (num_shape + num_expression,), minval=0.5, maxval=1.5
    )
    return make_face_model(
        mean_shape=mean_shape,
        shape_basis=shape_basis,
        expression_basis=expression_basis,
        shape_std_dev=std_devs[:num_shape],
        expression_std_dev=std_devs[num_shape:],
    )


@jaxtyped(typechecker=beartype)
def observe_features(
    face_model: FaceModel,
    face_state: FaceState,
    projection: Float[Array, " 4 4"],
    vertex_ids: Int[Array, " N"],
) -> SparseFeatures:
    """Noiseless landmark observations of a face.

    Parameters
    ----------
    face_model : FaceModel
        Face geometry.
    face_state : FaceState
        Ground-truth pose and coefficients.
    projection : Float[Array, " 4 4"]
        Ground-truth projection.
    vertex_ids : Int[Array, " N"]
        Vertices to observe.

    Returns
    -------
    features : SparseFeatures
        Projected positions of the chosen vertices.
    """
    vertices: Float[Array, " V 3"] = compute_face(face_model, face_state)
    screen: Float[Array, " N 2"] = project_points(
        projection, compute_model_matrix(face_state), vertices[vertex_ids]
    )
    return make_sparse_features(screen, vertex_ids)
