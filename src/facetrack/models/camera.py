"""Perspective camera used by the tracker.

Extended Summary
----------------
The tracker optimizes only the horizontal focal entry ``P[0, 0]`` of a
4x4 projection matrix and differentiates through it assuming a
symmetric OpenGL-style frustum::

    [[fx, 0,  0, 0],
     [0,  fy, 0, 0],
     [0,  0,  a, b],
     [0,  0, -1, 0]]

so that the clip-space ``w`` equals ``-z`` of the world point.

Routine Listings
----------------
perspective_projection : function
    Build the symmetric projection matrix.
project_points : function
    Project model-space points to normalized screen coordinates.
"""

import jax.numpy as jnp
from beartype import beartype
from jaxtyping import Array, Float, jaxtyped

from facetrack.types import ScalarNumeric


@jaxtyped(typechecker=beartype)
def perspective_projection(
    focal_x: ScalarNumeric,
    focal_y: ScalarNumeric,
    near: ScalarNumeric = 0.1,
    far: ScalarNumeric = 100.0,
) -> Float[Array, " 4 4"]:
    """Build a symmetric perspective projection matrix.

    Parameters
    ----------
    focal_x : ScalarNumeric
        Horizontal focal scale ``P[0, 0]``.
    focal_y : ScalarNumeric
        Vertical focal scale ``P[1, 1]``.
    near : ScalarNumeric, optional
        Near clipping distance. Default is 0.1.
    far : ScalarNumeric, optional
        Far clipping distance. Default is 100.

    Returns
    -------
    projection : Float[Array, " 4 4"]
        Projection matrix with ``w_clip = -z``.
    """
    depth_scale = -(far + near) / (far - near)
    depth_offset = -2.0 * far * near / (far - near)
    return jnp.array(
        [
            [focal_x, 0.0, 0.0, 0.0],
            [0.0, focal_y, 0.0, 0.0],
            [0.0, 0.0, depth_scale, depth_offset],
            [0.0, 0.0, -1.0, 0.0],
        ],
        dtype=jnp.float64,
    )


@jaxtyped(typechecker=beartype)
def project_points(
    projection: Float[Array, " 4 4"],
    model_matrix: Float[Array, " 4 4"],
    local: Float[Array, " N 3"],
) -> Float[Array, " N 2"]:
    """Project model-space points to screen coordinates.

    Parameters
    ----------
    projection : Float[Array, " 4 4"]
        Camera projection matrix.
    model_matrix : Float[Array, " 4 4"]
        Model-to-world transform.
    local : Float[Array, " N 3"]
        Points in model space.

    Returns
    -------
    screen : Float[Array, " N 2"]
        ``(x, y) / w`` of each projected point.
    """
    homogeneous: Float[Array, " N 4"] = jnp.concatenate(
        [local, jnp.ones((local.shape[0], 1), dtype=local.dtype)], axis=1
    )
    clip: Float[Array, " N 4"] = homogeneous @ (projection @ model_matrix).T
    return clip[:, :2] / clip[:, 3:4]
