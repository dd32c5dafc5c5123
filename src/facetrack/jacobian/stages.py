"""Per-stage Jacobians of the landmark projection pipeline.

Extended Summary
----------------
The projected position of a landmark is the composition

    local --(R, t)--> world --(P)--> clip --(/w)--> screen

and its derivative with respect to every unknown is assembled from the
small fixed-size Jacobians of each stage. Every stage is an independent
pure function so that it can be checked in isolation against automatic
differentiation.

Routine Listings
----------------
homogenization_jacobian : function
    d(screen)/d(x_clip, y_clip, w_clip), 2x3.
world_jacobian : function
    d(x_clip, y_clip, w_clip)/d(world), 3x3.
intrinsics_jacobian : function
    d(x_clip, y_clip, w_clip)/d(P[0, 0]), 3x1.
pose_jacobian : function
    d(world)/d(rx, ry, rz, tx, ty, tz), 3x6.
local_jacobian : function
    d(world)/d(local), 3x3.

Notes
-----
The clip coordinates used here are ``(x_clip, y_clip, w_clip)``; the
clip-space depth does not influence the screen position and is dropped.
The world Jacobian relies on the symmetric frustum produced by
:func:`facetrack.models.perspective_projection`.
"""

import jax.numpy as jnp
from beartype import beartype
from jaxtyping import Array, Float, jaxtyped


@jaxtyped(typechecker=beartype)
def homogenization_jacobian(
    clip: Float[Array, " 4"],
) -> Float[Array, " 2 3"]:
    """Jacobian of the division by ``w``.

    Parameters
    ----------
    clip : Float[Array, " 4"]
        Homogeneous clip coordinates ``(x, y, z, w)``.

    Returns
    -------
    jacobian : Float[Array, " 2 3"]
        ``[[1/w, 0, -x/w^2], [0, 1/w, -y/w^2]]``.
    """
    one_over_w = 1.0 / clip[3]
    return jnp.array(
        [
            [one_over_w, 0.0, -clip[0] * one_over_w * one_over_w],
            [0.0, one_over_w, -clip[1] * one_over_w * one_over_w],
        ]
    )


@jaxtyped(typechecker=beartype)
def world_jacobian(projection: Float[Array, " 4 4"]) -> Float[Array, " 3 3"]:
    """Jacobian of the projection with respect to world coordinates.

    Parameters
    ----------
    projection : Float[Array, " 4 4"]
        Symmetric perspective projection.

    Returns
    -------
    jacobian : Float[Array, " 3 3"]
        ``diag(P[0, 0], P[1, 1], -1)``.
    """
    return jnp.diag(jnp.array([projection[0, 0], projection[1, 1], -1.0]))


@jaxtyped(typechecker=beartype)
def intrinsics_jacobian(world: Float[Array, " 4"]) -> Float[Array, " 3 1"]:
    """Jacobian of the clip coordinates with respect to ``P[0, 0]``.

    Parameters
    ----------
    world : Float[Array, " 4"]
        Homogeneous world coordinates.

    Returns
    -------
    jacobian : Float[Array, " 3 1"]
        ``[world.x, 0, 0]^T``.
    """
    return jnp.array([[world[0]], [0.0], [0.0]])


@jaxtyped(typechecker=beartype)
def pose_jacobian(
    local: Float[Array, " 3"],
    rotation_derivatives: Float[Array, " 3 3 3"],
) -> Float[Array, " 3 6"]:
    """Jacobian of world coordinates with respect to the rigid pose.

    Parameters
    ----------
    local : Float[Array, " 3"]
        Vertex position in model space.
    rotation_derivatives : Float[Array, " 3 3 3"]
        Stack ``[dR/drx, dR/dry, dR/drz]``.

    Returns
    -------
    jacobian : Float[Array, " 3 6"]
        ``[dR/drx @ local, dR/dry @ local, dR/drz @ local | I]``.
    """
    rotation_columns: Float[Array, " 3 3"] = (rotation_derivatives @ local).T
    return jnp.concatenate([rotation_columns, jnp.eye(3)], axis=1)


@jaxtyped(typechecker=beartype)
def local_jacobian(model_matrix: Float[Array, " 4 4"]) -> Float[Array, " 3 3"]:
    """Jacobian of world coordinates with respect to local coordinates.

    Parameters
    ----------
    model_matrix : Float[Array, " 4 4"]
        Model-to-world transform.

    Returns
    -------
    jacobian : Float[Array, " 3 3"]
        The rotation block of the model matrix.
    """
    return model_matrix[:3, :3]
