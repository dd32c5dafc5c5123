"""Reference blend-shape face geometry and rigid pose.

Extended Summary
----------------
A minimal implementation of the face-model interface consumed by the
tracker: vertex generation from blend-shape bases, the model-to-world
matrix, and the analytic derivatives of the rotation matrix with respect
to each Euler angle.

The rotation is composed as ``R = Rz(rz) @ Ry(ry) @ Rx(rx)`` and the
model matrix is the homogeneous ``[[R, t], [0, 1]]``.

Routine Listings
----------------
compute_face : function
    Current vertex positions from the blend coefficients.
compute_rotation_matrix : function
    Rotation matrix from Euler angles.
compute_rotation_derivatives : function
    ``dR/drx``, ``dR/dry`` and ``dR/drz`` at the current angles.
compute_model_matrix : function
    Homogeneous model-to-world transform of a face state.

Notes
-----
All functions are pure and jit/vmap compatible.
"""

import jax.numpy as jnp
from beartype import beartype
from jaxtyping import Array, Float, jaxtyped

from facetrack.types import FaceModel, FaceState


def _axis_rotations(
    rotation: Float[Array, " 3"],
) -> tuple[
    Float[Array, " 3 3"],
    Float[Array, " 3 3"],
    Float[Array, " 3 3"],
    Float[Array, " 3 3"],
    Float[Array, " 3 3"],
    Float[Array, " 3 3"],
]:
    """Elementary rotations and their derivatives about x, y, z."""
    cx, cy, cz = jnp.cos(rotation)
    sx, sy, sz = jnp.sin(rotation)
    zero = jnp.zeros_like(cx)
    one = jnp.ones_like(cx)
    rot_x = jnp.array([[one, zero, zero], [zero, cx, -sx], [zero, sx, cx]])
    rot_y = jnp.array([[cy, zero, sy], [zero, one, zero], [-sy, zero, cy]])
    rot_z = jnp.array([[cz, -sz, zero], [sz, cz, zero], [zero, zero, one]])
    d_rot_x = jnp.array(
        [[zero, zero, zero], [zero, -sx, -cx], [zero, cx, -sx]]
    )
    d_rot_y = jnp.array(
        [[-sy, zero, cy], [zero, zero, zero], [-cy, zero, -sy]]
    )
    d_rot_z = jnp.array(
        [[-sz, -cz, zero], [cz, -sz, zero], [zero, zero, zero]]
    )
    return rot_x, rot_y, rot_z, d_rot_x, d_rot_y, d_rot_z


@jaxtyped(typechecker=beartype)
def compute_rotation_matrix(
    rotation: Float[Array, " 3"],
) -> Float[Array, " 3 3"]:
    """Rotation matrix ``Rz @ Ry @ Rx`` from Euler angles.

    Parameters
    ----------
    rotation : Float[Array, " 3"]
        Euler angles ``(rx, ry, rz)`` in radians.

    Returns
    -------
    rotation_matrix : Float[Array, " 3 3"]
        Orthonormal rotation matrix.
    """
    rot_x, rot_y, rot_z, _, _, _ = _axis_rotations(rotation)
    return rot_z @ rot_y @ rot_x


@jaxtyped(typechecker=beartype)
def compute_rotation_derivatives(
    rotation: Float[Array, " 3"],
) -> Float[Array, " 3 3 3"]:
    """Derivatives of the rotation matrix with respect to each angle.

    Parameters
    ----------
    rotation : Float[Array, " 3"]
        Euler angles ``(rx, ry, rz)`` in radians.

    Returns
    -------
    derivatives : Float[Array, " 3 3 3"]
        Stack ``[dR/drx, dR/dry, dR/drz]``.
    """
    rot_x, rot_y, rot_z, d_rot_x, d_rot_y, d_rot_z = _axis_rotations(
        rotation
    )
    return jnp.stack(
        [
            rot_z @ rot_y @ d_rot_x,
            rot_z @ d_rot_y @ rot_x,
            d_rot_z @ rot_y @ rot_x,
        ]
    )


@jaxtyped(typechecker=beartype)
def compute_model_matrix(face_state: FaceState) -> Float[Array, " 4 4"]:
    """Homogeneous model-to-world transform of the current pose.

    Parameters
    ----------
    face_state : FaceState
        Current pose and coefficients.

    Returns
    -------
    model_matrix : Float[Array, " 4 4"]
        ``[[R, t], [0, 0, 0, 1]]``.
    """
    rotation_matrix: Float[Array, " 3 3"] = compute_rotation_matrix(
        face_state.rotation
    )
    model_matrix: Float[Array, " 4 4"] = jnp.eye(4)
    model_matrix = model_matrix.at[:3, :3].set(rotation_matrix)
    model_matrix = model_matrix.at[:3, 3].set(face_state.translation)
    return model_matrix


@jaxtyped(typechecker=beartype)
def compute_face(
    face_model: FaceModel,
    face_state: FaceState,
) -> Float[Array, " V 3"]:
    """Current vertex positions in model space.

    Parameters
    ----------
    face_model : FaceModel
        Mean shape, bases and prior standard deviations.
    face_state : FaceState
        Current blend coefficients in standard-deviation units.

    Returns
    -------
    vertices : Float[Array, " V 3"]
        ``mean + B_s @ (sigma_s * c_s) + B_e @ (sigma_e * c_e)``,
        reshaped to one row per vertex.
    """
    offsets: Float[Array, " R"] = face_model.shape_basis @ (
        face_model.shape_std_dev * face_state.shape_coefficients
    ) + face_model.expression_basis @ (
        face_model.expression_std_dev * face_state.expression_coefficients
    )
    return face_model.mean_shape + offsets.reshape(-1, 3)
