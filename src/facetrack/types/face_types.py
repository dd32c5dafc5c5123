"""Face model, face state, and sparse feature PyTrees.

Extended Summary
----------------
PyTree data structures describing what the Gauss-Newton tracker fits:
the read-only linear blend-shape face model, the per-frame face state
(pose and blend coefficients), and the observed sparse 2D landmarks
together with the mesh vertices they are attached to.

The face model stores its bases as ``(3V, K)`` matrices, with vertex
``v`` owning rows ``3v``, ``3v + 1`` and ``3v + 2``. Blend coefficients
are expressed in units of their prior standard deviation, so the mesh
is::

    vertices = mean_shape + B_shape @ (sigma_shape * c_shape)
                          + B_expr @ (sigma_expr * c_expr)

Routine Listings
----------------
FaceModel : NamedTuple
    Read-only blend-shape face model.
FaceState : NamedTuple
    Pose and blend coefficients estimated per frame.
SparseFeatures : NamedTuple
    Observed 2D landmarks co-indexed with mesh vertex ids.
make_face_model : function
    Factory function to create validated FaceModel instances.
make_face_state : function
    Factory function to create validated FaceState instances.
make_sparse_features : function
    Factory function to create validated SparseFeatures instances.

Notes
-----
Factories run on the host and validate shapes and values eagerly,
raising ``ValueError`` on inconsistent input. Do not call them inside
jitted code; build the PyTrees once and pass them in.
"""

import jax.numpy as jnp
from beartype import beartype
from beartype.typing import NamedTuple, Optional, Tuple
from jax.tree_util import register_pytree_node_class
from jaxtyping import Array, Float, Int, Num, jaxtyped

VERTEX_DIMS: int = 3
SCREEN_DIMS: int = 2
ROTATION_DIMS: int = 3
TRANSLATION_DIMS: int = 3


@register_pytree_node_class
class FaceModel(NamedTuple):
    """Read-only linear blend-shape face model.

    Attributes
    ----------
    mean_shape : Float[Array, " V 3"]
        Neutral vertex positions in model space.
    shape_basis : Float[Array, " R S"]
        Identity basis, ``R = 3V`` rows by ``S`` coefficients.
    expression_basis : Float[Array, " R E"]
        Expression basis, ``R = 3V`` rows by ``E`` coefficients.
    shape_std_dev : Float[Array, " S"]
        Prior standard deviation of each shape coefficient.
    expression_std_dev : Float[Array, " E"]
        Prior standard deviation of each expression coefficient.
    """

    mean_shape: Float[Array, " V 3"]
    shape_basis: Float[Array, " R S"]
    expression_basis: Float[Array, " R E"]
    shape_std_dev: Float[Array, " S"]
    expression_std_dev: Float[Array, " E"]

    @property
    def num_vertices(self) -> int:
        """Number of mesh vertices."""
        return self.mean_shape.shape[0]

    @property
    def num_shape(self) -> int:
        """Number of shape coefficients."""
        return self.shape_basis.shape[1]

    @property
    def num_expression(self) -> int:
        """Number of expression coefficients."""
        return self.expression_basis.shape[1]

    def tree_flatten(
        self,
    ) -> Tuple[
        Tuple[
            Float[Array, " V 3"],
            Float[Array, " R S"],
            Float[Array, " R E"],
            Float[Array, " S"],
            Float[Array, " E"],
        ],
        None,
    ]:
        """Flatten the FaceModel into a tuple of its components."""
        return (
            (
                self.mean_shape,
                self.shape_basis,
                self.expression_basis,
                self.shape_std_dev,
                self.expression_std_dev,
            ),
            None,
        )

    @classmethod
    def tree_unflatten(
        cls,
        _aux_data: None,
        children: Tuple[
            Float[Array, " V 3"],
            Float[Array, " R S"],
            Float[Array, " R E"],
            Float[Array, " S"],
            Float[Array, " E"],
        ],
    ) -> "FaceModel":
        """Unflatten the FaceModel from a tuple of its components."""
        return cls(*children)


@register_pytree_node_class
class FaceState(NamedTuple):
    """Pose and blend coefficients estimated per frame.

    Attributes
    ----------
    rotation : Float[Array, " 3"]
        Euler angles ``(rx, ry, rz)`` in radians.
    translation : Float[Array, " 3"]
        Model-to-world translation.
    shape_coefficients : Float[Array, " S"]
        Identity coefficients in standard-deviation units. Unbounded.
    expression_coefficients : Float[Array, " E"]
        Expression blend-weights in standard-deviation units, kept in
        ``[0, 1]`` by the tracker.
    """

    rotation: Float[Array, " 3"]
    translation: Float[Array, " 3"]
    shape_coefficients: Float[Array, " S"]
    expression_coefficients: Float[Array, " E"]

    def tree_flatten(
        self,
    ) -> Tuple[
        Tuple[
            Float[Array, " 3"],
            Float[Array, " 3"],
            Float[Array, " S"],
            Float[Array, " E"],
        ],
        None,
    ]:
        """Flatten the FaceState into a tuple of its components."""
        return (
            (
                self.rotation,
                self.translation,
                self.shape_coefficients,
                self.expression_coefficients,
            ),
            None,
        )

    @classmethod
    def tree_unflatten(
        cls,
        _aux_data: None,
        children: Tuple[
            Float[Array, " 3"],
            Float[Array, " 3"],
            Float[Array, " S"],
            Float[Array, " E"],
        ],
    ) -> "FaceState":
        """Unflatten the FaceState from a tuple of its components."""
        return cls(*children)


@register_pytree_node_class
class SparseFeatures(NamedTuple):
    """Observed 2D landmarks attached to mesh vertices.

    Attributes
    ----------
    positions : Float[Array, " N 2"]
        Observed landmark positions in normalized screen coordinates.
    vertex_ids : Int[Array, " N"]
        Mesh vertex index of each landmark, from the prior mapping.
    """

    positions: Float[Array, " N 2"]
    vertex_ids: Int[Array, " N"]

    @property
    def num_features(self) -> int:
        """Number of tracked landmarks."""
        return self.positions.shape[0]

    def tree_flatten(
        self,
    ) -> Tuple[Tuple[Float[Array, " N 2"], Int[Array, " N"]], None]:
        """Flatten the SparseFeatures into a tuple of its components."""
        return ((self.positions, self.vertex_ids), None)

    @classmethod
    def tree_unflatten(
        cls,
        _aux_data: None,
        children: Tuple[Float[Array, " N 2"], Int[Array, " N"]],
    ) -> "SparseFeatures":
        """Unflatten the SparseFeatures from a tuple of its components."""
        return cls(*children)


@jaxtyped(typechecker=beartype)
def make_face_model(
    mean_shape: Num[Array, " V 3"],
    shape_basis: Num[Array, " R S"],
    expression_basis: Num[Array, " R E"],
    shape_std_dev: Num[Array, " S"],
    expression_std_dev: Num[Array, " E"],
) -> FaceModel:
    """Create a validated FaceModel instance.

    Parameters
    ----------
    mean_shape : Num[Array, " V 3"]
        Neutral vertex positions.
    shape_basis : Num[Array, " R S"]
        Identity basis with ``R = 3V`` rows.
    expression_basis : Num[Array, " R E"]
        Expression basis with ``R = 3V`` rows.
    shape_std_dev : Num[Array, " S"]
        Strictly positive prior standard deviations for shape.
    expression_std_dev : Num[Array, " E"]
        Strictly positive prior standard deviations for expression.

    Returns
    -------
    face_model : FaceModel
        Validated face model with float64 arrays.

    Raises
    ------
    ValueError
        If the basis row count is not three times the vertex count, or
        if any standard deviation is not strictly positive.
    """
    num_vertices: int = mean_shape.shape[0]
    if shape_basis.shape[0] != VERTEX_DIMS * num_vertices:
        raise ValueError(
            f"shape_basis must have {VERTEX_DIMS * num_vertices} rows, "
            f"got {shape_basis.shape[0]}"
        )
    if expression_basis.shape[0] != VERTEX_DIMS * num_vertices:
        raise ValueError(
            f"expression_basis must have {VERTEX_DIMS * num_vertices} rows, "
            f"got {expression_basis.shape[0]}"
        )
    if bool(jnp.any(shape_std_dev <= 0)):
        raise ValueError("shape_std_dev must be strictly positive")
    if bool(jnp.any(expression_std_dev <= 0)):
        raise ValueError("expression_std_dev must be strictly positive")
    return FaceModel(
        mean_shape=jnp.asarray(mean_shape, dtype=jnp.float64),
        shape_basis=jnp.asarray(shape_basis, dtype=jnp.float64),
        expression_basis=jnp.asarray(expression_basis, dtype=jnp.float64),
        shape_std_dev=jnp.asarray(shape_std_dev, dtype=jnp.float64),
        expression_std_dev=jnp.asarray(
            expression_std_dev, dtype=jnp.float64
        ),
    )


@jaxtyped(typechecker=beartype)
def make_face_state(
    shape_coefficients: Num[Array, " S"],
    expression_coefficients: Num[Array, " E"],
    rotation: Optional[Num[Array, " 3"]] = None,
    translation: Optional[Num[Array, " 3"]] = None,
) -> FaceState:
    """Create a validated FaceState instance.

    Parameters
    ----------
    shape_coefficients : Num[Array, " S"]
        Initial identity coefficients.
    expression_coefficients : Num[Array, " E"]
        Initial expression coefficients, each within ``[0, 1]``.
    rotation : Num[Array, " 3"], optional
        Initial Euler angles. Default is zero rotation.
    translation : Num[Array, " 3"], optional
        Initial translation. Default is zero translation.

    Returns
    -------
    face_state : FaceState
        Validated state with float64 arrays.

    Raises
    ------
    ValueError
        If any expression coefficient lies outside ``[0, 1]``.
    """
    if bool(
        jnp.any(
            (expression_coefficients < 0) | (expression_coefficients > 1)
        )
    ):
        raise ValueError("expression_coefficients must lie within [0, 1]")
    if rotation is None:
        rotation = jnp.zeros(ROTATION_DIMS)
    if translation is None:
        translation = jnp.zeros(TRANSLATION_DIMS)
    return FaceState(
        rotation=jnp.asarray(rotation, dtype=jnp.float64),
        translation=jnp.asarray(translation, dtype=jnp.float64),
        shape_coefficients=jnp.asarray(shape_coefficients, dtype=jnp.float64),
        expression_coefficients=jnp.asarray(
            expression_coefficients, dtype=jnp.float64
        ),
    )


@jaxtyped(typechecker=beartype)
def make_sparse_features(
    positions: Num[Array, " N D"],
    vertex_ids: Int[Array, " K"],
) -> SparseFeatures:
    """Create a validated SparseFeatures instance.

    The landmark order and vertex-id order must be co-indexed, one id
    per landmark. An empty set (``N = 0``) is valid and makes the
    tracker a no-op.

    Parameters
    ----------
    positions : Num[Array, " N D"]
        Observed landmark positions, ``D = 2``.
    vertex_ids : Int[Array, " K"]
        Mesh vertex index per landmark, ``K = N``.

    Returns
    -------
    features : SparseFeatures
        Validated feature set.

    Raises
    ------
    ValueError
        If positions are not 2D, the two arrays differ in length, or any
        vertex id is negative.
    """
    if positions.shape[1] != SCREEN_DIMS:
        raise ValueError(
            f"positions must have {SCREEN_DIMS} columns, "
            f"got {positions.shape[1]}"
        )
    if positions.shape[0] != vertex_ids.shape[0]:
        raise ValueError(
            f"got {positions.shape[0]} positions but "
            f"{vertex_ids.shape[0]} vertex_ids"
        )
    if bool(jnp.any(vertex_ids < 0)):
        raise ValueError("vertex_ids must be non-negative")
    return SparseFeatures(
        positions=jnp.asarray(positions, dtype=jnp.float64),
        vertex_ids=jnp.asarray(vertex_ids, dtype=jnp.int32),
    )
