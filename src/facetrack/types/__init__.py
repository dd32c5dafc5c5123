"""Type definitions and factory functions for facetrack.

Extended Summary
----------------
Core type definitions for the facetrack package: PyTrees for the face
model, the per-frame face state and the observed sparse features, the
hashable solver configuration, the unknown-vector layout, and scalar
type aliases.

Routine Listings
----------------
:func:`make_face_model`
    Factory function for FaceModel creation.
:func:`make_face_state`
    Factory function for FaceState creation.
:func:`make_sparse_features`
    Factory function for SparseFeatures creation.
:func:`make_solver_params`
    Factory function for SolverParams creation.
:func:`make_unknown_layout`
    Factory function for UnknownLayout creation.
:class:`FaceModel`
    PyTree for the read-only blend-shape face model.
:class:`FaceState`
    PyTree for pose and blend coefficients.
:class:`SparseFeatures`
    PyTree for observed landmarks and their vertex ids.
:class:`SolverParams`
    Hashable Gauss-Newton configuration.
:class:`UnknownLayout`
    Column offsets of the unknown vector.

Notes
-----
Always use factory functions for creating instances to ensure proper
validation. All array PyTrees are registered with JAX.
"""

from .common_types import (
    NonJaxNumber,
    ScalarFloat,
    ScalarNumeric,
)
from .face_types import (
    FaceModel,
    FaceState,
    SparseFeatures,
    make_face_model,
    make_face_state,
    make_sparse_features,
)
from .solver_types import (
    SolverParams,
    UnknownLayout,
    make_solver_params,
    make_unknown_layout,
)

__all__: list[str] = [
    "FaceModel",
    "FaceState",
    "make_face_model",
    "make_face_state",
    "make_solver_params",
    "make_sparse_features",
    "make_unknown_layout",
    "NonJaxNumber",
    "ScalarFloat",
    "ScalarNumeric",
    "SolverParams",
    "SparseFeatures",
    "UnknownLayout",
]
