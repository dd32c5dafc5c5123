"""Analytic Jacobian of the landmark reprojection residual.

Extended Summary
----------------
Hand-derived chain-rule differentiation of the pipeline that maps blend
coefficients, pose and focal scale to projected landmark positions,
together with the regularization rows of the blend coefficients.

Submodules
----------
builder
    Assembly of the full Jacobian and residual
stages
    Small fixed-size Jacobians of each pipeline stage

Routine Listings
----------------
build_feature_block : function
    Sparse-feature rows for all landmarks
build_jacobian_residual : function
    Full Jacobian and residual of one iteration
build_regularizer_block : function
    Regularization rows
feature_rows : function
    Jacobian rows and residual of one landmark
homogenization_jacobian : function
    Jacobian of the division by w
intrinsics_jacobian : function
    Jacobian with respect to the focal entry
local_jacobian : function
    Jacobian of world with respect to local coordinates
pose_jacobian : function
    Jacobian of world coordinates with respect to the rigid pose
world_jacobian : function
    Jacobian of the projection with respect to world coordinates
"""

from .builder import (
    build_feature_block,
    build_jacobian_residual,
    build_regularizer_block,
    feature_rows,
)
from .stages import (
    homogenization_jacobian,
    intrinsics_jacobian,
    local_jacobian,
    pose_jacobian,
    world_jacobian,
)

__all__: list[str] = [
    "build_feature_block",
    "build_jacobian_residual",
    "build_regularizer_block",
    "feature_rows",
    "homogenization_jacobian",
    "intrinsics_jacobian",
    "local_jacobian",
    "pose_jacobian",
    "world_jacobian",
]
