"""Reference face and camera models.

Extended Summary
----------------
Minimal implementations of the collaborators the tracker consumes: a
linear blend-shape face with Euler-angle pose, a symmetric perspective
camera, and generators for synthetic test scenes.

Submodules
----------
camera
    Projection matrix construction and point projection
face
    Blend-shape geometry, model matrix and rotation derivatives
synthetic
    Random face models and noiseless observations

Routine Listings
----------------
compute_face : function
    Current vertex positions from the blend coefficients
compute_model_matrix : function
    Homogeneous model-to-world transform
compute_rotation_derivatives : function
    Derivatives of the rotation matrix with respect to each angle
compute_rotation_matrix : function
    Rotation matrix from Euler angles
make_synthetic_face_model : function
    Random face model in front of the camera
observe_features : function
    Noiseless landmarks of a face state
perspective_projection : function
    Symmetric perspective projection matrix
project_points : function
    Project model-space points to the screen
"""

from .camera import perspective_projection, project_points
from .face import (
    compute_face,
    compute_model_matrix,
    compute_rotation_derivatives,
    compute_rotation_matrix,
)
from .synthetic import make_synthetic_face_model, observe_features

__all__: list[str] = [
    "compute_face",
    "compute_model_matrix",
    "compute_rotation_derivatives",
    "compute_rotation_matrix",
    "make_synthetic_face_model",
    "observe_features",
    "perspective_projection",
    "project_points",
]
