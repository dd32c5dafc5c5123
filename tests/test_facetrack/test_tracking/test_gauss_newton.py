"""Tests for the Gauss-Newton driver in facetrack.tracking."""

import chex
import jax
import jax.numpy as jnp
import pytest
from absl.testing import parameterized
from loguru import logger

from facetrack.jacobian import build_jacobian_residual
from facetrack.models import (
    compute_face,
    compute_model_matrix,
    compute_rotation_derivatives,
    make_synthetic_face_model,
    observe_features,
    perspective_projection,
)
from facetrack.solvers import solve_normal_equations
from facetrack.tracking import (
    apply_update,
    gauss_newton_history,
    gauss_newton_iteration,
    gauss_newton_solve,
    reprojection_loss,
)
from facetrack.types import (
    make_face_model,
    make_face_state,
    make_solver_params,
    make_sparse_features,
)


def _tilted_plane_model():
    """Four coplanar points on a plane tilted away from the camera."""
    xy = jnp.array([[1.0, 1.0], [1.0, -1.0], [-1.0, 1.0], [-1.0, -1.0]])
    z = -3.0 + 0.8 * xy[:, 0] + 0.5 * xy[:, 1]
    return make_face_model(
        jnp.concatenate([xy, z[:, None]], axis=1),
        jnp.zeros((12, 0)),
        jnp.zeros((12, 0)),
        jnp.zeros(0),
        jnp.zeros(0),
    )


def _blendshape_scene():
    face_model = make_synthetic_face_model(jax.random.PRNGKey(11), 20, 2, 2)
    truth = make_face_state(
        jnp.array([0.5, -0.5]),
        jnp.array([0.4, 0.6]),
        rotation=jnp.array([0.1, -0.1, 0.05]),
        translation=jnp.array([0.05, 0.05, 0.0]),
    )
    features = observe_features(
        face_model, truth, perspective_projection(1.5, 1.5), jnp.arange(20)
    )
    initial = make_face_state(
        jnp.zeros(2),
        jnp.array([0.5, 0.5]),
        rotation=truth.rotation - 0.03,
        translation=truth.translation + 0.03,
    )
    return face_model, features, initial, perspective_projection(1.45, 1.5)


class TestApplyUpdate(chex.TestCase):
    """Test the update rule."""

    def setUp(self) -> None:
        """One-vertex model with a single shape and two expressions."""
        super().setUp()
        self.face_model = make_face_model(
            jnp.zeros((1, 3)),
            jnp.ones((3, 1)),
            jnp.ones((3, 2)),
            jnp.array([2.0]),
            jnp.array([1.0, 1.0]),
        )
        self.face_state = make_face_state(
            jnp.array([0.0]),
            jnp.array([0.5, 0.5]),
            rotation=jnp.array([0.1, 0.2, 0.3]),
            translation=jnp.array([1.0, 2.0, 3.0]),
        )
        self.projection = perspective_projection(2.0, 2.0)
        self.delta = jnp.array(
            [0.5, 0.1, 0.1, 0.1, 1.0, 1.0, 1.0, 5.0, 0.8, -0.9]
        )

    @chex.variants(with_jit=True, without_jit=True)
    def test_subtracts_and_clamps(self) -> None:
        """Pose and focal subtract, shape rescales, expression clamps."""
        var_fn = self.variant(apply_update)
        new_state, new_projection = var_fn(
            self.face_model, self.face_state, self.projection, self.delta
        )
        chex.assert_trees_all_close(new_projection[0, 0], jnp.array(1.5))
        chex.assert_trees_all_close(new_projection[1, 1], jnp.array(2.0))
        chex.assert_trees_all_close(
            new_state.rotation, jnp.array([0.0, 0.1, 0.2]), atol=1e-12
        )
        chex.assert_trees_all_close(
            new_state.translation, jnp.array([0.0, 1.0, 2.0])
        )
        chex.assert_trees_all_close(
            new_state.shape_coefficients, jnp.array([-2.5])
        )
        chex.assert_trees_all_close(
            new_state.expression_coefficients, jnp.array([0.0, 1.0])
        )

    def test_inputs_untouched(self) -> None:
        """The caller's state and projection keep their values."""
        apply_update(
            self.face_model, self.face_state, self.projection, self.delta
        )
        chex.assert_trees_all_close(self.projection[0, 0], jnp.array(2.0))
        chex.assert_trees_all_close(
            self.face_state.expression_coefficients, jnp.array([0.5, 0.5])
        )

    def test_zero_update_is_identity(self) -> None:
        """A zero vector leaves everything in place."""
        new_state, new_projection = apply_update(
            self.face_model, self.face_state, self.projection, jnp.zeros(10)
        )
        chex.assert_trees_all_close(new_state, self.face_state)
        chex.assert_trees_all_close(new_projection, self.projection)


class TestEmptyFeatures(chex.TestCase):
    """Tracking without landmarks is a no-op."""

    def setUp(self) -> None:
        """Random model and an empty feature set."""
        super().setUp()
        self.face_model = make_synthetic_face_model(
            jax.random.PRNGKey(3), 5, 2, 2
        )
        self.face_state = make_face_state(
            jnp.array([0.3, -0.2]),
            jnp.array([0.1, 0.9]),
            rotation=jnp.array([0.1, 0.0, 0.0]),
        )
        self.projection = perspective_projection(1.5, 1.5)
        self.features = make_sparse_features(
            jnp.zeros((0, 2)), jnp.zeros((0,), dtype=jnp.int32)
        )

    def test_state_unchanged(self) -> None:
        """State and projection come back unchanged."""
        new_state, new_projection = gauss_newton_solve(
            self.features,
            self.face_model,
            self.face_state,
            self.projection,
            make_solver_params(),
        )
        chex.assert_trees_all_equal(new_state, self.face_state)
        chex.assert_trees_all_equal(new_projection, self.projection)

    def test_history_is_empty(self) -> None:
        """No iterations are recorded."""
        _, _, losses = gauss_newton_history(
            self.features,
            self.face_model,
            self.face_state,
            self.projection,
            make_solver_params(),
        )
        chex.assert_shape(losses, (0,))

    def test_logs_skip(self) -> None:
        """The skip is reported at debug level once enabled."""
        messages = []
        logger.enable("facetrack")
        handler_id = logger.add(messages.append, level="DEBUG")
        try:
            gauss_newton_solve(
                self.features,
                self.face_model,
                self.face_state,
                self.projection,
                make_solver_params(),
            )
        finally:
            logger.remove(handler_id)
            logger.disable("facetrack")
        assert any("No sparse features" in message for message in messages)


class TestTiltedPlane(chex.TestCase, parameterized.TestCase):
    """Rigid fit of four coplanar landmarks."""

    def setUp(self) -> None:
        """Ground truth and a perturbed starting point."""
        super().setUp()
        self.face_model = _tilted_plane_model()
        self.truth = make_face_state(
            jnp.zeros(0),
            jnp.zeros(0),
            rotation=jnp.array([0.05, -0.03, 0.02]),
            translation=jnp.array([0.1, -0.05, 0.1]),
        )
        self.features = observe_features(
            self.face_model,
            self.truth,
            perspective_projection(1.5, 1.5),
            jnp.arange(4),
        )
        self.initial = make_face_state(jnp.zeros(0), jnp.zeros(0))
        self.projection = perspective_projection(1.4, 1.5)
        self.params = make_solver_params(num_gn_iterations=40)

    @parameterized.named_parameters(
        ("tilted_pcg", "pcg", (0.05, -0.03, 0.02), (0.1, -0.05, 0.1), 1.5),
        ("tilted_cg", "cg", (0.05, -0.03, 0.02), (0.1, -0.05, 0.1), 1.5),
        ("tilted_lu", "lu", (0.05, -0.03, 0.02), (0.1, -0.05, 0.1), 1.5),
        ("identity_pcg", "pcg", (0.0, 0.0, 0.0), (0.0, 0.0, 0.0), 1.0),
        ("identity_cg", "cg", (0.0, 0.0, 0.0), (0.0, 0.0, 0.0), 1.0),
        ("identity_lu", "lu", (0.0, 0.0, 0.0), (0.0, 0.0, 0.0), 1.0),
    )
    def test_recovers_pose_and_focal(
        self, linear_solver, rotation, translation, focal
    ) -> None:
        """Pose and focal converge to the ground truth."""
        truth = make_face_state(
            jnp.zeros(0),
            jnp.zeros(0),
            rotation=jnp.array(rotation),
            translation=jnp.array(translation),
        )
        features = observe_features(
            self.face_model,
            truth,
            perspective_projection(focal, focal),
            jnp.arange(4),
        )
        initial = make_face_state(
            jnp.zeros(0),
            jnp.zeros(0),
            rotation=truth.rotation + jnp.array([0.03, -0.02, 0.01]),
            translation=truth.translation + jnp.array([0.05, -0.05, 0.05]),
        )
        state, projection = gauss_newton_solve(
            features,
            self.face_model,
            initial,
            perspective_projection(focal - 0.1, focal),
            self.params,
            linear_solver,
        )
        chex.assert_trees_all_close(state.rotation, truth.rotation, atol=1e-3)
        chex.assert_trees_all_close(
            state.translation, truth.translation, atol=1e-3
        )
        chex.assert_trees_all_close(
            projection[0, 0], jnp.array(focal), atol=1e-3
        )
        loss = reprojection_loss(features, self.face_model, state, projection)
        assert float(loss) < 1e-10

    def test_second_solve_is_stable(self) -> None:
        """Re-solving from a converged state barely moves it."""
        state, projection = gauss_newton_solve(
            self.features,
            self.face_model,
            self.initial,
            self.projection,
            self.params,
        )
        again_state, again_projection = gauss_newton_solve(
            self.features, self.face_model, state, projection, self.params
        )
        chex.assert_trees_all_close(again_state, state, atol=1e-5)
        chex.assert_trees_all_close(again_projection, projection, atol=1e-5)

    def test_unknown_solver_raises(self) -> None:
        """An unknown strategy is rejected before any iteration."""
        with pytest.raises(ValueError, match="Unknown linear solver"):
            gauss_newton_solve(
                self.features,
                self.face_model,
                self.initial,
                self.projection,
                self.params,
                "cholesky",
            )

    def test_vertex_id_out_of_range_raises(self) -> None:
        """Landmarks must reference existing vertices."""
        features = make_sparse_features(jnp.zeros((2, 2)), jnp.array([0, 4]))
        with pytest.raises(ValueError, match="vertex_ids"):
            gauss_newton_solve(
                features,
                self.face_model,
                self.initial,
                self.projection,
                self.params,
            )


class TestBlendshapeFit(chex.TestCase):
    """Fit with shape and expression coefficients."""

    def test_loss_non_increasing(self) -> None:
        """Every iteration lowers or keeps the reprojection loss."""
        face_model, features, initial, projection = _blendshape_scene()
        state, new_projection, losses = gauss_newton_history(
            features, face_model, initial, projection, make_solver_params()
        )
        chex.assert_shape(losses, (10,))
        chex.assert_trees_all_close(
            losses[0],
            reprojection_loss(features, face_model, initial, projection),
        )
        assert bool(jnp.all(losses[1:] <= losses[:-1] * (1.0 + 1e-9)))
        final = reprojection_loss(features, face_model, state, new_projection)
        assert float(final) < 1e-3 * float(losses[0])

    def test_expression_stays_in_range(self) -> None:
        """Expression coefficients never leave [0, 1]."""
        face_model, features, initial, projection = _blendshape_scene()
        state, _ = gauss_newton_solve(
            features, face_model, initial, projection, make_solver_params()
        )
        assert bool(jnp.all(state.expression_coefficients >= 0.0))
        assert bool(jnp.all(state.expression_coefficients <= 1.0))

    def test_single_iteration_matches_history(self) -> None:
        """The scanned loop runs the same step as a manual call."""
        face_model, features, initial, projection = _blendshape_scene()
        params = make_solver_params(num_gn_iterations=1)
        manual_state, manual_projection, manual_loss = (
            gauss_newton_iteration(
                features, face_model, initial, projection, params, "lu"
            )
        )
        state, new_projection, losses = gauss_newton_history(
            features, face_model, initial, projection, params, "lu"
        )
        chex.assert_trees_all_close(
            state, manual_state, rtol=1e-6, atol=1e-10
        )
        chex.assert_trees_all_close(
            new_projection, manual_projection, rtol=1e-6, atol=1e-10
        )
        chex.assert_trees_all_close(
            losses[0], manual_loss, rtol=1e-9, atol=1e-15
        )

    def test_regularisation_damps_coefficient_step(self) -> None:
        """A heavier prior shrinks the shape update."""
        face_model, features, _, projection = _blendshape_scene()
        start = make_face_state(
            jnp.array([1.5, -1.5]),
            jnp.array([0.4, 0.6]),
            rotation=jnp.array([0.1, -0.1, 0.05]),
            translation=jnp.array([0.05, 0.05, 0.0]),
        )
        steps = []
        for exponent in (-3.0, 3.0):
            params = make_solver_params(
                num_gn_iterations=1, regularisation_weight_exponent=exponent
            )
            state, _ = gauss_newton_solve(
                features,
                face_model,
                start,
                perspective_projection(1.5, 1.5),
                params,
            )
            steps.append(
                float(
                    jnp.linalg.norm(
                        state.shape_coefficients
                        - start.shape_coefficients
                    )
                )
            )
        assert steps[0] > 1e-3
        assert steps[1] < 1e-2 * steps[0]


class TestReprojectionLoss(chex.TestCase):
    """Test reprojection_loss."""

    @chex.variants(with_jit=True, without_jit=True)
    def test_known_offset(self) -> None:
        """Zero at the truth, sum of squared offsets when shifted."""
        face_model = _tilted_plane_model()
        state = make_face_state(jnp.zeros(0), jnp.zeros(0))
        projection = perspective_projection(1.5, 1.5)
        features = observe_features(
            face_model, state, projection, jnp.arange(4)
        )
        shifted = make_sparse_features(
            features.positions + jnp.array([0.1, 0.0]), features.vertex_ids
        )
        var_fn = self.variant(reprojection_loss)
        chex.assert_trees_all_close(
            var_fn(features, face_model, state, projection),
            jnp.array(0.0),
            atol=1e-20,
        )
        chex.assert_trees_all_close(
            var_fn(shifted, face_model, state, projection), jnp.array(0.04)
        )


class TestAlignedScene(chex.TestCase):
    """A face already aligned with its landmarks."""

    def setUp(self) -> None:
        """Rigid random face observed at its own pose."""
        super().setUp()
        self.face_model = make_synthetic_face_model(
            jax.random.PRNGKey(21), 20, 0, 0
        )
        self.face_state = make_face_state(
            jnp.zeros(0),
            jnp.zeros(0),
            rotation=jnp.array([0.05, 0.1, -0.05]),
            translation=jnp.array([0.1, 0.0, -0.2]),
        )
        self.projection = perspective_projection(1.5, 1.5)
        self.features = observe_features(
            self.face_model, self.face_state, self.projection, jnp.arange(20)
        )

    def test_iteration_does_not_increase_residual(self) -> None:
        """One iteration at the optimum keeps the loss at zero."""
        state, projection, losses = gauss_newton_history(
            self.features,
            self.face_model,
            self.face_state,
            self.projection,
            make_solver_params(num_gn_iterations=1),
        )
        final = reprojection_loss(
            self.features, self.face_model, state, projection
        )
        assert float(final) <= float(losses[0]) + 1e-20

    def test_pcg_matches_lu(self) -> None:
        """PCG and LU give the same delta on a perturbed system."""
        start = self.face_state._replace(
            rotation=self.face_state.rotation + 0.02,
            translation=self.face_state.translation - 0.02,
        )
        params = make_solver_params()
        jacobian, residuals = build_jacobian_residual(
            self.features,
            self.face_model,
            start,
            compute_face(self.face_model, start),
            compute_model_matrix(start),
            self.projection,
            compute_rotation_derivatives(start.rotation),
            params,
        )
        chex.assert_trees_all_close(
            solve_normal_equations(jacobian, residuals, params, "pcg"),
            solve_normal_equations(jacobian, residuals, params, "lu"),
            rtol=1e-5,
            atol=1e-9,
        )
