"""Solver configuration and unknown-vector layout.

Extended Summary
----------------
Immutable configuration for the Gauss-Newton tracker and the named
offset table that maps semantic quantities to columns of the Jacobian.

The unknown vector is laid out as::

    [focal | rx ry rz | tx ty tz | shape_0 .. shape_S-1 | expr_0 .. expr_E-1]

Both the Jacobian builder and the update step read offsets from
:class:`UnknownLayout` so that columns and updates always agree.

Routine Listings
----------------
SolverParams : NamedTuple
    Hashable solver configuration, passed as a static jit argument.
UnknownLayout : NamedTuple
    Column offsets of each unknown block.
make_solver_params : function
    Factory function to create validated SolverParams instances.
make_unknown_layout : function
    Factory function to create UnknownLayout instances.

Notes
-----
Unlike the array PyTrees, these hold plain Python numbers. They are
hashable, which lets jitted functions take them as static arguments,
and they fix loop bounds at trace time.
"""

from beartype import beartype
from beartype.typing import NamedTuple

from .common_types import NonJaxNumber

FOCAL_INDEX: int = 0
POSE_OFFSET: int = 1
POSE_SIZE: int = 6
NUM_FIXED_UNKNOWNS: int = 7


class SolverParams(NamedTuple):
    """Hashable configuration of one Gauss-Newton solve.

    Attributes
    ----------
    num_gn_iterations : int
        Number of outer Gauss-Newton iterations. Always run in full.
    num_pcg_iterations : int
        Iteration budget of the inner CG/PCG solve, further capped by
        the number of unknowns.
    regularisation_weight_exponent : float
        Regularization strength is ``10 ** regularisation_weight_exponent``.
    near_zero : float
        Floor applied to denominators in CG/PCG and to the Jacobi
        preconditioner diagonal.
    tolerance : float
        CG/PCG stops once the (preconditioned) residual inner product
        falls below this value.
    alpha_lhs : float
        Multiplier of ``J^T J`` in the normal equations.
    alpha_rhs : float
        Multiplier of ``J^T r`` in the normal equations.
    """

    num_gn_iterations: int
    num_pcg_iterations: int
    regularisation_weight_exponent: float
    near_zero: float
    tolerance: float
    alpha_lhs: float
    alpha_rhs: float

    @property
    def regularisation_weight(self) -> float:
        """Regularization strength ``lambda = 10 ** exponent``."""
        return 10.0 ** self.regularisation_weight_exponent


class UnknownLayout(NamedTuple):
    """Column offsets of the unknown vector.

    Attributes
    ----------
    num_shape : int
        Number of shape coefficients.
    num_expression : int
        Number of expression coefficients.
    """

    num_shape: int
    num_expression: int

    @property
    def focal(self) -> int:
        """Column of the horizontal focal term."""
        return FOCAL_INDEX

    @property
    def rotation(self) -> slice:
        """Columns of the three rotation angles."""
        return slice(POSE_OFFSET, POSE_OFFSET + 3)

    @property
    def translation(self) -> slice:
        """Columns of the three translation components."""
        return slice(POSE_OFFSET + 3, POSE_OFFSET + POSE_SIZE)

    @property
    def pose(self) -> slice:
        """Rotation and translation columns together."""
        return slice(POSE_OFFSET, POSE_OFFSET + POSE_SIZE)

    @property
    def shape_offset(self) -> int:
        """First shape coefficient column."""
        return NUM_FIXED_UNKNOWNS

    @property
    def expression_offset(self) -> int:
        """First expression coefficient column."""
        return NUM_FIXED_UNKNOWNS + self.num_shape

    @property
    def shape(self) -> slice:
        """Columns of the shape coefficients."""
        return slice(self.shape_offset, self.expression_offset)

    @property
    def expression(self) -> slice:
        """Columns of the expression coefficients."""
        return slice(self.expression_offset, self.num_unknowns)

    @property
    def coefficients(self) -> slice:
        """Shape and expression columns together."""
        return slice(self.shape_offset, self.num_unknowns)

    @property
    def num_coefficients(self) -> int:
        """Number of regularized blend coefficients."""
        return self.num_shape + self.num_expression

    @property
    def num_unknowns(self) -> int:
        """Total length of the unknown vector."""
        return NUM_FIXED_UNKNOWNS + self.num_coefficients

    def num_residuals(self, num_features: int) -> int:
        """Total residual length for ``num_features`` landmarks."""
        return 2 * num_features + self.num_coefficients


@beartype
def make_solver_params(
    num_gn_iterations: int = 10,
    num_pcg_iterations: int = 20,
    regularisation_weight_exponent: NonJaxNumber = -3.0,
    near_zero: NonJaxNumber = 1e-24,
    tolerance: NonJaxNumber = 1e-18,
    alpha_lhs: NonJaxNumber = 2.0,
    alpha_rhs: NonJaxNumber = -1.0,
) -> SolverParams:
    """Create a validated SolverParams instance.

    Parameters
    ----------
    num_gn_iterations : int, optional
        Outer iteration count. Default is 10.
    num_pcg_iterations : int, optional
        Inner CG/PCG iteration budget. Default is 20.
    regularisation_weight_exponent : float, optional
        Base-10 exponent of the regularization weight. Default is -3.
    near_zero : float, optional
        Denominator floor. Default is 1e-24.
    tolerance : float, optional
        Inner early-exit threshold. Default is 1e-18.
    alpha_lhs : float, optional
        ``J^T J`` multiplier. Default is 2.
    alpha_rhs : float, optional
        ``J^T r`` multiplier. Default is -1.

    Returns
    -------
    params : SolverParams
        Validated, hashable configuration.

    Raises
    ------
    ValueError
        If an iteration count is negative, ``near_zero`` is not strictly
        positive, ``tolerance`` is negative, or ``alpha_lhs`` is zero.

    Notes
    -----
    With the default multipliers the solved system is
    ``2 J^T J x = -J^T r``, i.e. half of a full Gauss-Newton step
    expressed with the sign convention of the update rule.
    """
    if num_gn_iterations < 0:
        raise ValueError(
            f"num_gn_iterations must be >= 0, got {num_gn_iterations}"
        )
    if num_pcg_iterations < 0:
        raise ValueError(
            f"num_pcg_iterations must be >= 0, got {num_pcg_iterations}"
        )
    if near_zero <= 0:
        raise ValueError(f"near_zero must be > 0, got {near_zero}")
    if tolerance < 0:
        raise ValueError(f"tolerance must be >= 0, got {tolerance}")
    if alpha_lhs == 0:
        raise ValueError("alpha_lhs must be non-zero")
    return SolverParams(
        num_gn_iterations=int(num_gn_iterations),
        num_pcg_iterations=int(num_pcg_iterations),
        regularisation_weight_exponent=float(regularisation_weight_exponent),
        near_zero=float(near_zero),
        tolerance=float(tolerance),
        alpha_lhs=float(alpha_lhs),
        alpha_rhs=float(alpha_rhs),
    )


@beartype
def make_unknown_layout(num_shape: int, num_expression: int) -> UnknownLayout:
    """Create the unknown-vector layout for a face model.

    Parameters
    ----------
    num_shape : int
        Number of shape coefficients.
    num_expression : int
        Number of expression coefficients.

    Returns
    -------
    layout : UnknownLayout
        Column offsets shared by the Jacobian builder and the update.

    Raises
    ------
    ValueError
        If either count is negative.
    """
    if num_shape < 0 or num_expression < 0:
        raise ValueError("coefficient counts must be non-negative")
    return UnknownLayout(num_shape=num_shape, num_expression=num_expression)
