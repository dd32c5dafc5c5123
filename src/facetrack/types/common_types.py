"""Scalar type aliases shared across facetrack.

Extended Summary
----------------
Type aliases used in jaxtyping/beartype annotations throughout the
package. Each alias accepts either a plain Python number or a 0-d JAX
array, so the same annotation works for host-side configuration values
and traced values inside jitted code.

Routine Listings
----------------
NonJaxNumber : TypeAlias
    Plain Python int or float.
ScalarFloat : TypeAlias
    Python float or 0-d floating array.
ScalarNumeric : TypeAlias
    Any Python number or 0-d numeric array.
"""

from beartype.typing import TypeAlias, Union
from jaxtyping import Array, Float, Num

NonJaxNumber: TypeAlias = Union[int, float]
ScalarFloat: TypeAlias = Union[float, Float[Array, " "]]
ScalarNumeric: TypeAlias = Union[int, float, Num[Array, " "]]
