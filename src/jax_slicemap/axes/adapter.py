"""Arbitrary-axis adapter over the column mappers.

``slice_map`` moves the slice axis to the front, flattens every other axis
into the batch dimension, runs the differentiable column map, and undoes
the permutation on the result. Because the permutation and reshapes are
ordinary JAX operations, reverse mode applies the inverse permutation to
the upstream gradient and the forward permutation to the input gradient
without any extra rule.

"""

from __future__ import annotations

import math
from collections.abc import Callable

import jax.numpy as jnp
from jax import Array

from jax_slicemap.autodiff import map_cols
from jax_slicemap.core.errors import AxisError, DimensionError


def normalize_axis(axis: int, ndim: int) -> int:
    """Map a possibly negative axis into ``0..ndim-1``.

    Raises:
        AxisError: If ``axis`` is out of range.

    Examples:
        >>> normalize_axis(-1, 3)
        2

    """
    if not -ndim <= axis < ndim:
        raise AxisError(f"axis {axis} is out of range for an array of rank {ndim}")
    return axis % ndim


def slice_map(fn: Callable[[Array], Array], x: Array, axis: int = 0) -> Array:
    """Apply ``fn`` to every 1-D slice of ``x`` running along ``axis``.

    Args:
        fn: Differentiable function from a length-``x.shape[axis]`` vector
            to a length-``e`` vector (or scalar).
        x: Input array of rank >= 1.
        axis: Axis the slices run along. For a matrix, ``axis=0`` maps
            columns and ``axis=1`` maps rows.

    Returns:
        Array shaped like ``x`` with ``x.shape[axis]`` replaced by ``e``.

    Raises:
        AxisError: If ``axis`` is out of range.
        DimensionError: If ``x`` is a scalar.
        ShapeError: If slice outputs disagree in length.

    Examples:
        >>> import jax.numpy as jnp
        >>> x = jnp.ones((2, 3, 4))
        >>> slice_map(lambda v: v[:2] * 2, x, axis=1).shape
        (2, 2, 4)
        >>> slice_map(jnp.sum, x, axis=-1).shape
        (2, 3, 1)

    """
    x = jnp.asarray(x)
    if x.ndim == 0:
        raise DimensionError("slice_map needs an array of rank >= 1")
    axis = normalize_axis(axis, x.ndim)

    moved = jnp.moveaxis(x, axis, 0)
    rest = moved.shape[1:]
    matrix = jnp.reshape(moved, (moved.shape[0], math.prod(rest)))
    out = map_cols(fn, matrix)
    out = jnp.reshape(out, (out.shape[0], *rest))
    return jnp.moveaxis(out, 0, axis)


def map_rows(fn: Callable[[Array], Array], x: Array) -> Array:
    """Differentiable map of ``fn`` over the rows of a matrix.

    Examples:
        >>> import jax.numpy as jnp
        >>> x = jnp.array([[1.0, 2.0], [3.0, 4.0], [5.0, 6.0]])
        >>> map_rows(jnp.sum, x).tolist()
        [[3.0], [7.0], [11.0]]

    """
    x = jnp.asarray(x)
    if x.ndim != 2:
        raise DimensionError(f"expected a 2-D matrix, got shape {tuple(x.shape)}")
    return slice_map(fn, x, axis=1)
