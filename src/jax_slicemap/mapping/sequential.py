"""Sequential column mapping.

``map_columns`` applies a function to each column of a ``(d, batch)``
matrix in order and stacks the results as the columns of a new
``(e, batch)`` matrix. It is plain JAX code: it runs eagerly, traces under
``jax.jit``, and is the forward pass the differentiable wrappers build on.

Scalar outputs count as length-1 vectors, so a reduction such as a
sum of squares maps a ``(d, batch)`` matrix to a ``(1, batch)`` one.

"""

from __future__ import annotations

import functools
from collections.abc import Callable

import jax
import jax.numpy as jnp
from jax import Array

from jax_slicemap.core.errors import ShapeError
from jax_slicemap.slicing import check_matrix, each_slice


def to_vector(y: Array, index: int | None = None) -> Array:
    """Coerce one slice output to a 1-D array.

    Raises:
        ShapeError: If ``y`` has more than one dimension.

    """
    y = jnp.asarray(y)
    if y.ndim == 0:
        return jnp.reshape(y, (1,))
    if y.ndim != 1:
        where = "" if index is None else f" for column {index}"
        raise ShapeError(f"mapped function must return a vector{where}, got shape {tuple(y.shape)}")
    return y


def vector_output(fn: Callable[[Array], Array]) -> Callable[[Array], Array]:
    """Wrap ``fn`` so that its output is always 1-D.

    Examples:
        >>> import jax.numpy as jnp
        >>> vector_output(jnp.sum)(jnp.ones(3)).shape
        (1,)

    """

    @functools.wraps(fn)
    def wrapped(x: Array) -> Array:
        return to_vector(fn(x))

    return wrapped


def empty_output(fn: Callable[[Array], Array], x: Array) -> Array:
    """Zero-column output for a matrix with no slices.

    The output length is found by abstract evaluation, so ``fn`` is traced
    but never run on data.
    """
    abstract = jax.ShapeDtypeStruct((x.shape[0],), x.dtype)
    out = jax.eval_shape(vector_output(fn), abstract)
    return jnp.zeros((out.shape[0], 0), dtype=out.dtype)


def map_columns(fn: Callable[[Array], Array], x: Array) -> Array:
    """Apply ``fn`` to each column of ``x`` and stack the results.

    Args:
        fn: Function from a length-``d`` vector to a length-``e`` vector
            (or a scalar).
        x: Input matrix of shape ``(d, batch)``. Not modified.

    Returns:
        Matrix of shape ``(e, batch)``; column ``i`` is ``fn(x[:, i])``.

    Raises:
        DimensionError: If ``x`` is not 2-D.
        ShapeError: If a column's output length differs from the first
            column's.

    Examples:
        >>> import jax.numpy as jnp
        >>> m = jnp.arange(1, 7).reshape(2, 3, order="F")
        >>> map_columns(lambda c: 2 + c**2, m).tolist()
        [[3, 11, 27], [6, 18, 38]]

    """
    x = jnp.asarray(x)
    check_matrix(x)
    slices = each_slice(x, axis=1)
    if len(slices) == 0:
        return empty_output(fn, x)

    columns = []
    for i, column in enumerate(slices):
        y = to_vector(fn(column), i)
        if columns and y.shape != columns[0].shape:
            raise ShapeError(
                f"column {i} produced length {y.shape[0]}, "
                f"but column 0 produced length {columns[0].shape[0]}"
            )
        columns.append(y)
    return jnp.stack(columns, axis=1)
