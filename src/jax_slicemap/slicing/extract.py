"""Slice extraction recipes.

Two flavours of splitting a matrix into per-batch slices:

- dynamic: ``each_slice`` yields ordinary indexed views, one per batch
  index, lazily and restartably;
- static: ``static_slices`` reinterprets a ``(d, batch)`` matrix as a
  ``(batch, d)`` array of fixed-length rows, the layout ``jax.vmap`` and
  batched Jacobians consume directly.

``partition_columns`` builds the read-only plan the parallel mapper hands
out to its workers.

References:
    - JAX indexing: https://jax.readthedocs.io/en/latest/jax.numpy.html
    - JAX vmap: https://jax.readthedocs.io/en/latest/automatic-vectorization.html

"""

from __future__ import annotations

from collections.abc import Iterator, Sequence

import jax.numpy as jnp
from jax import Array

from jax_slicemap.core.errors import AxisError, DimensionError


class SliceSequence(Sequence):
    """Restartable, lazily indexed sequence of slices along one axis.

    Nothing is copied up front: each access indexes the underlying array.
    Iterating twice yields the same slices in the same order.

    Examples:
        >>> import jax.numpy as jnp
        >>> cols = SliceSequence(jnp.arange(6).reshape(2, 3), axis=1)
        >>> len(cols)
        3
        >>> cols[1].tolist()
        [1, 4]

    """

    def __init__(self, array: Array, axis: int = 1) -> None:
        if not -array.ndim <= axis < array.ndim:
            raise AxisError(f"axis {axis} is out of range for an array of rank {array.ndim}")
        self.array = array
        self.axis = axis % array.ndim

    def __len__(self) -> int:
        return self.array.shape[self.axis]

    def __getitem__(self, index):
        if isinstance(index, slice):
            return [self[i] for i in range(*index.indices(len(self)))]
        if not -len(self) <= index < len(self):
            raise IndexError(f"slice index {index} out of range for batch of {len(self)}")
        return jnp.take(self.array, index % len(self), axis=self.axis)

    def __iter__(self) -> Iterator[Array]:
        for i in range(len(self)):
            yield self[i]

    def __repr__(self) -> str:
        return f"SliceSequence(shape={tuple(self.array.shape)}, axis={self.axis})"


def each_slice(x: Array, axis: int = 1) -> SliceSequence:
    """Split an array into slices along ``axis``.

    Args:
        x: Input array. For a ``(d, batch)`` matrix the default ``axis=1``
            yields its ``batch`` columns.
        axis: Axis to iterate over. Negative values count from the end.

    Returns:
        Lazy, restartable sequence of slices.

    Raises:
        AxisError: If ``axis`` is out of range.

    Examples:
        >>> import jax.numpy as jnp
        >>> m = jnp.array([[1, 2], [3, 4]])
        >>> [c.tolist() for c in each_slice(m)]
        [[1, 3], [2, 4]]
        >>> [r.tolist() for r in each_slice(m, axis=0)]
        [[1, 2], [3, 4]]

    """
    return SliceSequence(jnp.asarray(x), axis=axis)


def check_matrix(x: Array, slice_length: int | None = None) -> None:
    """Validate a ``(d, batch)`` matrix, optionally against a fixed ``d``.

    Raises:
        DimensionError: If ``x`` is not 2-D, or its leading dimension is
            not ``slice_length``.

    """
    if x.ndim != 2:
        raise DimensionError(f"expected a 2-D (slice, batch) matrix, got shape {tuple(x.shape)}")
    if slice_length is not None and x.shape[0] != slice_length:
        raise DimensionError(
            f"slice length {slice_length} does not match leading dimension {x.shape[0]}"
        )


def static_slices(x: Array, slice_length: int) -> Array:
    """Reinterpret a ``(d, batch)`` matrix as ``batch`` rows of length ``d``.

    Args:
        x: Input matrix.
        slice_length: Expected slice length ``d``; must equal
            ``x.shape[0]`` exactly.

    Returns:
        Array of shape ``(batch, slice_length)`` whose row ``i`` is column
        ``i`` of ``x``.

    Raises:
        DimensionError: If the shapes do not match.

    Examples:
        >>> import jax.numpy as jnp
        >>> m = jnp.arange(6).reshape(3, 2)
        >>> static_slices(m, 3).tolist()
        [[0, 2, 4], [1, 3, 5]]

    """
    x = jnp.asarray(x)
    check_matrix(x, slice_length)
    return x.T


def partition_columns(start: int, stop: int, workers: int) -> tuple[range, ...]:
    """Split ``range(start, stop)`` into contiguous per-worker ranges.

    Range sizes differ by at most one, larger ranges first. Empty ranges are
    dropped, so asking for more workers than columns yields one range per
    column. The plan is fixed at launch and never rebalanced.

    Args:
        start: First column index.
        stop: One past the last column index.
        workers: Maximum number of ranges.

    Returns:
        Tuple of ranges covering ``start..stop-1`` in order.

    Raises:
        ValueError: If ``workers < 1``.

    Examples:
        >>> partition_columns(0, 10, 3)
        (range(0, 4), range(4, 7), range(7, 10))
        >>> partition_columns(0, 2, 4)
        (range(0, 1), range(1, 2))
        >>> partition_columns(5, 5, 2)
        ()

    """
    if workers < 1:
        raise ValueError(f"workers must be >= 1, got {workers}")
    total = max(stop - start, 0)
    base, extra = divmod(total, workers)
    plan = []
    lo = start
    for w in range(workers):
        hi = lo + base + (1 if w < extra else 0)
        if hi > lo:
            plan.append(range(lo, hi))
        lo = hi
    return tuple(plan)
