"""Thread-parallel column mapping with disjoint-region writes.

The column range is split once into contiguous chunks, one per worker, and
every worker writes only its own columns of a single pre-allocated NumPy
buffer. The buffer is allocated before any worker starts, the plan is
read-only, and no two workers address the same element, so the buffer
needs no lock. Output column order is fixed by the plan, never by
completion order, which makes the result bitwise identical to
``map_columns`` for any worker count.

Limitations:
    - The plan is never rebalanced; a function whose cost varies a lot
      between columns leaves some workers idle.
    - ``fn`` must be safe to call from several threads at once. A function
      with hidden shared mutable state (an internal cache, a counter)
      violates that precondition; it is not detected here.
    - Workers need concrete arrays. Under ``jax.jit`` use the
      differentiable ``map_cols_parallel``, which switches to a vectorised
      computation when it sees traced values.

References:
    - concurrent.futures: https://docs.python.org/3/library/concurrent.futures.html
    - JAX async dispatch: https://jax.readthedocs.io/en/latest/async_dispatch.html

"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor

import jax
import jax.numpy as jnp
import numpy as np
from jax import Array

from jax_slicemap.core import default_workers, get_logger
from jax_slicemap.core.errors import ShapeError, SliceMapError, WorkerError
from jax_slicemap.mapping.sequential import empty_output, to_vector
from jax_slicemap.slicing import check_matrix, each_slice, partition_columns

logger = get_logger(__name__)


def is_concrete(x: Array) -> bool:
    """Whether ``x`` holds data (as opposed to being a tracer under ``jit``)."""
    return not isinstance(x, jax.core.Tracer)


def resolve_workers(workers: int | None) -> int:
    """Apply the configured default and validate a worker count."""
    if workers is None:
        workers = default_workers()
    if workers < 1:
        raise ValueError(f"workers must be >= 1, got {workers}")
    return workers


def run_partitioned(plan: Sequence[range], work: Callable[[range], None]) -> None:
    """Run ``work`` once per range of ``plan`` on a short-lived thread pool.

    The pool is joined before anything is raised. Failures are reported
    in plan order: errors the mapper raised itself (``SliceMapError``)
    propagate unchanged, anything raised by the mapped function is
    re-raised as ``WorkerError`` chained from the original.

    Args:
        plan: Disjoint column ranges, typically from ``partition_columns``.
        work: Callable processing one range. Must only write to the columns
            in that range.

    Raises:
        WorkerError: If ``work`` raised for any range.

    """
    if not plan:
        return
    with ThreadPoolExecutor(max_workers=len(plan), thread_name_prefix="slicemap") as pool:
        futures = [(columns, pool.submit(work, columns)) for columns in plan]

    for columns, future in futures:
        exc = future.exception()
        if exc is None:
            continue
        if isinstance(exc, SliceMapError) or not isinstance(exc, Exception):
            raise exc
        logger.debug("worker for columns %s failed: %r", columns, exc)
        raise WorkerError(columns, exc) from exc


def map_columns_parallel(
    fn: Callable[[Array], Array],
    x: Array,
    slice_length: int,
    workers: int | None = None,
) -> Array:
    """Apply ``fn`` to each column of ``x`` on a pool of worker threads.

    The first column is evaluated in the calling thread to fix the output
    length and dtype; the buffer is then allocated and the remaining
    columns are handed out in contiguous ranges.

    Args:
        fn: Function from a length-``slice_length`` vector to a vector
            (or scalar). Must be thread-safe.
        x: Concrete input matrix of shape ``(slice_length, batch)``.
        slice_length: Expected leading dimension of ``x``.
        workers: Number of worker threads. Default from
            ``JAX_SLICEMAP_WORKERS`` (or the CPU count).

    Returns:
        Matrix of shape ``(e, batch)``, identical to ``map_columns(fn, x)``.

    Raises:
        DimensionError: If ``x`` does not have ``slice_length`` rows.
            Raised before ``fn`` is called.
        ShapeError: If column outputs disagree in length.
        WorkerError: If ``fn`` raised. The partially filled output is
            discarded.
        TypeError: If ``x`` is a tracer.

    Examples:
        >>> import jax.numpy as jnp
        >>> m = jnp.arange(6.0).reshape(2, 3)
        >>> map_columns_parallel(lambda c: c * 2, m, 2, workers=2).tolist()
        [[0.0, 2.0, 4.0], [6.0, 8.0, 10.0]]

    """
    x = jnp.asarray(x)
    check_matrix(x, slice_length)
    workers = resolve_workers(workers)
    if not is_concrete(x):
        raise TypeError("map_columns_parallel needs concrete arrays; use map_cols_parallel under jit")

    slices = each_slice(x, axis=1)
    batch = len(slices)
    if batch == 0:
        return empty_output(fn, x)

    try:
        first = to_vector(fn(slices[0]), 0)
    except SliceMapError:
        raise
    except Exception as exc:
        raise WorkerError(range(0, 1), exc) from exc

    out = np.empty((first.shape[0], batch), dtype=first.dtype)
    out[:, 0] = np.asarray(first)
    plan = partition_columns(1, batch, workers)
    logger.debug("mapping %d columns on %d workers: %s", batch, len(plan), plan)

    def work(columns: range) -> None:
        for i in columns:
            y = to_vector(fn(slices[i]), i)
            if y.shape != first.shape:
                raise ShapeError(
                    f"column {i} produced length {y.shape[0]}, "
                    f"but column 0 produced length {first.shape[0]}"
                )
            out[:, i] = np.asarray(y)

    run_partitioned(plan, work)
    return jnp.asarray(out)
