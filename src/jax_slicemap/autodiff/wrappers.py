"""Differentiable column mappers.

Three ways of making a column map differentiable with respect to its input
matrix, all exposed through ``jax.custom_vjp`` so they compose with
``jax.grad``, ``jax.vjp`` and ``jax.jit``:

- ``map_cols`` (dynamic): the forward pass runs ``jax.vjp`` on every
  column and keeps each pullback on a ``GradientTape``. The backward pass
  replays the tape. Works for any differentiable function, at the cost of
  one retained closure per column and no batching on the way back.
- ``map_cols_static`` (static): the forward pass maps the function over
  fixed-length rows with ``jax.vmap`` and keeps only the input matrix. The
  backward pass recomputes every column's ``(e, d)`` Jacobian with forward
  mode and contracts it with the upstream gradient in one ``einsum``.
- ``map_cols_parallel`` (static, threaded): as the static mapper, but both
  passes are split across worker threads that write disjoint columns.

References:
    - Custom derivative rules: https://jax.readthedocs.io/en/latest/notebooks/Custom_derivative_rules_for_Python_code.html
    - Autodiff cookbook: https://jax.readthedocs.io/en/latest/notebooks/autodiff_cookbook.html

"""

from __future__ import annotations

import functools
from collections.abc import Callable

import jax
import jax.numpy as jnp
import numpy as np
from jax import Array

from jax_slicemap.autodiff.records import GradientTape, Recorder
from jax_slicemap.core import get_logger
from jax_slicemap.core.errors import ShapeError
from jax_slicemap.mapping import (
    empty_output,
    map_columns,
    map_columns_parallel,
    run_partitioned,
    vector_output,
)
from jax_slicemap.mapping.parallel import is_concrete, resolve_workers
from jax_slicemap.slicing import check_matrix, each_slice, partition_columns, static_slices

logger = get_logger(__name__)

JacobianProvider = Callable[[Callable[[Array], Array]], Callable[[Array], Array]]


# ---------------------------------------------------------------------------
# Dynamic: one recorded pullback per column
# ---------------------------------------------------------------------------


def map_cols_fwd(fn: Callable[[Array], Array], x: Array) -> tuple[Array, GradientTape]:
    """Forward pass of ``map_cols`` that also returns its gradient tape.

    The tape is the handle the matching ``map_cols_bwd`` call consumes; it
    is owned by the caller and released when dropped.

    Args:
        fn: Differentiable function from a length-``d`` vector to a vector
            (or scalar).
        x: Input matrix of shape ``(d, batch)``.

    Returns:
        Tuple of (output matrix ``(e, batch)``, tape with one record per
        column).

    Raises:
        DimensionError: If ``x`` is not 2-D.
        ShapeError: If column outputs disagree in length.

    Examples:
        >>> import jax.numpy as jnp
        >>> x = jnp.array([[1.0, 2.0], [3.0, 4.0]])
        >>> out, tape = map_cols_fwd(lambda c: c**2, x)
        >>> len(tape)
        2
        >>> map_cols_bwd(tape, jnp.ones_like(out)).tolist()
        [[2.0, 4.0], [6.0, 8.0]]

    """
    x = jnp.asarray(x)
    check_matrix(x)
    tape = GradientTape(input_shape=tuple(x.shape), dtype=x.dtype)
    out = record_columns(fn, x, tape)
    return out, tape.seal()


def record_columns(fn: Callable[[Array], Array], x: Array, recorder: Recorder) -> Array:
    """Map ``fn`` over the columns of ``x``, emitting one pullback per column.

    Each column is evaluated with ``jax.vjp`` and the (value, pullback) pair
    is handed to ``recorder`` in column order. The recorder decides what to
    keep; ``map_cols_fwd`` passes a ``GradientTape``.

    Args:
        fn: Differentiable function from a column to a vector (or scalar).
        x: Input matrix of shape ``(d, batch)``.
        recorder: Receives ``record(value, pullback)`` once per column.

    Returns:
        Output matrix of shape ``(e, batch)``.

    Raises:
        ShapeError: If column outputs disagree in length.

    """
    slices = each_slice(x, axis=1)
    if len(slices) == 0:
        return empty_output(fn, x)

    vector_fn = vector_output(fn)
    columns = []
    for i, column in enumerate(slices):
        y, pullback = jax.vjp(vector_fn, column)
        if columns and y.shape != columns[0].shape:
            raise ShapeError(
                f"column {i} produced length {y.shape[0]}, "
                f"but column 0 produced length {columns[0].shape[0]}"
            )
        columns.append(recorder.record(y, pullback))
    return jnp.stack(columns, axis=1)


def map_cols_bwd(tape: GradientTape, cotangent: Array) -> Array:
    """Backward pass of ``map_cols``: input gradient for an upstream gradient."""
    return tape.backward(cotangent)


@functools.partial(jax.custom_vjp, nondiff_argnums=(0,))
def _map_cols(fn, x):
    return map_columns(fn, x)


def _map_cols_fwd_rule(fn, x):
    return map_cols_fwd(fn, x)


def _map_cols_bwd_rule(fn, tape, g):
    return (map_cols_bwd(tape, g),)


_map_cols.defvjp(_map_cols_fwd_rule, _map_cols_bwd_rule)


def map_cols(fn: Callable[[Array], Array], x: Array) -> Array:
    """Differentiable map of ``fn`` over the columns of ``x``.

    Args:
        fn: Differentiable function from a column to a vector (or scalar).
        x: Input matrix of shape ``(d, batch)``.

    Returns:
        Matrix of shape ``(e, batch)``.

    Raises:
        DimensionError: If ``x`` is not 2-D.
        ShapeError: If column outputs disagree in length.

    Examples:
        >>> import jax
        >>> import jax.numpy as jnp
        >>> x = jnp.array([[1.0, 2.0], [3.0, 4.0]])
        >>> map_cols(lambda c: jnp.sum(c**2), x).tolist()
        [[10.0, 20.0]]
        >>> jax.grad(lambda m: jnp.sum(map_cols(jnp.sin, m)))(x).shape
        (2, 2)

    """
    x = jnp.asarray(x)
    check_matrix(x)
    return _map_cols(fn, x)


# ---------------------------------------------------------------------------
# Static: vmap forward, batched forward-mode Jacobian backward
# ---------------------------------------------------------------------------


def _static_forward(fn, x):
    if x.shape[1] == 0:
        return empty_output(fn, x)
    return jax.vmap(vector_output(fn))(static_slices(x, x.shape[0])).T


def _static_backward(fn, jacobian, x, g):
    if x.shape[1] == 0:
        return jnp.zeros_like(x)
    # (batch, e, d)
    jac = jax.vmap(jacobian(vector_output(fn)))(static_slices(x, x.shape[0]))
    return jnp.einsum("bed,eb->db", jac, g)


@functools.partial(jax.custom_vjp, nondiff_argnums=(0, 1))
def _map_cols_static(fn, jacobian, x):
    return _static_forward(fn, x)


def _map_cols_static_fwd(fn, jacobian, x):
    return _static_forward(fn, x), x


def _map_cols_static_bwd(fn, jacobian, x, g):
    return (_static_backward(fn, jacobian, x, g),)


_map_cols_static.defvjp(_map_cols_static_fwd, _map_cols_static_bwd)


class StaticSliceMapper:
    """Column mapper specialised to one slice length.

    The slice length is fixed for the lifetime of the instance; a matrix
    with a different leading dimension is rejected before the mapped
    function runs. Differentiation recomputes per-column Jacobians instead
    of retaining per-column closures.

    Args:
        slice_length: Leading dimension every input matrix must have.
        jacobian: Forward-mode Jacobian provider, ``jacobian(f)(x)`` giving
            the ``(e, d)`` Jacobian of ``f`` at ``x``. Must be
            ``jax.vmap``-compatible. Default ``jax.jacfwd``.

    Examples:
        >>> import jax.numpy as jnp
        >>> mapper = StaticSliceMapper(2)
        >>> mapper(lambda c: c + 1, jnp.zeros((2, 3))).shape
        (2, 3)

    """

    def __init__(self, slice_length: int, jacobian: JacobianProvider = jax.jacfwd) -> None:
        if slice_length < 1:
            raise ValueError(f"slice_length must be >= 1, got {slice_length}")
        self.slice_length = slice_length
        self.jacobian = jacobian

    def __repr__(self) -> str:
        return f"{type(self).__name__}(slice_length={self.slice_length})"

    def __call__(self, fn: Callable[[Array], Array], x: Array) -> Array:
        x = jnp.asarray(x)
        check_matrix(x, self.slice_length)
        return _map_cols_static(fn, self.jacobian, x)

    def jacobians(self, fn: Callable[[Array], Array], x: Array) -> Array:
        """Per-column Jacobians of ``fn``, shape ``(batch, e, d)``."""
        x = jnp.asarray(x)
        return jax.vmap(self.jacobian(vector_output(fn)))(static_slices(x, self.slice_length))


def map_cols_static(fn: Callable[[Array], Array], x: Array, slice_length: int) -> Array:
    """Differentiable column map over fixed-length slices.

    Args:
        fn: Differentiable, ``jax.vmap``-compatible function from a
            length-``slice_length`` vector to a vector (or scalar).
        x: Input matrix of shape ``(slice_length, batch)``.
        slice_length: Expected leading dimension of ``x``.

    Returns:
        Matrix of shape ``(e, batch)``.

    Raises:
        DimensionError: If ``x`` does not have ``slice_length`` rows.
            Raised before ``fn`` is called.

    Examples:
        >>> import jax
        >>> import jax.numpy as jnp
        >>> x = jnp.array([[1.0, 2.0], [3.0, 4.0]])
        >>> sq = lambda c: jnp.sum(c**2)
        >>> jax.grad(lambda m: jnp.sum(map_cols_static(sq, m, 2)))(x).tolist()
        [[2.0, 4.0], [6.0, 8.0]]

    """
    return StaticSliceMapper(slice_length)(fn, x)


# ---------------------------------------------------------------------------
# Threaded static
# ---------------------------------------------------------------------------


def _threaded_forward(fn, workers, x):
    if not is_concrete(x):
        logger.debug("traced input, using vectorised forward pass instead of %d workers", workers)
        return _static_forward(fn, x)
    return map_columns_parallel(fn, x, x.shape[0], workers)


def _threaded_backward(fn, jacobian, workers, x, g):
    if not (is_concrete(x) and is_concrete(g)):
        logger.debug("traced input, using vectorised backward pass instead of %d workers", workers)
        return _static_backward(fn, jacobian, x, g)
    batch = x.shape[1]
    if batch == 0:
        return jnp.zeros_like(x)

    jac_fn = jacobian(vector_output(fn))
    grad = np.empty(x.shape, dtype=jnp.result_type(x.dtype, g.dtype))

    def work(columns: range) -> None:
        for i in columns:
            grad[:, i] = np.asarray(jac_fn(x[:, i]).T @ g[:, i])

    run_partitioned(partition_columns(0, batch, workers), work)
    return jnp.asarray(grad)


@functools.partial(jax.custom_vjp, nondiff_argnums=(0, 1, 2))
def _map_cols_threaded(fn, jacobian, workers, x):
    return _threaded_forward(fn, workers, x)


def _map_cols_threaded_fwd(fn, jacobian, workers, x):
    return _threaded_forward(fn, workers, x), x


def _map_cols_threaded_bwd(fn, jacobian, workers, x, g):
    return (_threaded_backward(fn, jacobian, workers, x, g),)


_map_cols_threaded.defvjp(_map_cols_threaded_fwd, _map_cols_threaded_bwd)


class ThreadedSliceMapper(StaticSliceMapper):
    """Static column mapper whose forward and backward passes use threads.

    Each call spawns a pool of ``workers`` threads, hands each a contiguous
    column range, and joins it before returning. Results and gradients do
    not depend on the worker count. Under ``jax.jit`` the inputs are
    tracers, and both passes run the vectorised static computation instead.

    Args:
        slice_length: Leading dimension every input matrix must have.
        workers: Worker threads per call. Default from
            ``JAX_SLICEMAP_WORKERS`` (or the CPU count).
        jacobian: Forward-mode Jacobian provider. Default ``jax.jacfwd``.

    """

    def __init__(
        self,
        slice_length: int,
        workers: int | None = None,
        jacobian: JacobianProvider = jax.jacfwd,
    ) -> None:
        super().__init__(slice_length, jacobian)
        self.workers = resolve_workers(workers)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(slice_length={self.slice_length}, workers={self.workers})"

    def __call__(self, fn: Callable[[Array], Array], x: Array) -> Array:
        x = jnp.asarray(x)
        check_matrix(x, self.slice_length)
        return _map_cols_threaded(fn, self.jacobian, self.workers, x)


def map_cols_parallel(
    fn: Callable[[Array], Array],
    x: Array,
    slice_length: int,
    workers: int | None = None,
) -> Array:
    """Differentiable column map over fixed-length slices on worker threads.

    Args:
        fn: Differentiable, thread-safe function from a
            length-``slice_length`` vector to a vector (or scalar).
        x: Input matrix of shape ``(slice_length, batch)``.
        slice_length: Expected leading dimension of ``x``.
        workers: Worker threads. Default from ``JAX_SLICEMAP_WORKERS``.

    Returns:
        Matrix of shape ``(e, batch)``, bitwise identical for every worker
        count.

    Raises:
        DimensionError: If ``x`` does not have ``slice_length`` rows.
        ShapeError: If column outputs disagree in length.
        WorkerError: If ``fn`` raised inside a worker.

    Examples:
        >>> import jax.numpy as jnp
        >>> x = jnp.arange(6.0).reshape(3, 2)
        >>> map_cols_parallel(jnp.cumsum, x, 3, workers=2).tolist()
        [[0.0, 1.0], [2.0, 4.0], [6.0, 9.0]]

    """
    return ThreadedSliceMapper(slice_length, workers)(fn, x)
