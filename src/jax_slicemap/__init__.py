"""jax-slicemap: differentiable per-slice mapping over JAX matrices.

Apply a function to every column (or every slice along an axis) of an
array, and differentiate the whole map without writing a gradient by hand
for each new function.

Modules:
    slicing: Slice extraction and column partition plans
    mapping: Sequential and thread-parallel column mappers
    autodiff: Differentiable wrappers (per-slice VJP tape, batched Jacobian)
    axes: Arbitrary-axis adapter built on the column mappers
    core: Errors, configuration and logging
"""

from jax_slicemap.autodiff import (
    GradientTape,
    StaticSliceMapper,
    ThreadedSliceMapper,
    gradient_check,
    map_cols,
    map_cols_bwd,
    map_cols_fwd,
    map_cols_parallel,
    map_cols_static,
)
from jax_slicemap.axes import map_rows, slice_map
from jax_slicemap.core import (
    AxisError,
    DimensionError,
    ShapeError,
    SliceMapError,
    WorkerError,
    load_config,
)
from jax_slicemap.mapping import map_columns, map_columns_parallel
from jax_slicemap.slicing import each_slice, partition_columns, static_slices

__version__ = "0.1.0"

__all__ = [
    "map_cols",
    "map_cols_static",
    "map_cols_parallel",
    "map_cols_fwd",
    "map_cols_bwd",
    "slice_map",
    "map_rows",
    "map_columns",
    "map_columns_parallel",
    "each_slice",
    "static_slices",
    "partition_columns",
    "StaticSliceMapper",
    "ThreadedSliceMapper",
    "GradientTape",
    "gradient_check",
    "SliceMapError",
    "DimensionError",
    "ShapeError",
    "AxisError",
    "WorkerError",
    "load_config",
]
