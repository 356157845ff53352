"""Differentiable column maps.

Dynamic (per-column VJP tape), static (batched forward-mode Jacobian) and
threaded static wrappers, plus gradient records and finite-difference
checks.
"""

from jax_slicemap.autodiff.checks import gradient_check
from jax_slicemap.autodiff.records import GradientRecord, GradientTape, Recorder
from jax_slicemap.autodiff.wrappers import (
    JacobianProvider,
    StaticSliceMapper,
    ThreadedSliceMapper,
    map_cols,
    map_cols_bwd,
    map_cols_fwd,
    map_cols_parallel,
    map_cols_static,
    record_columns,
)

__all__ = [
    "map_cols",
    "map_cols_fwd",
    "map_cols_bwd",
    "map_cols_static",
    "map_cols_parallel",
    "record_columns",
    "StaticSliceMapper",
    "ThreadedSliceMapper",
    "JacobianProvider",
    "GradientRecord",
    "GradientTape",
    "Recorder",
    "gradient_check",
]
