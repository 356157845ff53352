"""Slice extraction: dynamic views, fixed-length reinterpretation, partition plans."""

from jax_slicemap.slicing.extract import (
    SliceSequence,
    check_matrix,
    each_slice,
    partition_columns,
    static_slices,
)

__all__ = [
    "SliceSequence",
    "each_slice",
    "static_slices",
    "partition_columns",
    "check_matrix",
]
