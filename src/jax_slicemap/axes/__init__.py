"""Slice maps along an arbitrary axis."""

from jax_slicemap.axes.adapter import map_rows, normalize_axis, slice_map

__all__ = [
    "slice_map",
    "map_rows",
    "normalize_axis",
]
