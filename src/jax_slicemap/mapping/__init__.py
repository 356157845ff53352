"""Column mappers: sequential assembly and thread-parallel disjoint writes."""

from jax_slicemap.mapping.parallel import map_columns_parallel, run_partitioned
from jax_slicemap.mapping.sequential import (
    empty_output,
    map_columns,
    to_vector,
    vector_output,
)

__all__ = [
    "map_columns",
    "map_columns_parallel",
    "run_partitioned",
    "vector_output",
    "to_vector",
    "empty_output",
]
