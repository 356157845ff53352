"""Errors, configuration and logging shared by every mapper."""

from jax_slicemap.core.config import (
    SliceMapConfig,
    default_workers,
    load_config,
    load_log_level,
    load_workers,
)
from jax_slicemap.core.errors import (
    AxisError,
    DimensionError,
    ShapeError,
    SliceMapError,
    WorkerError,
)
from jax_slicemap.core.log import get_logger

__all__ = [
    "SliceMapError",
    "DimensionError",
    "ShapeError",
    "AxisError",
    "WorkerError",
    "SliceMapConfig",
    "load_config",
    "load_workers",
    "load_log_level",
    "default_workers",
    "get_logger",
]
