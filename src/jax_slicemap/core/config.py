"""Environment-driven configuration.

Settings:
    JAX_SLICEMAP_WORKERS: default worker count for the parallel mapper.
        Defaults to ``os.cpu_count()``.
    JAX_SLICEMAP_LOG_LEVEL: level name for the ``jax_slicemap`` logger.
        Defaults to ``WARNING``.

"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from typing import NamedTuple

WORKERS_ENV = "JAX_SLICEMAP_WORKERS"
LOG_LEVEL_ENV = "JAX_SLICEMAP_LOG_LEVEL"


class SliceMapConfig(NamedTuple):
    """Resolved package settings."""

    workers: int
    log_level: int


def load_workers(environ: Mapping[str, str] | None = None) -> int:
    """Read the default worker count.

    Raises:
        ValueError: If ``JAX_SLICEMAP_WORKERS`` is not a positive integer.

    """
    if environ is None:
        environ = os.environ
    raw_workers = environ.get(WORKERS_ENV)
    if raw_workers is None:
        return os.cpu_count() or 1
    try:
        workers = int(raw_workers)
    except ValueError:
        raise ValueError(f"{WORKERS_ENV} must be an integer, got {raw_workers!r}") from None
    if workers < 1:
        raise ValueError(f"{WORKERS_ENV} must be >= 1, got {workers}")
    return workers


def load_log_level(environ: Mapping[str, str] | None = None) -> int:
    """Read the package log level.

    Raises:
        ValueError: If ``JAX_SLICEMAP_LOG_LEVEL`` is not a known level name.

    """
    if environ is None:
        environ = os.environ
    level_name = environ.get(LOG_LEVEL_ENV, "WARNING").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        raise ValueError(f"{LOG_LEVEL_ENV} is not a logging level: {level_name!r}")
    return level


def load_config(environ: Mapping[str, str] | None = None) -> SliceMapConfig:
    """Read settings from the environment.

    Args:
        environ: Mapping to read from. Default ``os.environ``.

    Returns:
        Resolved configuration.

    Raises:
        ValueError: If the worker count is not a positive integer or the
            log level is not a known level name.

    Examples:
        >>> cfg = load_config({"JAX_SLICEMAP_WORKERS": "3"})
        >>> cfg.workers
        3
        >>> cfg.log_level == logging.WARNING
        True

    """
    return SliceMapConfig(workers=load_workers(environ), log_level=load_log_level(environ))


def default_workers() -> int:
    """Worker count used when a parallel mapper is given ``workers=None``.

    Read on every call, so a bad ``JAX_SLICEMAP_WORKERS`` only fails the
    parallel mappers, not imports.
    """
    return load_workers()
