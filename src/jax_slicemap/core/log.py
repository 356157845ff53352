"""Package logger setup."""

from __future__ import annotations

import logging

from jax_slicemap.core.config import load_log_level

ROOT_LOGGER = "jax_slicemap"


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the ``jax_slicemap`` namespace.

    The package root logger gets a single stream handler the first time any
    module asks for a logger, with its level taken from
    ``JAX_SLICEMAP_LOG_LEVEL``.

    Examples:
        >>> get_logger("jax_slicemap.mapping").name
        'jax_slicemap.mapping'

    """
    root = logging.getLogger(ROOT_LOGGER)
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("[%(asctime)s][%(levelname)s][%(name)s] %(message)s"))
        root.addHandler(handler)
        root.setLevel(load_log_level())
    if name == ROOT_LOGGER or name.startswith(ROOT_LOGGER + "."):
        return logging.getLogger(name)
    return root.getChild(name)
