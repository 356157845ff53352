"""Finite-difference verification of mapping gradients."""

from __future__ import annotations

from collections.abc import Callable

import jax
import jax.numpy as jnp
import numpy as np
from jax import Array


def gradient_check(
    mapped: Callable[[Array], Array],
    x: Array,
    *,
    eps: float = 1e-3,
    atol: float = 1e-2,
    rtol: float = 1e-2,
) -> bool:
    """Verify the gradient of a column map using central differences.

    Compares ``jax.grad`` of ``sum(mapped(x))`` against numerical
    derivatives taken one element of ``x`` at a time.

    Args:
        mapped: Function of the input matrix only, e.g.
            ``lambda m: map_cols(f, m)``.
        x: Floating-point input matrix to test at.
        eps: Finite difference step size.
        atol: Absolute tolerance for comparison.
        rtol: Relative tolerance for comparison.

    Returns:
        True if analytical and numerical gradients match within tolerance.

    Examples:
        >>> import jax.numpy as jnp
        >>> from jax_slicemap import map_cols
        >>> x = jnp.array([[0.5, 1.0], [1.5, 2.0]])
        >>> gradient_check(lambda m: map_cols(jnp.sin, m), x)
        True

    """

    def loss(m: Array) -> Array:
        return jnp.sum(mapped(m))

    analytical_grad = jax.grad(loss)(x)

    numerical_grad = jnp.zeros_like(x)
    for flat in range(x.size):
        idx = np.unravel_index(flat, x.shape)
        x_plus = x.at[idx].add(eps)
        x_minus = x.at[idx].add(-eps)
        numerical_grad = numerical_grad.at[idx].set((loss(x_plus) - loss(x_minus)) / (2 * eps))

    return bool(jnp.allclose(analytical_grad, numerical_grad, atol=atol, rtol=rtol))
