"""Per-slice gradient records for the dynamic differentiable wrapper.

The dynamic wrapper never looks inside the computation graph. For every
slice it asks the reverse-mode engine (``jax.vjp``) for a value and a
backward rule, and hands the pair to a ``Recorder``. ``GradientTape`` is
the recorder the wrapper uses: an ordered sequence of ``GradientRecord``
entries owned by the forward call that produced it and consumed by the
matching backward call.

The tape is registered as a JAX pytree whose leaves are the pullbacks
``jax.vjp`` returns (themselves pytrees of residual arrays), so it can be
passed through ``jax.custom_vjp`` residuals and ``jax.jit`` boundaries.

References:
    - JAX vjp: https://jax.readthedocs.io/en/latest/_autosummary/jax.vjp.html
    - Custom pytrees: https://jax.readthedocs.io/en/latest/pytrees.html

"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, NamedTuple, Protocol

import jax
import jax.numpy as jnp
from jax import Array


class Recorder(Protocol):
    """Sink for (value, backward rule) pairs emitted by a forward pass."""

    def record(self, value: Array, backward: Callable[[Array], Any]) -> Array: ...


class GradientRecord(NamedTuple):
    """Backward rule of one slice."""

    index: int
    backward: Callable[[Array], Any]  # output cotangent -> (input cotangent,)


@jax.tree_util.register_pytree_node_class
class GradientTape:
    """Ordered per-slice backward rules for one forward call.

    Records accumulate while the forward pass runs. ``seal`` freezes them
    into a tuple; after that ``record`` raises. Tapes rebuilt from a pytree
    are sealed.

    Examples:
        >>> import jax
        >>> import jax.numpy as jnp
        >>> tape = GradientTape(input_shape=(2, 1))
        >>> y, pullback = jax.vjp(lambda v: v**2, jnp.array([1.0, 3.0]))
        >>> _ = tape.record(y, pullback)
        >>> tape.seal().backward(jnp.ones((2, 1))).tolist()
        [[2.0], [6.0]]

    """

    def __init__(
        self,
        records: tuple[GradientRecord, ...] = (),
        input_shape: tuple[int, int] | None = None,
        dtype: Any = None,
        sealed: bool = False,
    ) -> None:
        self._pending = [] if sealed else list(records)
        self._records: tuple[GradientRecord, ...] | None = tuple(records) if sealed else None
        self.input_shape = input_shape
        self.dtype = dtype

    @property
    def sealed(self) -> bool:
        return self._records is not None

    @property
    def records(self) -> tuple[GradientRecord, ...]:
        if self._records is not None:
            return self._records
        return tuple(self._pending)

    def __len__(self) -> int:
        return len(self.records)

    def record(self, value: Array, backward: Callable[[Array], Any]) -> Array:
        """Append the backward rule for the next slice and pass ``value`` through."""
        if self.sealed:
            raise RuntimeError("cannot record on a sealed gradient tape")
        self._pending.append(GradientRecord(len(self._pending), backward))
        return value

    def seal(self) -> GradientTape:
        """End the forward pass; the records become an immutable tuple."""
        if self._records is None:
            self._records = tuple(self._pending)
            self._pending = []
        return self

    def backward(self, cotangent: Array) -> Array:
        """Replay the records in reverse against an upstream gradient.

        Args:
            cotangent: Upstream gradient of shape ``(e, batch)``.

        Returns:
            Input gradient of shape ``(d, batch)``; column ``i`` is the
            vector-Jacobian product of slice ``i`` with ``cotangent[:, i]``.

        """
        if not self.records:
            return jnp.zeros(self.input_shape, dtype=self.dtype)
        columns: list[Array] = [None] * len(self.records)  # type: ignore[list-item]
        for index, backward in reversed(self.records):
            (columns[index],) = backward(cotangent[:, index])
        return jnp.stack(columns, axis=1)

    def tree_flatten(self) -> tuple[tuple[Any, ...], tuple[Any, ...]]:
        children = tuple(r.backward for r in self.records)
        return children, (self.input_shape, self.dtype)

    @classmethod
    def tree_unflatten(cls, aux: tuple[Any, ...], children: tuple[Any, ...]) -> GradientTape:
        input_shape, dtype = aux
        records = tuple(GradientRecord(i, b) for i, b in enumerate(children))
        return cls(records, input_shape=input_shape, dtype=dtype, sealed=True)
