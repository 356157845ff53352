"""Error taxonomy for slice mapping.

Every error is raised synchronously to the caller of the top-level mapping
function. Each class also derives from the builtin exception a caller would
naturally catch for that failure (``ValueError`` for bad shapes,
``IndexError`` for bad axes, ``RuntimeError`` for failures inside workers).
"""

from __future__ import annotations


class SliceMapError(Exception):
    """Base class for all slice-mapping errors."""


class DimensionError(SliceMapError, ValueError):
    """Matrix rank or leading dimension does not match the slice length."""


class ShapeError(SliceMapError, ValueError):
    """Per-slice outputs disagree in length, or are not vectors."""


class AxisError(SliceMapError, IndexError):
    """Requested axis is out of range for the array."""


class WorkerError(SliceMapError, RuntimeError):
    """The mapped function raised inside a parallel worker.

    Attributes:
        columns: Column range the failing worker owned.
        original: Exception raised by the mapped function. Also available
            as ``__cause__``.

    Examples:
        >>> err = WorkerError(range(2, 4), KeyError("k"))
        >>> err.columns
        range(2, 4)
        >>> isinstance(err.original, KeyError)
        True

    """

    def __init__(self, columns: range, original: BaseException) -> None:
        self.columns = columns
        self.original = original
        super().__init__(
            f"mapped function failed on columns {columns.start}..{columns.stop - 1}: "
            f"{type(original).__name__}: {original}"
        )
