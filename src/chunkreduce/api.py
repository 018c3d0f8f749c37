from __future__ import annotations

from typing import TYPE_CHECKING, Any

from chunkreduce.errors import BlockReductionError
from chunkreduce.reducer import OutOfCoreReducer
from chunkreduce.source import as_source

if TYPE_CHECKING:
    import threading
    from collections.abc import Callable

    import numpy.typing as npt

__all__ = ["count", "mean", "median", "percentile", "reduce", "sum"]


def reduce(
    data: Any,
    reduction: str,
    axis: int = -1,
    *,
    q: float | None = None,
    memory_budget_bytes: int | None = None,
    chunks: Any = None,
    progress: Callable[[int, int], None] | None = None,
    cancel: threading.Event | None = None,
    **kwargs: Any,
) -> npt.NDArray[Any]:
    """Reduce ``data`` along ``axis`` block by block.

    Parameters
    ----------
    data : ChunkedArraySource, zarr.Array or array-like
        The array to reduce.
    reduction : str
        One of ``"mean"``, ``"sum"``, ``"count"``, ``"median"``, ``"percentile"``.
    axis : int, default -1
        The reduction axis.
    q : float, optional
        The percentile, for ``"percentile"``.
    memory_budget_bytes : int, optional
        Ceiling on the bytes held in memory by blocks at once, counting every value
        as float64.
    chunks : optional
        Chunk layout for array-like ``data``; ignored for sources and zarr arrays.
    progress : callable, optional
        Called as ``progress(blocks_done, blocks_total)``.
    cancel : threading.Event, optional
        Set to stop scheduling blocks.
    **kwargs
        Passed to :class:`OutOfCoreReducer`.

    Returns
    -------
    numpy.ndarray

    Raises
    ------
    BlockReductionError
        If a block fails or the run is cancelled. The partial result is available as
        the ``partial`` attribute of the error.
    """
    source = as_source(data, chunks=chunks)
    reducer = OutOfCoreReducer(**kwargs)
    result = reducer.run(
        source,
        axis,
        reduction,
        memory_budget_bytes,
        q=q,
        progress=progress,
        cancel=cancel,
    )
    if result.cancelled:
        raise BlockReductionError(
            f"Computing {result.reduction} was cancelled after "
            f"{result.blocks_done} of {result.blocks_total} blocks.",
            reduction=result.reduction.name,
            partial=result,
        )
    return result.values


def median(data: Any, axis: int = -1, **kwargs: Any) -> npt.NDArray[Any]:
    """Median along ``axis``, ignoring NaN. See :func:`reduce`."""
    return reduce(data, "median", axis, **kwargs)


def percentile(data: Any, q: float, axis: int = -1, **kwargs: Any) -> npt.NDArray[Any]:
    """Percentile ``q`` along ``axis``, ignoring NaN. See :func:`reduce`."""
    return reduce(data, "percentile", axis, q=q, **kwargs)


def mean(data: Any, axis: int = -1, **kwargs: Any) -> npt.NDArray[Any]:
    """Mean along ``axis``, ignoring NaN. See :func:`reduce`."""
    return reduce(data, "mean", axis, **kwargs)


def sum(data: Any, axis: int = -1, **kwargs: Any) -> npt.NDArray[Any]:
    """Sum along ``axis``, ignoring NaN. See :func:`reduce`."""
    return reduce(data, "sum", axis, **kwargs)


def count(data: Any, axis: int = -1, **kwargs: Any) -> npt.NDArray[Any]:
    """Number of non-NaN values along ``axis``. See :func:`reduce`."""
    return reduce(data, "count", axis, **kwargs)
