from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chunkreduce.indexing import Region
    from chunkreduce.reducer import ReductionResult

__all__ = [
    "BaseChunkReduceError",
    "BlockReductionError",
    "BlockTimeoutError",
    "IncompletePartitionError",
    "InsufficientBudgetError",
    "InvalidAxisError",
    "OutOfBoundsError",
    "SourceIOError",
    "UnalignedBlockWarning",
]


class BaseChunkReduceError(Exception):
    """
    Base error which all chunkreduce errors are sub-classed from.
    """

    _msg: str = "{}"

    def __init__(self, *args: object) -> None:
        """
        If a single argument is passed, treat it as a pre-formatted message.

        If multiple arguments are passed, they are used as arguments for a template string class
        variable.
        """
        if len(args) == 1:
            super().__init__(args[0])
        else:
            super().__init__(self._msg.format(*args))


class InvalidAxisError(BaseChunkReduceError, ValueError):
    """
    Raised when the reduction axis is out of range or has zero extent.
    """

    _msg = "Invalid reduction axis {!r} for an array of shape {!r}."


class InsufficientBudgetError(BaseChunkReduceError, ValueError):
    """
    Raised when the memory budget cannot hold the smallest admissible block.
    """

    _msg = (
        "A memory budget of {} bytes cannot hold one chunk row of {} bytes "
        "spanning the reduction axis."
    )


class IncompletePartitionError(BaseChunkReduceError, RuntimeError):
    """
    Raised when an order-statistic reduction is applied to a block that does
    not span the whole reduction axis. This is a planner/reducer mismatch and
    never happens with plans built by :func:`chunkreduce.planning.plan`.
    """

    _msg = "Block {!r} does not span axis {} of length {}; cannot compute {!r}."


class OutOfBoundsError(BaseChunkReduceError, IndexError):
    """
    Raised when a region request exceeds the shape of the source.
    """

    _msg = "Region {!r} is out of bounds for an array of shape {!r}."


class SourceIOError(BaseChunkReduceError, OSError):
    """
    A transient failure while reading from a source. The orchestrator retries
    reads failing with this error.
    """


class BlockTimeoutError(SourceIOError):
    """Raised when a block read does not finish within the configured timeout."""

    _msg = "Reading region {!r} did not finish within {} seconds."


class BlockReductionError(BaseChunkReduceError, RuntimeError):
    """
    Raised when a run is aborted.

    Attributes
    ----------
    region : Region or None
        The region of the block that failed. ``None`` when the run was cancelled.
    reduction : str
        Name of the reduction that was running.
    attempts : int
        How many times the failing block was attempted.
    partial : ReductionResult or None
        Everything that was finalized before the run stopped. Cells that were
        not finalized are flagged in ``partial.completed``.
    """

    def __init__(
        self,
        message: str,
        *,
        region: Region | None = None,
        reduction: str = "",
        attempts: int = 0,
        partial: ReductionResult | None = None,
    ) -> None:
        super().__init__(message)
        self.region = region
        self.reduction = reduction
        self.attempts = attempts
        self.partial = partial


class UnalignedBlockWarning(RuntimeWarning):
    """
    A warning raised when a block does not line up with chunk boundaries, so that
    some chunks are read more than once.
    """
