from __future__ import annotations

import itertools
import logging
import warnings
from collections import Counter
from dataclasses import dataclass
from typing import TYPE_CHECKING

from chunkreduce._info import PlanInfo
from chunkreduce.common import ceildiv, parse_axis, product
from chunkreduce.config import CumulativeStrategy, parse_cumulative_strategy
from chunkreduce.errors import InsufficientBudgetError, UnalignedBlockWarning
from chunkreduce.indexing import Region
from chunkreduce.reduction import ReductionKind, parse_reduction_kind

if TYPE_CHECKING:
    from collections.abc import Iterator

    from chunkreduce.chunk_grids import ChunkGrid

logger = logging.getLogger(__name__)

__all__ = ["ReductionPlan", "SuperBlock", "plan"]


@dataclass(frozen=True)
class SuperBlock:
    """
    A chunk-aligned group of whole chunks that is read and reduced in one go.

    Attributes
    ----------
    index : int
        Position of the block in its plan.
    region : Region
        The region of the source array covered by the block.
    output_region : Region
        ``region`` with the reduction axis removed; the cells of the output this
        block contributes to.
    nbytes : int
        In-memory footprint of the block.
    spans_axis : bool
        Whether the block covers the whole reduction axis.
    """

    index: int
    region: Region
    output_region: Region
    nbytes: int
    spans_axis: bool


@dataclass(frozen=True)
class ReductionPlan:
    """
    The ordered blocks of one out-of-core reduction, together with the layout they
    were derived from.
    """

    blocks: tuple[SuperBlock, ...]
    grid: ChunkGrid
    axis: int
    kind: ReductionKind
    strategy: CumulativeStrategy
    itemsize: int
    memory_budget_bytes: int
    block_chunks: tuple[int, ...]

    def __len__(self) -> int:
        return len(self.blocks)

    def __iter__(self) -> Iterator[SuperBlock]:
        return iter(self.blocks)

    @property
    def nblocks(self) -> int:
        return len(self.blocks)

    @property
    def max_block_nbytes(self) -> int:
        return max((b.nbytes for b in self.blocks), default=0)

    @property
    def output_shape(self) -> tuple[int, ...]:
        shape = self.grid.shape
        return shape[: self.axis] + shape[self.axis + 1 :]

    @property
    def block_shape(self) -> tuple[int, ...]:
        """Nominal extent of a block, before truncation at the array edge."""
        return tuple(
            min(n * c, s)
            for n, c, s in zip(self.block_chunks, self.grid.chunk_shape, self.grid.shape, strict=True)
        )

    def footprints(self) -> Counter[Region]:
        """The output region of every block, with the number of blocks writing to it."""
        return Counter(b.output_region for b in self.blocks)

    def check(self) -> None:
        """
        Check every block against the grid.

        Raises
        ------
        OutOfBoundsError
            If a block exceeds the array shape.
        """
        for block in self.blocks:
            block.region.check_bounds(self.grid.shape)
            if not self.grid.is_aligned(block.region):
                warnings.warn(
                    f"Block {block.index} {block.region!r} is not aligned to the chunk grid "
                    f"{self.grid.chunk_shape}; chunks on its boundary are read more than once.",
                    UnalignedBlockWarning,
                    stacklevel=2,
                )

    def info(self) -> PlanInfo:
        return PlanInfo(
            _shape=self.grid.shape,
            _chunk_shape=self.grid.chunk_shape,
            _axis=self.axis,
            _kind=self.kind.value,
            _strategy=self.strategy,
            _block_shape=self.block_shape,
            _nblocks=self.nblocks,
            _nchunks=self.grid.nchunks,
            _max_block_nbytes=self.max_block_nbytes,
            _memory_budget_bytes=self.memory_budget_bytes,
        )


def _block_nbytes(grid: ChunkGrid, counts: list[int], itemsize: int) -> int:
    extents = tuple(
        min(n * c, s) for n, c, s in zip(counts, grid.chunk_shape, grid.shape, strict=True)
    )
    return product(extents) * itemsize


def _grow(
    grid: ChunkGrid, counts: list[int], dim: int, itemsize: int, memory_budget_bytes: int
) -> None:
    """Grow ``counts[dim]`` in place, first by doubling then one chunk at a time, for as
    long as the block stays within the budget and within the grid."""
    limit = grid.grid_shape[dim]

    def fits(n: int) -> bool:
        trial = counts.copy()
        trial[dim] = n
        return _block_nbytes(grid, trial, itemsize) <= memory_budget_bytes

    while counts[dim] < limit and fits(min(2 * counts[dim], limit)):
        counts[dim] = min(2 * counts[dim], limit)
    while counts[dim] < limit and fits(counts[dim] + 1):
        counts[dim] += 1


def plan(
    grid: ChunkGrid,
    axis: int,
    kind: ReductionKind | str,
    memory_budget_bytes: int,
    itemsize: int,
    *,
    strategy: CumulativeStrategy = "full-axis",
) -> ReductionPlan:
    """
    Partition ``grid`` into chunk-aligned blocks for a reduction along ``axis``.

    Blocks of order-statistic reductions, and of cumulative reductions with the
    ``"full-axis"`` strategy, span the whole reduction axis. With the ``"streaming"``
    strategy a cumulative reduction may instead step through the reduction axis, and its
    partial results are accumulated by the caller.

    Block extents are grown one dimension at a time, outermost first, doubling and then
    incrementing the number of chunks per block while the block fits in
    ``memory_budget_bytes``. Blocks are emitted in row-major order; for streaming plans
    the reduction axis varies fastest, so all contributions to an output region are
    consecutive.

    Parameters
    ----------
    grid : ChunkGrid
        The chunk layout of the array to reduce.
    axis : int
        The reduction axis. May be negative.
    kind : ReductionKind or str
        The kind of reduction.
    memory_budget_bytes : int
        Upper bound on the in-memory footprint of one block.
    itemsize : int
        Size of one array element in bytes.
    strategy : {"full-axis", "streaming"}
        Planning strategy for cumulative reductions. Ignored for order statistics.

    Returns
    -------
    ReductionPlan

    Raises
    ------
    InvalidAxisError
        If ``axis`` is out of range or has zero extent.
    InsufficientBudgetError
        If one chunk row along the reduction axis (one chunk when streaming) exceeds the
        budget.
    """
    axis = parse_axis(axis, grid.shape)
    kind = parse_reduction_kind(kind)
    strategy = parse_cumulative_strategy(strategy)
    if itemsize < 1:
        raise ValueError(f"Expected a positive item size. Got {itemsize} instead.")

    streaming = kind is ReductionKind.cumulative and strategy == "streaming"
    grid_shape = grid.grid_shape
    counts = [1] * grid.ndim
    if not streaming:
        counts[axis] = grid_shape[axis]

    smallest = _block_nbytes(grid, counts, itemsize)
    if smallest > memory_budget_bytes:
        raise InsufficientBudgetError(memory_budget_bytes, smallest)

    other_dims = [d for d in range(grid.ndim) if d != axis]
    for dim in other_dims:
        _grow(grid, counts, dim, itemsize, memory_budget_bytes)
    if streaming:
        _grow(grid, counts, axis, itemsize, memory_budget_bytes)

    # the reduction axis varies fastest when it is split
    order = [*other_dims, axis]
    nblocks_per_dim = [ceildiv(grid_shape[d], counts[d]) for d in order]
    blocks: list[SuperBlock] = []
    for block_coords in itertools.product(*(range(n) for n in nblocks_per_dim)):
        start = [0] * grid.ndim
        stop = [0] * grid.ndim
        for d, i in zip(order, block_coords, strict=True):
            step = counts[d] * grid.chunk_shape[d]
            start[d] = i * step
            stop[d] = min(start[d] + step, grid.shape[d])
        region = Region(start=tuple(start), stop=tuple(stop))
        blocks.append(
            SuperBlock(
                index=len(blocks),
                region=region,
                output_region=region.drop_axis(axis),
                nbytes=region.nbytes(itemsize),
                spans_axis=region.spans_axis(axis, grid.shape),
            )
        )

    result = ReductionPlan(
        blocks=tuple(blocks),
        grid=grid,
        axis=axis,
        kind=kind,
        strategy=strategy,
        itemsize=itemsize,
        memory_budget_bytes=memory_budget_bytes,
        block_chunks=tuple(counts),
    )
    logger.debug(
        "Planned %d blocks of %s chunks (%s elements) for a %s reduction along axis %d",
        result.nblocks,
        result.block_chunks,
        result.block_shape,
        kind.value,
        axis,
    )
    return result
