from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import numpy as np

from chunkreduce import planning
from chunkreduce.config import config, parse_cumulative_strategy
from chunkreduce.errors import (
    BlockReductionError,
    BlockTimeoutError,
    IncompletePartitionError,
    SourceIOError,
)
from chunkreduce.reduction import (
    WORKING_DTYPE,
    PartialAggregate,
    ReductionKind,
    ReductionSpec,
    reduce_block,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    import numpy.typing as npt

    from chunkreduce.config import CumulativeStrategy
    from chunkreduce.indexing import Region
    from chunkreduce.planning import ReductionPlan, SuperBlock
    from chunkreduce.source import ChunkedArraySource

    ProgressCallback = Callable[[int, int], None]

logger = logging.getLogger(__name__)

# how often the scheduler looks for finished blocks while waiting for a worker or memory
_POLL_INTERVAL = 0.05

__all__ = ["MemoryGate", "OutOfCoreReducer", "ReductionResult"]


class MemoryGate:
    """
    A counting semaphore over bytes.

    ``acquire(n)`` blocks until ``n`` bytes fit under the capacity alongside everything
    acquired and not yet released.
    """

    def __init__(self, capacity: int) -> None:
        self._capacity = capacity
        self._in_use = 0
        self._peak = 0
        self._cond = threading.Condition()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def in_use(self) -> int:
        with self._cond:
            return self._in_use

    @property
    def peak(self) -> int:
        """The largest number of bytes held at once."""
        with self._cond:
            return self._peak

    def acquire(self, nbytes: int, timeout: float | None = None) -> bool:
        """Reserve ``nbytes``. Returns False if they did not fit within ``timeout`` seconds."""
        if nbytes > self._capacity:
            raise ValueError(f"Cannot acquire {nbytes} bytes from a gate of {self._capacity}.")
        with self._cond:
            if not self._cond.wait_for(
                lambda: self._in_use + nbytes <= self._capacity, timeout=timeout
            ):
                return False
            self._in_use += nbytes
            self._peak = max(self._peak, self._in_use)
            return True

    def release(self, nbytes: int) -> None:
        with self._cond:
            self._in_use -= nbytes
            self._cond.notify_all()


@dataclass
class ReductionResult:
    """
    The output of a run.

    Attributes
    ----------
    values : numpy.ndarray
        The reduced array; the input shape with the reduction axis removed. Cells that
        were not computed hold the reduction's fill value.
    completed : numpy.ndarray
        Boolean mask of the cells of ``values`` that hold a final result.
    plan : ReductionPlan
        The plan that was executed.
    reduction : ReductionSpec
        What was computed.
    blocks_done : int
        Number of blocks whose results were written.
    cancelled : bool
        Whether the run stopped because it was cancelled.
    """

    values: npt.NDArray[Any]
    completed: npt.NDArray[np.bool_]
    plan: ReductionPlan
    reduction: ReductionSpec
    blocks_done: int = 0
    cancelled: bool = False

    @property
    def blocks_total(self) -> int:
        return self.plan.nblocks

    @property
    def complete(self) -> bool:
        return bool(self.completed.all())

    def masked(self) -> np.ma.MaskedArray[Any, Any]:
        """``values`` as a masked array hiding the cells that were not computed."""
        return np.ma.masked_array(self.values, mask=~self.completed)


@dataclass
class _Footprint:
    """Partial aggregates for one output region, merged in plan order."""

    indices: list[int]
    running: PartialAggregate | None = None
    buffered: dict[int, PartialAggregate] = field(default_factory=dict)
    position: int = 0

    def add(self, index: int, partial: PartialAggregate) -> PartialAggregate | None:
        """Add the partial result of block ``index``. Returns the merged aggregate once
        every block is in, None before that."""
        self.buffered[index] = partial
        while self.position < len(self.indices) and self.indices[self.position] in self.buffered:
            part = self.buffered.pop(self.indices[self.position])
            self.running = part if self.running is None else self.running.merge(part)
            self.position += 1
        if self.position < len(self.indices):
            return None
        return self.running


class _OutputBuffer:
    """The output of one run. Only the orchestrating thread writes to it."""

    def __init__(self, plan: ReductionPlan, spec: ReductionSpec) -> None:
        self.spec = spec
        self.values = np.full(plan.output_shape, spec.fill_value, dtype=spec.output_dtype)
        self.completed = np.zeros(plan.output_shape, dtype=bool)
        self._footprints: dict[Region, _Footprint] = {}
        for block in plan:
            if not block.spans_axis:
                fp = self._footprints.setdefault(block.output_region, _Footprint(indices=[]))
                fp.indices.append(block.index)

    def write(self, block: SuperBlock, result: npt.NDArray[Any] | PartialAggregate) -> None:
        slices = block.output_region.slices
        if isinstance(result, PartialAggregate):
            merged = self._footprints[block.output_region].add(block.index, result)
            if merged is None:
                return
            # all contributions are in; finalize once and drop the running state
            del self._footprints[block.output_region]
            result = merged.finalize(self.spec)
        self.values[slices] = result
        self.completed[slices] = True


class OutOfCoreReducer:
    """
    Computes reductions over chunked sources without loading them whole.

    Every parameter defaults to the corresponding ``chunkreduce.config`` value.

    Parameters
    ----------
    max_workers : int, optional
        Number of worker threads reducing blocks. ``1`` processes blocks one after
        the other.
    max_retries : int, optional
        How many times a block read failing with :class:`SourceIOError` is retried.
    retry_backoff : float, optional
        Seconds to wait before the first retry; doubled on every further retry.
    block_timeout : float, optional
        Seconds a block read may take before it is abandoned and retried. ``None``
        waits indefinitely. An abandoned read cannot be interrupted: it keeps its
        share of the memory budget until it returns, and a retry waits at most
        ``block_timeout`` seconds for that memory. ``concurrent.futures`` joins the
        threads of abandoned reads when the interpreter exits, so a read that never
        returns blocks interpreter shutdown.
    cumulative_strategy : {"full-axis", "streaming"}, optional
        How cumulative reductions are planned.
    """

    def __init__(
        self,
        *,
        max_workers: int | None = None,
        max_retries: int | None = None,
        retry_backoff: float | None = None,
        block_timeout: float | None = None,
        cumulative_strategy: CumulativeStrategy | None = None,
    ) -> None:
        if max_workers is None:
            max_workers = config.get("threading.max_workers") or 1
        if max_retries is None:
            max_retries = config.get("reduce.max_retries")
        if retry_backoff is None:
            retry_backoff = config.get("reduce.retry_backoff")
        if block_timeout is None:
            block_timeout = config.get("reduce.block_timeout")
        if cumulative_strategy is None:
            cumulative_strategy = config.get("reduce.cumulative_strategy")

        if max_workers < 1:
            raise ValueError(f"max_workers must be at least 1. Got {max_workers}.")
        if max_retries < 0:
            raise ValueError(f"max_retries must be non-negative. Got {max_retries}.")
        if block_timeout is not None and block_timeout <= 0:
            raise ValueError(f"block_timeout must be positive. Got {block_timeout}.")

        self.max_workers = int(max_workers)
        self.max_retries = int(max_retries)
        self.retry_backoff = float(retry_backoff)
        self.block_timeout = block_timeout
        self.cumulative_strategy = parse_cumulative_strategy(cumulative_strategy)

    def __repr__(self) -> str:
        return (
            f"OutOfCoreReducer(max_workers={self.max_workers}, max_retries={self.max_retries}, "
            f"retry_backoff={self.retry_backoff}, block_timeout={self.block_timeout}, "
            f"cumulative_strategy={self.cumulative_strategy!r})"
        )

    def plan(
        self,
        source: ChunkedArraySource,
        axis: int,
        reduction: str,
        memory_budget_bytes: int | None = None,
        *,
        q: float | None = None,
    ) -> ReductionPlan:
        """Plan a reduction of ``source`` without reading anything."""
        spec = ReductionSpec(reduction, axis, q).normalize(source.shape)
        if memory_budget_bytes is None:
            memory_budget_bytes = config.get("reduce.memory_budget_bytes")
        return planning.plan(
            source.chunk_grid,
            spec.axis,
            spec.kind,
            memory_budget_bytes,
            # blocks are held as working values once read
            max(source.itemsize, WORKING_DTYPE.itemsize),
            strategy=self.cumulative_strategy,
        )

    def run(
        self,
        source: ChunkedArraySource,
        axis: int,
        reduction: str,
        memory_budget_bytes: int | None = None,
        *,
        q: float | None = None,
        plan: ReductionPlan | None = None,
        progress: ProgressCallback | None = None,
        cancel: threading.Event | None = None,
    ) -> ReductionResult:
        """
        Reduce ``source`` along ``axis``.

        Parameters
        ----------
        source : ChunkedArraySource
            The array to reduce.
        axis : int
            The reduction axis. May be negative.
        reduction : str
            One of ``"mean"``, ``"sum"``, ``"count"``, ``"median"``, ``"percentile"``.
        memory_budget_bytes : int, optional
            Ceiling on the bytes held by blocks in flight at once. Blocks are sized
            as float64 values, the precision reductions are computed in, whatever the
            dtype of the source; numpy temporaries are not counted. Defaults to
            ``reduce.memory_budget_bytes``.
        q : float, optional
            The percentile for ``"percentile"``.
        plan : ReductionPlan, optional
            A precomputed plan for ``source``. Planned from the arguments if omitted.
        progress : callable, optional
            Called as ``progress(blocks_done, blocks_total)`` after every block.
        cancel : threading.Event, optional
            Checked before each block is scheduled. Once set, no further blocks are
            scheduled and the partial result is returned with ``cancelled=True``.

        Returns
        -------
        ReductionResult

        Raises
        ------
        InvalidAxisError, InsufficientBudgetError, IncompletePartitionError
            Before any data is read, if the reduction cannot be planned.
        BlockReductionError
            If a block fails. The error's ``partial`` attribute holds the result of
            every block that finished.
        """
        spec = ReductionSpec(reduction, axis, q).normalize(source.shape)
        if memory_budget_bytes is None:
            memory_budget_bytes = config.get("reduce.memory_budget_bytes")
        if plan is None:
            plan = self.plan(source, spec.axis, spec.name, memory_budget_bytes, q=spec.q)
        else:
            self._check_plan(plan, source, spec)

        output = _OutputBuffer(plan, spec)
        # a caller plan may hold blocks larger than the budget; admit those one at a time
        gate = MemoryGate(max(memory_budget_bytes, plan.max_block_nbytes))
        total = plan.nblocks
        done = 0
        cancelled = False
        failure: tuple[SuperBlock, BlockReductionError] | None = None
        pending: dict[Future[Any], SuperBlock] = {}

        def collect(futures: set[Future[Any]]) -> None:
            nonlocal done, failure
            for future in futures:
                block = pending.pop(future)
                try:
                    result = future.result()
                except BlockReductionError as e:
                    if failure is None:
                        failure = (block, e)
                    continue
                output.write(block, result)
                done += 1
                logger.debug("Finished block %d/%d %r", done, total, block.region)
                if progress is not None:
                    progress(done, total)

        def admit(block: SuperBlock) -> bool:
            """Wait for a free worker and reserve the bytes of ``block``, collecting
            finished blocks meanwhile. Returns False once the run fails or is cancelled."""
            nonlocal cancelled
            while True:
                if pending:
                    timeout = _POLL_INTERVAL if len(pending) >= self.max_workers else 0
                    finished, _ = wait(pending, timeout=timeout, return_when=FIRST_COMPLETED)
                    collect(finished)
                if failure is not None:
                    return False
                if cancel is not None and cancel.is_set():
                    logger.info("Cancelled after scheduling %d of %d blocks", block.index, total)
                    cancelled = True
                    return False
                # an admitted block never waits for a worker while holding memory
                if len(pending) < self.max_workers and gate.acquire(
                    block.nbytes, timeout=_POLL_INTERVAL
                ):
                    return True

        logger.debug("Reducing %r with %s in %d blocks", source, spec, total)
        io_pool = (
            ThreadPoolExecutor(thread_name_prefix="chunkreduce_io")
            if self.block_timeout is not None
            else None
        )
        try:
            with ThreadPoolExecutor(self.max_workers, thread_name_prefix="chunkreduce") as pool:
                for block in plan:
                    if not admit(block):
                        break
                    # the first attempt of the block inherits this reservation
                    future = pool.submit(
                        self._process_block, source, block, spec, gate, io_pool
                    )
                    pending[future] = block
                while pending:
                    finished, _ = wait(pending, return_when=FIRST_COMPLETED)
                    collect(finished)
        finally:
            if io_pool is not None:
                # abandoned reads must not hold up the caller
                io_pool.shutdown(wait=False, cancel_futures=True)

        result = ReductionResult(
            values=output.values,
            completed=output.completed,
            plan=plan,
            reduction=spec,
            blocks_done=done,
            cancelled=cancelled,
        )
        if failure is not None:
            block, error = failure
            logger.error(
                "Aborted %s after %d of %d blocks: block %d %r failed",
                spec,
                done,
                total,
                block.index,
                block.region,
            )
            error.partial = result
            raise error
        return result

    def _check_plan(
        self, plan: ReductionPlan, source: ChunkedArraySource, spec: ReductionSpec
    ) -> None:
        if plan.grid != source.chunk_grid:
            raise ValueError(
                f"The plan was made for {plan.grid}, which does not match {source.chunk_grid}."
            )
        if plan.axis != spec.axis:
            raise ValueError(f"The plan reduces axis {plan.axis}, not axis {spec.axis}.")
        plan.check()
        if spec.kind is ReductionKind.order_statistic:
            for block in plan:
                if not block.spans_axis:
                    raise IncompletePartitionError(
                        block.region, spec.axis, source.shape[spec.axis], spec.name
                    )

    def _process_block(
        self,
        source: ChunkedArraySource,
        block: SuperBlock,
        spec: ReductionSpec,
        gate: MemoryGate,
        io_pool: ThreadPoolExecutor | None,
    ) -> npt.NDArray[Any] | PartialAggregate:
        """Reduce ``block``, retrying transient failures.

        The scheduler reserved ``block.nbytes`` in ``gate`` for the first attempt; every
        retry reserves them again, and each attempt gives its reservation back once its
        read has returned.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                if attempt > 1 and not gate.acquire(block.nbytes, timeout=self.block_timeout):
                    raise BlockTimeoutError(
                        f"No memory was released for another read of {block.region!r} "
                        f"within {self.block_timeout} seconds."
                    )
                return self._reduce_once(source, block, spec, gate, io_pool)
            except SourceIOError as e:
                if attempt > self.max_retries:
                    raise BlockReductionError(
                        f"Computing {spec} failed for block {block.index} {block.region!r} "
                        f"after {attempt} attempts: {e}",
                        region=block.region,
                        reduction=spec.name,
                        attempts=attempt,
                    ) from e
                delay = self.retry_backoff * 2 ** (attempt - 1)
                logger.warning(
                    "Reading block %d %r failed (%s); retrying in %.2f s",
                    block.index,
                    block.region,
                    e,
                    delay,
                )
                time.sleep(delay)
            except Exception as e:
                raise BlockReductionError(
                    f"Computing {spec} failed for block {block.index} {block.region!r}: {e}",
                    region=block.region,
                    reduction=spec.name,
                    attempts=attempt,
                ) from e

    def _reduce_once(
        self,
        source: ChunkedArraySource,
        block: SuperBlock,
        spec: ReductionSpec,
        gate: MemoryGate,
        io_pool: ThreadPoolExecutor | None,
    ) -> npt.NDArray[Any] | PartialAggregate:
        """One attempt at ``block``. Releases the attempt's reservation in ``gate`` when
        the read is over, which for an abandoned read is after this method returns."""
        if self.block_timeout is None or io_pool is None:
            try:
                return reduce_block(source, block, spec)
            finally:
                gate.release(block.nbytes)
        try:
            future = io_pool.submit(reduce_block, source, block, spec)
        except RuntimeError:
            gate.release(block.nbytes)
            raise
        future.add_done_callback(lambda _: gate.release(block.nbytes))
        finished, _ = wait([future], timeout=self.block_timeout)
        if not finished:
            # the read keeps running in its thread and holds its bytes until it returns
            future.cancel()
            raise BlockTimeoutError(block.region, self.block_timeout)
        return future.result()
