from chunkreduce._version import version as __version__
from chunkreduce.api import count, mean, median, percentile, reduce, sum
from chunkreduce.chunk_grids import ChunkGrid, normalize_chunks
from chunkreduce.config import config
from chunkreduce.errors import (
    BlockReductionError,
    BlockTimeoutError,
    IncompletePartitionError,
    InsufficientBudgetError,
    InvalidAxisError,
    OutOfBoundsError,
    SourceIOError,
)
from chunkreduce.indexing import Region
from chunkreduce.planning import ReductionPlan, SuperBlock, plan
from chunkreduce.reducer import OutOfCoreReducer, ReductionResult
from chunkreduce.reduction import (
    PartialAggregate,
    ReductionKind,
    ReductionSpec,
    reduce_array,
    reduce_block,
)
from chunkreduce.source import (
    ChunkedArraySource,
    LoggingSource,
    MemorySource,
    WrapperSource,
    ZarrArraySource,
    as_source,
)

__all__ = [
    "BlockReductionError",
    "BlockTimeoutError",
    "ChunkGrid",
    "ChunkedArraySource",
    "IncompletePartitionError",
    "InsufficientBudgetError",
    "InvalidAxisError",
    "LoggingSource",
    "MemorySource",
    "OutOfBoundsError",
    "OutOfCoreReducer",
    "PartialAggregate",
    "ReductionKind",
    "ReductionPlan",
    "ReductionResult",
    "ReductionSpec",
    "Region",
    "SourceIOError",
    "SuperBlock",
    "WrapperSource",
    "ZarrArraySource",
    "__version__",
    "as_source",
    "config",
    "count",
    "mean",
    "median",
    "normalize_chunks",
    "percentile",
    "plan",
    "reduce",
    "reduce_array",
    "reduce_block",
    "sum",
]
