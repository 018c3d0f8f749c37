from __future__ import annotations

import logging
import sys
import threading
import time
from abc import ABC, abstractmethod
from collections import Counter, defaultdict
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import numpy as np
import zarr

from chunkreduce.chunk_grids import ChunkGrid, normalize_chunks
from chunkreduce.errors import SourceIOError

if TYPE_CHECKING:
    from collections.abc import Generator

    import numpy.typing as npt

    from chunkreduce.common import ChunkCoords
    from chunkreduce.indexing import Region

__all__ = [
    "ChunkedArraySource",
    "LoggingSource",
    "MemorySource",
    "WrapperSource",
    "ZarrArraySource",
    "as_source",
]


class ChunkedArraySource(ABC):
    """
    Abstract base class for chunked, read-only N-dimensional array sources.

    A source describes its shape, its nominal chunk shape and its data type, and
    can read an arbitrary rectangular region into memory.
    """

    @property
    @abstractmethod
    def shape(self) -> tuple[int, ...]:
        """Extent of the array along each dimension."""
        ...

    @property
    @abstractmethod
    def chunk_shape(self) -> tuple[int, ...]:
        """Nominal chunk extent along each dimension."""
        ...

    @property
    @abstractmethod
    def dtype(self) -> np.dtype[Any]: ...

    @abstractmethod
    def read(self, region: Region) -> npt.NDArray[Any]:
        """Read ``region`` into a dense in-memory array.

        Parameters
        ----------
        region : Region
            The region to read.

        Returns
        -------
        numpy.ndarray
            An array whose shape is ``region.shape``.

        Raises
        ------
        OutOfBoundsError
            If the region exceeds the shape of the source.
        SourceIOError
            If the read failed for a transient reason and may be retried.
        """
        ...

    @property
    def ndim(self) -> int:
        return len(self.shape)

    @property
    def itemsize(self) -> int:
        return int(self.dtype.itemsize)

    @property
    def chunk_grid(self) -> ChunkGrid:
        return ChunkGrid.from_source(self)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(shape={self.shape}, chunks={self.chunk_shape}, dtype={self.dtype})"


class MemorySource(ChunkedArraySource):
    """
    A source backed by an in-memory numpy array, with a virtual chunk layout.

    Parameters
    ----------
    array : array-like
        The data.
    chunks : int, tuple or None
        The chunk shape. Accepts everything :func:`chunkreduce.chunk_grids.normalize_chunks`
        accepts; ``None`` guesses a layout from the shape and item size.
    """

    def __init__(self, array: npt.ArrayLike, chunks: Any = None) -> None:
        self._array = np.asarray(array)
        self._chunk_shape = normalize_chunks(chunks, self._array.shape, self._array.dtype.itemsize)

    @property
    def shape(self) -> tuple[int, ...]:
        return tuple(self._array.shape)

    @property
    def chunk_shape(self) -> tuple[int, ...]:
        return self._chunk_shape

    @property
    def dtype(self) -> np.dtype[Any]:
        return self._array.dtype

    def read(self, region: Region) -> npt.NDArray[Any]:
        region.check_bounds(self.shape)
        # copy so that callers never alias the backing array
        return np.array(self._array[region.slices])


class ZarrArraySource(ChunkedArraySource):
    """
    Adapter exposing a :class:`zarr.Array` as a chunked source.

    ``OSError`` raised by the underlying store is reported as :class:`SourceIOError`,
    so that the orchestrator can retry it.
    """

    def __init__(self, array: zarr.Array) -> None:
        self._array = array

    @property
    def array(self) -> zarr.Array:
        return self._array

    @property
    def shape(self) -> tuple[int, ...]:
        return tuple(self._array.shape)

    @property
    def chunk_shape(self) -> tuple[int, ...]:
        return tuple(self._array.chunks)

    @property
    def dtype(self) -> np.dtype[Any]:
        return np.dtype(self._array.dtype)

    def read(self, region: Region) -> npt.NDArray[Any]:
        region.check_bounds(self.shape)
        try:
            data = self._array[region.slices]
        except OSError as e:
            raise SourceIOError(f"Failed to read {region!r} from {self._array!r}: {e}") from e
        return np.asarray(data)


class WrapperSource(ChunkedArraySource):
    """
    Source that delegates everything to a wrapped source. Subclass it to intercept
    some of the calls.
    """

    _source: ChunkedArraySource

    def __init__(self, source: ChunkedArraySource) -> None:
        self._source = source

    @property
    def shape(self) -> tuple[int, ...]:
        return self._source.shape

    @property
    def chunk_shape(self) -> tuple[int, ...]:
        return self._source.chunk_shape

    @property
    def dtype(self) -> np.dtype[Any]:
        return self._source.dtype

    def read(self, region: Region) -> npt.NDArray[Any]:
        return self._source.read(region)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._source!r})"


class LoggingSource(WrapperSource):
    """
    Source wrapper that logs all reads of the wrapped source.

    Parameters
    ----------
    source : ChunkedArraySource
        Source to wrap
    log_level : str
        Log level
    log_handler : logging.Handler
        Log handler

    Attributes
    ----------
    counter : dict
        Counter of number of times each method has been called
    regions_read : list
        Every region passed to ``read``, in call order
    """

    counter: defaultdict[str, int]
    regions_read: list[Region]

    def __init__(
        self,
        source: ChunkedArraySource,
        log_level: str = "DEBUG",
        log_handler: logging.Handler | None = None,
    ) -> None:
        super().__init__(source)
        self.counter = defaultdict(int)
        self.regions_read = []
        self._lock = threading.Lock()
        self._configure_logger(log_level, log_handler)

    def _configure_logger(
        self, log_level: str = "DEBUG", log_handler: logging.Handler | None = None
    ) -> None:
        self.log_level = log_level
        self.logger = logging.getLogger(f"LoggingSource({self._source!r})")
        self.logger.setLevel(log_level)

        if not self.logger.hasHandlers():
            if not log_handler:
                log_handler = self._default_handler()
            # Add handler to logger
            self.logger.addHandler(log_handler)

    def _default_handler(self) -> logging.Handler:
        """Define a default log handler"""
        handler = logging.StreamHandler(stream=sys.stdout)
        handler.setLevel(self.log_level)
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        return handler

    @contextmanager
    def log(self, method: str, hint: Any = "") -> Generator[None, None, None]:
        """Context manager to log method calls

        Each call to the wrapped source is logged to the configured logger and added to
        the counter dict.
        """
        op = f"{type(self._source).__name__}.{method}"
        if hint:
            op = f"{op}({hint})"
        self.logger.info(" Calling %s", op)
        start_time = time.time()
        try:
            with self._lock:
                self.counter[method] += 1
            yield
        finally:
            end_time = time.time()
            self.logger.info("Finished %s [%.2f s]", op, end_time - start_time)

    def read(self, region: Region) -> npt.NDArray[Any]:
        with self.log("read", region):
            with self._lock:
                self.regions_read.append(region)
            return self._source.read(region)

    def chunk_reads(self) -> Counter[ChunkCoords]:
        """How many times each chunk of the wrapped source was touched by a read."""
        grid = self.chunk_grid
        counts: Counter[ChunkCoords] = Counter()
        for region in self.regions_read:
            counts.update(grid.chunks_in_region(region))
        return counts


def as_source(data: Any, chunks: Any = None) -> ChunkedArraySource:
    """Coerce ``data`` to a :class:`ChunkedArraySource`.

    Sources are returned unchanged, zarr arrays are wrapped in :class:`ZarrArraySource`
    and anything else is converted to a numpy array and wrapped in :class:`MemorySource`.
    """
    if isinstance(data, ChunkedArraySource):
        return data
    if isinstance(data, zarr.Array):
        return ZarrArraySource(data)
    return MemorySource(data, chunks=chunks)
