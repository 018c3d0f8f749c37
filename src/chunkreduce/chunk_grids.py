from __future__ import annotations

import itertools
import math
import numbers
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np

from chunkreduce.common import ShapeLike, ceildiv, parse_shapelike, product
from chunkreduce.indexing import Region

if TYPE_CHECKING:
    from collections.abc import Iterator
    from typing import Self

    from chunkreduce.common import ChunkCoords
    from chunkreduce.source import ChunkedArraySource


# _guess_chunks and normalize_chunks are taken from zarr.core.chunk_grids with
# minor changes; zarr in turn adapted the chunk guessing from h5py.
def _guess_chunks(
    shape: tuple[int, ...] | int,
    typesize: int,
    *,
    increment_bytes: int = 256 * 1024,
    min_bytes: int = 128 * 1024,
    max_bytes: int = 64 * 1024 * 1024,
) -> tuple[int, ...]:
    """
    Iteratively guess an appropriate chunk layout for an array, given its shape and
    the size of each element in bytes, and size constraints expressed in bytes. This logic is
    adapted from h5py.

    Parameters
    ----------
    shape : tuple[int, ...]
        The array shape.
    typesize : int
        The size, in bytes, of each element of the chunk.
    increment_bytes : int = 256 * 1024
        The number of bytes used to increment or decrement the target chunk size in bytes.
    min_bytes : int = 128 * 1024
        The soft lower bound on the final chunk size in bytes.
    max_bytes : int = 64 * 1024 * 1024
        The hard upper bound on the final chunk size in bytes.

    Returns
    -------
    tuple[int, ...]

    """
    if isinstance(shape, int):
        shape = (shape,)

    if typesize == 0:
        return shape

    ndims = len(shape)
    # require chunks to have non-zero length for all dimensions
    chunks = np.maximum(np.array(shape, dtype="=f8"), 1)

    # Determine the optimal chunk size in bytes using a PyTables expression.
    # This is kept as a float.
    dset_size = np.prod(chunks) * typesize
    target_size = increment_bytes * (2 ** np.log10(dset_size / (1024.0 * 1024)))

    if target_size > max_bytes:
        target_size = max_bytes
    elif target_size < min_bytes:
        target_size = min_bytes

    idx = 0
    while True:
        # Repeatedly loop over the axes, dividing them by 2.  Stop when:
        # 1a. We're smaller than the target chunk size, OR
        # 1b. We're within 50% of the target chunk size, AND
        # 2. The chunk is smaller than the maximum chunk size

        chunk_bytes = np.prod(chunks) * typesize

        if (
            chunk_bytes < target_size or abs(chunk_bytes - target_size) / target_size < 0.5
        ) and chunk_bytes < max_bytes:
            break

        if np.prod(chunks) == 1:
            break  # Element size larger than max_bytes

        chunks[idx % ndims] = math.ceil(chunks[idx % ndims] / 2.0)
        idx += 1

    return tuple(int(x) for x in chunks)


def normalize_chunks(chunks: Any, shape: tuple[int, ...], typesize: int) -> tuple[int, ...]:
    """Convenience function to normalize the `chunks` argument for an array
    with the given `shape`."""

    # handle auto-chunking
    if chunks is None or chunks is True:
        return _guess_chunks(shape, typesize)

    # handle no chunking
    if chunks is False:
        return shape

    # handle 1D convenience form
    if isinstance(chunks, numbers.Integral):
        chunks = tuple(int(chunks) for _ in shape)

    # handle dask-style chunks (iterable of iterables)
    if all(isinstance(c, (tuple | list)) for c in chunks):
        # take first chunk size for each dimension
        chunks = tuple(c[0] for c in chunks)

    chunks = tuple(chunks)

    # handle bad dimensionality
    if len(chunks) > len(shape):
        raise ValueError("too many dimensions in chunks")

    # handle underspecified chunks
    if len(chunks) < len(shape):
        # assume chunks across remaining dimensions
        chunks += shape[len(chunks) :]

    # handle None or -1 in chunks
    if -1 in chunks or None in chunks:
        chunks = tuple(
            s if c == -1 or c is None else int(c) for s, c in zip(shape, chunks, strict=False)
        )

    if not all(isinstance(c, numbers.Integral) for c in chunks):
        raise TypeError("non integer value in chunks")

    return tuple(int(c) for c in chunks)


@dataclass(frozen=True)
class ChunkGrid:
    """
    A regular partition of an array of ``shape`` into chunks of ``chunk_shape``.
    The last chunk along each dimension is truncated to the array extent.
    """

    shape: tuple[int, ...]
    chunk_shape: tuple[int, ...]

    def __init__(self, *, shape: ShapeLike, chunk_shape: ShapeLike) -> None:
        shape_parsed = parse_shapelike(shape)
        chunk_shape_parsed = parse_shapelike(chunk_shape)
        if len(shape_parsed) != len(chunk_shape_parsed):
            raise ValueError(
                f"chunk_shape {chunk_shape_parsed} does not match the dimensionality "
                f"of shape {shape_parsed}."
            )
        if any(c < 1 for c in chunk_shape_parsed):
            raise ValueError(f"Chunk sizes must be positive. Got {chunk_shape_parsed}.")
        # chunks larger than the array extent collapse to the extent
        chunk_shape_parsed = tuple(
            min(c, s) if s > 0 else c
            for c, s in zip(chunk_shape_parsed, shape_parsed, strict=True)
        )
        object.__setattr__(self, "shape", shape_parsed)
        object.__setattr__(self, "chunk_shape", chunk_shape_parsed)

    @classmethod
    def from_source(cls, source: ChunkedArraySource) -> Self:
        return cls(shape=source.shape, chunk_shape=source.chunk_shape)

    @property
    def ndim(self) -> int:
        return len(self.shape)

    @property
    def grid_shape(self) -> tuple[int, ...]:
        """Number of chunks along each dimension."""
        return tuple(ceildiv(s, c) for s, c in zip(self.shape, self.chunk_shape, strict=True))

    @property
    def nchunks(self) -> int:
        return product(self.grid_shape)

    def chunk_bounds(self, dim: int) -> list[tuple[int, int]]:
        """The ``(start, stop)`` interval of every chunk along ``dim``."""
        size = self.shape[dim]
        step = self.chunk_shape[dim]
        return [(start, min(start + step, size)) for start in range(0, size, step)]

    def chunk_region(self, coords: ChunkCoords) -> Region:
        start = tuple(i * c for i, c in zip(coords, self.chunk_shape, strict=True))
        stop = tuple(
            min(a + c, s) for a, c, s in zip(start, self.chunk_shape, self.shape, strict=True)
        )
        return Region(start=start, stop=stop)

    def all_chunk_coords(self) -> Iterator[ChunkCoords]:
        return itertools.product(*(range(n) for n in self.grid_shape))

    def chunks_in_region(self, region: Region) -> Iterator[ChunkCoords]:
        """Coordinates of every chunk that intersects ``region``."""
        return itertools.product(
            *(
                range(a // c, ceildiv(b, c))
                for a, b, c in zip(region.start, region.stop, self.chunk_shape, strict=True)
            )
        )

    def is_aligned(self, region: Region) -> bool:
        """True if every face of ``region`` lies on a chunk boundary or the array edge."""
        return all(
            a % c == 0 and (b % c == 0 or b == s)
            for a, b, c, s in zip(
                region.start, region.stop, self.chunk_shape, self.shape, strict=True
            )
        )
