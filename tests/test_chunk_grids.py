from __future__ import annotations

from collections import Counter

import numpy as np
import pytest
from hypothesis import given

from chunkreduce.chunk_grids import ChunkGrid, _guess_chunks, normalize_chunks
from chunkreduce.indexing import Region
from chunkreduce.testing.strategies import chunk_grids


@pytest.mark.parametrize(
    "shape", [(100,), (100, 100), (1000000,), (1000000000,), (10000000000000000000000,)]
)
@pytest.mark.parametrize("itemsize", [1, 2, 4])
def test_guess_chunks(shape: tuple[int, ...], itemsize: int) -> None:
    chunks = _guess_chunks(shape, itemsize)
    chunk_size = np.prod(chunks) * itemsize
    assert isinstance(chunks, tuple)
    assert len(chunks) == len(shape)
    assert chunk_size < (64 * 1024 * 1024)
    # doesn't make any sense to allow chunks to have zero length dimension
    assert all(0 < c <= max(s, 1) for c, s in zip(chunks, shape, strict=False))


@pytest.mark.parametrize(
    ("chunks", "shape", "typesize", "expected"),
    [
        ((10,), (100,), 1, (10,)),
        ([10], (100,), 1, (10,)),
        (10, (100,), 1, (10,)),
        ((10, 10), (100, 10), 1, (10, 10)),
        (10, (100, 10), 1, (10, 10)),
        ((10, None), (100, 10), 1, (10, 10)),
        ((30,), (100, 20, 10), 1, (30, 20, 10)),
        ((30, None, None), (100, 20, 10), 1, (30, 20, 10)),
        (((30, 30, 30, 10), (20,), (10,)), (100, 20, 10), 1, (30, 20, 10)),
        (False, (100, 20), 1, (100, 20)),
        # auto chunking
        (None, (100,), 1, (100,)),
        (-1, (100,), 1, (100,)),
        ((30, -1, None), (100, 20, 10), 1, (30, 20, 10)),
    ],
)
def test_normalize_chunks(
    chunks: object, shape: tuple[int, ...], typesize: int, expected: tuple[int, ...]
) -> None:
    assert expected == normalize_chunks(chunks, shape, typesize)


def test_normalize_chunks_errors() -> None:
    with pytest.raises(ValueError):
        normalize_chunks("foo", (100,), 1)
    with pytest.raises(ValueError):
        normalize_chunks((100, 10), (100,), 1)
    with pytest.raises(TypeError):
        normalize_chunks((1.5,), (10,), 1)


def test_chunk_grid_layout() -> None:
    grid = ChunkGrid(shape=(10, 7), chunk_shape=(3, 7))
    assert grid.ndim == 2
    assert grid.grid_shape == (4, 1)
    assert grid.nchunks == 4
    assert grid.chunk_bounds(0) == [(0, 3), (3, 6), (6, 9), (9, 10)]
    assert grid.chunk_bounds(1) == [(0, 7)]
    # the last chunk is truncated at the array edge
    assert grid.chunk_region((3, 0)) == Region(start=(9, 0), stop=(10, 7))
    assert list(grid.all_chunk_coords()) == [(0, 0), (1, 0), (2, 0), (3, 0)]


def test_chunk_grid_clips_oversized_chunks() -> None:
    grid = ChunkGrid(shape=(5, 3), chunk_shape=(8, 2))
    assert grid.chunk_shape == (5, 2)
    assert grid.grid_shape == (1, 2)


def test_chunk_grid_zero_extent() -> None:
    grid = ChunkGrid(shape=(0, 5), chunk_shape=(1, 5))
    assert grid.grid_shape == (0, 1)
    assert grid.nchunks == 0
    assert list(grid.all_chunk_coords()) == []


@pytest.mark.parametrize(
    ("shape", "chunk_shape"),
    [((10, 10), (5,)), ((10,), (0,)), ((10,), (-1,))],
)
def test_chunk_grid_invalid(shape: tuple[int, ...], chunk_shape: tuple[int, ...]) -> None:
    with pytest.raises(ValueError):
        ChunkGrid(shape=shape, chunk_shape=chunk_shape)


def test_chunks_in_region() -> None:
    grid = ChunkGrid(shape=(10, 7), chunk_shape=(3, 7))
    region = Region(start=(2, 0), stop=(7, 7))
    assert list(grid.chunks_in_region(region)) == [(0, 0), (1, 0), (2, 0)]


@pytest.mark.parametrize(
    ("start", "stop", "expected"),
    [
        ((3, 0), (9, 7), True),
        ((3, 0), (10, 7), True),
        ((0, 0), (10, 7), True),
        ((2, 0), (9, 7), False),
        ((3, 0), (8, 7), False),
        ((3, 1), (9, 7), False),
    ],
)
def test_is_aligned(start: tuple[int, ...], stop: tuple[int, ...], expected: bool) -> None:
    grid = ChunkGrid(shape=(10, 7), chunk_shape=(3, 7))
    assert grid.is_aligned(Region(start=start, stop=stop)) is expected


@given(grid=chunk_grids())
def test_chunks_tile_the_array(grid: ChunkGrid) -> None:
    cover = np.zeros(grid.shape, dtype=int)
    for coords in grid.all_chunk_coords():
        region = grid.chunk_region(coords)
        region.check_bounds(grid.shape)
        assert grid.is_aligned(region)
        cover[region.slices] += 1
    assert (cover == 1).all()


@given(grid=chunk_grids())
def test_chunks_in_full_region(grid: ChunkGrid) -> None:
    found = Counter(grid.chunks_in_region(Region.full(grid.shape)))
    assert len(found) == grid.nchunks
    assert set(found.values()) == {1}
