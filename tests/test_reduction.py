from __future__ import annotations

from typing import TYPE_CHECKING, Any

import numpy as np
import pytest

from chunkreduce.errors import IncompletePartitionError, InvalidAxisError, OutOfBoundsError
from chunkreduce.indexing import Region
from chunkreduce.planning import SuperBlock
from chunkreduce.reduction import (
    PartialAggregate,
    ReductionKind,
    ReductionSpec,
    parse_reduction_kind,
    reduce_array,
    reduce_block,
)
from chunkreduce.source import LoggingSource, MemorySource, WrapperSource

if TYPE_CHECKING:
    import numpy.typing as npt


def make_block(region: Region, axis: int, shape: tuple[int, ...]) -> SuperBlock:
    return SuperBlock(
        index=0,
        region=region,
        output_region=region.drop_axis(axis),
        nbytes=region.nbytes(8),
        spans_axis=region.spans_axis(axis, shape),
    )


@pytest.mark.parametrize(
    ("values", "expected"),
    [
        ([1.0, 2.0, 3.0, 4.0, 5.0], 3.0),
        ([1.0, 2.0, 3.0, 4.0], 2.5),
        ([1.0, np.nan, 3.0, 5.0], 3.0),
        ([5.0, 1.0, 4.0, 2.0, 3.0], 3.0),
    ],
)
def test_median(values: list[float], expected: float) -> None:
    result = reduce_array(np.array(values), ReductionSpec("median"))
    assert result.shape == ()
    assert float(result) == expected


@pytest.mark.parametrize(
    ("name", "expected"),
    [("mean", 3.0), ("sum", 9.0), ("count", 3), ("median", 3.0)],
)
def test_reductions_skip_nan(name: str, expected: float) -> None:
    result = reduce_array(np.array([1.0, np.nan, 3.0, 5.0]), ReductionSpec(name))
    assert result == expected


@pytest.mark.parametrize(
    ("name", "expected"),
    [("mean", np.nan), ("sum", 0.0), ("count", 0), ("median", np.nan)],
)
def test_reductions_all_nan(name: str, expected: float) -> None:
    data = np.full((2, 3), np.nan)
    result = reduce_array(data, ReductionSpec(name, axis=1))
    np.testing.assert_array_equal(result, np.full(2, expected))


def test_count_is_integer() -> None:
    result = reduce_array(np.array([[1.0, np.nan], [np.nan, np.nan]]), ReductionSpec("count"))
    assert result.dtype == np.int64
    np.testing.assert_array_equal(result, [1, 0])


@pytest.mark.parametrize(("q", "expected"), [(0, 1.0), (50, 3.0), (100, 5.0), (25, 2.0)])
def test_percentile(q: float, expected: float) -> None:
    data = np.array([5.0, np.nan, 1.0, 4.0, 2.0, 3.0])
    assert float(reduce_array(data, ReductionSpec("percentile", q=q))) == expected


def test_percentile_interpolates() -> None:
    data = np.array([1.0, 2.0, 3.0, 4.0])
    assert float(reduce_array(data, ReductionSpec("percentile", q=50))) == 2.5


@pytest.mark.filterwarnings("ignore::RuntimeWarning")
@pytest.mark.parametrize("axis", [0, 1, 2, -1])
def test_reduce_array_matches_numpy(climate_data: npt.NDArray[np.float64], axis: int) -> None:
    np.testing.assert_array_equal(
        reduce_array(climate_data, ReductionSpec("median", axis)),
        np.nanmedian(climate_data, axis=axis),
    )
    np.testing.assert_array_equal(
        reduce_array(climate_data, ReductionSpec("percentile", axis, q=90)),
        np.nanpercentile(climate_data, 90, axis=axis),
    )
    np.testing.assert_allclose(
        reduce_array(climate_data, ReductionSpec("mean", axis)),
        np.nanmean(climate_data, axis=axis),
    )


@pytest.mark.parametrize(
    "kwargs",
    [
        {"name": "mode"},
        {"name": "percentile"},
        {"name": "percentile", "q": -1},
        {"name": "percentile", "q": 100.5},
        {"name": "mean", "q": 50},
    ],
)
def test_reduction_spec_invalid(kwargs: dict[str, Any]) -> None:
    with pytest.raises(ValueError):
        ReductionSpec(**kwargs)


def test_reduction_spec_properties() -> None:
    assert ReductionSpec("mean").kind is ReductionKind.cumulative
    assert ReductionSpec("percentile", q=10).kind is ReductionKind.order_statistic
    assert ReductionSpec("count").fill_value == 0
    assert ReductionSpec("count").output_dtype == np.dtype("int64")
    assert np.isnan(ReductionSpec("median").fill_value)
    assert ReductionSpec("sum").output_dtype == np.dtype("float64")
    assert str(ReductionSpec("percentile", 0, q=90)) == "percentile(q=90, axis=0)"
    assert str(ReductionSpec("median", 2)) == "median(axis=2)"


def test_reduction_spec_normalize() -> None:
    assert ReductionSpec("mean", -1).normalize((4, 4, 10)).axis == 2
    with pytest.raises(InvalidAxisError):
        ReductionSpec("mean", 3).normalize((4, 4, 10))
    with pytest.raises(InvalidAxisError):
        ReductionSpec("mean", 1).normalize((4, 0))


def test_parse_reduction_kind() -> None:
    assert parse_reduction_kind("cumulative") is ReductionKind.cumulative
    assert parse_reduction_kind(ReductionKind.order_statistic) is ReductionKind.order_statistic
    with pytest.raises(ValueError):
        parse_reduction_kind("median")
    with pytest.raises(TypeError):
        parse_reduction_kind(1)


def test_partial_aggregates_merge(climate_data: npt.NDArray[np.float64]) -> None:
    first = PartialAggregate.from_array(climate_data[..., :3], axis=2)
    second = PartialAggregate.from_array(climate_data[..., 3:], axis=2)
    merged = PartialAggregate.empty((4, 4)).merge(first).merge(second)
    for name in ["mean", "sum", "count"]:
        spec = ReductionSpec(name, axis=2)
        np.testing.assert_array_equal(merged.finalize(spec), reduce_array(climate_data, spec))


def test_partial_aggregate_rejects_order_statistics() -> None:
    partial = PartialAggregate.empty((2,))
    with pytest.raises(ValueError, match="partial aggregates"):
        partial.finalize(ReductionSpec("median"))


def test_reduce_block(box_source: MemorySource, climate_data: npt.NDArray[np.float64]) -> None:
    region = Region(start=(2, 0, 0), stop=(4, 2, 10))
    block = make_block(region, 2, box_source.shape)
    result = reduce_block(box_source, block, ReductionSpec("median", 2))
    assert isinstance(result, np.ndarray)
    expected = reduce_array(climate_data[2:4, 0:2, :], ReductionSpec("median", 2))
    np.testing.assert_array_equal(result, expected)


def test_reduce_block_partial(
    box_source: MemorySource, climate_data: npt.NDArray[np.float64]
) -> None:
    region = Region(start=(0, 0, 0), stop=(2, 2, 5))
    block = make_block(region, 2, box_source.shape)
    result = reduce_block(box_source, block, ReductionSpec("mean", -1))
    assert isinstance(result, PartialAggregate)
    assert result.total.shape == (2, 2)
    np.testing.assert_array_equal(
        result.count, np.count_nonzero(~np.isnan(climate_data[:2, :2, :5]), axis=2)
    )


def test_reduce_block_incomplete_partition(box_source: MemorySource) -> None:
    source = LoggingSource(box_source)
    block = make_block(Region(start=(0, 0, 0), stop=(2, 2, 5)), 2, source.shape)
    with pytest.raises(IncompletePartitionError, match="does not span axis 2"):
        reduce_block(source, block, ReductionSpec("median", 2))
    # rejected before any data is read
    assert source.counter["read"] == 0


class TruncatingSource(WrapperSource):
    def read(self, region: Region) -> npt.NDArray[Any]:
        return super().read(region)[..., :-1]


def test_reduce_block_shape_mismatch(box_source: MemorySource) -> None:
    source = TruncatingSource(box_source)
    block = make_block(Region(start=(0, 0, 0), stop=(2, 2, 10)), 2, source.shape)
    with pytest.raises(OutOfBoundsError, match="shape"):
        reduce_block(source, block, ReductionSpec("mean", 2))
