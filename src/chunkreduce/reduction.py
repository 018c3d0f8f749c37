"""
Reductions applied to one in-memory block.

All reductions ignore missing values (NaN). The supported reductions are:

=============  ================  =====================================================
name           kind              result per output cell
=============  ================  =====================================================
``mean``       cumulative        sum of the non-missing values divided by their count,
                                 NaN if there are none
``sum``        cumulative        sum of the non-missing values, 0 if there are none
``count``      cumulative        number of non-missing values
``median``     order_statistic   middle value of the ascending non-missing values, the
                                 mean of the two central values for an even count,
                                 NaN if there are none
``percentile`` order_statistic   percentile ``q`` of the non-missing values with linear
                                 interpolation, NaN if there are none
=============  ================  =====================================================

Cumulative reductions can be computed from partial aggregates, so a block does not need
to hold the whole reduction axis. Order statistics need every value along the axis at once.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

import numpy as np

from chunkreduce.common import parse_axis, parse_enum
from chunkreduce.errors import IncompletePartitionError, OutOfBoundsError

if TYPE_CHECKING:
    import numpy.typing as npt

    from chunkreduce.planning import SuperBlock
    from chunkreduce.source import ChunkedArraySource

# values are converted to this dtype before they are reduced
WORKING_DTYPE = np.dtype("float64")


class ReductionKind(Enum):
    cumulative = "cumulative"
    order_statistic = "order_statistic"


REDUCTIONS: dict[str, ReductionKind] = {
    "mean": ReductionKind.cumulative,
    "sum": ReductionKind.cumulative,
    "count": ReductionKind.cumulative,
    "median": ReductionKind.order_statistic,
    "percentile": ReductionKind.order_statistic,
}


@dataclass(frozen=True)
class ReductionSpec:
    """
    What to compute, and along which axis.

    Parameters
    ----------
    name : str
        One of ``"mean"``, ``"sum"``, ``"count"``, ``"median"``, ``"percentile"``.
    axis : int
        The axis to reduce over. May be negative.
    q : float, optional
        The percentile, in ``[0, 100]``. Required by ``"percentile"`` and rejected
        by every other reduction.
    """

    name: str
    axis: int = -1
    q: float | None = None

    def __post_init__(self) -> None:
        if self.name not in REDUCTIONS:
            raise ValueError(
                f"Unknown reduction {self.name!r}. Expected one of {sorted(REDUCTIONS)}."
            )
        if self.name == "percentile":
            if self.q is None:
                raise ValueError("The 'percentile' reduction requires a value for q.")
            if not 0 <= self.q <= 100:
                raise ValueError(f"Percentiles must be in the range [0, 100]. Got {self.q}.")
        elif self.q is not None:
            raise ValueError(f"The {self.name!r} reduction does not take a q argument.")

    @property
    def kind(self) -> ReductionKind:
        return REDUCTIONS[self.name]

    @property
    def fill_value(self) -> Any:
        """Value of output cells that have not been computed."""
        return 0 if self.name == "count" else np.nan

    @property
    def output_dtype(self) -> np.dtype[Any]:
        if self.name == "count":
            return np.dtype("int64")
        return np.dtype("float64")

    def normalize(self, shape: tuple[int, ...]) -> ReductionSpec:
        """Return a copy with ``axis`` resolved against ``shape``."""
        return ReductionSpec(self.name, parse_axis(self.axis, shape), self.q)

    def __str__(self) -> str:
        if self.q is not None:
            return f"{self.name}(q={self.q}, axis={self.axis})"
        return f"{self.name}(axis={self.axis})"


def parse_reduction_kind(data: object) -> ReductionKind:
    return parse_enum(data, ReductionKind)


@dataclass
class PartialAggregate:
    """Running ``total`` and ``count`` of non-missing values for each output cell."""

    total: npt.NDArray[np.float64]
    count: npt.NDArray[np.int64]

    @classmethod
    def empty(cls, shape: tuple[int, ...]) -> PartialAggregate:
        return cls(total=np.zeros(shape, dtype="float64"), count=np.zeros(shape, dtype="int64"))

    @classmethod
    def from_array(cls, data: npt.NDArray[Any], axis: int) -> PartialAggregate:
        values = np.asarray(data, dtype=WORKING_DTYPE)
        present = ~np.isnan(values)
        return cls(
            total=np.where(present, values, 0.0).sum(axis=axis),
            count=np.count_nonzero(present, axis=axis).astype("int64"),
        )

    def merge(self, other: PartialAggregate) -> PartialAggregate:
        return PartialAggregate(total=self.total + other.total, count=self.count + other.count)

    def finalize(self, spec: ReductionSpec) -> npt.NDArray[Any]:
        if spec.name == "count":
            return self.count.copy()
        if spec.name == "sum":
            return self.total.copy()
        if spec.name == "mean":
            with np.errstate(invalid="ignore", divide="ignore"):
                return np.where(self.count > 0, self.total / self.count, np.nan)
        raise ValueError(f"{spec.name!r} cannot be computed from partial aggregates.")


def reduce_array(data: npt.ArrayLike, spec: ReductionSpec) -> npt.NDArray[Any]:
    """Reduce an in-memory array that holds the complete reduction axis."""
    data = np.asarray(data)
    axis = parse_axis(spec.axis, data.shape)
    if spec.kind is ReductionKind.cumulative:
        return PartialAggregate.from_array(data, axis).finalize(spec)

    values = np.asarray(data, dtype=WORKING_DTYPE)
    # all-NaN cells produce NaN; silence numpy's warning about them
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", category=RuntimeWarning)
        if spec.name == "median":
            return np.asarray(np.nanmedian(values, axis=axis))
        return np.asarray(np.nanpercentile(values, spec.q, axis=axis))


def reduce_block(
    source: ChunkedArraySource, block: SuperBlock, spec: ReductionSpec
) -> npt.NDArray[Any] | PartialAggregate:
    """
    Read one block from ``source`` and reduce it along ``spec.axis``.

    Returns the finished values for the block's output region, or a
    :class:`PartialAggregate` for a cumulative reduction over a block that covers only
    part of the reduction axis.

    Raises
    ------
    IncompletePartitionError
        If ``spec`` is an order statistic and the block does not span the reduction axis.
    OutOfBoundsError
        If the source returns an array whose shape does not match the block.
    """
    shape = source.shape
    axis = parse_axis(spec.axis, shape)
    spans = block.region.spans_axis(axis, shape)
    if spec.kind is ReductionKind.order_statistic and not spans:
        raise IncompletePartitionError(block.region, axis, shape[axis], spec.name)

    data = source.read(block.region)
    if tuple(data.shape) != block.region.shape:
        raise OutOfBoundsError(
            f"Source returned an array of shape {tuple(data.shape)} "
            f"for {block.region!r} of shape {block.region.shape}."
        )

    if spec.kind is ReductionKind.cumulative and not spans:
        return PartialAggregate.from_array(data, axis)
    return reduce_array(data, ReductionSpec(spec.name, axis, spec.q))
