from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from chunkreduce.common import product
from chunkreduce.errors import OutOfBoundsError

if TYPE_CHECKING:
    from collections.abc import Sequence
    from typing import Self


@dataclass(frozen=True)
class Region:
    """
    A rectangular sub-range of an array, as one half-open interval ``[start, stop)``
    per dimension.
    """

    start: tuple[int, ...]
    stop: tuple[int, ...]

    def __post_init__(self) -> None:
        start = tuple(int(s) for s in self.start)
        stop = tuple(int(s) for s in self.stop)
        if len(start) != len(stop):
            raise ValueError(
                f"start and stop must have the same length. Got {len(start)} and {len(stop)}."
            )
        if any(a < 0 or b <= a for a, b in zip(start, stop, strict=True)):
            raise ValueError(f"Expected 0 <= start < stop in every dimension. Got {start}, {stop}.")
        object.__setattr__(self, "start", start)
        object.__setattr__(self, "stop", stop)

    @classmethod
    def full(cls, shape: tuple[int, ...]) -> Self:
        return cls(start=(0,) * len(shape), stop=tuple(shape))

    @classmethod
    def from_slices(cls, slices: Sequence[slice], shape: tuple[int, ...]) -> Self:
        """Build a region from step-1 slices, resolving ``None`` and negative bounds
        against ``shape``."""
        if len(slices) != len(shape):
            raise IndexError(f"too many indices for array; expected {len(shape)}, got {len(slices)}")
        start = []
        stop = []
        for sl, dim_len in zip(slices, shape, strict=True):
            a, b, step = sl.indices(dim_len)
            if step != 1:
                raise IndexError("only slices with step == 1 are supported")
            start.append(a)
            stop.append(b)
        return cls(start=tuple(start), stop=tuple(stop))

    @property
    def ndim(self) -> int:
        return len(self.start)

    @property
    def shape(self) -> tuple[int, ...]:
        return tuple(b - a for a, b in zip(self.start, self.stop, strict=True))

    @property
    def size(self) -> int:
        return product(self.shape)

    def nbytes(self, itemsize: int) -> int:
        return self.size * itemsize

    @property
    def slices(self) -> tuple[slice, ...]:
        return tuple(slice(a, b) for a, b in zip(self.start, self.stop, strict=True))

    def check_bounds(self, shape: tuple[int, ...]) -> None:
        """
        Raises
        ------
        OutOfBoundsError
            If this region does not lie within an array of the given shape.
        """
        if len(shape) != self.ndim or any(b > s for b, s in zip(self.stop, shape, strict=True)):
            raise OutOfBoundsError(self, shape)

    def drop_axis(self, axis: int) -> Region:
        return Region(
            start=self.start[:axis] + self.start[axis + 1 :],
            stop=self.stop[:axis] + self.stop[axis + 1 :],
        )

    def span_axis(self, axis: int, shape: tuple[int, ...]) -> Region:
        """Return a copy of this region stretched over the whole extent of ``axis``."""
        return Region(
            start=self.start[:axis] + (0,) + self.start[axis + 1 :],
            stop=self.stop[:axis] + (shape[axis],) + self.stop[axis + 1 :],
        )

    def spans_axis(self, axis: int, shape: tuple[int, ...]) -> bool:
        return self.start[axis] == 0 and self.stop[axis] == shape[axis]

    def relative_to(self, outer: Region) -> Region:
        """Express this region in the coordinates of ``outer``, which must contain it."""
        if not outer.contains(self):
            raise OutOfBoundsError(self, outer.shape)
        return Region(
            start=tuple(a - o for a, o in zip(self.start, outer.start, strict=True)),
            stop=tuple(b - o for b, o in zip(self.stop, outer.start, strict=True)),
        )

    def contains(self, other: Region) -> bool:
        return all(
            a <= oa and ob <= b
            for a, b, oa, ob in zip(self.start, self.stop, other.start, other.stop, strict=True)
        )

    def intersection(self, other: Region) -> Region | None:
        start = tuple(max(a, b) for a, b in zip(self.start, other.start, strict=True))
        stop = tuple(min(a, b) for a, b in zip(self.stop, other.stop, strict=True))
        if any(b <= a for a, b in zip(start, stop, strict=True)):
            return None
        return Region(start=start, stop=stop)

    def __repr__(self) -> str:
        ranges = ", ".join(f"{a}:{b}" for a, b in zip(self.start, self.stop, strict=True))
        return f"Region[{ranges}]"
