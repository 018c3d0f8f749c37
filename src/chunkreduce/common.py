from __future__ import annotations

import functools
import math
import operator
from collections.abc import Iterable
from enum import Enum
from typing import TYPE_CHECKING, TypeVar

from chunkreduce.errors import InvalidAxisError

if TYPE_CHECKING:
    from collections.abc import Iterator

ShapeLike = Iterable[int] | int
ChunkCoords = tuple[int, ...]


def product(tup: tuple[int, ...]) -> int:
    return functools.reduce(operator.mul, tup, 1)


def ceildiv(a: float, b: float) -> int:
    if a == 0:
        return 0
    return math.ceil(a / b)


E = TypeVar("E", bound=Enum)


def enum_names(enum: type[E]) -> Iterator[str]:
    for item in enum:
        yield item.name


def parse_enum(data: object, cls: type[E]) -> E:
    if isinstance(data, cls):
        return data
    if not isinstance(data, str):
        raise TypeError(f"Expected str, got {type(data)}")
    if data in enum_names(cls):
        return cls(data)
    raise ValueError(f"Value must be one of {list(enum_names(cls))!r}. Got {data} instead.")


def parse_shapelike(data: ShapeLike) -> tuple[int, ...]:
    if isinstance(data, int):
        if data < 0:
            raise ValueError(f"Expected a non-negative integer. Got {data} instead")
        return (data,)
    try:
        data_tuple = tuple(data)
    except TypeError as e:
        msg = f"Expected an integer or an iterable of integers. Got {data} instead."
        raise TypeError(msg) from e

    if not all(isinstance(v, int) for v in data_tuple):
        msg = f"Expected an iterable of integers. Got {data} instead."
        raise TypeError(msg)
    if not all(v > -1 for v in data_tuple):
        msg = f"Expected all values to be non-negative. Got {data} instead."
        raise ValueError(msg)
    return data_tuple


def parse_axis(axis: int, shape: tuple[int, ...]) -> int:
    """Normalize a possibly negative axis index against ``shape``.

    Raises
    ------
    InvalidAxisError
        If the axis is out of range or has zero extent.
    """
    if isinstance(axis, bool) or not isinstance(axis, int):
        raise InvalidAxisError(axis, shape)
    ndim = len(shape)
    if not -ndim <= axis < ndim:
        raise InvalidAxisError(axis, shape)
    axis = axis % ndim
    if shape[axis] == 0:
        raise InvalidAxisError(axis, shape)
    return axis
