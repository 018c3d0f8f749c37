from __future__ import annotations

import os
from typing import TYPE_CHECKING

import numpy as np
import pytest
from hypothesis import HealthCheck, settings

from chunkreduce import MemorySource
from chunkreduce.config import config

if TYPE_CHECKING:
    from collections.abc import Generator

    import numpy.typing as npt


@pytest.fixture(autouse=True)
def reset_config() -> Generator[None, None, None]:
    config.reset()
    yield
    config.reset()


@pytest.fixture
def climate_data() -> npt.NDArray[np.float64]:
    """A 4 x 4 x 10 (lon, lat, time) field with a few missing values."""
    rng = np.random.default_rng(seed=42)
    data = rng.integers(-50, 50, size=(4, 4, 10)).astype("float64")
    data[0, 0, 3] = np.nan
    data[2, 1, :] = np.nan
    data[3, 3, ::2] = np.nan
    return data


@pytest.fixture
def box_source(climate_data: npt.NDArray[np.float64]) -> MemorySource:
    return MemorySource(climate_data, chunks=(2, 2, 10))


@pytest.fixture
def map_source(climate_data: npt.NDArray[np.float64]) -> MemorySource:
    return MemorySource(climate_data, chunks=(1, 4, 10))


@pytest.fixture(params=[1, 4], ids=["sequential", "threaded"])
def max_workers(request: pytest.FixtureRequest) -> int:
    return request.param


settings.register_profile(
    "default",
    parent=settings.get_profile("default"),
    max_examples=100,
    suppress_health_check=[
        HealthCheck.filter_too_much,
        HealthCheck.too_slow,
        HealthCheck.function_scoped_fixture,
    ],
    deadline=None,
)
settings.register_profile(
    "ci",
    parent=settings.get_profile("default"),
    max_examples=300,
    derandomize=True,  # more like regression testing
    deadline=None,
    suppress_health_check=[
        HealthCheck.filter_too_much,
        HealthCheck.too_slow,
        HealthCheck.function_scoped_fixture,
    ],
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "default"))
