"""
The config module manages the runtime defaults of chunkreduce and is based on the Donfig python
library.

Example:
    The number of retries for failing reads can be changed programmatically, optionally as a
    context manager:

    ```python
    from chunkreduce.config import config

    with config.set({"reduce.max_retries": 5}):
        ...
    ```

    The same value can be set with the environment variable ``CHUNKREDUCE_REDUCE__MAX_RETRIES``.
    The double underscore ``__`` is used to indicate nested access.

    ```bash
    export CHUNKREDUCE_REDUCE__MAX_RETRIES=5
    ```

For more information, see the Donfig documentation at https://github.com/pytroll/donfig.
"""

from __future__ import annotations

from typing import Any, Literal, cast

from donfig import Config as DConfig

CumulativeStrategy = Literal["full-axis", "streaming"]


class Config(DConfig):  # type: ignore[misc]
    """The Config will collect configuration from config files and environment variables

    Example environment variables:
    Grabs environment variables of the form "CHUNKREDUCE_FOO__BAR_BAZ=123" and
    turns these into config variables of the form ``{"foo": {"bar-baz": 123}}``
    It transforms the key and value in the following way:

    -  Lower-cases the key text
    -  Treats ``__`` (double-underscore) as nested access
    -  Calls ``ast.literal_eval`` on the value

    """

    def reset(self) -> None:
        self.clear()
        self.refresh()


# The default configuration for chunkreduce
config = Config(
    "chunkreduce",
    defaults=[
        {
            "reduce": {
                "memory_budget_bytes": 64 * 1024 * 1024,
                "cumulative_strategy": "full-axis",
                "max_retries": 3,
                "retry_backoff": 0.1,
                "block_timeout": None,
            },
            "threading": {"max_workers": 1},
        }
    ],
)


def parse_cumulative_strategy(data: Any) -> CumulativeStrategy:
    if data in ("full-axis", "streaming"):
        return cast("CumulativeStrategy", data)
    msg = f"Expected one of ('full-axis', 'streaming'), got {data!r} instead."
    raise ValueError(msg)
