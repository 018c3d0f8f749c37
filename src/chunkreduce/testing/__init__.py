from chunkreduce.testing.sources import FlakySource, InFlightSource, SlowSource

__all__ = ["FlakySource", "InFlightSource", "SlowSource"]
