class RobomapError(Exception):
    """Base class for every error raised by robomap_py"""


class MalformedPacket(RobomapError, ValueError):
    pass


class InvalidParameter(RobomapError, ValueError):
    pass


class FilterDivergence(RobomapError):
    def __init__(self, trace: float):
        super().__init__(f"Pose filter covariance diverged (trace={trace:.3g})")
        self.trace = trace


class PersistenceFailure(RobomapError, OSError):
    pass


class ConfigError(RobomapError, ValueError):
    pass


class OutOfOrderTimestamp(RobomapError, Warning):
    """Reported, never raised out of a handler."""

    def __init__(self, timestamp: int, last_timestamp: int):
        super().__init__(
            f"Timestamp {timestamp} precedes last recorded timestamp {last_timestamp}"
        )
        self.timestamp = timestamp
        self.last_timestamp = last_timestamp
