# FILE: chatrouter/errors.py
class RoutingError(Exception):
    """Base class for routing errors."""


class ConfigError(RoutingError):
    """Raised when environment configuration fails validation."""


class ThresholdError(RoutingError, ValueError):
    """Threshold or weight outside [0, 1], or thresholds out of order."""


class ExperimentError(RoutingError):
    """Base class for experiment framework errors."""


class ExperimentNotFound(ExperimentError):
    pass


class ExperimentCompleted(ExperimentError):
    """Experiment has ended; no further outcomes or endings are accepted."""


class ExperimentConfigError(ExperimentError, ValueError):
    """Invalid experiment id or variant definition."""


class OutcomeError(ExperimentError, ValueError):
    """Malformed outcome (missing user id, non-bool success)."""
