"""Exception taxonomy for index builds, queries and delegated tools."""

__all__ = [
    "GwasQueryError",
    "BuildError",
    "ThresholdExceededError",
    "NotFoundError",
    "DelegationError",
    "ConfigurationError",
    "QueryCancelledError",
]


class GwasQueryError(Exception):
    """Base class for all gwasquery errors."""

    pass


class BuildError(GwasQueryError):
    """Exception raised when an index or LD reference cannot be constructed."""

    pass


class ThresholdExceededError(GwasQueryError):
    """Raised when an index is queried beyond the coverage it was built for."""

    pass


class NotFoundError(GwasQueryError):
    """A specific identifier or range yields no record."""

    pass


class DelegationError(GwasQueryError):
    """An external tool failed or returned malformed output."""

    pass


class ConfigurationError(GwasQueryError):
    """A requested access path or collaborator is not available."""

    pass


class QueryCancelledError(GwasQueryError):
    """A query was stopped by a shutdown request before completing."""

    pass
