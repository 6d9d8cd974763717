"""Custom exceptions for taghost.

Each exception type represents a category of error.
Catch specific exceptions to handle errors appropriately.
"""


class TaghostError(Exception):
    """Base exception for all taghost errors."""

    pass


class ConfigError(TaghostError):
    """Raised when configuration is invalid or missing."""

    pass


class NetworkError(TaghostError):
    """Raised when the remote authority is unreachable or answers with an error."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class CacheUnavailableError(TaghostError):
    """Raised when offline mode has no usable durable cache."""

    pass


class QueryError(TaghostError):
    """Raised when a statement against the cache fails."""

    pass


class BindLimitError(QueryError):
    """Raised when a statement carries more bound parameters than SQLite allows."""

    pass


class NoMatchError(TaghostError):
    """Raised when an expression matches no host."""

    pass


class AmbiguousMatchError(NoMatchError):
    """Raised when a single-host command matches more than one host."""

    def __init__(self, message: str, candidates: list[tuple[int, str]]):
        super().__init__(message)
        self.candidates = candidates


class CommandExecutionError(TaghostError):
    """Raised when a command cannot be launched or exits unsuccessfully."""

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        self.exit_code = exit_code


class RetryExceededError(TaghostError):
    """Raised when every attempt of a retried operation failed."""

    pass
