"""Tests for custom exceptions."""

import pytest

from taghost.constants import ExitCode
from taghost.exceptions import (
    AmbiguousMatchError,
    BindLimitError,
    CacheUnavailableError,
    CommandExecutionError,
    ConfigError,
    NetworkError,
    NoMatchError,
    QueryError,
    RetryExceededError,
    TaghostError,
)


class TestExceptionHierarchy:
    """Tests for exception class hierarchy."""

    def test_taghost_error_is_exception(self):
        assert issubclass(TaghostError, Exception)

    @pytest.mark.parametrize(
        "exc_class",
        [
            ConfigError,
            NetworkError,
            CacheUnavailableError,
            QueryError,
            NoMatchError,
            CommandExecutionError,
            RetryExceededError,
        ],
    )
    def test_inherits_from_base(self, exc_class):
        assert issubclass(exc_class, TaghostError)

    def test_bind_limit_is_query_error(self):
        assert issubclass(BindLimitError, QueryError)

    def test_ambiguous_is_no_match(self):
        assert issubclass(AmbiguousMatchError, NoMatchError)


class TestExceptionAttributes:
    """Tests for extra exception data."""

    def test_network_error_status(self):
        error = NetworkError("GET /x returns [502, ...]", status_code=502)
        assert error.status_code == 502
        assert str(error) == "GET /x returns [502, ...]"

    def test_network_error_without_status(self):
        assert NetworkError("timeout").status_code is None

    def test_ambiguous_candidates(self):
        error = AmbiguousMatchError("found 2 candidates", [(0, "a"), (1, "b")])
        assert error.candidates == [(0, "a"), (1, "b")]

    def test_command_exit_code(self):
        error = CommandExecutionError("exec failed", exit_code=ExitCode.EXEC_FAILED)
        assert error.exit_code == 127

    def test_catch_by_base(self):
        with pytest.raises(TaghostError):
            raise CacheUnavailableError("no database available on offline mode")


class TestExitCodes:
    """Tests for process exit codes."""

    def test_values(self):
        assert ExitCode.SUCCESS == 0
        assert ExitCode.NO_MATCH == 1
        assert ExitCode.EXEC_FAILED == 127
        assert ExitCode.KEYBOARD_INTERRUPT == 130
