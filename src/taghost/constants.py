"""Application-wide constants.

Centralizes magic numbers and strings to avoid hardcoding throughout the codebase.
"""

from enum import Enum
from typing import Final

# =============================================================================
# VERSION AND METADATA
# =============================================================================

APP_NAME: Final[str] = "taghost"

# =============================================================================
# CACHE
# =============================================================================

PERSISTENT_DB: Final[str] = "persistent.db"

# Seconds a durable cache stays fresh before a rebuild
DEFAULT_EXPIRY: Final[int] = 180

# Max bound parameters per bulk statement; chunk sizes derive from this
SQLITE_LIMIT_COMPOUND_SELECT: Final[int] = 500

# Separator for multiple values of the same tag on one host
DEFAULT_SEPARATOR: Final[str] = ","

# Synthetic field that reads host names instead of tags
HOST_FIELD: Final[str] = "host"

# =============================================================================
# REMOTE AUTHORITY
# =============================================================================

DEFAULT_ENDPOINT: Final[str] = "https://app.datadoghq.com"
DEFAULT_TIMEOUT: Final[float] = 30.0

DOWNTIME_PATH: Final[str] = "/api/v1/downtime"
TAGS_HOSTS_PATH: Final[str] = "/api/v1/tags/hosts"

API_KEY_ENV: Final[str] = "DATADOG_API_KEY"
APPLICATION_KEY_ENV: Final[str] = "DATADOG_APPLICATION_KEY"

# =============================================================================
# DISPATCH
# =============================================================================

DEFAULT_SSH_COMMAND: Final[str] = "ssh"


class ColorMode(str, Enum):
    """When to colorize per-host output."""

    ALWAYS = "always"
    NEVER = "never"
    AUTO = "auto"


# ANSI foreground codes 31-36 (red .. cyan), picked by host position
HOST_COLORS: Final[tuple[str, ...]] = (
    "red",
    "green",
    "yellow",
    "blue",
    "magenta",
    "cyan",
)

# Used when a line carries no host position
DEFAULT_HOST_COLOR: Final[str] = "cyan"

# =============================================================================
# ERROR CODES
# =============================================================================


class ExitCode(int, Enum):
    """CLI exit codes."""

    SUCCESS = 0
    GENERAL_ERROR = 1
    NO_MATCH = 1
    EXEC_FAILED = 127
    KEYBOARD_INTERRUPT = 130
