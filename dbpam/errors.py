"""Exception hierarchy for pam.

Every error carries a banner severity for the result viewer and an exit code
for the command line.
"""

from enum import IntEnum


class ExitCode(IntEnum):
    SUCCESS = 0
    GENERAL_ERROR = 1
    USAGE_ERROR = 2
    CONFIG_ERROR = 3
    DATABASE_ERROR = 4


class PamError(Exception):
    """Base exception for all pam errors."""

    exit_code: int = ExitCode.GENERAL_ERROR
    severity: str = "error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class UsageError(PamError):
    """Operation not possible in the current context (no table, no handle)."""

    exit_code: int = ExitCode.USAGE_ERROR


class MissingParameterError(UsageError):
    """A query parameter has neither a value nor a default."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = missing
        super().__init__(f"Missing value for parameter(s): {', '.join(missing)}")


class EditCancelled(PamError):
    """Editor closed without saving, or a confirmation was declined."""

    severity: str = "info"

    def __init__(self, message: str = "Edit cancelled") -> None:
        super().__init__(message)


class ValidationError(PamError):
    """Synthesized SQL failed a structural check."""


class ConcurrencyError(PamError):
    """A row-filtered mutation did not affect exactly one row."""

    def __init__(self, affected: int) -> None:
        self.affected = affected
        super().__init__(
            f"Expected 1 row to change but {affected} did; refresh and retry"
        )


class DatabaseError(PamError):
    """Error reported by the database driver."""

    exit_code: int = ExitCode.DATABASE_ERROR


class ClipboardError(PamError):
    """The system clipboard refused the write."""


class MaterializeError(PamError):
    """A result cursor could not be turned into a grid."""


class ConfigError(PamError):
    """Malformed config, unknown connection or saved query."""

    exit_code: int = ExitCode.CONFIG_ERROR
