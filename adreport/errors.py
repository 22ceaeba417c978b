"""Error taxonomy for a report run.

Every error is fatal to the current run. The runner catches `ReportError`
once at the top level and maps it to the process exit status.
"""
from __future__ import annotations


class ReportError(Exception):
    exit_code: int = 1
    kind: str = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(ReportError):
    """Missing or invalid recipients/OUs/groups or connection settings."""

    exit_code = 2
    kind = "configuration"


class DirectoryQueryError(ReportError):
    """A group or user lookup against the directory failed."""

    exit_code = 3
    kind = "directory"


class ReportWriteError(ReportError):
    exit_code = 4
    kind = "report"


class NotificationError(ReportError):
    exit_code = 5
    kind = "notification"
