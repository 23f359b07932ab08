"""User-visible reporting of synchronization results."""

import logging
from dataclasses import dataclass
from typing import Optional

from ..output import OutputFormatter
from .result import SyncResultCode

logger = logging.getLogger(__name__)

APP_NAME = "pyvaultsync"

MESSAGE_INVALID_URL = "The URL is invalid."
MESSAGE_INVALID_CREDENTIALS = "Invalid user name or password."
MESSAGE_FILE_NOT_FOUND = "The specified file could not be found."
MESSAGE_UNKNOWN_ERROR = "An unknown error occurred."

# URL problems are reported with one message, whatever the internal code
_MESSAGES: dict[SyncResultCode, str] = {
    SyncResultCode.INVALID_PARAMETERS: MESSAGE_INVALID_URL,
    SyncResultCode.INVALID_PROTOCOL: MESSAGE_INVALID_URL,
    SyncResultCode.INVALID_HOST: MESSAGE_INVALID_URL,
    SyncResultCode.INVALID_PORT: MESSAGE_INVALID_URL,
    SyncResultCode.INVALID_CREDENTIALS: MESSAGE_INVALID_CREDENTIALS,
    SyncResultCode.INVALID_PATH: MESSAGE_FILE_NOT_FOUND,
}


@dataclass(frozen=True)
class SyncReport:
    """What the user is told about one attempt."""

    code: SyncResultCode
    status: str
    """Status line, always shown"""

    message: Optional[str]
    """Error message for attended attempts, None otherwise"""


def status_line(code: SyncResultCode, app_name: str = APP_NAME) -> str:
    if code.is_success:
        return f"{app_name}: Synchronization completed successfully."
    return f"{app_name}: Synchronization failed."


def error_message(code: SyncResultCode) -> Optional[str]:
    """Human-readable message for a failure code (None for success)."""
    if code.is_success:
        return None
    return _MESSAGES.get(code, MESSAGE_UNKNOWN_ERROR)


class SyncReporter:
    """Maps result codes to status lines and error messages.

    Unattended attempts only update the status line; they never raise
    anything the user has to acknowledge.
    """

    def __init__(self, out: Optional[OutputFormatter] = None, app_name: str = APP_NAME):
        self.out = out or OutputFormatter()
        self.app_name = app_name

    def report(self, code: SyncResultCode, attended: bool) -> SyncReport:
        """Show the outcome of an attempt.

        Args:
            code: Terminal result code
            attended: Whether a user started the attempt

        Returns:
            The report that was shown
        """
        report = SyncReport(
            code=code,
            status=status_line(code, self.app_name),
            message=error_message(code) if attended else None,
        )
        logger.debug("Sync result %s (attended=%s)", code.value, attended)

        if code.is_success:
            self.out.success(report.status)
        else:
            self.out.warning(report.status)
        if report.message:
            self.out.error(report.message)
        return report

    def status(self, text: str) -> None:
        """Show an arbitrary status line, prefixed with the app name."""
        self.out.info(f"{self.app_name}: {text}")
