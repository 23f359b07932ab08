"""Result codes and progress steps of a synchronization attempt."""

from enum import Enum


class SyncResultCode(str, Enum):
    """Terminal outcome of one synchronization attempt."""

    SUCCESS = "success"
    """Remote artifact reconciled, uploaded and verified"""

    UNKNOWN_ERROR = "unknown_error"
    """Unanticipated condition"""

    INVALID_PARAMETERS = "invalid_parameters"
    """Sync URL is missing or malformed"""

    INVALID_PROTOCOL = "invalid_protocol"
    """Sync URL scheme is not supported"""

    INVALID_HOST = "invalid_host"
    """Sync URL has no host"""

    INVALID_PORT = "invalid_port"
    """Sync URL port is not a positive integer"""

    INVALID_CREDENTIALS = "invalid_credentials"
    """Remote endpoint rejected the username or password"""

    INVALID_PATH = "invalid_path"
    """Sync URL has no remote directory"""

    CONNECT_FAILED = "connect_failed"
    """Remote endpoint could not be reached"""

    DOWNLOAD_FAILED = "download_failed"
    """Remote artifact could not be downloaded"""

    UPLOAD_FAILED = "upload_failed"
    """Upload failed or the uploaded artifact did not verify"""

    MERGE_FAILED = "merge_failed"
    """Remote artifact could not be merged, or the override was declined"""

    @property
    def is_success(self) -> bool:
        return self is SyncResultCode.SUCCESS

    @property
    def is_configuration_error(self) -> bool:
        """True for failures detected before any network I/O."""
        return self in _CONFIGURATION_ERRORS


_CONFIGURATION_ERRORS = frozenset(
    {
        SyncResultCode.INVALID_PARAMETERS,
        SyncResultCode.INVALID_PROTOCOL,
        SyncResultCode.INVALID_HOST,
        SyncResultCode.INVALID_PORT,
        SyncResultCode.INVALID_PATH,
    }
)


class SyncStep(str, Enum):
    """Steps reported to progress callbacks while an attempt runs."""

    CONNECT = "connect"
    DOWNLOAD = "download"
    MERGE = "merge"
    UPLOAD = "upload"
    VERIFY = "verify"
    DISCONNECT = "disconnect"

    @property
    def description(self) -> str:
        return _STEP_DESCRIPTIONS[self]


_STEP_DESCRIPTIONS = {
    SyncStep.CONNECT: "Connecting...",
    SyncStep.DOWNLOAD: "Downloading remote database...",
    SyncStep.MERGE: "Merging remote changes...",
    SyncStep.UPLOAD: "Uploading database...",
    SyncStep.VERIFY: "Verifying upload...",
    SyncStep.DISCONNECT: "Disconnecting...",
}
