"""Sync engine for PyVaultSync - reconcile a local vault with its remote copy."""

from .database import LocalDatabaseHandle, MergePolicy
from .engine import OVERRIDE_PROMPT, SyncContext, SyncEngine
from .remote import (
    ENDPOINT_FACTORIES,
    ConnectFailure,
    RemoteEndpoint,
    SftpEndpoint,
    classify_connect_failure,
)
from .reporter import SyncReport, SyncReporter
from .result import SyncResultCode, SyncStep
from .scheduler import (
    INTERVAL_CHOICES,
    AutoSyncScheduler,
    format_countdown,
    format_interval,
)
from .scratch import ScratchFilePool
from .target import (
    Credentials,
    Protocol,
    SyncTarget,
    diagnose_sync_url,
    parse_sync_url,
)
from .verify import files_are_equal

__all__ = [
    "SyncEngine",
    "SyncContext",
    "OVERRIDE_PROMPT",
    "SyncResultCode",
    "SyncStep",
    "SyncReporter",
    "SyncReport",
    "AutoSyncScheduler",
    "INTERVAL_CHOICES",
    "format_countdown",
    "format_interval",
    "LocalDatabaseHandle",
    "MergePolicy",
    "RemoteEndpoint",
    "SftpEndpoint",
    "ENDPOINT_FACTORIES",
    "ConnectFailure",
    "classify_connect_failure",
    "ScratchFilePool",
    "Credentials",
    "Protocol",
    "SyncTarget",
    "parse_sync_url",
    "diagnose_sync_url",
    "files_are_equal",
]
