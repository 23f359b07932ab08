"""PyVaultSync - keep an encrypted record vault in sync over SFTP."""

from .exceptions import (
    ConfigError,
    ConnectError,
    CredentialError,
    DatabaseError,
    DecryptionError,
    RemoteError,
    TransferError,
    VaultSyncError,
)
from .sync import SyncContext, SyncEngine, SyncResultCode
from .vault import MasterKey, Record, RecordVault

__all__ = [
    "SyncEngine",
    "SyncContext",
    "SyncResultCode",
    "RecordVault",
    "Record",
    "MasterKey",
    "VaultSyncError",
    "ConfigError",
    "RemoteError",
    "ConnectError",
    "CredentialError",
    "TransferError",
    "DatabaseError",
    "DecryptionError",
]
