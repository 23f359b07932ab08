"""Custom exceptions for PyVaultSync."""


class VaultSyncError(Exception):
    """Base exception for all PyVaultSync errors."""

    pass


class ConfigError(VaultSyncError):
    """Raised when the settings store cannot be read or written."""

    pass


class RemoteError(VaultSyncError):
    """Base exception for failures of the remote endpoint."""

    pass


class ConnectError(RemoteError):
    """Raised when the remote endpoint cannot be reached."""

    pass


class CredentialError(ConnectError):
    """Raised when the remote endpoint rejects the username or password."""

    pass


class TransferError(RemoteError):
    """Raised when a download, upload, delete or rename fails."""

    pass


class DatabaseError(VaultSyncError):
    """Raised when a database file cannot be read, written or merged."""

    pass


class DecryptionError(DatabaseError):
    """Raised when a database file fails decryption or integrity checks.

    This usually means the file was written with a different master key,
    or its bytes were damaged.
    """

    pass
