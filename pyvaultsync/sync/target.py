"""Sync target parsing.

A sync target is derived from the stored URL string at the start of every
attempt, e.g. ``sftp://backup.example.com:22/backups/``. A malformed URL is
an expected outcome (the user has not configured the entry yet), so parsing
returns ``None`` instead of raising.
"""

import posixpath
from dataclasses import dataclass
from enum import Enum
from typing import Optional
from urllib.parse import unquote, urlsplit

from ..utils import BACKUP_SUFFIX, DEFAULT_SFTP_PORT
from .result import SyncResultCode


class Protocol(str, Enum):
    """Supported remote protocols."""

    SFTP = "sftp"

    @property
    def default_port(self) -> int:
        return _DEFAULT_PORTS[self]

    @classmethod
    def from_scheme(cls, scheme: str) -> Optional["Protocol"]:
        """Look up a protocol by URL scheme (case-insensitive)."""
        try:
            return cls(scheme.lower())
        except ValueError:
            return None


_DEFAULT_PORTS = {
    Protocol.SFTP: DEFAULT_SFTP_PORT,
}


@dataclass(frozen=True)
class Credentials:
    """Username and password for the remote endpoint."""

    username: str
    password: str

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='***')"


@dataclass(frozen=True)
class SyncTarget:
    """Parsed remote location of the synchronized database."""

    protocol: str
    """URL scheme, lower-cased (only values of ``Protocol`` are supported)"""

    host: str
    """Remote host name"""

    port: int
    """Remote port (always > 0)"""

    remote_path: str
    """Remote directory holding the database"""

    @property
    def supported_protocol(self) -> Optional[Protocol]:
        return Protocol.from_scheme(self.protocol)

    def remote_file_path(self, filename: str) -> str:
        """Path of the remote artifact for a local database filename.

        Examples:
            >>> SyncTarget("sftp", "h", 22, "/backups/").remote_file_path("vault.pvs")
            '/backups/vault.pvs'
        """
        return posixpath.join(self.remote_path, filename)

    @staticmethod
    def backup_path(remote_file_path: str) -> str:
        """Path of the backup sibling of a remote artifact."""
        return remote_file_path + BACKUP_SUFFIX

    def __str__(self) -> str:
        return f"{self.protocol}://{self.host}:{self.port}{self.remote_path}"


def _split(url: Optional[str]):
    if not url or not url.strip():
        return None
    try:
        return urlsplit(url.strip())
    except ValueError:
        return None


def _port_of(parts) -> Optional[int]:
    """Return the explicit port, the protocol default, or None if invalid."""
    try:
        port = parts.port
    except ValueError:
        # Non-numeric or out of range
        return None
    if port is None:
        protocol = Protocol.from_scheme(parts.scheme)
        return protocol.default_port if protocol else None
    return port


def parse_sync_url(url: Optional[str]) -> Optional[SyncTarget]:
    """Parse a stored sync URL into a sync target.

    Args:
        url: URL string such as ``sftp://host:22/path/to/directory/``

    Returns:
        SyncTarget, or None if the URL is malformed (missing scheme, host,
        port or path). Unsupported schemes still parse; callers check
        ``supported_protocol``.
    """
    parts = _split(url)
    if parts is None or not parts.scheme:
        return None

    host = parts.hostname or ""
    port = _port_of(parts)
    path = unquote(parts.path)
    if not host or port is None or port <= 0 or not path:
        return None

    return SyncTarget(
        protocol=parts.scheme.lower(),
        host=host,
        port=port,
        remote_path=path,
    )


def diagnose_sync_url(url: Optional[str]) -> SyncResultCode:
    """Classify a sync URL with the fine-grained validation codes.

    The engine reports every malformed URL as ``INVALID_PARAMETERS``; this
    function tells the cases apart for diagnostics.

    Returns:
        SUCCESS if the URL is a usable target, otherwise one of
        INVALID_PARAMETERS, INVALID_PROTOCOL, INVALID_HOST, INVALID_PORT,
        INVALID_PATH
    """
    parts = _split(url)
    if parts is None or not parts.scheme or "://" not in url:
        return SyncResultCode.INVALID_PARAMETERS
    if Protocol.from_scheme(parts.scheme) is None:
        return SyncResultCode.INVALID_PROTOCOL
    if not parts.hostname:
        return SyncResultCode.INVALID_HOST
    port = _port_of(parts)
    if port is None or port <= 0:
        return SyncResultCode.INVALID_PORT
    if not unquote(parts.path):
        return SyncResultCode.INVALID_PATH
    return SyncResultCode.SUCCESS
