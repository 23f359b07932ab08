"""Remote endpoints for the synchronized database.

The engine talks to the remote side only through the ``RemoteEndpoint``
interface. Each supported protocol registers a factory in
``ENDPOINT_FACTORIES``.
"""

import logging
from enum import Enum
from typing import BinaryIO, Callable, Optional, Protocol as TypingProtocol

import paramiko

from ..exceptions import ConnectError, CredentialError, TransferError
from ..utils import DEFAULT_CONNECT_TIMEOUT
from .target import Credentials, Protocol, SyncTarget

logger = logging.getLogger(__name__)


class RemoteEndpoint(TypingProtocol):
    """Stateful handle on a remote file namespace."""

    @property
    def is_connected(self) -> bool: ...

    def connect(self) -> None:
        """Open the connection.

        Raises:
            CredentialError: If the username or password is rejected
            ConnectError: For any other connection failure
        """
        ...

    def exists(self, path: str) -> bool: ...

    def download(self, path: str, sink: BinaryIO) -> None:
        """Write the remote file into ``sink``.

        Raises:
            TransferError: If the transfer fails
        """
        ...

    def upload(self, source: BinaryIO, path: str) -> None:
        """Create or replace the remote file with the content of ``source``.

        Raises:
            TransferError: If the transfer fails
        """
        ...

    def delete(self, path: str) -> None: ...

    def rename(self, old_path: str, new_path: str) -> None: ...

    def disconnect(self) -> None: ...


EndpointFactory = Callable[[SyncTarget, Credentials], RemoteEndpoint]


class ConnectFailure(str, Enum):
    """Classification of a failed connection attempt."""

    BAD_CREDENTIALS = "bad_credentials"
    OTHER = "other"


_CREDENTIAL_HINTS = ("username", "password", "authentication")


def classify_connect_failure(cause: Optional[BaseException]) -> ConnectFailure:
    """Decide whether a connection failure was caused by bad credentials.

    Structured ``CredentialError`` exceptions are trusted first. Otherwise
    the messages of the exception chain are searched for hints; this is
    best-effort and false negatives fall back to ``OTHER``.

    Args:
        cause: Exception raised while connecting

    Returns:
        ConnectFailure.BAD_CREDENTIALS or ConnectFailure.OTHER
    """
    seen: set[int] = set()
    current = cause
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, (CredentialError, paramiko.AuthenticationException)):
            return ConnectFailure.BAD_CREDENTIALS
        message = str(current).lower()
        if any(hint in message for hint in _CREDENTIAL_HINTS):
            return ConnectFailure.BAD_CREDENTIALS
        current = current.__cause__ or current.__context__
    return ConnectFailure.OTHER


class SftpEndpoint:
    """Remote endpoint over SFTP, backed by paramiko."""

    def __init__(
        self,
        host: str,
        port: int,
        credentials: Credentials,
        timeout: float = DEFAULT_CONNECT_TIMEOUT,
    ):
        """Initialize SFTP endpoint.

        Args:
            host: SSH host name
            port: SSH port
            credentials: Username and password
            timeout: Connection timeout in seconds
        """
        self.host = host
        self.port = port
        self.credentials = credentials
        self.timeout = timeout
        self._ssh: Optional[paramiko.SSHClient] = None
        self._sftp: Optional[paramiko.SFTPClient] = None

    @classmethod
    def from_target(cls, target: SyncTarget, credentials: Credentials) -> "SftpEndpoint":
        return cls(target.host, target.port, credentials)

    @property
    def is_connected(self) -> bool:
        if self._ssh is None or self._sftp is None:
            return False
        transport = self._ssh.get_transport()
        return transport is not None and transport.is_active()

    def connect(self) -> None:
        logger.debug(
            "Connecting to %s@%s:%d", self.credentials.username, self.host, self.port
        )
        client = paramiko.SSHClient()
        client.load_system_host_keys()
        # Unknown host keys are accepted but logged
        client.set_missing_host_key_policy(paramiko.WarningPolicy())
        try:
            client.connect(
                hostname=self.host,
                port=self.port,
                username=self.credentials.username,
                password=self.credentials.password,
                timeout=self.timeout,
                banner_timeout=self.timeout,
                auth_timeout=self.timeout,
                allow_agent=False,
                look_for_keys=False,
            )
            sftp = client.open_sftp()
        except paramiko.AuthenticationException as e:
            client.close()
            raise CredentialError(f"Authentication failed for {self.host}: {e}") from e
        except (paramiko.SSHException, OSError) as e:
            client.close()
            raise ConnectError(f"Failed to connect to {self.host}:{self.port}: {e}") from e

        self._ssh = client
        self._sftp = sftp
        logger.debug("Connected to %s:%d", self.host, self.port)

    def _client(self) -> paramiko.SFTPClient:
        if self._sftp is None:
            raise TransferError("Not connected")
        return self._sftp

    def exists(self, path: str) -> bool:
        try:
            self._client().stat(path)
            return True
        except FileNotFoundError:
            return False
        except (paramiko.SSHException, OSError) as e:
            raise TransferError(f"Failed to stat {path}: {e}") from e

    def download(self, path: str, sink: BinaryIO) -> None:
        try:
            self._client().getfo(path, sink)
        except (paramiko.SSHException, OSError) as e:
            raise TransferError(f"Failed to download {path}: {e}") from e

    def upload(self, source: BinaryIO, path: str) -> None:
        try:
            self._client().putfo(source, path, confirm=True)
        except (paramiko.SSHException, OSError) as e:
            raise TransferError(f"Failed to upload {path}: {e}") from e

    def delete(self, path: str) -> None:
        try:
            self._client().remove(path)
        except (paramiko.SSHException, OSError) as e:
            raise TransferError(f"Failed to delete {path}: {e}") from e

    def rename(self, old_path: str, new_path: str) -> None:
        try:
            self._client().rename(old_path, new_path)
        except (paramiko.SSHException, OSError) as e:
            raise TransferError(f"Failed to rename {old_path} to {new_path}: {e}") from e

    def disconnect(self) -> None:
        if self._sftp is not None:
            self._sftp.close()
        if self._ssh is not None:
            self._ssh.close()
        self._sftp = None
        self._ssh = None
        logger.debug("Disconnected from %s:%d", self.host, self.port)


ENDPOINT_FACTORIES: dict[Protocol, EndpointFactory] = {
    Protocol.SFTP: SftpEndpoint.from_target,
}
