"""Shared fixtures for PyVaultSync tests."""

from pathlib import Path
from typing import BinaryIO, Callable, Optional

import pytest

from pyvaultsync.exceptions import TransferError
from pyvaultsync.sync import Credentials, Protocol, ScratchFilePool, SyncEngine
from pyvaultsync.vault import MasterKey, Record, RecordVault

# Keep key derivation cheap in tests
TEST_KDF_ITERATIONS = 1000

SYNC_URL = "sftp://backup.example.com:22/backups/"
REMOTE_DB_PATH = "/backups/vault.kdbx"


class DirectoryEndpoint:
    """Remote endpoint backed by a local directory, recording every call."""

    def __init__(self, root: Path):
        self.root = root
        self.calls: list[tuple] = []
        self.connected = False
        self.connect_error: Optional[Exception] = None
        self.download_error: Optional[Exception] = None
        self.upload_error: Optional[Exception] = None
        self.tamper_upload: Optional[Callable[[bytes], bytes]] = None
        self.drop_connection_after_download = False

    def local_path(self, path: str) -> Path:
        return self.root / path.lstrip("/")

    def write(self, path: str, data: bytes) -> None:
        target = self.local_path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    def read(self, path: str) -> bytes:
        return self.local_path(path).read_bytes()

    def has(self, path: str) -> bool:
        return self.local_path(path).exists()

    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]

    @property
    def is_connected(self) -> bool:
        return self.connected

    def connect(self) -> None:
        self.calls.append(("connect",))
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    def exists(self, path: str) -> bool:
        self.calls.append(("exists", path))
        return self.has(path)

    def download(self, path: str, sink: BinaryIO) -> None:
        self.calls.append(("download", path))
        if self.download_error is not None:
            raise self.download_error
        if not self.has(path):
            raise TransferError(f"No such file: {path}")
        sink.write(self.read(path))
        if self.drop_connection_after_download:
            self.connected = False

    def upload(self, source: BinaryIO, path: str) -> None:
        self.calls.append(("upload", path))
        if self.upload_error is not None:
            raise self.upload_error
        data = source.read()
        if self.tamper_upload is not None:
            data = self.tamper_upload(data)
        self.write(path, data)

    def delete(self, path: str) -> None:
        self.calls.append(("delete", path))
        self.local_path(path).unlink()

    def rename(self, old_path: str, new_path: str) -> None:
        self.calls.append(("rename", old_path, new_path))
        self.local_path(old_path).rename(self.local_path(new_path))

    def disconnect(self) -> None:
        self.calls.append(("disconnect",))
        self.connected = False


@pytest.fixture
def master_key():
    """Master key shared by the local and remote vaults."""
    return MasterKey("correct horse battery staple")


@pytest.fixture
def credentials():
    return Credentials("alice", "ssh-secret")


@pytest.fixture
def endpoint(tmp_path):
    """Fake remote endpoint rooted in a temp directory."""
    return DirectoryEndpoint(tmp_path / "remote")


@pytest.fixture
def scratch_pool(tmp_path):
    """Scratch pool in its own directory so leftovers can be detected."""
    return ScratchFilePool(tmp_path / "scratch")


@pytest.fixture
def engine(endpoint, scratch_pool):
    """Sync engine whose sftp factory returns the fake endpoint."""
    return SyncEngine(
        endpoint_factories={Protocol.SFTP: lambda target, creds: endpoint},
        scratch_pool=scratch_pool,
    )


@pytest.fixture
def local_vault(tmp_path, master_key):
    """Saved local vault with one record."""
    vault = RecordVault.create(
        tmp_path / "local" / "vault.kdbx",
        master_key,
        kdf_iterations=TEST_KDF_ITERATIONS,
    )
    vault.add(Record(title="Email", username="alice", password="pw1"))
    vault.save()
    yield vault
    if vault.is_open:
        vault.close()


def make_vault_bytes(
    tmp_path: Path, master_key: MasterKey, records: list[Record], name: str
) -> bytes:
    """Build an encrypted vault file and return its bytes."""
    path = tmp_path / "build" / name
    vault = RecordVault.create(path, master_key, kdf_iterations=TEST_KDF_ITERATIONS)
    for record in records:
        vault.add(record)
    vault.save()
    vault.close()
    return path.read_bytes()
