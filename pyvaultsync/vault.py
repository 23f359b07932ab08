"""Encrypted record database.

A vault file is laid out as::

    b"PVS1" | KDF iterations (4 bytes, big endian) | salt (16 bytes) | Fernet token

The Fernet token holds a JSON document with the records and the deletion
tombstones. The Fernet key is derived from the master password with
PBKDF2-HMAC-SHA256, using a fresh salt on every save, so two saves of the
same records never produce the same bytes.
"""

import base64
import json
import logging
import os
import tempfile
import uuid
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives.hashes import SHA256
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .exceptions import DatabaseError, DecryptionError
from .sync.database import MergePolicy
from .utils import parse_iso_timestamp, utc_now_iso

logger = logging.getLogger(__name__)

MAGIC = b"PVS1"
SALT_SIZE = 16
DEFAULT_KDF_ITERATIONS = 200_000
_HEADER_SIZE = len(MAGIC) + 4 + SALT_SIZE


@dataclass(frozen=True)
class MasterKey:
    """Master password of a vault."""

    password: str

    def derive(self, salt: bytes, iterations: int) -> bytes:
        """Derive the Fernet key for a salt.

        Returns:
            URL-safe base64-encoded 32-byte key
        """
        kdf = PBKDF2HMAC(
            algorithm=SHA256(),
            length=32,
            salt=salt,
            iterations=iterations,
        )
        return base64.urlsafe_b64encode(kdf.derive(self.password.encode("utf-8")))

    def __repr__(self) -> str:
        return "MasterKey(password='***')"


@dataclass
class Record:
    """A single entry of the vault."""

    title: str
    username: str = ""
    password: str = ""
    url: str = ""
    notes: str = ""
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    modified: str = field(default_factory=utc_now_iso)
    """ISO timestamp of the last modification"""

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Record":
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            username=data.get("username", ""),
            password=data.get("password", ""),
            url=data.get("url", ""),
            notes=data.get("notes", ""),
            modified=data.get("modified", ""),
        )

    def __repr__(self) -> str:
        return (
            f"Record(id={self.id!r}, title={self.title!r}, "
            f"username={self.username!r}, modified={self.modified!r})"
        )


def _newer(first: Optional[str], second: Optional[str]) -> bool:
    """True if timestamp ``first`` is strictly newer than ``second``."""
    first_dt = parse_iso_timestamp(first)
    second_dt = parse_iso_timestamp(second)
    if first_dt is None:
        return False
    if second_dt is None:
        return True
    return first_dt > second_dt


class RecordVault:
    """An open vault file."""

    def __init__(
        self,
        path: Path,
        master_key: MasterKey,
        records: Optional[dict[str, Record]] = None,
        deleted: Optional[dict[str, str]] = None,
        kdf_iterations: int = DEFAULT_KDF_ITERATIONS,
    ):
        """Initialize an in-memory vault.

        Use ``create`` or ``open`` instead of calling this directly.

        Args:
            path: Backing file
            master_key: Master password
            records: Records keyed by id
            deleted: Deletion timestamps keyed by record id
            kdf_iterations: PBKDF2 iterations used when saving
        """
        self._path = Path(path)
        self._master_key = master_key
        self._records: dict[str, Record] = records or {}
        self._deleted: dict[str, str] = deleted or {}
        self.kdf_iterations = kdf_iterations
        self._closed = False

    @property
    def io_path(self) -> Path:
        return self._path

    @property
    def master_key(self) -> MasterKey:
        return self._master_key

    @property
    def is_open(self) -> bool:
        return not self._closed

    @property
    def records(self) -> list[Record]:
        """Records sorted by title."""
        return sorted(self._records.values(), key=lambda r: (r.title.lower(), r.id))

    @property
    def deleted(self) -> dict[str, str]:
        return dict(self._deleted)

    @classmethod
    def create(
        cls,
        path: Path,
        master_key: MasterKey,
        kdf_iterations: int = DEFAULT_KDF_ITERATIONS,
    ) -> "RecordVault":
        """Create and save an empty vault.

        Raises:
            DatabaseError: If the file already exists or cannot be written
        """
        path = Path(path)
        if path.exists():
            raise DatabaseError(f"File already exists: {path}")
        vault = cls(path, master_key, kdf_iterations=kdf_iterations)
        vault.save()
        return vault

    @classmethod
    def open(cls, path: Path, master_key: MasterKey) -> "RecordVault":
        """Open and decrypt a vault file.

        Raises:
            DecryptionError: Wrong master key, damaged file, or not a vault
            DatabaseError: If the file cannot be read
        """
        path = Path(path)
        try:
            data = path.read_bytes()
        except OSError as e:
            raise DatabaseError(f"Failed to read {path}: {e}") from e

        if len(data) <= _HEADER_SIZE or not data.startswith(MAGIC):
            raise DecryptionError(f"Not a vault file or file is damaged: {path}")

        iterations = int.from_bytes(data[len(MAGIC) : len(MAGIC) + 4], "big")
        salt = data[len(MAGIC) + 4 : _HEADER_SIZE]
        token = data[_HEADER_SIZE:]
        if iterations <= 0:
            raise DecryptionError(f"Invalid key derivation header: {path}")

        try:
            plaintext = Fernet(master_key.derive(salt, iterations)).decrypt(token)
        except InvalidToken as e:
            raise DecryptionError(
                f"Wrong master key or damaged file: {path}"
            ) from e

        try:
            document = json.loads(plaintext.decode("utf-8"))
            records = {
                item["id"]: Record.from_dict(item) for item in document["records"]
            }
            deleted = dict(document.get("deleted", {}))
        except (ValueError, KeyError, TypeError) as e:
            raise DatabaseError(f"Invalid vault content in {path}: {e}") from e

        logger.debug("Opened %s with %d record(s)", path, len(records))
        return cls(path, master_key, records, deleted, kdf_iterations=iterations)

    def _encode(self) -> bytes:
        document = {
            "records": [r.to_dict() for r in self.records],
            "deleted": self._deleted,
        }
        salt = os.urandom(SALT_SIZE)
        key = self._master_key.derive(salt, self.kdf_iterations)
        token = Fernet(key).encrypt(json.dumps(document).encode("utf-8"))
        return MAGIC + self.kdf_iterations.to_bytes(4, "big") + salt + token

    def _write(self, path: Path) -> None:
        if self._closed:
            raise DatabaseError("Vault is closed")
        payload = self._encode()
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(payload)
            os.replace(tmp_name, path)
        except OSError as e:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise DatabaseError(f"Failed to write {path}: {e}") from e

    def save(self) -> None:
        """Encrypt and write the vault to ``io_path``."""
        self._write(self._path)
        logger.debug("Saved %s", self._path)

    def save_as(self, path: Path) -> None:
        """Write an encrypted copy to another file; ``io_path`` is unchanged."""
        self._write(Path(path))
        logger.debug("Saved copy of %s to %s", self._path, path)

    def close(self) -> None:
        self._records = {}
        self._deleted = {}
        self._closed = True

    # ------------------------------------------------------------------
    # Record editing
    # ------------------------------------------------------------------

    def get(self, record_id: str) -> Optional[Record]:
        return self._records.get(record_id)

    def add(self, record: Record) -> Record:
        self._records[record.id] = record
        return record

    def update(self, record_id: str, **fields: Any) -> Record:
        """Change fields of a record and bump its modification time.

        Raises:
            KeyError: If no record has this id
        """
        record = self._records[record_id]
        for name, value in fields.items():
            if name in ("id", "modified") or not hasattr(record, name):
                raise ValueError(f"Unknown or read-only field: {name}")
            setattr(record, name, value)
        record.modified = utc_now_iso()
        return record

    def delete(self, record_id: str) -> bool:
        """Delete a record, leaving a tombstone for later merges."""
        if self._records.pop(record_id, None) is None:
            return False
        self._deleted[record_id] = utc_now_iso()
        return True

    # ------------------------------------------------------------------
    # Merging
    # ------------------------------------------------------------------

    def merge_in(self, other: "RecordVault", policy: MergePolicy) -> None:
        """Merge the records of another vault into this one.

        Args:
            other: Vault to merge from (typically the remote copy)
            policy: How conflicting records are resolved

        Raises:
            DatabaseError: If ``other`` is not a vault
        """
        if not isinstance(other, RecordVault):
            raise DatabaseError(f"Cannot merge {type(other).__name__} into a vault")

        added = replaced = 0
        for record_id, theirs in other._records.items():
            ours = self._records.get(record_id)
            if ours is None:
                take = True
                added += 1
            elif policy == MergePolicy.OVERWRITE_EXISTING:
                take = True
            elif policy == MergePolicy.SYNCHRONIZE:
                take = _newer(theirs.modified, ours.modified)
            else:
                take = False
            if ours is not None and take:
                replaced += 1
            if take:
                self._records[record_id] = Record.from_dict(theirs.to_dict())

        removed = 0
        if policy == MergePolicy.SYNCHRONIZE:
            for record_id, deleted_at in other._deleted.items():
                if _newer(deleted_at, self._deleted.get(record_id)):
                    self._deleted[record_id] = deleted_at
            for record_id, deleted_at in self._deleted.items():
                record = self._records.get(record_id)
                if record is not None and not _newer(record.modified, deleted_at):
                    del self._records[record_id]
                    removed += 1

        logger.debug(
            "Merged %s (%s): %d added, %d replaced, %d removed",
            other.io_path,
            policy.value,
            added,
            replaced,
            removed,
        )
