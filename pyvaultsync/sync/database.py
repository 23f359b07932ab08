"""Interface of the local database the sync engine works on."""

from enum import Enum
from pathlib import Path
from typing import Any, Protocol


class MergePolicy(str, Enum):
    """How records of another database are merged into the local one."""

    SYNCHRONIZE = "synchronize"
    """Combine both copies, the newest modification of each record wins"""

    OVERWRITE_EXISTING = "overwrite_existing"
    """Records of the other database replace local ones"""

    KEEP_EXISTING = "keep_existing"
    """Only records missing locally are added"""


class LocalDatabaseHandle(Protocol):
    """An open, encrypted database file.

    The engine never interprets the database content. It only sequences
    save, save-as and merge calls and moves the resulting bytes around.
    """

    @property
    def io_path(self) -> Path:
        """Backing file of the database."""
        ...

    @property
    def master_key(self) -> Any:
        """Secret used to decrypt the database."""
        ...

    @classmethod
    def open(cls, path: Path, master_key: Any) -> "LocalDatabaseHandle":
        """Open another database file with the given master key.

        Raises:
            DecryptionError: If the file fails decryption or integrity checks
            DatabaseError: For any other failure
        """
        ...

    def save(self) -> None:
        """Write the in-memory state to ``io_path``."""
        ...

    def save_as(self, path: Path) -> None:
        """Write the in-memory state to another file.

        ``io_path`` is not changed.
        """
        ...

    def merge_in(self, other: "LocalDatabaseHandle", policy: MergePolicy) -> None:
        """Merge another database into this one."""
        ...

    def close(self) -> None:
        """Release the database."""
        ...
