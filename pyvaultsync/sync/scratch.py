"""Scratch files used as transfer buffers during a synchronization attempt."""

import logging
import tempfile
import uuid
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class ScratchFilePool:
    """Allocates local scratch file paths.

    The pool only hands out names; the caller owns the files and must
    ``discard`` them on every exit path.
    """

    def __init__(self, directory: Optional[Path] = None, prefix: str = "pyvaultsync-"):
        """Initialize scratch file pool.

        Args:
            directory: Directory for scratch files. Defaults to the system
                temp directory
            prefix: File name prefix
        """
        self.directory = directory or Path(tempfile.gettempdir())
        self.prefix = prefix

    def allocate(self) -> Path:
        """Return a fresh path that does not exist yet."""
        self.directory.mkdir(parents=True, exist_ok=True)
        while True:
            path = self.directory / f"{self.prefix}{uuid.uuid4().hex}.tmp"
            if not path.exists():
                return path

    def discard(self, path: Optional[Path]) -> None:
        """Delete a scratch file. Deleting a missing file is not an error."""
        if path is None:
            return
        try:
            path.unlink()
            logger.debug("Deleted scratch file %s", path)
        except FileNotFoundError:
            pass
