"""Utility functions and constants for PyVaultSync."""

from datetime import datetime, timezone
from typing import Optional

# =============================================================================
# Constants for file operations
# =============================================================================

# Chunk size used when comparing files byte by byte (64 KB)
DEFAULT_VERIFY_CHUNK_SIZE: int = 64 * 1024

# Suffix of the remote backup sibling
BACKUP_SUFFIX: str = ".bak"

# Default SSH port used when the sync URL omits one
DEFAULT_SFTP_PORT: int = 22

# Timeout for establishing the SSH connection (seconds)
DEFAULT_CONNECT_TIMEOUT: float = 20.0


# =============================================================================
# Timestamp utilities
# =============================================================================


def utc_now_iso() -> str:
    """Return the current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


def parse_iso_timestamp(timestamp_str: Optional[str]) -> Optional[datetime]:
    """Parse an ISO format timestamp into an aware datetime.

    Args:
        timestamp_str: ISO format timestamp string (e.g., "2025-01-15T10:30:00Z")

    Returns:
        Timezone-aware datetime (UTC assumed when no offset is present),
        or None if parsing fails
    """
    if not timestamp_str:
        return None

    try:
        # The 'Z' suffix indicates UTC time
        if timestamp_str.endswith("Z"):
            timestamp_str = timestamp_str[:-1] + "+00:00"
        dt = datetime.fromisoformat(timestamp_str)
    except (ValueError, TypeError):
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


# =============================================================================
# Settings parsing utilities
# =============================================================================


def parse_bool(value: Optional[str], default: bool = False) -> bool:
    """Parse a stored boolean string leniently.

    Examples:
        >>> parse_bool("True")
        True
        >>> parse_bool("no idea", default=True)
        True
    """
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in ("true", "1", "yes", "on"):
        return True
    if normalized in ("false", "0", "no", "off"):
        return False
    return default


def parse_int(value: Optional[str], default: int = 0) -> int:
    """Parse a stored integer string, returning ``default`` on garbage."""
    if value is None:
        return default
    try:
        return int(value.strip())
    except ValueError:
        return default
