"""Byte-level comparison of an uploaded artifact against its local snapshot."""

import logging
import math
from pathlib import Path

from ..utils import DEFAULT_VERIFY_CHUNK_SIZE

logger = logging.getLogger(__name__)


def files_are_equal(
    first: Path, second: Path, chunk_size: int = DEFAULT_VERIFY_CHUNK_SIZE
) -> bool:
    """Check that two files have identical length and content.

    Both files are read in lock-step, ``chunk_size`` bytes at a time, so
    neither has to fit in memory. The iteration count is rounded up so a
    trailing partial chunk is compared too.

    Args:
        first: First file
        second: Second file
        chunk_size: Bytes compared per iteration

    Returns:
        True if both files exist and are byte-identical
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")

    try:
        size = first.stat().st_size
        if size != second.stat().st_size:
            logger.debug(
                "Size mismatch: %s (%d) != %s (%d)",
                first,
                size,
                second,
                second.stat().st_size,
            )
            return False
    except FileNotFoundError:
        return False

    iterations = math.ceil(size / chunk_size)
    with open(first, "rb") as f1, open(second, "rb") as f2:
        for i in range(iterations):
            if f1.read(chunk_size) != f2.read(chunk_size):
                logger.debug("Content mismatch in chunk %d of %d", i, iterations)
                return False

    return True
