"""Incremental output flushing from a live process stream to its log file.

Each item carries an ``output_cursor``: the number of bytes of the process
output already appended to the item's log. A flush copies only the bytes
beyond the cursor and advances it by exactly what was written, so repeated
or redundant calls never duplicate output.

Key design points:
- Append-only writes, the log file is never truncated
- No file is created until there is at least one byte to write
- Write failures advance the cursor only past bytes that reached the log,
  so the next tick retries the rest
"""

from __future__ import annotations

import logging
import re
import shlex
from datetime import datetime
from pathlib import Path

from ..models import Item, OutputSource

__all__ = [
    "OutputFlusher",
    "log_path_for",
]

logger = logging.getLogger(__name__)

LOG_SUFFIX = ".out"
TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S_%f"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def _first_word(command: str) -> str:
    """Return a filesystem-safe name for the command's executable."""
    try:
        words = shlex.split(command)
    except ValueError:
        # Unbalanced quotes, fall back to whitespace splitting
        words = command.split()
    if not words:
        return "command"
    word = Path(words[0]).name
    word = _UNSAFE_CHARS.sub("_", word).strip("._")
    return word or "command"


def log_path_for(command: str, start_time: datetime, log_dir: Path) -> Path:
    """Derive the log file path for a command invocation.

    Format: ``<first-word-of-command>-<start-timestamp>.out``

    Args:
        command: Command line text
        start_time: Start time of the invocation
        log_dir: Directory holding the log files

    Returns:
        Path of the log file (not created)
    """
    stamp = start_time.strftime(TIMESTAMP_FORMAT)
    return Path(log_dir) / f"{_first_word(command)}-{stamp}{LOG_SUFFIX}"


class OutputFlusher:
    """Copies newly produced process output to per-item log files.

    Example:
        flusher = OutputFlusher()
        written = flusher.flush(item, process.output, item.log_path)
    """

    def flush(self, item: Item, source: OutputSource, log_path: Path) -> int:
        """Append output beyond ``item.output_cursor`` to ``log_path``.

        Args:
            item: The tracked item (its cursor is advanced)
            source: Live output stream of the process
            log_path: Log file to append to (created with its directory)

        Returns:
            Number of bytes written (partial on failure, 0 on no-op)
        """
        if item.end_time is not None:
            logger.debug(f"Ignoring flush for finalized command {item.item_id}")
            return 0

        data = source.read_from(item.output_cursor)
        if not data:
            return 0

        written = 0
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(log_path, "ab", buffering=0) as f:
                while written < len(data):
                    written += f.write(data[written:])
        except OSError as e:
            logger.warning(
                f"Failed to flush output of {item.item_id} to {log_path} "
                f"after {written} of {len(data)} bytes: {e}"
            )
        finally:
            item.output_cursor += written

        if written:
            logger.debug(
                f"Flushed {written} bytes for {item.item_id} "
                f"(cursor={item.output_cursor})"
            )
        return written
