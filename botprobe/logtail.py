"""Bounded reader for the bot's append-only log file."""

import json
import logging
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Any


@dataclass(frozen=True)
class LogWindow:
    """Lines read from the log plus whether the file was readable."""
    lines: list[str]
    available: bool


@dataclass(frozen=True)
class LogChunk:
    """Every complete line appended after a cursor, and where to continue."""
    lines: list[str]
    end: int
    available: bool


def parse_structured(line: str) -> dict[str, Any] | None:
    """Parse a JSON log line, returning None for plain-text lines."""
    line = line.strip()
    if not line.startswith("{"):
        return None
    try:
        parsed = json.loads(line)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def line_level(line: str) -> str | None:
    """The `level` of a structured line, if any."""
    parsed = parse_structured(line)
    if parsed is None:
        return None
    level = parsed.get("level")
    return str(level).lower() if level is not None else None


class LogTail:
    """Reads recent lines of a log file relative to byte-offset marks.

    A mark is the file size at the moment it was taken. Reading since a mark
    returns only lines appended afterwards, capped to the last `tail_lines`.
    If the file shrank (rotation or truncation) the whole file is read.
    `read_from` instead returns every complete line after a cursor, for
    callers that must not miss a line between polls.
    A missing or unreadable file yields no lines and is reported once.

    Args:
        path: Log file path, or None when no log is configured.
        tail_lines: Maximum number of lines returned by a read.
        logger: Logger instance for logging.
    """

    def __init__(
        self,
        path: str | Path | None,
        tail_lines: int = 200,
        logger: logging.Logger | None = None,
    ):
        self.path = Path(path) if path else None
        self.tail_lines = tail_lines
        self.logger = logger or logging.getLogger(__name__)
        self._warned = False

    def _degraded(self, reason: str) -> None:
        if not self._warned:
            self.logger.warning(f"Log stream unavailable ({reason}); log signals will not match")
            self._warned = True

    def mark(self) -> int:
        """Current end-of-file offset (0 when the file is missing)."""
        if self.path is None:
            return 0
        try:
            return self.path.stat().st_size
        except OSError:
            return 0

    def read_since(self, mark: int | None = None) -> LogWindow:
        """Lines appended after `mark` (or the file tail when mark is None)."""
        if self.path is None:
            self._degraded("no log path configured")
            return LogWindow(lines=[], available=False)

        try:
            size = self.path.stat().st_size
            offset = mark if mark is not None and mark <= size else 0
            with open(self.path, "rb") as f:
                f.seek(offset)
                tail = deque(f, maxlen=self.tail_lines)
        except OSError as e:
            self._degraded(f"{self.path}: {e.strerror or e}")
            return LogWindow(lines=[], available=False)

        if self._warned:
            self.logger.info(f"Log stream {self.path} is readable again")
            self._warned = False

        lines = [raw.decode("utf-8", errors="replace").rstrip("\r\n") for raw in tail]
        return LogWindow(lines=[line for line in lines if line], available=True)

    def tail(self) -> LogWindow:
        """The last `tail_lines` lines of the whole file."""
        return self.read_since(None)

    def read_from(self, cursor: int) -> LogChunk:
        """Every complete line appended after `cursor`, uncapped.

        A trailing line without its newline is left for the next read. If the
        file shrank below the cursor it is read from the start.
        """
        if self.path is None:
            self._degraded("no log path configured")
            return LogChunk(lines=[], end=cursor, available=False)

        try:
            size = self.path.stat().st_size
            offset = cursor if cursor <= size else 0
            with open(self.path, "rb") as f:
                f.seek(offset)
                data = f.read(size - offset)
        except OSError as e:
            self._degraded(f"{self.path}: {e.strerror or e}")
            return LogChunk(lines=[], end=cursor, available=False)

        if self._warned:
            self.logger.info(f"Log stream {self.path} is readable again")
            self._warned = False

        complete = data.rfind(b"\n") + 1
        lines = [raw.decode("utf-8", errors="replace").rstrip("\r") for raw in data[:complete].split(b"\n")]
        return LogChunk(lines=[line for line in lines if line], end=offset + complete, available=True)
