"""Session ledger: the one funnel every step logs through.

Each entry is appended to the run log as ``[timestamp] [LEVEL] message``,
counted when it is a WARNING or ERROR, and echoed to the console with a
level colour. Counters are never reset during a run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from rich.markup import escape

from vmigrate.utils.logging import get_logger

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class Level(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    SUCCESS = "SUCCESS"


_ECHO = {
    Level.INFO: (logging.INFO, None),
    Level.SUCCESS: (logging.INFO, "green"),
    Level.WARNING: (logging.WARNING, "yellow"),
    Level.ERROR: (logging.ERROR, "bold red"),
}


@dataclass(frozen=True)
class LedgerEntry:
    timestamp: datetime
    level: Level
    message: str

    def format(self) -> str:
        return f"[{self.timestamp.strftime(TIMESTAMP_FORMAT)}] [{self.level.value}] {self.message}"


class SessionLedger:
    """Append-only run log with warning/error counters."""

    def __init__(
        self,
        log_path: Path | str,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.log_path = Path(log_path)
        self.logger = logger or get_logger("vmigrate.run")
        self.clock = clock
        self.entries: list[LedgerEntry] = []
        self.error_count = 0
        self.warning_count = 0
        self.log_path.parent.mkdir(parents=True, exist_ok=True)

    def write(self, level: Level, message: str) -> LedgerEntry:
        entry = LedgerEntry(self.clock(), Level(level), message)
        self.entries.append(entry)
        if entry.level is Level.ERROR:
            self.error_count += 1
        elif entry.level is Level.WARNING:
            self.warning_count += 1

        with open(self.log_path, "a", encoding="utf-8") as f:
            f.write(entry.format() + "\n")

        log_level, colour = _ECHO[entry.level]
        text = escape(message)
        self.logger.log(log_level, f"[{colour}]{text}[/{colour}]" if colour else text)
        return entry

    def info(self, message: str) -> LedgerEntry:
        return self.write(Level.INFO, message)

    def warning(self, message: str) -> LedgerEntry:
        return self.write(Level.WARNING, message)

    def error(self, message: str) -> LedgerEntry:
        return self.write(Level.ERROR, message)

    def success(self, message: str) -> LedgerEntry:
        return self.write(Level.SUCCESS, message)

    def messages(self, level: Optional[Level] = None) -> list[str]:
        return [e.message for e in self.entries if level is None or e.level is level]
