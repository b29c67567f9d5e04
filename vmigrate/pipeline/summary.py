"""End-of-run summary and the JSON run report written beside the log."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from vmigrate.pipeline.ledger import SessionLedger
from vmigrate.pipeline.models import MigrationUnit
from vmigrate.utils.logging import get_logger

logger = get_logger(__name__)


class Verdict(str, Enum):
    ALL_CLEAR = "all-clear"
    PARTIAL = "partial"
    FAILED = "failed"


def verdict_for(error_count: int, total_units: int) -> Verdict:
    if error_count == 0:
        return Verdict.ALL_CLEAR
    if error_count < total_units:
        return Verdict.PARTIAL
    return Verdict.FAILED


@dataclass
class RunSummary:
    total_units: int
    error_count: int
    warning_count: int
    log_path: str
    verdict: Verdict
    simulate: bool = False
    aborted_at: Optional[str] = None
    completed_steps: list[str] = field(default_factory=list)
    units: list[dict] = field(default_factory=list)
    finished_at: Optional[datetime] = None

    @property
    def exit_code(self) -> int:
        return 0 if self.verdict is Verdict.ALL_CLEAR and self.aborted_at is None else 1

    def to_dict(self) -> dict:
        d = asdict(self)
        d["verdict"] = self.verdict.value
        if d["finished_at"]:
            d["finished_at"] = d["finished_at"].isoformat()
        return d

    @classmethod
    def from_dict(cls, data: dict) -> "RunSummary":
        data = dict(data)
        data["verdict"] = Verdict(data["verdict"])
        if data.get("finished_at") and isinstance(data["finished_at"], str):
            data["finished_at"] = datetime.fromisoformat(data["finished_at"])
        return cls(**data)


def build_summary(
    ledger: SessionLedger,
    units: list[MigrationUnit],
    simulate: bool = False,
    aborted_at: Optional[str] = None,
    completed_steps: Optional[list[str]] = None,
) -> RunSummary:
    return RunSummary(
        total_units=len(units),
        error_count=ledger.error_count,
        warning_count=ledger.warning_count,
        log_path=str(ledger.log_path),
        verdict=verdict_for(ledger.error_count, len(units)),
        simulate=simulate,
        aborted_at=aborted_at,
        completed_steps=list(completed_steps or []),
        units=[u.to_dict() for u in units],
        finished_at=datetime.now(),
    )


def report_path_for(log_path: Path | str) -> Path:
    return Path(log_path).with_suffix(".json")


def save_report(summary: RunSummary, path: Path | str | None = None) -> Path:
    """Write the summary as JSON (default: the log path with a .json suffix)."""
    path = Path(path) if path else report_path_for(summary.log_path)
    with open(path, "w") as f:
        json.dump(summary.to_dict(), f, indent=2, default=str)
    return path


def load_report(path: Path | str) -> Optional[RunSummary]:
    path = Path(path)
    if not path.exists():
        return None
    try:
        with open(path) as f:
            return RunSummary.from_dict(json.load(f))
    except (OSError, ValueError, TypeError, KeyError) as e:
        logger.error(f"Failed to load run report {path}: {e}")
        return None
