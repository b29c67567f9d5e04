"""Runtime data model for a migration batch."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class UnitStatus(str, Enum):
    """Lifecycle of a migration unit, in step order."""

    PENDING = "Pending"
    DISCOVERED = "Discovered"
    VERIFIED = "Verified"
    REPLICATED = "Replicated"
    MOUNTED = "Mounted"
    REGISTERED = "Registered"
    STARTED = "Started"
    TAGGED = "Tagged"
    DISCONNECTED = "Disconnected"
    DEREGISTERED = "Deregistered"
    FAILED = "Failed"

    @property
    def rank(self) -> int:
        return _ORDER.index(self)


_ORDER = list(UnitStatus)


@dataclass
class MigrationUnit:
    """One VM to move. Created by the loader, mutated by each step, never removed."""

    name: str
    source_location: str = ""
    target_location: str = ""
    status: UnitStatus = UnitStatus.PENDING
    error: Optional[str] = None
    history: list[UnitStatus] = field(default_factory=lambda: [UnitStatus.PENDING])

    @property
    def failed(self) -> bool:
        return self.status is UnitStatus.FAILED

    def reached(self, status: UnitStatus) -> bool:
        """True if the unit is not failed and has passed ``status``."""
        return not self.failed and self.status.rank >= status.rank

    def advance(self, status: UnitStatus) -> None:
        """Move forward to ``status``. Going backwards or leaving Failed is refused."""
        if status is UnitStatus.FAILED:
            raise ValueError("Use fail() to mark a unit as failed")
        if self.failed:
            raise ValueError(f"Unit '{self.name}' has failed and cannot move to {status.value}")
        if status.rank <= self.status.rank:
            raise ValueError(
                f"Unit '{self.name}' cannot move from {self.status.value} to {status.value}"
            )
        self.status = status
        self.history.append(status)

    def fail(self, reason: str) -> None:
        if self.failed:
            return
        self.status = UnitStatus.FAILED
        self.error = reason
        self.history.append(UnitStatus.FAILED)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "source_location": self.source_location,
            "target_location": self.target_location,
            "status": self.status.value,
            "error": self.error,
            "history": [s.value for s in self.history],
        }


@dataclass(frozen=True)
class ReplicationRelationship:
    """A volume-level SnapMirror pairing, e.g. ``svm1:ds_prod`` → ``svm2:ds_prod_dst``."""

    uuid: str
    source_path: str
    destination_path: str
    state: str = ""
    transfer_state: str = ""

    @property
    def source_volume(self) -> str:
        return self.source_path.split(":", 1)[-1]

    @property
    def destination_volume(self) -> str:
        return self.destination_path.split(":", 1)[-1]

    @property
    def transferring(self) -> bool:
        return self.transfer_state.lower() == "transferring"

    def __str__(self) -> str:
        return f"{self.source_path} -> {self.destination_path}"
