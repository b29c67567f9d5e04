"""Run context handed to every step.

Owns the unit list, the discovered datastore cache, the external sessions
and the ledger. Steps read configuration from it and record their
progress on the units; they never keep state of their own.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from vmigrate.config import AppConfig, RunConfig
from vmigrate.pipeline.confirm import ConfirmationProvider
from vmigrate.pipeline.ledger import SessionLedger
from vmigrate.pipeline.models import MigrationUnit, UnitStatus
from vmigrate.pipeline.polling import PollPolicy
from vmigrate.utils.logging import get_logger

logger = get_logger(__name__)

DRY_RUN_PREFIX = "DRY RUN: would"


@dataclass
class Sessions:
    """Handles to the external systems, filled in as connections open."""

    storage: Any = None
    source: Any = None
    target: Any = None
    tags: Any = None
    _closers: list[tuple[str, Callable[[], None]]] = field(default_factory=list)

    def on_close(self, label: str, closer: Callable[[], None]) -> None:
        self._closers.append((label, closer))

    def close(self) -> list[str]:
        """Close every opened session, newest first. Returns the failures."""
        failures = []
        while self._closers:
            label, closer = self._closers.pop()
            try:
                closer()
            except Exception as e:
                failures.append(f"Error closing {label} session: {e}")
        return failures


def connect_sessions(app: AppConfig, sessions: Sessions) -> None:
    """Open the ONTAP, source vCenter, target vCenter and tagging sessions.

    Each session is registered for teardown as soon as it is open, so a
    failure half-way still closes whatever was connected before it.
    """
    from vmigrate.ontap.client import OntapClient
    from vmigrate.vmware.client import VSphereClient
    from vmigrate.vmware.operations import VSphereOperations
    from vmigrate.vmware.tagging import TaggingAPI

    src, tgt, ontap = app.source_vcenter, app.target_vcenter, app.target_ontap

    source_client = VSphereClient("source vCenter")
    source_client.connect(src.host, src.username, src.secret(), port=src.port, insecure=src.insecure)
    sessions.on_close("source vCenter", source_client.disconnect)
    sessions.source = VSphereOperations(source_client)

    target_client = VSphereClient("target vCenter")
    target_client.connect(tgt.host, tgt.username, tgt.secret(), port=tgt.port, insecure=tgt.insecure)
    sessions.on_close("target vCenter", target_client.disconnect)
    sessions.target = VSphereOperations(target_client)

    tags = TaggingAPI(tgt.host, insecure=tgt.insecure)
    tags.login(tgt.username, tgt.secret())
    sessions.on_close("tagging API", tags.logout)
    sessions.tags = tags

    storage = OntapClient()
    storage.connect(ontap.host, ontap.username, ontap.secret(), insecure=ontap.insecure)
    sessions.on_close("ONTAP", storage.disconnect)
    sessions.storage = storage


@dataclass
class RunContext:
    config: RunConfig
    ledger: SessionLedger
    confirmation: ConfirmationProvider
    sessions: Sessions
    units: list[MigrationUnit]
    datastores: dict = field(default_factory=dict)
    sleep: Callable[[float], None] = time.sleep
    cancel: threading.Event = field(default_factory=threading.Event)

    @property
    def simulate(self) -> bool:
        return self.config.simulate

    @property
    def settings(self):
        return self.config.settings

    @property
    def poll_policy(self) -> PollPolicy:
        return PollPolicy.from_settings(self.settings)

    def perform(self, action: str, fn: Callable, *args, **kwargs) -> Optional[Any]:
        """Run a mutating call, or in simulation log ``DRY RUN: would <action>``.

        Every state-changing call in the pipeline goes through here.
        """
        if self.simulate:
            self.ledger.info(f"{DRY_RUN_PREFIX} {action}")
            return None
        return fn(*args, **kwargs)

    def gate(self, prompt: str, default: bool = False) -> bool:
        """Batch confirmation; passes automatically in simulation."""
        if self.simulate:
            return True
        return self.confirmation.confirm(prompt, default=default)

    def units_in(self, status: UnitStatus) -> list[MigrationUnit]:
        return [u for u in self.units if u.status is status]

    def units_reached(self, status: UnitStatus) -> list[MigrationUnit]:
        return [u for u in self.units if u.reached(status)]

    def units_on(self, location: str, status: Optional[UnitStatus] = None) -> list[MigrationUnit]:
        return [
            u for u in self.units
            if u.source_location == location and (status is None or u.status is status)
        ]
