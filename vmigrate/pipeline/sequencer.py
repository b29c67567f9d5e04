"""Migration sequencer: runs the nine migration steps over a batch."""

from __future__ import annotations

import signal
import threading
import time
from typing import Callable, Optional

from vmigrate.config import AppConfig, RunConfig
from vmigrate.errors import MigrationError, OperationCancelled, ValidationError
from vmigrate.pipeline import cutover, discovery, postmigration, replication
from vmigrate.pipeline.confirm import ConfirmationProvider
from vmigrate.pipeline.context import RunContext, Sessions, connect_sessions
from vmigrate.pipeline.inventory import load_batch
from vmigrate.pipeline.ledger import SessionLedger
from vmigrate.pipeline.summary import RunSummary, Verdict, build_summary, save_report
from vmigrate.utils.logging import get_logger

logger = get_logger(__name__)


class MigrationSequencer:
    """Drives a batch of VMs through the migration steps.

    Steps (executed in order, each over the whole batch):
    1. discover    — VM → datastore map from the source vCenter
    2. verify      — every VM powered off
    3. replicate   — SnapMirror update → quiesce → break per datastore
    4. mount       — target volumes as NFS datastores on the target cluster
    5. register    — VMs on the target (one batch confirmation)
    6. start       — power on, per-VM confirmation, answer "moved"
    7. tag         — backup classification tag
    8. disconnect  — source NICs (batch confirmation)
    9. deregister  — source VMs from inventory (separate confirmation)

    Lookup failures during discovery and failed preconditions abort the
    run. Later failures are isolated to the VM or datastore concerned.
    Ctrl-C sets the cancel signal: the current wait stops and the run
    aborts after the step in progress. A second Ctrl-C interrupts at once.
    Sessions are always closed and a summary is always produced.
    """

    STEPS = [
        "discover",
        "verify",
        "replicate",
        "mount",
        "register",
        "start",
        "tag",
        "disconnect",
        "deregister",
    ]

    def __init__(
        self,
        config: RunConfig,
        confirmation: ConfirmationProvider,
        connect: Callable[[AppConfig, Sessions], None] = connect_sessions,
        sleep: Callable[[float], None] = time.sleep,
        ledger: Optional[SessionLedger] = None,
    ):
        self.config = config
        self.confirmation = confirmation
        self.connect = connect
        self.sleep = sleep
        self.ledger = ledger or SessionLedger(config.log_path)
        self.context: Optional[RunContext] = None
        self.cancel = threading.Event()

    def run(self) -> RunSummary:
        ledger = self.ledger
        mode = "SIMULATION" if self.config.simulate else "LIVE"
        ledger.info(f"Migration run started in {mode} mode (batch: {self.config.batch_path})")

        try:
            units = load_batch(self.config.batch_path)
        except ValidationError as e:
            ledger.error(f"Invalid batch: {e}")
            return self._finish([], aborted_at="load", completed=[])

        sessions = Sessions()
        completed: list[str] = []
        aborted_at: Optional[str] = None
        current = "connect"
        previous_handler = self._install_interrupt_handler()
        try:
            self.connect(self.config.app, sessions)
            self.context = RunContext(
                config=self.config,
                ledger=ledger,
                confirmation=self.confirmation,
                sessions=sessions,
                units=units,
                sleep=self.sleep,
                cancel=self.cancel,
            )
            for number, step in enumerate(self.STEPS, 1):
                current = step
                ledger.info(f"Step {number}/{len(self.STEPS)}: {step}")
                self._execute_step(step, self.context)
                if self.cancel.is_set():
                    raise OperationCancelled("Cancelled by operator")
                completed.append(step)

        except MigrationError as e:
            ledger.error(f"Run aborted at step '{current}': {e}")
            aborted_at = current
        except KeyboardInterrupt:
            ledger.error(f"Run interrupted by operator at step '{current}'")
            aborted_at = current
        except Exception as e:
            logger.exception(f"Unexpected failure in step '{current}'")
            ledger.error(f"Run aborted at step '{current}' by an unexpected error: {e}")
            aborted_at = current
        finally:
            if previous_handler is not None:
                signal.signal(signal.SIGINT, previous_handler)
            for failure in sessions.close():
                ledger.warning(failure)

        return self._finish(units, aborted_at=aborted_at, completed=completed)

    def _install_interrupt_handler(self):
        """Route SIGINT to the cancel signal; returns the handler it replaced."""
        if threading.current_thread() is not threading.main_thread():
            return None
        return signal.signal(signal.SIGINT, self._on_interrupt)

    def _on_interrupt(self, signum, frame) -> None:
        if self.cancel.is_set():
            raise KeyboardInterrupt
        self.ledger.warning("Interrupt received; cancelling (press Ctrl-C again to stop at once)")
        self.cancel.set()

    def _execute_step(self, step: str, ctx: RunContext) -> None:
        handler = getattr(self, f"_step_{step}", None)
        if handler is None:
            raise NotImplementedError(f"Step '{step}' not implemented")
        handler(ctx)

    def _finish(self, units, aborted_at: Optional[str], completed: list[str]) -> RunSummary:
        ledger = self.ledger
        summary = build_summary(
            ledger, units,
            simulate=self.config.simulate,
            aborted_at=aborted_at,
            completed_steps=completed,
        )

        ledger.info(
            f"Summary: {summary.total_units} VM(s), {summary.error_count} error(s), "
            f"{summary.warning_count} warning(s); log: {summary.log_path}"
        )
        if summary.verdict is Verdict.ALL_CLEAR and aborted_at is None:
            ledger.success("Migration completed without errors")
        elif summary.verdict is Verdict.PARTIAL and aborted_at is None:
            ledger.info("Migration completed with errors; review the log")
        else:
            ledger.info("Migration failed; review the log")

        try:
            path = save_report(summary)
            logger.info(f"Run report written to {path}")
        except OSError as e:
            logger.warning(f"Could not write run report: {e}")
        return summary

    # ─── Step implementations ────────────────────────────────────

    def _step_discover(self, ctx: RunContext) -> None:
        discovery.discover(ctx)

    def _step_verify(self, ctx: RunContext) -> None:
        discovery.verify(ctx)

    def _step_replicate(self, ctx: RunContext) -> None:
        replication.replicate(ctx)

    def _step_mount(self, ctx: RunContext) -> None:
        cutover.mount(ctx)

    def _step_register(self, ctx: RunContext) -> None:
        cutover.register(ctx)

    def _step_start(self, ctx: RunContext) -> None:
        cutover.start(ctx)

    def _step_tag(self, ctx: RunContext) -> None:
        postmigration.tag(ctx)

    def _step_disconnect(self, ctx: RunContext) -> None:
        postmigration.disconnect(ctx)

    def _step_deregister(self, ctx: RunContext) -> None:
        postmigration.deregister(ctx)
