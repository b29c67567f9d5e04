"""End-to-end runs of the migration sequencer against in-memory systems."""

import re
import signal

import pytest

from vmigrate.errors import EntityNotFoundError, MigrationConnectionError
from vmigrate.pipeline.confirm import AutoConfirm
from vmigrate.pipeline.models import UnitStatus
from vmigrate.pipeline.sequencer import MigrationSequencer
from vmigrate.pipeline.summary import Verdict
from vmigrate.tests.fakes import build_world

NAMES = ["web01", "db01"]


def no_sleep(seconds):
    pass


def run(config, world, confirmation=None):
    sequencer = MigrationSequencer(
        config, confirmation or AutoConfirm(True), connect=world.connect, sleep=no_sleep
    )
    return sequencer, sequencer.run()


def world_with_tag():
    world = build_world()
    category = world.tags.create_category("Backup")
    world.tags.create_tag(category, "Backup-Standard")
    world.tags.calls.clear()
    return world


# ═══════════════════════════════════════════════════════════════════
#  Simulation
# ═══════════════════════════════════════════════════════════════════

class TestSimulationRun:
    def test_two_vms_change_nothing(self, world, make_config, tmp_path):
        confirmation = AutoConfirm(False)
        sequencer, summary = run(make_config(NAMES, simulate=True), world, confirmation)

        assert summary.exit_code == 0
        assert summary.error_count == 0
        assert summary.verdict is Verdict.ALL_CLEAR
        assert world.mutating_calls() == []
        assert confirmation.prompts == []

        lines = (tmp_path / "run.log").read_text().splitlines()
        assert sum("would register" in line for line in lines) == 2
        assert sum("would start" in line for line in lines) == 2
        for line in lines:
            assert re.match(r"^\[\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\] \[[A-Z]+\] ", line)

        assert summary.completed_steps == MigrationSequencer.STEPS
        assert all(u.status is UnitStatus.DEREGISTERED for u in sequencer.context.units)
        assert (tmp_path / "run.json").exists()

    @pytest.mark.parametrize("make_world", [build_world, world_with_tag], ids=["new-tag", "existing-tag"])
    def test_simulation_logs_exactly_the_live_actions(self, make_world, make_config, monkeypatch):
        from vmigrate.pipeline.context import DRY_RUN_PREFIX, RunContext

        sequencer, _ = run(make_config(NAMES, simulate=True), make_world())
        would = {
            m[len(DRY_RUN_PREFIX) + 1:]
            for m in sequencer.ledger.messages()
            if m.startswith(DRY_RUN_PREFIX)
        }

        performed = []
        original = RunContext.perform

        def recording(self, action, fn, *args, **kwargs):
            performed.append(action)
            return original(self, action, fn, *args, **kwargs)

        monkeypatch.setattr(RunContext, "perform", recording)
        live_world = make_world()
        _, summary = run(make_config(NAMES), live_world)

        assert summary.exit_code == 0
        assert would
        assert set(performed) == would
        assert len(live_world.mutating_calls()) == len(performed)


# ═══════════════════════════════════════════════════════════════════
#  Live
# ═══════════════════════════════════════════════════════════════════

class TestLiveRun:
    def test_full_run(self, world, make_config):
        sequencer, summary = run(make_config(NAMES), world)

        assert summary.exit_code == 0
        units = sequencer.context.units
        assert all(u.status is UnitStatus.DEREGISTERED for u in units)
        for unit in units:
            ranks = [s.rank for s in unit.history]
            assert ranks == sorted(ranks)
            assert UnitStatus.VERIFIED in unit.history
            assert unit.history.index(UnitStatus.VERIFIED) < unit.history.index(UnitStatus.STARTED)

        assert set(world.target.vms) == {"web01", "db01"}
        assert world.source.vms == {}
        assert len(world.tags.attachments) == 2
        assert world.storage.closed and world.source.closed and world.target.closed and world.tags.closed

    def test_running_vm_aborts_before_replication(self, world, make_config):
        world.source.vms["web01"].power_state = "poweredOn"
        sequencer, summary = run(make_config(["web01"]), world)

        assert summary.exit_code == 1
        assert summary.aborted_at == "verify"
        assert summary.completed_steps == ["discover"]
        assert world.storage.calls == []
        assert not any(m.startswith("Step 3/") for m in sequencer.ledger.messages())
        assert sequencer.context.units[0].status is UnitStatus.FAILED
        assert world.storage.closed

    def test_partial_success(self, world, make_config):
        world.target.fail["register_vm"].add("db01")
        sequencer, summary = run(make_config(NAMES), world)

        assert summary.verdict is Verdict.PARTIAL
        assert summary.exit_code == 1
        assert summary.aborted_at is None
        web01, db01 = sequencer.context.units
        assert web01.status is UnitStatus.DEREGISTERED
        assert db01.status is UnitStatus.FAILED
        assert "db01" in world.source.vms

    def test_connection_failure_still_tears_down(self, world, make_config):
        world.connect_error = MigrationConnectionError("ONTAP", "ontap-b.example.com", "connection refused")
        sequencer, summary = run(make_config(NAMES), world)

        assert summary.exit_code == 1
        assert summary.aborted_at == "connect"
        assert world.source.closed and world.target.closed
        assert not world.tags.closed
        assert any("connection refused" in m for m in sequencer.ledger.messages())

    def test_teardown_errors_are_warnings(self, world, make_config):
        def broken():
            raise RuntimeError("socket already closed")

        world.storage.disconnect = broken
        sequencer, summary = run(make_config(NAMES), world)

        assert summary.exit_code == 0
        assert summary.warning_count == 1
        assert "Error closing ONTAP session: socket already closed" in sequencer.ledger.messages()
        assert world.source.closed

    def test_unexpected_exception_aborts_with_summary(self, world, make_config):
        def exploding(name):
            raise KeyError(name)

        world.source.get_vm_info = exploding
        sequencer, summary = run(make_config(NAMES), world)

        assert summary.aborted_at == "discover"
        assert summary.exit_code == 1
        assert world.target.closed

    def test_invalid_batch_never_connects(self, tmp_path, app_config):
        from vmigrate.config import RunConfig

        batch = tmp_path / "batch.csv"
        batch.write_text("Host\nesx1\n")
        connects = []
        config = RunConfig(app=app_config, batch_path=batch, log_path=tmp_path / "run.log")
        summary = MigrationSequencer(config, AutoConfirm(True),
                                     connect=lambda app, sessions: connects.append(app)).run()

        assert summary.aborted_at == "load"
        assert summary.exit_code == 1
        assert summary.total_units == 0
        assert connects == []

    def test_vm_vanishing_during_start_is_isolated(self, world, make_config):
        asked = world.target.pending_question

        def vanishing(name):
            if name == "web01":
                raise EntityNotFoundError("VM", name, "target vCenter")
            return asked(name)

        world.target.pending_question = vanishing
        sequencer, summary = run(make_config(NAMES), world)

        assert summary.aborted_at is None
        assert summary.verdict is Verdict.PARTIAL
        web01, db01 = sequencer.context.units
        assert web01.status is UnitStatus.FAILED
        assert db01.status is UnitStatus.DEREGISTERED
        assert ("power_on", "db01") in world.target.calls


# ═══════════════════════════════════════════════════════════════════
#  Interrupts
# ═══════════════════════════════════════════════════════════════════

class TestInterrupt:
    def test_ctrl_c_during_replication_cancels_and_summarises(self, world, make_config, tmp_path):
        world.storage.transfer_polls["rel-ds_web"] = 3

        def interrupted(seconds):
            sequencer._on_interrupt(signal.SIGINT, None)

        sequencer = MigrationSequencer(
            make_config(NAMES), AutoConfirm(True), connect=world.connect, sleep=interrupted
        )
        summary = sequencer.run()

        assert summary.aborted_at == "replicate"
        assert summary.exit_code == 1
        assert summary.completed_steps == ["discover", "verify"]
        assert world.storage.calls == [("update_relationship", "rel-ds_web")]
        assert all(u.status is UnitStatus.FAILED for u in sequencer.context.units)
        assert world.target.calls == []
        assert world.storage.closed and world.target.closed
        assert (tmp_path / "run.json").exists()
        assert any(m.startswith("Interrupt received") for m in sequencer.ledger.messages())

    def test_keyboard_interrupt_still_summarises(self, world, make_config, tmp_path):
        world.storage.transfer_polls["rel-ds_web"] = 3

        def hard_stop(seconds):
            raise KeyboardInterrupt

        sequencer = MigrationSequencer(
            make_config(NAMES), AutoConfirm(True), connect=world.connect, sleep=hard_stop
        )
        summary = sequencer.run()

        assert summary.aborted_at == "replicate"
        assert summary.exit_code == 1
        assert world.storage.closed and world.source.closed
        assert (tmp_path / "run.json").exists()

    def test_second_ctrl_c_stops_at_once(self, make_config):
        sequencer = MigrationSequencer(make_config(NAMES), AutoConfirm(True))
        sequencer._on_interrupt(signal.SIGINT, None)
        assert sequencer.cancel.is_set()
        with pytest.raises(KeyboardInterrupt):
            sequencer._on_interrupt(signal.SIGINT, None)

    def test_handler_is_restored(self, world, make_config):
        before = signal.getsignal(signal.SIGINT)
        run(make_config(NAMES), world)
        assert signal.getsignal(signal.SIGINT) is before
