"""Shared fixtures: a standard two-VM world and run/context builders."""

import pytest

from vmigrate.config import AppConfig, RunConfig
from vmigrate.pipeline.confirm import AutoConfirm
from vmigrate.pipeline.context import RunContext, Sessions
from vmigrate.pipeline.ledger import SessionLedger
from vmigrate.tests.fakes import build_world, write_batch


# ═══════════════════════════════════════════════════════════════════
#  Fixtures
# ═══════════════════════════════════════════════════════════════════

@pytest.fixture
def app_config():
    return AppConfig(
        source_vcenter={"host": "vc-a.example.com", "username": "admin", "password": "secret"},
        target_vcenter={"host": "vc-b.example.com", "username": "admin", "password": "secret"},
        target_ontap={"host": "ontap-b.example.com", "username": "admin", "password": "secret"},
        target_svm="svm_dr",
        target_cluster="Cluster-B",
        settings={
            "poll_interval_seconds": 0.01,
            "replication_timeout_seconds": 30,
            "power_on_settle_seconds": 0,
        },
    )


@pytest.fixture
def world():
    return build_world()


@pytest.fixture
def make_config(tmp_path, app_config):
    def factory(names, simulate=False, app=None):
        return RunConfig(
            app=app or app_config,
            batch_path=write_batch(tmp_path / "batch.csv", names),
            log_path=tmp_path / "run.log",
            simulate=simulate,
        )
    return factory


@pytest.fixture
def make_context(tmp_path, app_config, world):
    def factory(units, simulate=False, confirmation=None, **settings):
        app = app_config
        if settings:
            app = app_config.model_copy(update={"settings": app_config.settings.model_copy(update=settings)})
        config = RunConfig(
            app=app,
            batch_path=tmp_path / "batch.csv",
            log_path=tmp_path / "run.log",
            simulate=simulate,
        )
        sessions = Sessions()
        world.connect(app, sessions)
        return RunContext(
            config=config,
            ledger=SessionLedger(config.log_path),
            confirmation=confirmation or AutoConfirm(True),
            sessions=sessions,
            units=list(units),
            sleep=lambda seconds: None,
        )
    return factory
