"""Tests for the recovery pipeline."""

import os
import sys
import tempfile
import threading
import pytest

TESTS_DIR = os.path.dirname(os.path.abspath(__file__))
if TESTS_DIR not in sys.path:
    sys.path.insert(0, TESTS_DIR)

from fakes import FakeInstance, FakePaths, StuckEngine, make_collaborators

from logship.db import database as db
from logship.jobs.providers.local import LocalJobEngine
from logship.models.types import (
    JobDefinition, JobKind, JobOutcome, RecoveryState, RestoreMode, Result, Role, SecondaryLink,
)
from logship.recovery.orchestrator import RecoveryOrchestrator
from logship.settings.store import DEFAULTS

SECONDARY = Role("SEC01")


@pytest.fixture(autouse=True)
def temp_db():
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    db.init_db(path)
    yield path
    os.unlink(path)


def _ship(services, database="db1", state="RESTORING"):
    """Register transport/apply jobs and the catalog entry for one database."""
    services.instance.add_database("SEC01", database, state=state)
    share = f"\\\\fs01\\logship\\{database}"
    copy = f"F:\\ship\\{database}"
    for kind, name, parameters in (
        (JobKind.TRANSPORT, f"LSCopy_PRIM01_{database}", {"source": share, "destination": copy}),
        (JobKind.APPLY, f"LSRestore_PRIM01_{database}",
         {"source": copy, "restore_mode": "NORECOVERY"}),
    ):
        services.jobs.create_or_replace_job(SECONDARY, JobDefinition(
            name=name, kind=kind, database=database, retention_minutes=4320,
            parameters=parameters,
        ))
    services.catalog.register_secondary(SECONDARY, SecondaryLink(
        primary_role="PRIM01",
        primary_database=database,
        secondary_database=database,
        source_path=share,
        destination_path=copy,
        transport_job_name=f"LSCopy_PRIM01_{database}",
        apply_job_name=f"LSRestore_PRIM01_{database}",
        retention_minutes=4320,
        restore_mode=RestoreMode.NORECOVERY,
        restore_delay_minutes=0,
        restore_threshold_minutes=45,
        disconnect_users=False,
        history_retention_minutes=14420,
    ))


def _recover(services, **kwargs):
    orchestrator = RecoveryOrchestrator(services, DEFAULTS)
    kwargs.setdefault("poll_interval", 0.01)
    kwargs.setdefault("max_wait", 1)
    return orchestrator, orchestrator.recover(SECONDARY, **kwargs)


def test_recover_promotes_database():
    services = make_collaborators()
    _ship(services)

    orchestrator, outcomes = _recover(services, databases=["db1"])

    assert len(outcomes) == 1
    assert outcomes[0].result == Result.SUCCESS
    assert outcomes[0].primary_role == "PRIM01"
    assert outcomes[0].secondary_role == "SEC01"
    assert orchestrator.states[("sec01", "db1")] == RecoveryState.PROMOTED
    assert services.instance.state_of("SEC01", "db1")["state_desc"] == "ONLINE"
    assert db.get_job("sec01", "LSCopy_PRIM01_db1")["enabled"] is False
    assert db.get_job("sec01", "LSRestore_PRIM01_db1")["enabled"] is False
    assert [r["job_name"] for r in db.list_runs("sec01")] == [
        "LSCopy_PRIM01_db1", "LSRestore_PRIM01_db1",
    ]


def test_recover_deferred_leaves_database_restoring():
    services = make_collaborators()
    _ship(services)

    orchestrator, outcomes = _recover(services, databases=["db1"], defer_final_promotion=True)

    assert outcomes[0].result == Result.SUCCESS
    assert orchestrator.states[("sec01", "db1")] == RecoveryState.APPLY_IDLE
    assert services.instance.state_of("SEC01", "db1")["state_desc"] == "RESTORING"
    assert not any("WITH RECOVERY" in s for s in services.instance.statements("SEC01"))


def test_not_replicated_database_touches_no_job():
    services = make_collaborators()
    services.instance.add_database("SEC01", "other", state="RESTORING")

    orchestrator, outcomes = _recover(services, databases=["other"])

    assert outcomes[0].result == Result.FAILED
    assert outcomes[0].error == "NotReplicatedError"
    assert db.list_runs() == []
    assert ("sec01", "other") not in orchestrator.states


def test_online_database_is_invalid_state():
    services = make_collaborators()
    _ship(services, state="ONLINE")

    _, outcomes = _recover(services, databases=["db1"])

    assert outcomes[0].error == "InvalidStateError"
    assert db.list_runs() == []


def test_standby_database_can_be_recovered():
    instance = FakeInstance()
    services = make_collaborators(instance)
    _ship(services)
    instance.add_database("SEC01", "db1", state="ONLINE", standby=True)

    _, outcomes = _recover(services, databases=["db1"])
    assert outcomes[0].result == Result.SUCCESS


def test_failed_transport_stops_before_apply():
    def fail(role, job):
        raise RuntimeError("share offline")

    engine = LocalJobEngine(runners={JobKind.TRANSPORT: fail})
    services = make_collaborators(engine=engine)
    _ship(services)

    orchestrator, outcomes = _recover(services, databases=["db1"])

    assert outcomes[0].result == Result.FAILED
    assert outcomes[0].comment.startswith("transport:")
    assert orchestrator.states[("sec01", "db1")] == RecoveryState.FAILED
    assert [r["job_name"] for r in db.list_runs("sec01")] == ["LSCopy_PRIM01_db1"]
    assert services.instance.state_of("SEC01", "db1")["state_desc"] == "RESTORING"
    # The transport job stays enabled for a retry.
    assert db.get_job("sec01", "LSCopy_PRIM01_db1")["enabled"] is True


def test_timeout_is_reported_per_database():
    services = make_collaborators(engine=StuckEngine())
    _ship(services, "db1")
    _ship(services, "db2")

    orchestrator, outcomes = _recover(services, max_wait=0.05)

    assert [o.secondary_database for o in outcomes] == ["db1", "db2"]
    assert all(o.error == "TimeoutError" for o in outcomes)
    assert orchestrator.states == {
        ("sec01", "db1"): RecoveryState.FAILED,
        ("sec01", "db2"): RecoveryState.FAILED,
    }


def test_cancelled_wait():
    services = make_collaborators(engine=StuckEngine())
    _ship(services)
    cancel = threading.Event()
    cancel.set()

    _, outcomes = _recover(services, databases=["db1"], cancel=cancel)
    assert outcomes[0].error == "Cancelled"


def test_recover_all_catalogued_databases():
    services = make_collaborators()
    _ship(services, "db1")
    _ship(services, "db2")

    _, outcomes = _recover(services)

    assert [o.secondary_database for o in outcomes] == ["db1", "db2"]
    assert all(o.succeeded for o in outcomes)


def test_background_engine_is_polled_until_idle():
    done = threading.Event()

    def slow(role, job):
        done.wait(0.05)

    engine = LocalJobEngine(runners={JobKind.APPLY: slow}, background=True)
    services = make_collaborators(engine=engine)
    _ship(services)

    _, outcomes = _recover(services, databases=["db1"], max_wait=5)
    assert outcomes[0].result == Result.SUCCESS


def test_unknown_outcome_fails_recovery():
    class NoHistoryEngine(LocalJobEngine):
        def last_outcome(self, role, job_name, run_id=None):
            return JobOutcome.UNKNOWN

    services = make_collaborators(engine=NoHistoryEngine())
    _ship(services)

    orchestrator, outcomes = _recover(services, databases=["db1"])

    assert outcomes[0].result == Result.FAILED
    assert outcomes[0].error == "EngineError"
    assert "unknown outcome" in outcomes[0].comment
    assert orchestrator.states[("sec01", "db1")] == RecoveryState.FAILED
    assert services.instance.state_of("SEC01", "db1")["state_desc"] == "RESTORING"


def test_drain_copies_and_restores_pending_logs():
    paths = FakePaths(files={"\\\\fs01\\logship\\db1": [
        "\\\\fs01\\logship\\db1\\db1_20260101000000.bak",
        "\\\\fs01\\logship\\db1\\db1_20260101001500.trn",
        "\\\\fs01\\logship\\db1\\db1_20260101003000.trn",
    ]})
    services = make_collaborators(paths=paths)
    _ship(services)
    services.catalog.update_markers(SECONDARY, "db1", last_copied_file="db1_20260101001500.trn",
                                    last_restored_file="db1_20260101001500.trn")

    _, outcomes = _recover(services, databases=["db1"])

    assert outcomes[0].result == Result.SUCCESS
    assert paths.files["F:\\ship\\db1"] == ["F:\\ship\\db1\\db1_20260101003000.trn"]
    log_restores = [s for s in services.instance.statements("SEC01") if s.startswith("RESTORE LOG")]
    assert len(log_restores) == 1
    assert "db1_20260101003000.trn" in log_restores[0]
    entry = services.catalog.lookup(SECONDARY, "db1")
    assert entry.last_copied_file == "db1_20260101003000.trn"
    assert entry.last_restored_file == "db1_20260101003000.trn"


def test_states_cover_only_the_latest_call():
    services = make_collaborators()
    _ship(services, "db1")
    _ship(services, "db2")
    orchestrator = RecoveryOrchestrator(services, DEFAULTS)

    orchestrator.recover(SECONDARY, databases=["db1"], poll_interval=0.01, max_wait=1)
    orchestrator.recover(SECONDARY, databases=["db2"], poll_interval=0.01, max_wait=1)

    assert orchestrator.states == {("sec01", "db2"): RecoveryState.PROMOTED}
