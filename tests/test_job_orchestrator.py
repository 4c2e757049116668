"""Tests for job registration and polling on the local engine."""

import os
import tempfile
import threading
import pytest

from logship.db import database as db
from logship.jobs.orchestrator import JobOrchestrator
from logship.jobs.providers.local import LocalJobEngine
from logship.models.errors import (
    DuplicateScheduleError, EngineError, PollTimeoutError, WaitCancelledError,
)
from logship.models.types import JobDefinition, JobKind, JobOutcome, JobRef, Role, RunState
from logship.schedule.builder import normalize

ROLE = Role("SEC01")
COPY_JOB = JobDefinition(name="LSCopy_P_db1", kind=JobKind.TRANSPORT, database="db1",
                         retention_minutes=4320, parameters={"source": "\\\\fs\\db1"})


@pytest.fixture(autouse=True)
def temp_db():
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    db.init_db(path)
    yield path
    os.unlink(path)


def test_create_job_and_schedule():
    jobs = JobOrchestrator(LocalJobEngine())
    ref = jobs.create_or_replace_job(ROLE, COPY_JOB)
    jobs.create_or_replace_schedule(ref, "LSCopySchedule_P_db1", normalize(None))

    job = db.get_job("sec01", "LSCopy_P_db1")
    assert job["parameters"] == {"source": "\\\\fs\\db1"}
    assert job["category"] == "Log Shipping"
    schedule = db.get_schedule("sec01", "LSCopySchedule_P_db1")
    assert schedule["job_name"] == "LSCopy_P_db1"
    assert schedule["spec"]["frequency_type"] == 4


def test_duplicates_need_replace():
    jobs = JobOrchestrator(LocalJobEngine())
    ref = jobs.create_or_replace_job(ROLE, COPY_JOB)
    jobs.create_or_replace_schedule(ref, "sched", normalize(None))

    with pytest.raises(DuplicateScheduleError):
        jobs.create_or_replace_job(ROLE, COPY_JOB)
    with pytest.raises(DuplicateScheduleError):
        jobs.create_or_replace_schedule(ref, "sched", normalize(None))

    jobs.create_or_replace_job(ROLE, COPY_JOB, replace=True)
    jobs.create_or_replace_schedule(ref, "sched", normalize({"subdayInterval": 5}), replace=True)
    assert len(db.list_jobs("sec01")) == 1
    assert len(db.list_schedules("sec01")) == 1
    assert db.get_schedule("sec01", "sched")["spec"]["subday_interval"] == 5


def test_same_job_name_on_different_roles():
    jobs = JobOrchestrator(LocalJobEngine())
    jobs.create_or_replace_job(ROLE, COPY_JOB)
    jobs.create_or_replace_job(Role("SEC02"), COPY_JOB)
    assert len(db.list_jobs()) == 2


def test_schedule_for_missing_job_is_engine_error():
    jobs = JobOrchestrator(LocalJobEngine())
    with pytest.raises(EngineError):
        jobs.create_or_replace_schedule(JobRef(ROLE, "nope"), "sched", normalize(None))
    with pytest.raises(EngineError):
        jobs.set_enabled(JobRef(ROLE, "nope"), False)
    with pytest.raises(EngineError):
        jobs.start(JobRef(ROLE, "nope"))


def test_start_and_outcome():
    seen = []
    jobs = JobOrchestrator(LocalJobEngine(
        runners={JobKind.TRANSPORT: lambda role, job: seen.append(job["name"])},
    ))
    ref = jobs.create_or_replace_job(ROLE, COPY_JOB)

    assert jobs.last_outcome(ref) == JobOutcome.UNKNOWN
    handle = jobs.start(ref)
    assert jobs.poll_status(handle) == RunState.IDLE
    assert jobs.wait_until_idle(handle, 0.01, 1) >= 0
    assert jobs.last_outcome(ref) == JobOutcome.SUCCEEDED
    assert seen == ["LSCopy_P_db1"]


def test_failing_runner_records_failure():
    def boom(role, job):
        raise OSError("disk full")

    jobs = JobOrchestrator(LocalJobEngine(runners={JobKind.TRANSPORT: boom}))
    ref = jobs.create_or_replace_job(ROLE, COPY_JOB)
    jobs.start(ref)
    assert jobs.last_outcome(ref) == JobOutcome.FAILED
    assert db.list_runs("sec01")[0]["message"] == "disk full"


def test_wait_times_out():
    release = threading.Event()
    engine = LocalJobEngine(runners={JobKind.TRANSPORT: lambda role, job: release.wait(5)},
                            background=True)
    jobs = JobOrchestrator(engine)
    ref = jobs.create_or_replace_job(ROLE, COPY_JOB)
    handle = jobs.start(ref)
    try:
        with pytest.raises(PollTimeoutError):
            jobs.wait_until_idle(handle, 0.01, 0.05)
        assert jobs.poll_status(handle) == RunState.RUNNING
    finally:
        release.set()
    assert jobs.wait_until_idle(handle, 0.01, 5) >= 0
    assert jobs.last_outcome(ref) == JobOutcome.SUCCEEDED


def test_wait_cancelled():
    release = threading.Event()
    engine = LocalJobEngine(runners={JobKind.TRANSPORT: lambda role, job: release.wait(5)},
                            background=True)
    jobs = JobOrchestrator(engine)
    ref = jobs.create_or_replace_job(ROLE, COPY_JOB)
    handle = jobs.start(ref)
    cancel = threading.Event()
    threading.Timer(0.05, cancel.set).start()
    try:
        with pytest.raises(WaitCancelledError):
            jobs.wait_until_idle(handle, 0.01, 5, cancel)
    finally:
        release.set()
    jobs.wait_until_idle(handle, 0.01, 5)


def test_unexpected_engine_errors_are_wrapped():
    class Broken(LocalJobEngine):
        def job_exists(self, role, job_name):
            raise ConnectionResetError("gone")

    with pytest.raises(EngineError):
        JobOrchestrator(Broken()).create_or_replace_job(ROLE, COPY_JOB)


def test_kind_without_runner_fails_the_run():
    jobs = JobOrchestrator(LocalJobEngine())
    ref = jobs.create_or_replace_job(ROLE, COPY_JOB)
    handle = jobs.start(ref)

    assert jobs.last_outcome(ref, handle) == JobOutcome.FAILED
    assert db.get_run(handle.run_id)["message"] == "No runner registered for transport jobs"


def test_outcome_follows_the_started_run():
    results = [OSError("share offline"), None]

    def flaky(role, job):
        error = results.pop(0)
        if error:
            raise error

    jobs = JobOrchestrator(LocalJobEngine(runners={JobKind.TRANSPORT: flaky}))
    ref = jobs.create_or_replace_job(ROLE, COPY_JOB)
    first = jobs.start(ref)
    second = jobs.start(ref)

    assert jobs.last_outcome(ref, first) == JobOutcome.FAILED
    assert jobs.last_outcome(ref, second) == JobOutcome.SUCCEEDED


def test_runner_receives_the_registered_role():
    seen = []
    engine = LocalJobEngine(runners={JobKind.TRANSPORT: lambda role, job: seen.append(role)})
    jobs = JobOrchestrator(engine)
    role = Role("SEC01", {"username": "ls", "password": "pw"})
    ref = jobs.create_or_replace_job(role, COPY_JOB)
    jobs.start(JobRef(Role("sec01"), ref.name))

    assert seen[0].credential == {"username": "ls", "password": "pw"}


def test_delete_job_removes_its_schedules():
    jobs = JobOrchestrator(LocalJobEngine())
    ref = jobs.create_or_replace_job(ROLE, COPY_JOB)
    jobs.create_or_replace_schedule(ref, "sched", normalize(None))

    jobs.delete_job(ref)
    jobs.delete_job(ref)

    assert not jobs.job_exists(ROLE, COPY_JOB.name)
    assert not jobs.schedule_exists(ROLE, "sched")
