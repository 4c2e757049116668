"""In-process job engine persisted in the SQLite state store.

Jobs are executed by runner callables registered per JobKind. A runner
receives the Role the job lives on and the stored job dict, and signals
failure by raising. With ``background=True`` each run executes on its own
thread and callers must poll for completion; otherwise ``start`` returns
after the run finished. A run of a kind without a runner fails.
"""

import logging
import sqlite3
import threading

from logship.db import database as db
from logship.jobs.base import JobEngine
from logship.models.errors import EngineError
from logship.models.types import JobKind, JobOutcome, Role, RunState

logger = logging.getLogger(__name__)


class LocalJobEngine(JobEngine):
    def __init__(self, runners: dict = None, background: bool = False):
        self.runners = dict(runners or {})
        self.background = background
        self._roles = {}

    def has_runner(self, kind) -> bool:
        return JobKind(kind) in self.runners

    def register_runner(self, kind, runner):
        self.runners[JobKind(kind)] = runner

    def job_exists(self, role, job_name) -> bool:
        return db.get_job(role.identity, job_name) is not None

    def upsert_job(self, role, job):
        self._roles[role.identity] = role
        try:
            db.upsert_job(
                role.identity, job.name, job.kind.value, job.database,
                job.retention_minutes, job.parameters, job.description, job.category,
            )
        except sqlite3.Error as e:
            raise EngineError(f"Cannot register job {job.name} on {role}: {e}") from e

    def delete_job(self, role, job_name):
        if db.delete_job(role.identity, job_name):
            logger.info("Deleted job %s on %s", job_name, role)

    def schedule_exists(self, role, schedule_name) -> bool:
        return db.get_schedule(role.identity, schedule_name) is not None

    def upsert_schedule(self, role, job_name, schedule_name, spec):
        if db.get_job(role.identity, job_name) is None:
            raise EngineError(f"Job {job_name} does not exist on {role}")
        db.upsert_schedule(role.identity, schedule_name, job_name,
                           {k: _plain(v) for k, v in spec.to_dict().items()},
                           bool(spec.enabled))

    def set_enabled(self, role, job_name, enabled):
        if not db.set_job_enabled(role.identity, job_name, enabled):
            raise EngineError(f"Job {job_name} does not exist on {role}")

    def start(self, role, job_name):
        job = db.get_job(role.identity, job_name)
        if job is None:
            raise EngineError(f"Job {job_name} does not exist on {role}")
        role = self._roles.setdefault(role.identity, role)
        run_id = db.start_run(role.identity, job_name)
        logger.info("Started %s on %s (run %d)", job_name, role, run_id)
        if self.background:
            threading.Thread(
                target=self._execute, args=(role, job, run_id), name=f"job-{job_name}",
                daemon=True,
            ).start()
        else:
            self._execute(role, job, run_id)
        return run_id

    def run_state(self, role, job_name, run_id):
        run = db.get_run(run_id) if run_id is not None else None
        if run is None:
            return RunState.IDLE
        return RunState(run["state"])

    def last_outcome(self, role, job_name, run_id=None):
        if run_id is not None:
            run = db.get_run(run_id)
        else:
            run = db.last_finished_run(role.identity, job_name)
        if run is None or not run["outcome"]:
            return JobOutcome.UNKNOWN
        return JobOutcome(run["outcome"])

    def _execute(self, role: Role, job: dict, run_id: int):
        runner = self.runners.get(JobKind(job["kind"]))
        if runner is None:
            message = f"No runner registered for {job['kind']} jobs"
            logger.error("Job %s failed: %s", job["name"], message)
            db.finish_run(run_id, JobOutcome.FAILED.value, message)
            return
        try:
            runner(role, job)
        except Exception as e:
            logger.error("Job %s failed: %s", job["name"], e)
            db.finish_run(run_id, JobOutcome.FAILED.value, str(e))
            return
        db.finish_run(run_id, JobOutcome.SUCCEEDED.value)


def _plain(value):
    return int(value) if isinstance(value, int) and not isinstance(value, bool) else value
