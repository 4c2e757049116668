"""SQL Server Agent job engine.

Jobs, schedules and runs map onto the msdb procedures:
  upsert_job       — sp_add_job / sp_add_jobstep / sp_add_jobserver, or for an
                     existing job sp_update_job and a replaced step
  delete_job       — sp_delete_job @delete_unused_schedule = 1
  upsert_schedule  — sp_delete_schedule (if present) + sp_add_jobschedule
  set_enabled      — sp_update_job @enabled
  start            — newest sysjobhistory outcome row as baseline, then sp_start_job
  run_state        — Idle once an outcome row newer than the baseline exists
  last_outcome     — run_status of that newer outcome row (step_id = 0)

Each job has a single CmdExec step invoking sqllogship.exe with the operation
for its kind and the primary or secondary id of its log shipping registration.
"""

import logging

from logship.instance.inspect import session
from logship.jobs.base import JobEngine
from logship.models.errors import EngineError
from logship.models.types import JobKind, JobOutcome, RunState

logger = logging.getLogger(__name__)

_OPERATIONS = {
    JobKind.PRODUCE: "Backup",
    JobKind.TRANSPORT: "Copy",
    JobKind.APPLY: "Restore",
}

JOB_EXISTS_SQL = "SELECT job_id FROM msdb.dbo.sysjobs WHERE name = ?"
SCHEDULE_EXISTS_SQL = "SELECT schedule_id FROM msdb.dbo.sysschedules WHERE name = ?"

RUN_STATE_SQL = """
    SELECT TOP 1 ja.run_requested_date, ja.start_execution_date, ja.stop_execution_date
    FROM msdb.dbo.sysjobactivity ja
    INNER JOIN msdb.dbo.sysjobs j ON j.job_id = ja.job_id
    WHERE j.name = ?
      AND ja.session_id = (SELECT MAX(session_id) FROM msdb.dbo.syssessions)
    ORDER BY ja.run_requested_date DESC
"""

HISTORY_BASELINE_SQL = """
    SELECT MAX(h.instance_id) AS instance_id
    FROM msdb.dbo.sysjobhistory h
    INNER JOIN msdb.dbo.sysjobs j ON j.job_id = h.job_id
    WHERE j.name = ? AND h.step_id = 0
"""

RUN_OUTCOME_SQL = """
    SELECT TOP 1 h.instance_id, h.run_status
    FROM msdb.dbo.sysjobhistory h
    INNER JOIN msdb.dbo.sysjobs j ON j.job_id = h.job_id
    WHERE j.name = ? AND h.step_id = 0 AND h.instance_id > ?
    ORDER BY h.instance_id ASC
"""

LAST_OUTCOME_SQL = """
    SELECT TOP 1 h.run_status
    FROM msdb.dbo.sysjobhistory h
    INNER JOIN msdb.dbo.sysjobs j ON j.job_id = h.job_id
    WHERE j.name = ? AND h.step_id = 0
    ORDER BY h.instance_id DESC
"""


def step_command(job, server: str) -> str:
    """sqllogship.exe command line for a job.

    Raises:
        EngineError: If the job carries no ``log_shipping_id`` parameter.
    """
    log_shipping_id = job.parameters.get("log_shipping_id")
    if not log_shipping_id:
        raise EngineError(f"Job {job.name} has no log shipping id for its sqllogship step")
    return f'sqllogship.exe -{_OPERATIONS[job.kind]} {log_shipping_id} -server "{server}"'


def _outcome(rows: list) -> JobOutcome:
    if not rows:
        return JobOutcome.UNKNOWN
    status = rows[0]["run_status"]
    if status == 1:
        return JobOutcome.SUCCEEDED
    if status == 0:
        return JobOutcome.FAILED
    return JobOutcome.UNKNOWN


class SqlAgentJobEngine(JobEngine):
    def __init__(self, access):
        self.access = access

    def job_exists(self, role, job_name) -> bool:
        with session(self.access, role) as handle:
            return bool(self.access.query(handle, JOB_EXISTS_SQL, (job_name,)))

    def upsert_job(self, role, job):
        command = step_command(job, role.server)
        with session(self.access, role) as handle:
            exists = bool(self.access.query(handle, JOB_EXISTS_SQL, (job.name,)))
            if exists:
                logger.info("Updating agent job %s on %s", job.name, role)
                self.access.execute(
                    handle,
                    "EXEC msdb.dbo.sp_update_job @job_name = ?, @description = ?, "
                    "@category_name = ?",
                    (job.name, job.description, job.category),
                )
                self.access.execute(
                    handle, "EXEC msdb.dbo.sp_delete_jobstep @job_name = ?, @step_id = 0",
                    (job.name,),
                )
            else:
                self.access.execute(
                    handle,
                    "EXEC msdb.dbo.sp_add_job @job_name = ?, @description = ?, "
                    "@category_name = ?, @enabled = 1",
                    (job.name, job.description, job.category),
                )
            self.access.execute(
                handle,
                "EXEC msdb.dbo.sp_add_jobstep @job_name = ?, @step_name = ?, "
                "@subsystem = N'CmdExec', @command = ?, @retry_attempts = 3, @retry_interval = 3",
                (job.name, _OPERATIONS[job.kind], command),
            )
            if not exists:
                self.access.execute(
                    handle,
                    "EXEC msdb.dbo.sp_add_jobserver @job_name = ?, @server_name = N'(local)'",
                    (job.name,),
                )

    def delete_job(self, role, job_name):
        with session(self.access, role) as handle:
            if not self.access.query(handle, JOB_EXISTS_SQL, (job_name,)):
                return
            self.access.execute(
                handle, "EXEC msdb.dbo.sp_delete_job @job_name = ?, @delete_unused_schedule = 1",
                (job_name,),
            )
        logger.info("Deleted agent job %s on %s", job_name, role)

    def schedule_exists(self, role, schedule_name) -> bool:
        with session(self.access, role) as handle:
            return bool(self.access.query(handle, SCHEDULE_EXISTS_SQL, (schedule_name,)))

    def upsert_schedule(self, role, job_name, schedule_name, spec):
        with session(self.access, role) as handle:
            if self.access.query(handle, SCHEDULE_EXISTS_SQL, (schedule_name,)):
                self.access.execute(
                    handle, "EXEC msdb.dbo.sp_delete_schedule @schedule_name = ?, @force_delete = 1",
                    (schedule_name,),
                )
            self.access.execute(
                handle,
                "EXEC msdb.dbo.sp_add_jobschedule @job_name = ?, @name = ?, @enabled = ?, "
                "@freq_type = ?, @freq_interval = ?, @freq_subday_type = ?, "
                "@freq_subday_interval = ?, @freq_relative_interval = ?, "
                "@freq_recurrence_factor = ?, @active_start_date = ?, @active_end_date = ?, "
                "@active_start_time = ?, @active_end_time = ?",
                (job_name, schedule_name, int(bool(spec.enabled)),
                 int(spec.frequency_type), spec.frequency_interval, int(spec.subday_type),
                 spec.subday_interval, int(spec.relative_interval), spec.recurrence_factor,
                 int(spec.start_date), int(spec.end_date),
                 int(spec.start_time), int(spec.end_time)),
            )

    def set_enabled(self, role, job_name, enabled):
        with session(self.access, role) as handle:
            self.access.execute(
                handle, "EXEC msdb.dbo.sp_update_job @job_name = ?, @enabled = ?",
                (job_name, int(bool(enabled))),
            )

    def start(self, role, job_name):
        """Start the job; the run id is the newest history row id before this run."""
        with session(self.access, role) as handle:
            rows = self.access.query(handle, HISTORY_BASELINE_SQL, (job_name,))
            baseline = (rows[0]["instance_id"] if rows else None) or 0
            self.access.execute(handle, "EXEC msdb.dbo.sp_start_job @job_name = ?", (job_name,))
        logger.info("Started agent job %s on %s (history baseline %d)", job_name, role, baseline)
        return baseline

    def run_state(self, role, job_name, run_id):
        with session(self.access, role) as handle:
            if run_id is not None:
                finished = self.access.query(handle, RUN_OUTCOME_SQL, (job_name, run_id))
                return RunState.IDLE if finished else RunState.RUNNING
            rows = self.access.query(handle, RUN_STATE_SQL, (job_name,))
        if not rows:
            return RunState.IDLE
        row = rows[0]
        requested = row["run_requested_date"] or row["start_execution_date"]
        if requested is not None and row["stop_execution_date"] is None:
            return RunState.RUNNING
        return RunState.IDLE

    def last_outcome(self, role, job_name, run_id=None):
        with session(self.access, role) as handle:
            if run_id is not None:
                rows = self.access.query(handle, RUN_OUTCOME_SQL, (job_name, run_id))
            else:
                rows = self.access.query(handle, LAST_OUTCOME_SQL, (job_name,))
        return _outcome(rows)
