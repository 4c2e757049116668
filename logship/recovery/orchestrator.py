"""Recovery: drain a secondary's log shipping jobs and promote it.

Per database:
  ReplicaPending -> TransportRunning -> TransportIdle
                 -> ApplyRunning -> ApplyIdle -> Promoted
  any state      -> Failed (failed run, precondition, timeout, cancellation)

  1. Read the catalog entry (missing -> NotReplicatedError, engine untouched)
  2. Check the secondary database is restoring or in standby
  3. Start the transport job, wait until idle, require success, disable it
  4. Start the apply job, wait until idle, require success, disable it
  5. Unless deferred, RESTORE WITH RECOVERY. This cannot be undone here.

Databases are processed independently; a failure never stops the others.
``states`` holds the state of each (role identity, database) of the latest
``recover`` call.
"""

import logging
import threading
from typing import Optional

from logship.instance.inspect import get_database_state, promote_database
from logship.models.errors import (
    InvalidStateError, JobFailedError, LogShippingError, NotReplicatedError,
)
from logship.models.types import JobOutcome, JobRef, RecoveryState
from logship.reporting.reporter import ResultReporter
from logship.settings.store import settings_store

logger = logging.getLogger(__name__)


class RecoveryOrchestrator:
    def __init__(self, collaborators, settings: dict = None):
        self.services = collaborators
        settings = settings or settings_store.load()
        recovery = settings.get("recovery", {})
        self.default_poll_interval = float(recovery.get("poll_interval_seconds", 5))
        self.default_max_wait = float(recovery.get("max_wait_seconds", 3600))
        self.states = {}

    def recover(self, role, databases: list = None, defer_final_promotion: bool = False,
                poll_interval: Optional[float] = None, max_wait: Optional[float] = None,
                cancel: Optional[threading.Event] = None) -> list:
        """Recover each database on ``role`` and return one OutcomeRecord per database.

        With no databases given, every database the catalog lists on the role
        is recovered.
        """
        self.states = {}
        poll_interval = self.default_poll_interval if poll_interval is None else poll_interval
        max_wait = self.default_max_wait if max_wait is None else max_wait
        cancel = cancel or threading.Event()
        if not databases:
            databases = self.services.catalog.list_databases(role)
            logger.info("Recovering all %d log shipped database(s) on %s", len(databases), role)

        reporter = ResultReporter(secondary_role=role.server)
        for database in databases:
            self._recover_one(role, database, defer_final_promotion, poll_interval,
                              max_wait, cancel, reporter)
        return reporter.records

    def _recover_one(self, role, database, defer, poll_interval, max_wait, cancel, reporter):
        entry = None
        stage = "catalog"
        try:
            entry = self.services.catalog.lookup(role, database)
            if entry is None:
                raise NotReplicatedError(f"Database {database} is not log shipped to {role}")

            stage = "state"
            state = get_database_state(self.services.instance, role, database)
            if state is None or not state.is_recovery_pending:
                current = state.state if state else "missing"
                raise InvalidStateError(
                    f"Database {database} on {role} is not restoring or in standby (state: {current})"
                )
            self.states[(role.identity, database)] = RecoveryState.REPLICA_PENDING

            stage = "transport"
            self._drain(JobRef(role, entry.transport_job_name), database,
                        RecoveryState.TRANSPORT_RUNNING, RecoveryState.TRANSPORT_IDLE,
                        poll_interval, max_wait, cancel)

            stage = "apply"
            self._drain(JobRef(role, entry.apply_job_name), database,
                        RecoveryState.APPLY_RUNNING, RecoveryState.APPLY_IDLE,
                        poll_interval, max_wait, cancel)

            if defer:
                logger.info("Final promotion of %s on %s deferred", database, role)
                reporter.record_success(
                    entry.primary_database, database, "Recovery deferred; database left restoring",
                    primary_role=entry.primary_role,
                )
                return

            stage = "promote"
            promote_database(self.services.instance, role, database)
            self.states[(role.identity, database)] = RecoveryState.PROMOTED
        except LogShippingError as e:
            self._fail(reporter, role, entry, database, stage, e)
            return
        except Exception as e:
            logger.exception("Unexpected error recovering %s on %s", database, role)
            self._fail(reporter, role, entry, database, stage, e)
            return

        reporter.record_success(
            entry.primary_database, database, "Database recovered and online",
            primary_role=entry.primary_role,
        )

    def _drain(self, ref, database, running_state, idle_state, poll_interval, max_wait, cancel):
        """Run a job to completion, require it succeeded and disable it."""
        jobs = self.services.jobs
        key = (ref.role.identity, database)
        handle = jobs.start(ref)
        self.states[key] = running_state
        waited = jobs.wait_until_idle(handle, poll_interval, max_wait, cancel)
        self.states[key] = idle_state
        outcome = jobs.last_outcome(ref, handle)
        if outcome == JobOutcome.FAILED:
            raise JobFailedError(f"Job {ref.name} on {ref.role} failed")
        if outcome != JobOutcome.SUCCEEDED:
            raise JobFailedError(f"Job {ref.name} on {ref.role} finished with an unknown outcome")
        logger.info("Job %s finished after %.1fs (%s)", ref, waited, outcome.value)
        jobs.set_enabled(ref, False)

    def _fail(self, reporter, role, entry, database, stage, error):
        key = (role.identity, database)
        if key in self.states:
            self.states[key] = RecoveryState.FAILED
        reporter.record_failure(
            entry.primary_database if entry else "", database, error, step=stage,
            primary_role=entry.primary_role if entry else "",
        )
