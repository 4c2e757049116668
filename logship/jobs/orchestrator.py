"""Idempotent job primitives on top of a JobEngine.

Everything above this module talks to the job engine only through
JobOrchestrator. Registration is create-or-replace: with ``replace=True`` an
existing job or schedule of the same name is overwritten, without it the name
collision raises DuplicateScheduleError. Completion is detected only by
starting a job and polling until it is idle.
"""

import logging
import threading
import time
from typing import Optional

from logship.models.errors import (
    DuplicateScheduleError, EngineError, LogShippingError, PollTimeoutError,
    WaitCancelledError,
)
from logship.models.types import JobOutcome, JobRef, RunHandle, RunState

logger = logging.getLogger(__name__)


class JobOrchestrator:
    def __init__(self, engine):
        self.engine = engine

    def create_or_replace_job(self, role, job, replace: bool = False) -> JobRef:
        ref = JobRef(role, job.name)
        if self._call(self.engine.job_exists, role, job.name):
            if not replace:
                raise DuplicateScheduleError(
                    f"Job '{job.name}' already exists on {role}. Use force to overwrite it."
                )
            logger.info("Overwriting job %s", ref)
        self._call(self.engine.upsert_job, role, job)
        logger.info("Registered %s job %s", job.kind.value, ref)
        return ref

    def create_or_replace_schedule(self, ref: JobRef, schedule_name: str, spec,
                                   replace: bool = False):
        if self._call(self.engine.schedule_exists, ref.role, schedule_name):
            if not replace:
                raise DuplicateScheduleError(
                    f"Schedule '{schedule_name}' already exists on {ref.role}. "
                    "Use force to overwrite it."
                )
            logger.info("Overwriting schedule %s on %s", schedule_name, ref.role)
        self._call(self.engine.upsert_schedule, ref.role, ref.name, schedule_name, spec)

    def job_exists(self, role, job_name: str) -> bool:
        return self._call(self.engine.job_exists, role, job_name)

    def schedule_exists(self, role, schedule_name: str) -> bool:
        return self._call(self.engine.schedule_exists, role, schedule_name)

    def delete_job(self, ref: JobRef):
        self._call(self.engine.delete_job, ref.role, ref.name)

    def set_enabled(self, ref: JobRef, enabled: bool):
        self._call(self.engine.set_enabled, ref.role, ref.name, enabled)
        logger.info("%s job %s", "Enabled" if enabled else "Disabled", ref)

    def start(self, ref: JobRef) -> RunHandle:
        run_id = self._call(self.engine.start, ref.role, ref.name)
        return RunHandle(ref.role, ref.name, run_id)

    def poll_status(self, handle: RunHandle) -> RunState:
        return self._call(self.engine.run_state, handle.role, handle.job_name, handle.run_id)

    def last_outcome(self, ref: JobRef, handle: Optional[RunHandle] = None) -> JobOutcome:
        """Outcome of the run behind ``handle``, or of the latest finished run."""
        run_id = handle.run_id if handle is not None else None
        return self._call(self.engine.last_outcome, ref.role, ref.name, run_id)

    def wait_until_idle(self, handle: RunHandle, poll_interval: float, max_wait: float,
                        cancel: Optional[threading.Event] = None) -> float:
        """Poll until the run is idle. Returns the seconds waited.

        Cancellation and timeout only abandon the wait; the started job keeps
        running in the engine.

        Raises:
            PollTimeoutError: If the run is still active after ``max_wait`` seconds.
            WaitCancelledError: If ``cancel`` is set while waiting.
        """
        cancel = cancel or threading.Event()
        started = time.monotonic()
        deadline = started + max_wait
        while True:
            if cancel.is_set():
                raise WaitCancelledError(
                    f"Wait for {handle.job_name} on {handle.role} was cancelled"
                )
            if self.poll_status(handle) == RunState.IDLE:
                return time.monotonic() - started
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise PollTimeoutError(
                    f"Job {handle.job_name} on {handle.role} still running after {max_wait}s"
                )
            logger.debug("%s still running, next check in %ss", handle.job_name, poll_interval)
            cancel.wait(min(poll_interval, remaining))

    def _call(self, fn, *args):
        try:
            return fn(*args)
        except LogShippingError:
            raise
        except Exception as e:
            raise EngineError(f"{fn.__name__} failed: {e}") from e
