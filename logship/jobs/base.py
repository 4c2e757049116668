from abc import ABC, abstractmethod


class JobEngine(ABC):
    """Capability set of an external job-execution engine, scoped per role.

    Implementations must raise ``EngineError`` for backend failures.
    """

    @abstractmethod
    def job_exists(self, role, job_name) -> bool:
        raise NotImplementedError

    @abstractmethod
    def upsert_job(self, role, job):
        raise NotImplementedError

    @abstractmethod
    def delete_job(self, role, job_name):
        """Delete a job and its schedules. A missing job is not an error."""
        raise NotImplementedError

    @abstractmethod
    def schedule_exists(self, role, schedule_name) -> bool:
        raise NotImplementedError

    @abstractmethod
    def upsert_schedule(self, role, job_name, schedule_name, spec):
        raise NotImplementedError

    @abstractmethod
    def set_enabled(self, role, job_name, enabled):
        raise NotImplementedError

    @abstractmethod
    def start(self, role, job_name):
        """Start a run and return a backend run id identifying it."""
        raise NotImplementedError

    @abstractmethod
    def run_state(self, role, job_name, run_id):
        """Return ``RunState.RUNNING`` or ``RunState.IDLE`` for the run ``start`` returned."""
        raise NotImplementedError

    @abstractmethod
    def last_outcome(self, role, job_name, run_id=None):
        """Return the ``JobOutcome`` of run ``run_id``, or of the most recent finished run."""
        raise NotImplementedError
