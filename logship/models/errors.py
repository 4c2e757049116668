"""Error taxonomy for log shipping orchestration.

Every error carries a ``category`` tag. The tag is what ends up in
``OutcomeRecord.error`` so callers can decide whether a unit is worth
retrying:

  ConfigurationError — invalid topology/schedule input, fix the input
  PreconditionError  — database/path/state checks failed, remediate externally
  ConflictError      — naming collision without force, retry with force
  EngineError        — job engine / instance / catalog call failed, may be transient
  TimeoutError       — a poll loop exceeded its bound, retry the recovery unit
  NotReplicatedError / InvalidStateError — recovery-specific preconditions
"""


class LogShippingError(Exception):
    category = "LogShippingError"


class ConfigurationError(LogShippingError):
    category = "ConfigurationError"


class InvalidScheduleError(ConfigurationError):
    pass


class ConflictingInitializationError(ConfigurationError):
    pass


class PreconditionError(LogShippingError):
    category = "PreconditionError"


class NeedsInitializationError(PreconditionError):
    pass


class PathUnreachableError(PreconditionError):
    pass


class DecisionRequiredError(PreconditionError):
    """An operator has to choose how to initialize; carries the PendingDecision."""
    category = "PendingDecision"

    def __init__(self, decision):
        super().__init__(decision.question)
        self.decision = decision


class ConflictError(LogShippingError):
    category = "ConflictError"


class DuplicateScheduleError(ConflictError):
    pass


class EngineError(LogShippingError):
    category = "EngineError"


class PollTimeoutError(LogShippingError):
    category = "TimeoutError"


class JobFailedError(EngineError):
    """A job run finished with a failed outcome."""


class WaitCancelledError(LogShippingError):
    category = "Cancelled"


class NotReplicatedError(PreconditionError):
    category = "NotReplicatedError"


class InvalidStateError(PreconditionError):
    category = "InvalidStateError"


def error_category(exc: BaseException) -> str:
    """Return the taxonomy tag for any exception (unknown ones count as engine errors)."""
    if isinstance(exc, LogShippingError):
        return exc.category
    return EngineError.category
