"""Data types for the log shipping orchestrator."""

from dataclasses import dataclass, field, asdict
from enum import Enum, IntEnum
from typing import Optional


# ── Enumerations ─────────────────────────────────────────────────────────────

class JobKind(str, Enum):
    PRODUCE = "produce"
    TRANSPORT = "transport"
    APPLY = "apply"


class FrequencyType(IntEnum):
    """SQL Server Agent ``freq_type`` codes."""
    ONCE = 1
    DAILY = 4
    WEEKLY = 8
    MONTHLY = 16
    MONTHLY_RELATIVE = 32
    AGENT_START = 64
    IDLE = 128


class SubdayType(IntEnum):
    """SQL Server Agent ``freq_subday_type`` codes."""
    AT_TIME = 1
    SECONDS = 2
    MINUTES = 4
    HOURS = 8


class RelativeInterval(IntEnum):
    UNUSED = 0
    FIRST = 1
    SECOND = 2
    THIRD = 4
    FOURTH = 8
    LAST = 16


class RestoreMode(str, Enum):
    NORECOVERY = "NORECOVERY"
    STANDBY = "STANDBY"


class InitKind(str, Enum):
    NONE = "none"
    GENERATE_NEW = "generate_new"
    REUSE_EXISTING = "reuse_existing"
    REUSE_FOLDER = "reuse_folder"


class Result(str, Enum):
    SUCCESS = "Success"
    FAILED = "Failed"


class RunState(str, Enum):
    RUNNING = "Running"
    IDLE = "Idle"


class JobOutcome(str, Enum):
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    UNKNOWN = "Unknown"


class RecoveryState(str, Enum):
    REPLICA_PENDING = "ReplicaPending"
    TRANSPORT_RUNNING = "TransportRunning"
    TRANSPORT_IDLE = "TransportIdle"
    APPLY_RUNNING = "ApplyRunning"
    APPLY_IDLE = "ApplyIdle"
    PROMOTED = "Promoted"
    FAILED = "Failed"


# ── Topology ─────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Role:
    """A server taking part in the topology, with optional SQL credentials.

    ``credential`` is ``None`` for integrated authentication, otherwise a
    dict with ``username`` and ``password``.
    """
    server: str
    credential: Optional[dict] = field(default=None, compare=False, hash=False)

    @property
    def identity(self) -> str:
        return self.server.strip().lower()

    def __str__(self) -> str:
        return self.server


@dataclass
class ReplicationTopology:
    """One primary shipping a batch of databases to one or more secondaries."""
    primary: Role
    secondaries: list
    databases: list
    shared_backup_path: str
    local_backup_path: str = ""
    copy_destination_path: str = ""

    def validate(self) -> list:
        """Return a list of validation errors (empty if valid)."""
        errors = []
        if not self.primary or not self.primary.server:
            errors.append("primary server is required")
        if not self.secondaries:
            errors.append("at least one secondary server is required")
        if any(not s.server for s in self.secondaries):
            errors.append("secondary servers must be named")
        if not self.databases:
            errors.append("at least one database is required")
        if not self.shared_backup_path:
            errors.append("shared backup path is required")
        if not self.copy_destination_path:
            errors.append("copy destination path is required")
        return errors


@dataclass(frozen=True)
class ScheduleSpec:
    """Recurrence shared by produce, transport and apply jobs.

    Dates are ``YYYYMMDD`` strings and times ``HHMMSS`` strings. A partial
    spec leaves fields as ``None``; ``schedule.builder.normalize`` fills them.
    """
    frequency_type: Optional[int] = None
    frequency_interval: Optional[int] = None
    subday_type: Optional[int] = None
    subday_interval: Optional[int] = None
    relative_interval: Optional[int] = None
    recurrence_factor: Optional[int] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    enabled: Optional[bool] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class MonitorConfig:
    server: str = ""
    security_mode: str = "windows"  # windows | sql
    credential: Optional[dict] = field(default=None, compare=False, hash=False)
    threshold_alert_enabled: bool = False

    def to_dict(self) -> dict:
        # Credentials never leave the process.
        return {
            "server": self.server,
            "security_mode": self.security_mode,
            "threshold_alert_enabled": self.threshold_alert_enabled,
        }


@dataclass(frozen=True)
class DatabaseOptions:
    """Per-database overrides. ``None`` means "use the configured default"."""
    secondary_prefix: Optional[str] = None
    secondary_suffix: Optional[str] = None
    produce_job_prefix: Optional[str] = None
    transport_job_prefix: Optional[str] = None
    apply_job_prefix: Optional[str] = None
    produce_schedule_prefix: Optional[str] = None
    transport_schedule_prefix: Optional[str] = None
    apply_schedule_prefix: Optional[str] = None
    produce_retention_minutes: Optional[int] = None
    transport_retention_minutes: Optional[int] = None
    backup_threshold_minutes: Optional[int] = None
    restore_threshold_minutes: Optional[int] = None
    restore_delay_minutes: Optional[int] = None
    history_retention_minutes: Optional[int] = None
    compress_backup: Optional[bool] = None
    restore_mode: Optional[RestoreMode] = None
    standby_directory: Optional[str] = None
    disconnect_users: Optional[bool] = None
    produce_enabled: Optional[bool] = None
    transport_enabled: Optional[bool] = None
    apply_enabled: Optional[bool] = None


# ── Initialization ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class InitializationRequest:
    """What the caller asked for. At most one seeding mode may be set."""
    no_initialization: bool = False
    generate_new: bool = False
    existing_backup: Optional[str] = None
    backup_folder: Optional[str] = None

    def requested_modes(self) -> list:
        modes = []
        if self.generate_new:
            modes.append(InitKind.GENERATE_NEW)
        if self.existing_backup:
            modes.append(InitKind.REUSE_EXISTING)
        if self.backup_folder:
            modes.append(InitKind.REUSE_FOLDER)
        return modes


@dataclass(frozen=True)
class InitializationPlan:
    kind: InitKind
    path: Optional[str] = None

    @property
    def seeds(self) -> bool:
        return self.kind != InitKind.NONE


@dataclass(frozen=True)
class PendingDecision:
    """Returned instead of prompting an operator; resolved by a follow-up call."""
    question: str
    default_kind: InitKind = InitKind.GENERATE_NEW


# ── Jobs ─────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class JobRef:
    role: Role
    name: str

    def __str__(self) -> str:
        return f"{self.role.server}/{self.name}"


@dataclass(frozen=True)
class JobDefinition:
    """A job registered with the engine on one role."""
    name: str
    kind: JobKind
    database: str
    retention_minutes: int
    parameters: dict = field(default_factory=dict, compare=False, hash=False)
    description: str = ""
    category: str = "Log Shipping"


@dataclass(frozen=True)
class ScheduledJob:
    job: JobDefinition
    schedule_name: str
    schedule: ScheduleSpec
    enabled: bool = True


@dataclass(frozen=True)
class ReplicationJobTriple:
    produce: ScheduledJob
    transport: ScheduledJob
    apply: ScheduledJob


@dataclass(frozen=True)
class RunHandle:
    role: Role
    job_name: str
    run_id: Optional[int] = None


# ── Instance / catalog snapshots ─────────────────────────────────────────────

@dataclass(frozen=True)
class DatabaseState:
    """Row of ``sys.databases`` relevant to log shipping."""
    name: str
    recovery_model: str
    state: str
    is_standby: bool = False

    @property
    def is_full_recovery(self) -> bool:
        return self.recovery_model.upper() == "FULL"

    @property
    def is_recovery_pending(self) -> bool:
        """True while the database still accepts log restores."""
        return self.state.upper() == "RESTORING" or self.is_standby


@dataclass(frozen=True)
class PrimaryLink:
    """Primary-side catalog record written after the produce job exists."""
    primary_database: str
    secondary_role: str
    secondary_database: str
    backup_directory: str
    backup_share: str
    produce_job_name: str
    retention_minutes: int
    backup_threshold_minutes: int
    history_retention_minutes: int
    compress_backup: bool
    monitor: Optional[MonitorConfig] = None


@dataclass(frozen=True)
class SecondaryLink:
    """Secondary-side catalog record written after transport/apply jobs exist."""
    primary_role: str
    primary_database: str
    secondary_database: str
    source_path: str
    destination_path: str
    transport_job_name: str
    apply_job_name: str
    retention_minutes: int
    restore_mode: RestoreMode
    restore_delay_minutes: int
    restore_threshold_minutes: int
    disconnect_users: bool
    history_retention_minutes: int
    monitor: Optional[MonitorConfig] = None


@dataclass(frozen=True)
class RecoveryCatalogEntry:
    primary_role: str
    primary_database: str
    secondary_database: str
    source_path: str
    destination_path: str
    last_copied_file: Optional[str]
    last_restored_file: Optional[str]
    transport_job_name: str
    apply_job_name: str


# ── Outcomes ─────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class OutcomeRecord:
    """Result for one (secondary role × database) unit. Never mutated."""
    primary_role: str
    secondary_role: str
    primary_database: str
    secondary_database: str
    result: Result
    comment: str = ""
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.result == Result.SUCCESS

    def to_dict(self) -> dict:
        return {
            "primaryRole": self.primary_role,
            "secondaryRole": self.secondary_role,
            "primaryDatabase": self.primary_database,
            "secondaryDatabase": self.secondary_database,
            "result": self.result.value,
            "comment": self.comment,
            "error": self.error,
        }
