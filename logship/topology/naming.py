"""Per-pair resource naming.

Every (secondary role × database) pair gets its own immutable PairPlan built
from the topology, the per-database options and the configured defaults.
Nothing here is shared or mutated across pairs.

Self-replication rule: a pair is rejected when the secondary resolves to the
same server identity AND the same database name as the primary. A rename
prefix or suffix always yields a different name, so it is the only override.
"""

from dataclasses import dataclass
from typing import Optional

from logship.instance.paths import join
from logship.models.errors import ConfigurationError
from logship.models.types import DatabaseOptions, MonitorConfig, RestoreMode, Role


@dataclass(frozen=True)
class PairPlan:
    primary: Role
    secondary: Role
    primary_database: str
    secondary_database: str

    backup_share: str          # per-database folder on the shared path
    backup_directory: str      # same folder as seen locally by the primary
    copy_destination: str      # per-database folder on the secondary

    produce_job: str
    transport_job: str
    apply_job: str
    produce_schedule: str
    transport_schedule: str
    apply_schedule: str

    produce_retention_minutes: int
    transport_retention_minutes: int
    backup_threshold_minutes: int
    restore_threshold_minutes: int
    restore_delay_minutes: int
    history_retention_minutes: int
    compress_backup: bool
    restore_mode: RestoreMode
    standby_directory: str
    disconnect_users: bool
    produce_enabled: bool
    transport_enabled: bool
    apply_enabled: bool

    primary_monitor: Optional[MonitorConfig] = None
    secondary_monitor: Optional[MonitorConfig] = None

    @property
    def label(self) -> str:
        return f"{self.primary}/{self.primary_database} -> {self.secondary}/{self.secondary_database}"


def _pick(value, default):
    return default if value is None else value


def secondary_database_name(database: str, prefix: str = "", suffix: str = "") -> str:
    return f"{prefix or ''}{database}{suffix or ''}"


def check_collision(primary: Role, secondary: Role, primary_database: str,
                    secondary_database: str):
    if (primary.identity == secondary.identity
            and primary_database.lower() == secondary_database.lower()):
        raise ConfigurationError(
            f"Secondary {secondary}/{secondary_database} is the primary database itself; "
            "supply a secondary prefix or suffix"
        )


def build_pair_plan(topology, secondary: Role, database: str, options: DatabaseOptions,
                    settings: dict, monitors: dict = None) -> PairPlan:
    """Derive names, paths and effective options for one pair.

    Raises:
        ConfigurationError: If the pair would replicate a database onto itself.
    """
    options = options or DatabaseOptions()
    monitors = monitors or {}
    naming = settings.get("naming", {})
    retention = settings.get("retention", {})
    thresholds = settings.get("thresholds", {})
    restore = settings.get("restore", {})
    jobs = settings.get("jobs", {})

    prefix = _pick(options.secondary_prefix, naming.get("secondary_prefix", ""))
    suffix = _pick(options.secondary_suffix, naming.get("secondary_suffix", ""))
    secondary_database = secondary_database_name(database, prefix, suffix)
    check_collision(topology.primary, secondary, database, secondary_database)

    primary_key = topology.primary.server.replace("\\", "_")
    produce_prefix = _pick(options.produce_job_prefix, naming.get("produce_job_prefix", "LSBackup_"))
    transport_prefix = _pick(options.transport_job_prefix, naming.get("transport_job_prefix", "LSCopy_"))
    apply_prefix = _pick(options.apply_job_prefix, naming.get("apply_job_prefix", "LSRestore_"))
    produce_sched = _pick(options.produce_schedule_prefix,
                          naming.get("produce_schedule_prefix", "LSBackupSchedule_"))
    transport_sched = _pick(options.transport_schedule_prefix,
                            naming.get("transport_schedule_prefix", "LSCopySchedule_"))
    apply_sched = _pick(options.apply_schedule_prefix,
                        naming.get("apply_schedule_prefix", "LSRestoreSchedule_"))

    mode = _pick(options.restore_mode, restore.get("mode", "NORECOVERY"))
    local_base = topology.local_backup_path or topology.shared_backup_path

    return PairPlan(
        primary=topology.primary,
        secondary=secondary,
        primary_database=database,
        secondary_database=secondary_database,
        backup_share=join(topology.shared_backup_path, database),
        backup_directory=join(local_base, database),
        copy_destination=join(topology.copy_destination_path, database),
        produce_job=f"{produce_prefix}{database}",
        transport_job=f"{transport_prefix}{primary_key}_{database}",
        apply_job=f"{apply_prefix}{primary_key}_{database}",
        produce_schedule=f"{produce_sched}{database}",
        transport_schedule=f"{transport_sched}{primary_key}_{database}",
        apply_schedule=f"{apply_sched}{primary_key}_{database}",
        produce_retention_minutes=int(_pick(options.produce_retention_minutes,
                                            retention.get("produce_minutes", 4320))),
        transport_retention_minutes=int(_pick(options.transport_retention_minutes,
                                              retention.get("transport_minutes", 4320))),
        backup_threshold_minutes=int(_pick(options.backup_threshold_minutes,
                                           thresholds.get("backup_minutes", 60))),
        restore_threshold_minutes=int(_pick(options.restore_threshold_minutes,
                                            thresholds.get("restore_minutes", 45))),
        restore_delay_minutes=int(_pick(options.restore_delay_minutes,
                                        thresholds.get("restore_delay_minutes", 0))),
        history_retention_minutes=int(_pick(options.history_retention_minutes,
                                            retention.get("history_minutes", 14420))),
        compress_backup=bool(_pick(options.compress_backup, restore.get("compress_backup", False))),
        restore_mode=RestoreMode(mode.upper() if isinstance(mode, str) else mode),
        standby_directory=_pick(options.standby_directory, restore.get("standby_directory", "")),
        disconnect_users=bool(_pick(options.disconnect_users, restore.get("disconnect_users", False))),
        produce_enabled=bool(_pick(options.produce_enabled, jobs.get("produce_enabled", True))),
        transport_enabled=bool(_pick(options.transport_enabled, jobs.get("transport_enabled", True))),
        apply_enabled=bool(_pick(options.apply_enabled, jobs.get("apply_enabled", True))),
        primary_monitor=monitors.get(topology.primary.identity),
        secondary_monitor=monitors.get(secondary.identity),
    )
