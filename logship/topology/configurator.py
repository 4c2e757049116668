"""Topology configuration: one pipeline per (secondary role × database) pair.

Batch checks (abort the whole call with ConfigurationError):
  - topology shape (primary, secondaries, databases, paths)
  - produce / transport / apply schedules normalize cleanly

Pair steps (a failure stops only the current pair):
  1. validate         — naming rule, primary database exists in FULL recovery,
                        job and schedule names free (unless force), paths
                        reachable, per-database folders created
  2. initialize       — seed the secondary from a new or existing base copy
  3. produce          — primary database registration, produce job + schedule,
                        primary catalog link
  4. transport_apply  — secondary catalog entry, transport and apply jobs +
                        schedules

When a step fails, the pair's compensation runs in reverse order and removes
what this pair created: jobs, catalog records and a newly seeded secondary
database. Anything that existed before the call is left in place.

Each pair produces exactly one OutcomeRecord. The produce job of a database is
shared by all of its secondaries: within one call it is registered once, and
a secondary added later reuses it without force.
"""

import logging

from logship.instance.backup import file_name, order_backup_files
from logship.instance.inspect import drop_database, get_database_state
from logship.instance.paths import join
from logship.models.errors import (
    ConfigurationError, DecisionRequiredError, DuplicateScheduleError, LogShippingError,
    PathUnreachableError, PreconditionError,
)
from logship.models.types import (
    DatabaseOptions, InitializationRequest, InitKind, JobDefinition, JobKind, JobRef,
    PendingDecision, PrimaryLink, SecondaryLink,
)
from logship.reporting.reporter import ResultReporter
from logship.schedule.builder import normalize, with_enabled
from logship.settings.store import settings_store
from logship.topology.initialization import resolve
from logship.topology.naming import build_pair_plan

logger = logging.getLogger(__name__)

PAIR_STEPS = ["validate", "initialize", "produce", "transport_apply"]


class TopologyConfigurator:
    """Establishes log shipping for every pair of a topology."""

    def __init__(self, collaborators, settings: dict = None):
        self.services = collaborators
        self.settings = settings or settings_store.load()

    def configure(self, topology, schedules: dict = None,
                  initialization: InitializationRequest = None, monitors: dict = None,
                  options: dict = None, force: bool = False) -> list:
        """Configure all pairs and return their OutcomeRecords.

        ``schedules`` maps JobKind (or its value) to a partial ScheduleSpec or
        mapping; ``monitors`` maps a role's server name to its MonitorConfig;
        ``options`` maps database name to DatabaseOptions.

        Raises:
            ConfigurationError: If the batch input is invalid; no pair is touched.
        """
        errors = topology.validate()
        if errors:
            raise ConfigurationError(f"Invalid topology: {errors}")
        specs = _normalize_schedules(schedules or {})
        monitor_map = {server.strip().lower(): m for server, m in (monitors or {}).items()}
        options = options or {}

        reporter = ResultReporter(primary_role=topology.primary.server)
        registered = set()
        logger.info(
            "Configuring log shipping from %s for %d database(s) to %d secondary role(s)%s",
            topology.primary, len(topology.databases), len(topology.secondaries),
            " (force)" if force else "",
        )
        for secondary in topology.secondaries:
            for database in topology.databases:
                _PairPipeline(
                    services=self.services,
                    settings=self.settings,
                    topology=topology,
                    secondary=secondary,
                    database=database,
                    options=options.get(database) or DatabaseOptions(),
                    specs=specs,
                    initialization=initialization or InitializationRequest(),
                    monitors=monitor_map,
                    force=force,
                    registered=registered,
                    reporter=reporter,
                ).execute()

        summary = reporter.summary()
        logger.info("Configuration finished: %d succeeded, %d failed",
                    summary["succeeded"], summary["failed"])
        return reporter.records


def _normalize_schedules(schedules: dict) -> dict:
    specs = {}
    for kind in JobKind:
        partial = schedules.get(kind)
        if partial is None:
            partial = schedules.get(kind.value)
        specs[kind] = normalize(partial)
    return specs


class _PairPipeline:
    def __init__(self, services, settings, topology, secondary, database, options, specs,
                 initialization, monitors, force, registered, reporter):
        self.services = services
        self.settings = settings
        self.topology = topology
        self.secondary = secondary
        self.database = database
        self.options = options
        self.specs = specs
        self.initialization = initialization
        self.monitors = monitors
        self.force = force
        self.registered = registered
        self.reporter = reporter

        self.plan = None
        self.secondary_state = None
        self.steps_completed = []

        # What existed before this pair ran; rollback never removes it.
        self.reuse_produce = False
        self.existing_jobs = set()
        self.primary_was_registered = False
        self.prior_entry = None

        # What this pair touched.
        self.seeded_new = False
        self.created_produce = False
        self.primary_link = None
        self.secondary_registered = False
        self.written_jobs = []

    @property
    def secondary_database(self) -> str:
        return self.plan.secondary_database if self.plan else self.database

    @property
    def produce_key(self) -> tuple:
        return (self.plan.primary.identity, self.plan.produce_job)

    def execute(self):
        step = PAIR_STEPS[0]
        try:
            for step in PAIR_STEPS:
                getattr(self, f"_step_{step}")()
                self.steps_completed.append(step)
        except LogShippingError as e:
            self._compensate(step)
            self._fail(step, e)
            return
        except Exception as e:
            logger.exception("Unexpected error in step '%s' for %s/%s",
                             step, self.secondary, self.database)
            self._compensate(step)
            self._fail(step, e)
            return

        self.reporter.record_success(
            self.database, self.secondary_database, secondary_role=self.secondary.server,
        )

    def _fail(self, step, error):
        self.reporter.record_failure(
            self.database, self.secondary_database, error, step=step,
            secondary_role=self.secondary.server,
        )

    # ── Steps ────────────────────────────────────────────────────────────────

    def _step_validate(self):
        """Step 1: naming rule, primary database, paths, conflicts, secondary state."""
        self.plan = build_pair_plan(
            self.topology, self.secondary, self.database, self.options,
            self.settings, self.monitors,
        )
        plan = self.plan
        instance = self.services.instance

        state = get_database_state(instance, plan.primary, plan.primary_database)
        if state is None:
            raise PreconditionError(f"Database {plan.primary_database} does not exist on {plan.primary}")
        if not state.is_full_recovery:
            raise PreconditionError(
                f"Database {plan.primary_database} on {plan.primary} is not in required recovery mode "
                f"(FULL); current recovery model is {state.recovery_model}"
            )

        self._check_conflicts()

        self._ensure_path(plan.primary, self.topology.shared_backup_path, plan.backup_share)
        if self.topology.local_backup_path:
            self._ensure_path(plan.primary, self.topology.local_backup_path, plan.backup_directory)
        self._ensure_path(plan.secondary, self.topology.copy_destination_path, plan.copy_destination)
        if plan.standby_directory:
            self._ensure_path(plan.secondary, plan.standby_directory)

        self.secondary_state = get_database_state(instance, plan.secondary, plan.secondary_database)

    def _step_initialize(self):
        """Step 2: resolve and run the seeding plan."""
        plan = self.plan
        paths = self.services.paths
        decision = resolve(
            self.initialization, self.secondary_state, self.force,
            path_reachable=lambda p: paths.path_reachable(plan.secondary, p),
        )
        if isinstance(decision, PendingDecision):
            logger.warning("Initialization of %s needs a decision: %s", plan.label, decision.question)
            raise DecisionRequiredError(decision)
        if not decision.seeds:
            logger.info("No initialization needed for %s", plan.label)
            return

        backups = self.services.backups
        replace = self.secondary_state is not None
        if decision.kind == InitKind.GENERATE_NEW:
            locator = backups.produce_base_copy(
                plan.primary, plan.primary_database, plan.backup_directory, plan.compress_backup,
            )
            files = [join(plan.backup_share, file_name(locator))]
        elif decision.kind == InitKind.REUSE_EXISTING:
            files = [decision.path]
        else:
            files = order_backup_files(paths.list_files(plan.secondary, decision.path))
            if not files:
                raise PreconditionError(f"No full backup found in {decision.path}")

        logger.info("Initializing %s from %d backup file(s) (%s)",
                    plan.label, len(files), decision.kind.value)
        self.seeded_new = self.secondary_state is None
        for i, locator in enumerate(files):
            backups.apply(
                plan.secondary, locator, plan.secondary_database, plan.restore_mode,
                plan.standby_directory, replace=replace and i == 0,
            )

    def _step_produce(self):
        """Step 3: primary database registration, produce job, primary catalog link."""
        plan = self.plan
        jobs = self.services.jobs
        catalog = self.services.catalog
        link = PrimaryLink(
            primary_database=plan.primary_database,
            secondary_role=plan.secondary.server,
            secondary_database=plan.secondary_database,
            backup_directory=plan.backup_directory,
            backup_share=plan.backup_share,
            produce_job_name=plan.produce_job,
            retention_minutes=plan.produce_retention_minutes,
            backup_threshold_minutes=plan.backup_threshold_minutes,
            history_retention_minutes=plan.history_retention_minutes,
            compress_backup=plan.compress_backup,
            monitor=plan.primary_monitor,
        )
        if self.reuse_produce:
            logger.info("Reusing produce job %s on %s", plan.produce_job, plan.primary)
        else:
            self.created_produce = True
            primary_id = catalog.register_primary_database(plan.primary, link)
            job = JobDefinition(
                name=plan.produce_job,
                kind=JobKind.PRODUCE,
                database=plan.primary_database,
                retention_minutes=plan.produce_retention_minutes,
                parameters={
                    "log_shipping_id": primary_id,
                    "backup_directory": plan.backup_directory,
                    "backup_share": plan.backup_share,
                    "compress": plan.compress_backup,
                },
                description=f"Log shipping backup of {plan.primary_database}",
            )
            self._write_job(plan.primary, job, plan.produce_schedule, plan.produce_enabled)
            self.registered.add(self.produce_key)

        self.primary_link = link
        catalog.register_primary(plan.primary, link)

    def _step_transport_apply(self):
        """Step 4: secondary catalog entry, then its transport and apply jobs."""
        plan = self.plan
        self.secondary_registered = True
        secondary_id = self.services.catalog.register_secondary(plan.secondary, SecondaryLink(
            primary_role=plan.primary.server,
            primary_database=plan.primary_database,
            secondary_database=plan.secondary_database,
            source_path=plan.backup_share,
            destination_path=plan.copy_destination,
            transport_job_name=plan.transport_job,
            apply_job_name=plan.apply_job,
            retention_minutes=plan.transport_retention_minutes,
            restore_mode=plan.restore_mode,
            restore_delay_minutes=plan.restore_delay_minutes,
            restore_threshold_minutes=plan.restore_threshold_minutes,
            disconnect_users=plan.disconnect_users,
            history_retention_minutes=plan.history_retention_minutes,
            monitor=plan.secondary_monitor,
        ))
        transport = JobDefinition(
            name=plan.transport_job,
            kind=JobKind.TRANSPORT,
            database=plan.secondary_database,
            retention_minutes=plan.transport_retention_minutes,
            parameters={
                "log_shipping_id": secondary_id,
                "primary_database": plan.primary_database,
                "source": plan.backup_share,
                "destination": plan.copy_destination,
            },
            description=f"Log shipping copy of {plan.primary_database} from {plan.primary}",
        )
        apply = JobDefinition(
            name=plan.apply_job,
            kind=JobKind.APPLY,
            database=plan.secondary_database,
            retention_minutes=plan.transport_retention_minutes,
            parameters={
                "log_shipping_id": secondary_id,
                "primary_database": plan.primary_database,
                "source": plan.copy_destination,
                "restore_mode": plan.restore_mode.value,
                "restore_delay_minutes": plan.restore_delay_minutes,
                "standby_directory": plan.standby_directory,
                "disconnect_users": plan.disconnect_users,
            },
            description=f"Log shipping restore of {plan.secondary_database}",
        )
        self._write_job(plan.secondary, transport, plan.transport_schedule, plan.transport_enabled)
        self._write_job(plan.secondary, apply, plan.apply_schedule, plan.apply_enabled)

    # ── Compensation ─────────────────────────────────────────────────────────

    def _compensate(self, failed_step):
        """Undo, in reverse order, what the completed steps and the failed step created."""
        for step in reversed(self.steps_completed + [failed_step]):
            try:
                compensator = getattr(self, f"_compensate_{step}", None)
                if compensator:
                    compensator()
            except Exception as e:
                logger.error("Compensation failed for step '%s' of %s/%s: %s",
                             step, self.secondary, self.database, e)

    def _compensate_transport_apply(self):
        plan = self.plan
        for ref in reversed(self.written_jobs):
            if ref.name in (plan.transport_job, plan.apply_job):
                self._delete_job(ref)
        if self.secondary_registered and self.prior_entry is None:
            self.services.catalog.unregister_secondary(plan.secondary, plan.secondary_database)

    def _compensate_produce(self):
        plan = self.plan
        catalog = self.services.catalog
        if self.primary_link is not None and self.prior_entry is None:
            catalog.unregister_primary(plan.primary, self.primary_link)
        if not self.created_produce:
            return
        self.registered.discard(self.produce_key)
        for ref in self.written_jobs:
            if ref.name == plan.produce_job:
                self._delete_job(ref)
        if not self.primary_was_registered:
            catalog.unregister_primary_database(plan.primary, plan.primary_database)

    def _compensate_initialize(self):
        plan = self.plan
        if self.seeded_new:
            drop_database(self.services.instance, plan.secondary, plan.secondary_database)
        elif self.secondary_state is not None:
            logger.warning("Leaving existing %s on %s as it is", plan.secondary_database,
                           plan.secondary)

    # ── Helpers ──────────────────────────────────────────────────────────────

    def _check_conflicts(self):
        """Fail before anything is written when jobs or schedules are already taken."""
        plan = self.plan
        jobs = self.services.jobs
        catalog = self.services.catalog

        self.primary_was_registered = catalog.is_primary_registered(
            plan.primary, plan.primary_database,
        )
        if self.produce_key in self.registered:
            self.reuse_produce = True
        elif not self.force and self.primary_was_registered:
            # Another secondary already ships this database.
            self.reuse_produce = jobs.job_exists(plan.primary, plan.produce_job)

        wanted = [
            (plan.secondary, plan.transport_job, plan.transport_schedule),
            (plan.secondary, plan.apply_job, plan.apply_schedule),
        ]
        if not self.reuse_produce:
            wanted.insert(0, (plan.primary, plan.produce_job, plan.produce_schedule))
        for role, job_name, schedule_name in wanted:
            if jobs.job_exists(role, job_name):
                self.existing_jobs.add((role.identity, job_name))
                if not self.force:
                    raise DuplicateScheduleError(
                        f"Job '{job_name}' already exists on {role}. Use force to overwrite it."
                    )
            elif not self.force and jobs.schedule_exists(role, schedule_name):
                raise DuplicateScheduleError(
                    f"Schedule '{schedule_name}' already exists on {role}. "
                    "Use force to overwrite it."
                )
        self.prior_entry = catalog.lookup(plan.secondary, plan.secondary_database)

    def _write_job(self, role, job, schedule_name, enabled):
        jobs = self.services.jobs
        self.written_jobs.append(JobRef(role, job.name))
        ref = jobs.create_or_replace_job(role, job, replace=True)
        jobs.create_or_replace_schedule(
            ref, schedule_name, with_enabled(self.specs[job.kind], enabled), replace=True,
        )
        jobs.set_enabled(ref, enabled)

    def _delete_job(self, ref):
        if (ref.role.identity, ref.name) in self.existing_jobs:
            logger.warning("Leaving pre-existing job %s in place", ref)
            return
        self.services.jobs.delete_job(ref)

    def _ensure_path(self, role, base, subdirectory=None):
        paths = self.services.paths
        if not paths.path_reachable(role, base):
            raise PathUnreachableError(f"Path {base} is not reachable from {role}")
        if subdirectory and not paths.path_reachable(role, subdirectory):
            logger.info("Creating %s for %s", subdirectory, role)
            paths.create_directory(role, subdirectory)
