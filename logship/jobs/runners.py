"""Produce, transport and apply runners for the in-process job engine.

  produce    — BACKUP LOG of the primary database into the backup directory
  transport  — copy log backups newer than the last copied file from the
               share to the secondary's copy destination
  apply      — restore copied log backups newer than the last restored file,
               honouring the restore delay

Markers are file names as recorded in the replication catalog. They advance
after every file, so a failed run resumes where it stopped.
"""

import logging
import time

from logship.instance.backup import LOG_BACKUP_EXTENSIONS, file_name
from logship.models.types import JobKind, RestoreMode

logger = logging.getLogger(__name__)


def pending_logs(files: list, prefix: str, marker: str = None) -> list:
    """Log backups of one database named after ``marker``, oldest first."""
    logs = [
        f for f in files
        if f.lower().endswith(LOG_BACKUP_EXTENSIONS) and file_name(f).startswith(f"{prefix}_")
    ]
    logs.sort(key=file_name)
    if marker:
        logs = [f for f in logs if file_name(f) > marker]
    return logs


def _stamp(path: str) -> str:
    return file_name(path).rsplit(".", 1)[0].rsplit("_", 1)[-1]


class LogShippingRunners:
    def __init__(self, paths, backups, catalog):
        self.paths = paths
        self.backups = backups
        self.catalog = catalog

    def register(self, engine):
        """Register every runner the engine does not already have."""
        for kind, runner in ((JobKind.PRODUCE, self.produce),
                             (JobKind.TRANSPORT, self.transport),
                             (JobKind.APPLY, self.apply)):
            if not engine.has_runner(kind):
                engine.register_runner(kind, runner)

    def produce(self, role, job: dict):
        params = job["parameters"]
        locator = self.backups.produce_log_copy(
            role, job["database"], params["backup_directory"], bool(params.get("compress")),
        )
        logger.info("Produced %s for %s on %s", file_name(locator), job["database"], role)

    def transport(self, role, job: dict):
        params = job["parameters"]
        database = job["database"]
        entry = self.catalog.lookup(role, database)
        marker = entry.last_copied_file if entry else None
        files = pending_logs(
            self.paths.list_files(role, params["source"]),
            params.get("primary_database") or database, marker,
        )
        for source in files:
            self.paths.copy_file(role, source, params["destination"])
            self.catalog.update_markers(role, database, last_copied_file=file_name(source))
        logger.info("Copied %d log backup(s) of %s to %s", len(files), database, role)

    def apply(self, role, job: dict):
        params = job["parameters"]
        database = job["database"]
        entry = self.catalog.lookup(role, database)
        marker = entry.last_restored_file if entry else None
        files = pending_logs(
            self.paths.list_files(role, params["source"]),
            params.get("primary_database") or database, marker,
        )
        delay = int(params.get("restore_delay_minutes") or 0)
        if delay:
            cutoff = time.strftime("%Y%m%d%H%M%S", time.localtime(time.time() - delay * 60))
            files = [f for f in files if _stamp(f) <= cutoff]
        mode = RestoreMode(params.get("restore_mode") or RestoreMode.NORECOVERY.value)
        for locator in files:
            self.backups.apply(role, locator, database, mode, params.get("standby_directory") or "")
            self.catalog.update_markers(role, database, last_restored_file=file_name(locator))
        logger.info("Restored %d log backup(s) into %s on %s", len(files), database, role)
