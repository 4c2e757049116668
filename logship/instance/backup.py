"""Base copy produce/apply primitives as T-SQL BACKUP/RESTORE statements."""

import logging
import time

from logship.instance.base import BackupService
from logship.instance.inspect import quote_name, quote_string, session
from logship.instance.paths import join
from logship.models.types import RestoreMode

logger = logging.getLogger(__name__)

FULL_BACKUP_EXTENSIONS = (".bak",)
LOG_BACKUP_EXTENSIONS = (".trn",)


def backup_sql(database: str, locator: str, compress: bool = False) -> str:
    options = ["INIT", "FORMAT"]
    if compress:
        options.append("COMPRESSION")
    return (
        f"BACKUP DATABASE {quote_name(database)} TO DISK = {quote_string(locator)} "
        f"WITH {', '.join(options)}"
    )


def backup_log_sql(database: str, locator: str, compress: bool = False) -> str:
    options = ["INIT"]
    if compress:
        options.append("COMPRESSION")
    return (
        f"BACKUP LOG {quote_name(database)} TO DISK = {quote_string(locator)} "
        f"WITH {', '.join(options)}"
    )


def restore_sql(locator: str, target_database: str, mode: RestoreMode,
                standby_directory: str = "", replace: bool = False, log: bool = False) -> str:
    kind = "LOG" if log else "DATABASE"
    if mode == RestoreMode.STANDBY:
        undo = join(standby_directory, f"{target_database}_undo.tuf")
        options = [f"STANDBY = {quote_string(undo)}"]
    else:
        options = ["NORECOVERY"]
    if replace and not log:
        options.append("REPLACE")
    return (
        f"RESTORE {kind} {quote_name(target_database)} FROM DISK = {quote_string(locator)} "
        f"WITH {', '.join(options)}"
    )


def order_backup_files(files: list) -> list:
    """Return the newest full backup followed by the log backups taken after it.

    File names sort chronologically (``<db>_<yyyymmddhhmmss>.ext``).
    """
    fulls = sorted(f for f in files if f.lower().endswith(FULL_BACKUP_EXTENSIONS))
    if not fulls:
        return []
    latest_full = fulls[-1]
    stamp = file_name(latest_full).rsplit(".", 1)[0]
    logs = sorted(
        f for f in files
        if f.lower().endswith(LOG_BACKUP_EXTENSIONS) and file_name(f).rsplit(".", 1)[0] > stamp
    )
    return [latest_full] + logs


def file_name(path: str) -> str:
    return path.replace("\\", "/").rsplit("/", 1)[-1]


class SqlBackupService(BackupService):
    def __init__(self, access):
        self.access = access

    def produce_base_copy(self, role, database, directory, compress=False) -> str:
        locator = join(directory, f"{database}_{time.strftime('%Y%m%d%H%M%S')}.bak")
        logger.info("Backing up %s on %s to %s", database, role, locator)
        with session(self.access, role) as handle:
            self.access.execute(handle, backup_sql(database, locator, compress))
        return locator

    def produce_log_copy(self, role, database, directory, compress=False) -> str:
        locator = join(directory, f"{database}_{time.strftime('%Y%m%d%H%M%S')}.trn")
        logger.info("Backing up the log of %s on %s to %s", database, role, locator)
        with session(self.access, role) as handle:
            self.access.execute(handle, backup_log_sql(database, locator, compress))
        return locator

    def apply(self, role, locator, target_database, mode, standby_directory="", replace=False):
        log = locator.lower().endswith(LOG_BACKUP_EXTENSIONS)
        logger.info("Restoring %s on %s from %s (%s)", target_database, role, locator, mode.value)
        with session(self.access, role) as handle:
            self.access.execute(
                handle,
                restore_sql(locator, target_database, mode, standby_directory, replace, log),
            )
