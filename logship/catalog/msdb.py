"""Replication catalog backed by the msdb log shipping tables.

Registration goes through the master.dbo.sp_*_log_shipping_* procedures.
The primary and secondary ids those procedures return are handed to the
job steps, which is how sqllogship.exe finds its configuration.
"""

import logging

from logship.catalog.base import ReplicationCatalog
from logship.instance.inspect import session
from logship.models.errors import EngineError
from logship.models.types import RecoveryCatalogEntry, RestoreMode

logger = logging.getLogger(__name__)

PRIMARY_DATABASE_SQL = """
    SET NOCOUNT ON;
    DECLARE @primary_id uniqueidentifier, @backup_job_id uniqueidentifier;
    EXEC master.dbo.sp_add_log_shipping_primary_database
        @database = ?, @backup_directory = ?, @backup_share = ?, @backup_job_name = ?,
        @backup_retention_period = ?, @backup_compression = ?, @backup_threshold = ?,
        @threshold_alert_enabled = ?, @history_retention_period = ?,
        @monitor_server = ?, @monitor_server_security_mode = ?, @overwrite = 1,
        @backup_job_id = @backup_job_id OUTPUT, @primary_id = @primary_id OUTPUT;
    SELECT CAST(@primary_id AS nvarchar(36)) AS primary_id;
"""

SECONDARY_PRIMARY_SQL = """
    SET NOCOUNT ON;
    DECLARE @secondary_id uniqueidentifier, @copy_job_id uniqueidentifier,
            @restore_job_id uniqueidentifier;
    EXEC master.dbo.sp_add_log_shipping_secondary_primary
        @primary_server = ?, @primary_database = ?, @backup_source_directory = ?,
        @backup_destination_directory = ?, @copy_job_name = ?, @restore_job_name = ?,
        @file_retention_period = ?, @monitor_server = ?, @overwrite = 1,
        @copy_job_id = @copy_job_id OUTPUT, @restore_job_id = @restore_job_id OUTPUT,
        @secondary_id = @secondary_id OUTPUT;
    SELECT CAST(@secondary_id AS nvarchar(36)) AS secondary_id;
"""

PRIMARY_REGISTERED_SQL = (
    "SELECT primary_id FROM msdb.dbo.log_shipping_primary_databases WHERE primary_database = ?"
)

LOOKUP_SQL = """
    SELECT s.primary_server, s.primary_database, sd.secondary_database,
           s.backup_source_directory, s.backup_destination_directory,
           s.last_copied_file, sd.last_restored_file,
           cj.name AS copy_job_name, rj.name AS restore_job_name
    FROM msdb.dbo.log_shipping_secondary s
    INNER JOIN msdb.dbo.log_shipping_secondary_databases sd ON sd.secondary_id = s.secondary_id
    LEFT JOIN msdb.dbo.sysjobs cj ON cj.job_id = s.copy_job_id
    LEFT JOIN msdb.dbo.sysjobs rj ON rj.job_id = s.restore_job_id
    WHERE sd.secondary_database = ?
"""

LIST_SQL = """
    SELECT secondary_database FROM msdb.dbo.log_shipping_secondary_databases
    ORDER BY secondary_database
"""

COPIED_MARKER_SQL = """
    UPDATE s SET last_copied_file = ?, last_copied_date = GETDATE()
    FROM msdb.dbo.log_shipping_secondary s
    INNER JOIN msdb.dbo.log_shipping_secondary_databases sd ON sd.secondary_id = s.secondary_id
    WHERE sd.secondary_database = ?
"""

RESTORED_MARKER_SQL = """
    UPDATE msdb.dbo.log_shipping_secondary_databases
    SET last_restored_file = ?, last_restored_date = GETDATE()
    WHERE secondary_database = ?
"""


def _returned_id(rows: list, column: str, what: str) -> str:
    if not rows or not rows[0].get(column):
        raise EngineError(f"{what} registration returned no {column}")
    return str(rows[0][column])


class MsdbCatalog(ReplicationCatalog):
    def __init__(self, access):
        self.access = access

    def register_primary_database(self, role, link) -> str:
        monitor = link.monitor.server if link.monitor and link.monitor.server else None
        security = 0 if link.monitor and link.monitor.security_mode == "sql" else 1
        alert = int(bool(link.monitor and link.monitor.threshold_alert_enabled))
        with session(self.access, role) as handle:
            rows = self.access.query(
                handle, PRIMARY_DATABASE_SQL,
                (link.primary_database, link.backup_directory, link.backup_share,
                 link.produce_job_name, link.retention_minutes, int(link.compress_backup),
                 link.backup_threshold_minutes, alert, link.history_retention_minutes,
                 monitor, security),
            )
        primary_id = _returned_id(rows, "primary_id", f"Primary database {link.primary_database}")
        logger.info("Registered primary database %s on %s (%s)",
                    link.primary_database, role, primary_id)
        return primary_id

    def is_primary_registered(self, role, database) -> bool:
        with session(self.access, role) as handle:
            return bool(self.access.query(handle, PRIMARY_REGISTERED_SQL, (database,)))

    def unregister_primary_database(self, role, database):
        with session(self.access, role) as handle:
            self.access.execute(
                handle, "EXEC master.dbo.sp_delete_log_shipping_primary_database @database = ?",
                (database,),
            )

    def register_primary(self, role, link):
        with session(self.access, role) as handle:
            self.access.execute(
                handle,
                "EXEC master.dbo.sp_add_log_shipping_primary_secondary "
                "@primary_database = ?, @secondary_server = ?, @secondary_database = ?, "
                "@overwrite = 1",
                (link.primary_database, link.secondary_role, link.secondary_database),
            )

    def unregister_primary(self, role, link):
        with session(self.access, role) as handle:
            self.access.execute(
                handle,
                "EXEC master.dbo.sp_delete_log_shipping_primary_secondary "
                "@primary_database = ?, @secondary_server = ?, @secondary_database = ?",
                (link.primary_database, link.secondary_role, link.secondary_database),
            )

    def register_secondary(self, role, link) -> str:
        monitor = link.monitor.server if link.monitor and link.monitor.server else None
        alert = int(bool(link.monitor and link.monitor.threshold_alert_enabled))
        with session(self.access, role) as handle:
            rows = self.access.query(
                handle, SECONDARY_PRIMARY_SQL,
                (link.primary_role, link.primary_database, link.source_path,
                 link.destination_path, link.transport_job_name, link.apply_job_name,
                 link.retention_minutes, monitor),
            )
            secondary_id = _returned_id(
                rows, "secondary_id", f"Secondary database {link.secondary_database}",
            )
            self.access.execute(
                handle,
                "EXEC master.dbo.sp_add_log_shipping_secondary_database "
                "@secondary_database = ?, @primary_server = ?, @primary_database = ?, "
                "@restore_delay = ?, @restore_mode = ?, @disconnect_users = ?, "
                "@restore_threshold = ?, @threshold_alert_enabled = ?, "
                "@history_retention_period = ?, @overwrite = 1",
                (link.secondary_database, link.primary_role, link.primary_database,
                 link.restore_delay_minutes, 1 if link.restore_mode == RestoreMode.STANDBY else 0,
                 int(link.disconnect_users), link.restore_threshold_minutes, alert,
                 link.history_retention_minutes),
            )
        logger.info("Registered secondary database %s on %s (%s)",
                    link.secondary_database, role, secondary_id)
        return secondary_id

    def unregister_secondary(self, role, secondary_database):
        with session(self.access, role) as handle:
            self.access.execute(
                handle,
                "EXEC master.dbo.sp_delete_log_shipping_secondary_database @secondary_database = ?",
                (secondary_database,),
            )

    def update_markers(self, role, secondary_database, last_copied_file=None,
                       last_restored_file=None):
        with session(self.access, role) as handle:
            if last_copied_file is not None:
                self.access.execute(handle, COPIED_MARKER_SQL,
                                    (last_copied_file, secondary_database))
            if last_restored_file is not None:
                self.access.execute(handle, RESTORED_MARKER_SQL,
                                    (last_restored_file, secondary_database))

    def lookup(self, role, database):
        with session(self.access, role) as handle:
            rows = self.access.query(handle, LOOKUP_SQL, (database,))
        if not rows:
            return None
        row = rows[0]
        return RecoveryCatalogEntry(
            primary_role=row["primary_server"],
            primary_database=row["primary_database"],
            secondary_database=row["secondary_database"],
            source_path=row["backup_source_directory"],
            destination_path=row["backup_destination_directory"],
            last_copied_file=row["last_copied_file"],
            last_restored_file=row["last_restored_file"],
            transport_job_name=row["copy_job_name"] or "",
            apply_job_name=row["restore_job_name"] or "",
        )

    def list_databases(self, role) -> list:
        with session(self.access, role) as handle:
            rows = self.access.query(handle, LIST_SQL)
        return [r["secondary_database"] for r in rows]
