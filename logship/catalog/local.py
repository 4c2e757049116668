"""Replication catalog kept in the SQLite state store."""

import uuid

from logship.catalog.base import ReplicationCatalog
from logship.db import database as db
from logship.models.types import RecoveryCatalogEntry


def _catalog_id(*parts: str) -> str:
    return str(uuid.uuid5(uuid.NAMESPACE_URL, "logship:" + "/".join(parts)))


class LocalCatalog(ReplicationCatalog):
    def register_primary_database(self, role, link) -> str:
        primary_id = _catalog_id("primary", role.identity, link.primary_database)
        db.save_primary_database(role.identity, link.primary_database, primary_id,
                                 link.produce_job_name)
        return primary_id

    def is_primary_registered(self, role, database) -> bool:
        return db.get_primary_database(role.identity, database) is not None

    def unregister_primary_database(self, role, database):
        db.delete_primary_database(role.identity, database)

    def register_primary(self, role, link):
        db.save_primary_link(
            role=role.identity,
            primary_database=link.primary_database,
            secondary_role=link.secondary_role,
            secondary_database=link.secondary_database,
            backup_directory=link.backup_directory,
            backup_share=link.backup_share,
            produce_job_name=link.produce_job_name,
            retention_minutes=link.retention_minutes,
            backup_threshold_minutes=link.backup_threshold_minutes,
            history_retention_minutes=link.history_retention_minutes,
            compress_backup=link.compress_backup,
            monitor=link.monitor.to_dict() if link.monitor else None,
        )

    def unregister_primary(self, role, link):
        db.delete_primary_link(role.identity, link.primary_database, link.secondary_role,
                               link.secondary_database)

    def register_secondary(self, role, link) -> str:
        db.save_secondary_entry(
            role=role.identity,
            secondary_database=link.secondary_database,
            primary_role=link.primary_role,
            primary_database=link.primary_database,
            source_path=link.source_path,
            destination_path=link.destination_path,
            transport_job_name=link.transport_job_name,
            apply_job_name=link.apply_job_name,
            retention_minutes=link.retention_minutes,
            restore_mode=link.restore_mode.value,
            restore_delay_minutes=link.restore_delay_minutes,
            restore_threshold_minutes=link.restore_threshold_minutes,
            disconnect_users=link.disconnect_users,
            history_retention_minutes=link.history_retention_minutes,
            monitor=link.monitor.to_dict() if link.monitor else None,
        )
        return _catalog_id("secondary", role.identity, link.secondary_database)

    def unregister_secondary(self, role, secondary_database):
        db.delete_secondary_entry(role.identity, secondary_database)

    def update_markers(self, role, secondary_database, last_copied_file=None,
                       last_restored_file=None):
        db.update_secondary_markers(role.identity, secondary_database,
                                    last_copied_file, last_restored_file)

    def lookup(self, role, database):
        row = db.get_secondary_entry(role.identity, database)
        if row is None:
            return None
        return RecoveryCatalogEntry(
            primary_role=row["primary_role"],
            primary_database=row["primary_database"],
            secondary_database=row["secondary_database"],
            source_path=row["source_path"],
            destination_path=row["destination_path"],
            last_copied_file=row["last_copied_file"],
            last_restored_file=row["last_restored_file"],
            transport_job_name=row["transport_job_name"],
            apply_job_name=row["apply_job_name"],
        )

    def list_databases(self, role) -> list:
        return [r["secondary_database"] for r in db.list_secondary_entries(role.identity)]
