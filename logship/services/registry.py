"""Wiring of the external collaborators used by configure and recover.

The HTTP handlers resolve collaborators through ``get_collaborators``; tests
and embedding code install their own with ``set_collaborators``.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from logship.catalog.base import ReplicationCatalog
from logship.catalog.local import LocalCatalog
from logship.catalog.msdb import MsdbCatalog
from logship.instance.backup import SqlBackupService
from logship.instance.base import BackupService, InstanceAccess, PathService
from logship.instance.paths import LocalPathService
from logship.instance.sqlserver import SqlServerInstance
from logship.jobs.factory import get_job_engine
from logship.jobs.orchestrator import JobOrchestrator
from logship.jobs.providers.local import LocalJobEngine
from logship.jobs.runners import LogShippingRunners
from logship.settings.store import settings_store

logger = logging.getLogger(__name__)


@dataclass
class Collaborators:
    instance: InstanceAccess
    paths: PathService
    backups: BackupService
    jobs: JobOrchestrator
    catalog: ReplicationCatalog


_collaborators: Optional[Collaborators] = None


def build_collaborators(settings: dict = None) -> Collaborators:
    """Build SQL Server backed collaborators from settings."""
    settings = settings or settings_store.load()
    engine_cfg = settings.get("engine", {})
    instance = SqlServerInstance(driver=engine_cfg.get("odbc_driver", "ODBC Driver 17 for SQL Server"))
    engine = get_job_engine(instance, settings)
    catalog = MsdbCatalog(instance) if engine_cfg.get("backend") == "sqlagent" else LocalCatalog()
    paths = LocalPathService()
    backups = SqlBackupService(instance)
    if isinstance(engine, LocalJobEngine):
        LogShippingRunners(paths, backups, catalog).register(engine)
    logger.info("Using %s job engine with %s",
                type(engine).__name__, type(catalog).__name__)
    return Collaborators(
        instance=instance,
        paths=paths,
        backups=backups,
        jobs=JobOrchestrator(engine),
        catalog=catalog,
    )


def get_collaborators() -> Collaborators:
    global _collaborators
    if _collaborators is None:
        _collaborators = build_collaborators()
    return _collaborators


def set_collaborators(collaborators: Optional[Collaborators]):
    global _collaborators
    _collaborators = collaborators
