from logship.jobs.providers.local import LocalJobEngine
from logship.jobs.providers.sql_agent import SqlAgentJobEngine
from logship.settings.store import settings_store


def get_job_engine(access=None, settings: dict = None):
    """Return the job engine selected by ``engine.backend`` in settings."""
    settings = settings or settings_store.load()
    backend = settings.get("engine", {}).get("backend", "local")
    if backend == "sqlagent":
        if access is None:
            raise ValueError("The sqlagent engine needs an instance access")
        return SqlAgentJobEngine(access)
    if backend == "local":
        return LocalJobEngine(background=True)
    raise ValueError(f"Unknown job engine backend '{backend}'")
