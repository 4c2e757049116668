"""Database state checks and the promotion statement.

All statements go through an InstanceAccess, so any backend that can answer
DATABASE_STATE_SQL works here.
"""

import logging
from contextlib import contextmanager
from typing import Optional

from logship.models.types import DatabaseState

logger = logging.getLogger(__name__)

DATABASE_STATE_SQL = (
    "SELECT name, recovery_model_desc, state_desc, is_in_standby "
    "FROM sys.databases WHERE name = ?"
)


def quote_name(name: str) -> str:
    """Bracket-quote an identifier."""
    return "[" + name.replace("]", "]]") + "]"


def quote_string(value: str) -> str:
    """Quote a Unicode string literal."""
    return "N'" + value.replace("'", "''") + "'"


def promote_sql(database: str) -> str:
    return f"RESTORE DATABASE {quote_name(database)} WITH RECOVERY"


def drop_sql(database: str) -> str:
    return f"DROP DATABASE {quote_name(database)}"


@contextmanager
def session(access, role):
    handle = access.connect(role)
    try:
        yield handle
    finally:
        access.close(handle)


def get_database_state(access, role, database: str) -> Optional[DatabaseState]:
    """Return the database's state on a role, or None if it does not exist."""
    with session(access, role) as handle:
        rows = access.query(handle, DATABASE_STATE_SQL, (database,))
    if not rows:
        return None
    row = rows[0]
    return DatabaseState(
        name=row["name"],
        recovery_model=row["recovery_model_desc"] or "",
        state=row["state_desc"] or "",
        is_standby=bool(row.get("is_in_standby")),
    )


def drop_database(access, role, database: str):
    """Drop a database seeded by a configuration that did not complete."""
    logger.warning("Dropping %s on %s", database, role)
    with session(access, role) as handle:
        access.execute(handle, drop_sql(database))


def promote_database(access, role, database: str):
    """Bring a restoring/standby database online. Not reversible."""
    logger.info("Promoting %s on %s (RESTORE WITH RECOVERY)", database, role)
    with session(access, role) as handle:
        access.execute(handle, promote_sql(database))
