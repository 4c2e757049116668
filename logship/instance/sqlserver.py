"""SQL Server instance access over pyodbc.

Connections are opened per call site and closed by the caller; autocommit is
on because BACKUP/RESTORE and the msdb job procedures refuse to run inside a
user transaction.
"""

import logging

from logship.instance.base import InstanceAccess
from logship.models.errors import EngineError

logger = logging.getLogger(__name__)

DEFAULT_DRIVER = "ODBC Driver 17 for SQL Server"


def connection_string(role, driver: str = DEFAULT_DRIVER, database: str = "master") -> str:
    """Build an ODBC connection string for a role.

    ``role.server`` may carry a port as ``host,port``. Without a credential
    the connection uses integrated authentication.
    """
    parts = [f"DRIVER={{{driver}}}", f"SERVER={role.server}", f"DATABASE={database}"]
    if role.credential:
        parts.append(f"UID={role.credential.get('username', '')}")
        parts.append(f"PWD={role.credential.get('password', '')}")
    else:
        parts.append("Trusted_Connection=yes")
    return ";".join(parts)


class SqlServerInstance(InstanceAccess):
    def __init__(self, driver: str = DEFAULT_DRIVER, timeout: int = 30):
        self.driver = driver
        self.timeout = timeout

    def connect(self, role):
        import pyodbc

        try:
            conn = pyodbc.connect(connection_string(role, self.driver), timeout=self.timeout)
        except pyodbc.Error as e:
            raise EngineError(f"Cannot connect to {role.server}: {e}") from e
        conn.autocommit = True
        return conn

    def query(self, handle, statement, params=()):
        import pyodbc

        cursor = handle.cursor()
        try:
            cursor.execute(statement, *params)
            # Batches may emit row counts before the result set they return.
            while cursor.description is None and cursor.nextset():
                pass
            if cursor.description is None:
                return []
            columns = [c[0] for c in cursor.description]
            return [dict(zip(columns, row)) for row in cursor.fetchall()]
        except pyodbc.Error as e:
            logger.error("Query failed: %s", statement.strip().splitlines()[0])
            raise EngineError(str(e)) from e
        finally:
            cursor.close()

    def execute(self, handle, statement, params=()):
        import pyodbc

        cursor = handle.cursor()
        try:
            cursor.execute(statement, *params)
            # Drain informational result sets so BACKUP/RESTORE run to completion.
            while cursor.nextset():
                pass
        except pyodbc.Error as e:
            logger.error("Statement failed: %s", statement.strip().splitlines()[0])
            raise EngineError(str(e)) from e
        finally:
            cursor.close()

    def close(self, handle):
        if handle is not None:
            handle.close()
