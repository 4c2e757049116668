"""SQLite persistent state store for the in-process job engine and catalog.

Stores:
  - Job definitions, schedules and run history (local job engine)
  - Primary-side log shipping links (primary database -> secondary)
  - Secondary-side catalog entries read back during recovery

The database file defaults to 'logship.db' in the working directory.
Set LOGSHIP_DB_PATH env var to override.
"""

import json
import os
import sqlite3
import threading
import time
from typing import Optional

_DB_PATH = os.environ.get("LOGSHIP_DB_PATH", "logship.db")
_local = threading.local()
_write_lock = threading.Lock()


def _get_conn() -> sqlite3.Connection:
    """Get a thread-local SQLite connection."""
    if not hasattr(_local, "conn") or _local.conn is None or getattr(_local, "path", None) != _DB_PATH:
        _local.conn = sqlite3.connect(_DB_PATH, check_same_thread=False)
        _local.conn.row_factory = sqlite3.Row
        _local.conn.execute("PRAGMA journal_mode=WAL")
        _local.path = _DB_PATH
    return _local.conn


def init_db(db_path: Optional[str] = None):
    """Initialize the database schema. Safe to call multiple times."""
    if db_path:
        global _DB_PATH
        _DB_PATH = db_path
        # Reset thread-local connection
        if hasattr(_local, "conn") and _local.conn:
            _local.conn.close()
            _local.conn = None

    db_dir = os.path.dirname(os.path.abspath(_DB_PATH))
    os.makedirs(db_dir, exist_ok=True)

    conn = _get_conn()
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS jobs (
            role        TEXT NOT NULL,
            name        TEXT NOT NULL,
            kind        TEXT NOT NULL,
            database_name TEXT NOT NULL,
            retention_minutes INTEGER NOT NULL DEFAULT 0,
            parameters  TEXT NOT NULL DEFAULT '{}',
            description TEXT NOT NULL DEFAULT '',
            category    TEXT NOT NULL DEFAULT '',
            enabled     INTEGER NOT NULL DEFAULT 1,
            created_at  REAL NOT NULL,
            updated_at  REAL NOT NULL,
            PRIMARY KEY (role, name)
        );

        CREATE TABLE IF NOT EXISTS job_schedules (
            role        TEXT NOT NULL,
            name        TEXT NOT NULL,
            job_name    TEXT NOT NULL,
            spec        TEXT NOT NULL,
            enabled     INTEGER NOT NULL DEFAULT 1,
            updated_at  REAL NOT NULL,
            PRIMARY KEY (role, name)
        );

        CREATE TABLE IF NOT EXISTS job_runs (
            id          INTEGER PRIMARY KEY AUTOINCREMENT,
            role        TEXT NOT NULL,
            job_name    TEXT NOT NULL,
            state       TEXT NOT NULL DEFAULT 'Running',
            outcome     TEXT,
            message     TEXT,
            started_at  REAL NOT NULL,
            finished_at REAL
        );

        CREATE TABLE IF NOT EXISTS ls_primary_database (
            role                TEXT NOT NULL,
            primary_database    TEXT NOT NULL,
            primary_id          TEXT NOT NULL,
            produce_job_name    TEXT NOT NULL,
            updated_at          REAL NOT NULL,
            PRIMARY KEY (role, primary_database)
        );

        CREATE TABLE IF NOT EXISTS ls_primary (
            role                TEXT NOT NULL,
            primary_database    TEXT NOT NULL,
            secondary_role      TEXT NOT NULL,
            secondary_database  TEXT NOT NULL,
            backup_directory    TEXT NOT NULL,
            backup_share        TEXT NOT NULL,
            produce_job_name    TEXT NOT NULL,
            retention_minutes   INTEGER NOT NULL,
            backup_threshold_minutes INTEGER NOT NULL,
            history_retention_minutes INTEGER NOT NULL,
            compress_backup     INTEGER NOT NULL DEFAULT 0,
            monitor             TEXT,
            updated_at          REAL NOT NULL,
            PRIMARY KEY (role, primary_database, secondary_role, secondary_database)
        );

        CREATE TABLE IF NOT EXISTS ls_secondary (
            role                TEXT NOT NULL,
            secondary_database  TEXT NOT NULL,
            primary_role        TEXT NOT NULL,
            primary_database    TEXT NOT NULL,
            source_path         TEXT NOT NULL,
            destination_path    TEXT NOT NULL,
            transport_job_name  TEXT NOT NULL,
            apply_job_name      TEXT NOT NULL,
            retention_minutes   INTEGER NOT NULL,
            restore_mode        TEXT NOT NULL,
            restore_delay_minutes INTEGER NOT NULL DEFAULT 0,
            restore_threshold_minutes INTEGER NOT NULL,
            disconnect_users    INTEGER NOT NULL DEFAULT 0,
            history_retention_minutes INTEGER NOT NULL,
            last_copied_file    TEXT,
            last_restored_file  TEXT,
            monitor             TEXT,
            updated_at          REAL NOT NULL,
            PRIMARY KEY (role, secondary_database)
        );

        CREATE INDEX IF NOT EXISTS idx_job_runs_job ON job_runs(role, job_name);
        CREATE INDEX IF NOT EXISTS idx_job_schedules_job ON job_schedules(role, job_name);
    """)
    conn.commit()


# ── Jobs ─────────────────────────────────────────────────────────────────────

def upsert_job(role: str, name: str, kind: str, database_name: str,
               retention_minutes: int, parameters: dict = None,
               description: str = "", category: str = "", enabled: bool = True):
    conn = _get_conn()
    now = time.time()
    with _write_lock:
        conn.execute(
            """INSERT INTO jobs
               (role, name, kind, database_name, retention_minutes, parameters,
                description, category, enabled, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(role, name) DO UPDATE SET
                 kind = excluded.kind,
                 database_name = excluded.database_name,
                 retention_minutes = excluded.retention_minutes,
                 parameters = excluded.parameters,
                 description = excluded.description,
                 category = excluded.category,
                 updated_at = excluded.updated_at""",
            (role, name, kind, database_name, retention_minutes,
             json.dumps(parameters or {}), description, category, int(enabled), now, now),
        )
        conn.commit()


def get_job(role: str, name: str) -> Optional[dict]:
    conn = _get_conn()
    r = conn.execute("SELECT * FROM jobs WHERE role = ? AND name = ?", (role, name)).fetchone()
    if not r:
        return None
    return _row_to_job(r)


def list_jobs(role: str = None) -> list[dict]:
    conn = _get_conn()
    if role:
        rows = conn.execute("SELECT * FROM jobs WHERE role = ? ORDER BY name", (role,)).fetchall()
    else:
        rows = conn.execute("SELECT * FROM jobs ORDER BY role, name").fetchall()
    return [_row_to_job(r) for r in rows]


def set_job_enabled(role: str, name: str, enabled: bool) -> bool:
    conn = _get_conn()
    with _write_lock:
        cursor = conn.execute(
            "UPDATE jobs SET enabled = ?, updated_at = ? WHERE role = ? AND name = ?",
            (int(enabled), time.time(), role, name),
        )
        conn.commit()
    return cursor.rowcount > 0


def delete_job(role: str, name: str) -> bool:
    """Delete a job together with the schedules attached to it."""
    conn = _get_conn()
    with _write_lock:
        conn.execute("DELETE FROM job_schedules WHERE role = ? AND job_name = ?", (role, name))
        cursor = conn.execute("DELETE FROM jobs WHERE role = ? AND name = ?", (role, name))
        conn.commit()
    return cursor.rowcount > 0


def _row_to_job(r) -> dict:
    return {
        "role": r["role"],
        "name": r["name"],
        "kind": r["kind"],
        "database": r["database_name"],
        "retention_minutes": r["retention_minutes"],
        "parameters": json.loads(r["parameters"]),
        "description": r["description"],
        "category": r["category"],
        "enabled": bool(r["enabled"]),
        "created_at": r["created_at"],
        "updated_at": r["updated_at"],
    }


# ── Schedules ────────────────────────────────────────────────────────────────

def upsert_schedule(role: str, name: str, job_name: str, spec: dict, enabled: bool = True):
    conn = _get_conn()
    with _write_lock:
        conn.execute(
            """INSERT OR REPLACE INTO job_schedules
               (role, name, job_name, spec, enabled, updated_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (role, name, job_name, json.dumps(spec), int(enabled), time.time()),
        )
        conn.commit()


def get_schedule(role: str, name: str) -> Optional[dict]:
    conn = _get_conn()
    r = conn.execute(
        "SELECT * FROM job_schedules WHERE role = ? AND name = ?", (role, name),
    ).fetchone()
    if not r:
        return None
    return {
        "role": r["role"],
        "name": r["name"],
        "job_name": r["job_name"],
        "spec": json.loads(r["spec"]),
        "enabled": bool(r["enabled"]),
    }


def list_schedules(role: str = None) -> list[dict]:
    conn = _get_conn()
    if role:
        rows = conn.execute(
            "SELECT * FROM job_schedules WHERE role = ? ORDER BY name", (role,),
        ).fetchall()
    else:
        rows = conn.execute("SELECT * FROM job_schedules ORDER BY role, name").fetchall()
    return [
        {"role": r["role"], "name": r["name"], "job_name": r["job_name"],
         "spec": json.loads(r["spec"]), "enabled": bool(r["enabled"])}
        for r in rows
    ]


# ── Job runs ─────────────────────────────────────────────────────────────────

def start_run(role: str, job_name: str) -> int:
    conn = _get_conn()
    with _write_lock:
        cursor = conn.execute(
            "INSERT INTO job_runs (role, job_name, state, started_at) VALUES (?, ?, 'Running', ?)",
            (role, job_name, time.time()),
        )
        conn.commit()
    return cursor.lastrowid


def finish_run(run_id: int, outcome: str, message: str = None):
    conn = _get_conn()
    with _write_lock:
        conn.execute(
            "UPDATE job_runs SET state = 'Idle', outcome = ?, message = ?, finished_at = ? WHERE id = ?",
            (outcome, message, time.time(), run_id),
        )
        conn.commit()


def get_run(run_id: int) -> Optional[dict]:
    conn = _get_conn()
    r = conn.execute("SELECT * FROM job_runs WHERE id = ?", (run_id,)).fetchone()
    return dict(r) if r else None


def last_finished_run(role: str, job_name: str) -> Optional[dict]:
    conn = _get_conn()
    r = conn.execute(
        """SELECT * FROM job_runs WHERE role = ? AND job_name = ? AND state = 'Idle'
           ORDER BY id DESC LIMIT 1""",
        (role, job_name),
    ).fetchone()
    return dict(r) if r else None


def list_runs(role: str = None, job_name: str = None) -> list[dict]:
    conn = _get_conn()
    query = "SELECT * FROM job_runs WHERE 1=1"
    params = []
    if role:
        query += " AND role = ?"
        params.append(role)
    if job_name:
        query += " AND job_name = ?"
        params.append(job_name)
    query += " ORDER BY id"
    return [dict(r) for r in conn.execute(query, params).fetchall()]


# ── Log shipping catalog ─────────────────────────────────────────────────────

def save_primary_database(role: str, primary_database: str, primary_id: str,
                          produce_job_name: str):
    conn = _get_conn()
    with _write_lock:
        conn.execute(
            """INSERT OR REPLACE INTO ls_primary_database
               (role, primary_database, primary_id, produce_job_name, updated_at)
               VALUES (?, ?, ?, ?, ?)""",
            (role, primary_database, primary_id, produce_job_name, time.time()),
        )
        conn.commit()


def get_primary_database(role: str, primary_database: str) -> Optional[dict]:
    conn = _get_conn()
    r = conn.execute(
        "SELECT * FROM ls_primary_database WHERE role = ? AND primary_database = ?",
        (role, primary_database),
    ).fetchone()
    return dict(r) if r else None


def delete_primary_database(role: str, primary_database: str):
    """Remove the primary database record and every link hanging off it."""
    conn = _get_conn()
    with _write_lock:
        conn.execute(
            "DELETE FROM ls_primary WHERE role = ? AND primary_database = ?",
            (role, primary_database),
        )
        conn.execute(
            "DELETE FROM ls_primary_database WHERE role = ? AND primary_database = ?",
            (role, primary_database),
        )
        conn.commit()


def save_primary_link(role: str, primary_database: str, secondary_role: str,
                      secondary_database: str, backup_directory: str, backup_share: str,
                      produce_job_name: str, retention_minutes: int,
                      backup_threshold_minutes: int, history_retention_minutes: int,
                      compress_backup: bool = False, monitor: dict = None):
    conn = _get_conn()
    with _write_lock:
        conn.execute(
            """INSERT OR REPLACE INTO ls_primary
               (role, primary_database, secondary_role, secondary_database,
                backup_directory, backup_share, produce_job_name, retention_minutes,
                backup_threshold_minutes, history_retention_minutes, compress_backup,
                monitor, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (role, primary_database, secondary_role, secondary_database,
             backup_directory, backup_share, produce_job_name, retention_minutes,
             backup_threshold_minutes, history_retention_minutes, int(compress_backup),
             json.dumps(monitor) if monitor else None, time.time()),
        )
        conn.commit()


def list_primary_links(role: str, primary_database: str = None) -> list[dict]:
    conn = _get_conn()
    query = "SELECT * FROM ls_primary WHERE role = ?"
    params = [role]
    if primary_database:
        query += " AND primary_database = ?"
        params.append(primary_database)
    rows = conn.execute(query + " ORDER BY secondary_role", params).fetchall()
    return [
        {**dict(r), "compress_backup": bool(r["compress_backup"]),
         "monitor": json.loads(r["monitor"]) if r["monitor"] else None}
        for r in rows
    ]


def delete_primary_link(role: str, primary_database: str, secondary_role: str,
                        secondary_database: str):
    conn = _get_conn()
    with _write_lock:
        conn.execute(
            """DELETE FROM ls_primary WHERE role = ? AND primary_database = ?
               AND secondary_role = ? AND secondary_database = ?""",
            (role, primary_database, secondary_role, secondary_database),
        )
        conn.commit()


def save_secondary_entry(role: str, secondary_database: str, primary_role: str,
                         primary_database: str, source_path: str, destination_path: str,
                         transport_job_name: str, apply_job_name: str,
                         retention_minutes: int, restore_mode: str,
                         restore_delay_minutes: int, restore_threshold_minutes: int,
                         disconnect_users: bool, history_retention_minutes: int,
                         monitor: dict = None):
    conn = _get_conn()
    with _write_lock:
        conn.execute(
            """INSERT INTO ls_secondary
               (role, secondary_database, primary_role, primary_database, source_path,
                destination_path, transport_job_name, apply_job_name, retention_minutes,
                restore_mode, restore_delay_minutes, restore_threshold_minutes,
                disconnect_users, history_retention_minutes, monitor, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(role, secondary_database) DO UPDATE SET
                 primary_role = excluded.primary_role,
                 primary_database = excluded.primary_database,
                 source_path = excluded.source_path,
                 destination_path = excluded.destination_path,
                 transport_job_name = excluded.transport_job_name,
                 apply_job_name = excluded.apply_job_name,
                 retention_minutes = excluded.retention_minutes,
                 restore_mode = excluded.restore_mode,
                 restore_delay_minutes = excluded.restore_delay_minutes,
                 restore_threshold_minutes = excluded.restore_threshold_minutes,
                 disconnect_users = excluded.disconnect_users,
                 history_retention_minutes = excluded.history_retention_minutes,
                 monitor = excluded.monitor,
                 updated_at = excluded.updated_at""",
            (role, secondary_database, primary_role, primary_database, source_path,
             destination_path, transport_job_name, apply_job_name, retention_minutes,
             restore_mode, restore_delay_minutes, restore_threshold_minutes,
             int(disconnect_users), history_retention_minutes,
             json.dumps(monitor) if monitor else None, time.time()),
        )
        conn.commit()


def get_secondary_entry(role: str, secondary_database: str) -> Optional[dict]:
    conn = _get_conn()
    r = conn.execute(
        "SELECT * FROM ls_secondary WHERE role = ? AND secondary_database = ?",
        (role, secondary_database),
    ).fetchone()
    return dict(r) if r else None


def list_secondary_entries(role: str) -> list[dict]:
    conn = _get_conn()
    rows = conn.execute(
        "SELECT * FROM ls_secondary WHERE role = ? ORDER BY secondary_database", (role,),
    ).fetchall()
    return [dict(r) for r in rows]


def delete_secondary_entry(role: str, secondary_database: str):
    conn = _get_conn()
    with _write_lock:
        conn.execute(
            "DELETE FROM ls_secondary WHERE role = ? AND secondary_database = ?",
            (role, secondary_database),
        )
        conn.commit()


def update_secondary_markers(role: str, secondary_database: str,
                             last_copied_file: str = None, last_restored_file: str = None):
    conn = _get_conn()
    with _write_lock:
        if last_copied_file is not None:
            conn.execute(
                "UPDATE ls_secondary SET last_copied_file = ?, updated_at = ? "
                "WHERE role = ? AND secondary_database = ?",
                (last_copied_file, time.time(), role, secondary_database),
            )
        if last_restored_file is not None:
            conn.execute(
                "UPDATE ls_secondary SET last_restored_file = ?, updated_at = ? "
                "WHERE role = ? AND secondary_database = ?",
                (last_restored_file, time.time(), role, secondary_database),
            )
        conn.commit()
