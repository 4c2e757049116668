"""Tests for the SQLite state store."""

import os
import sqlite3
import tempfile
import pytest

from logship.db import database as db


@pytest.fixture(autouse=True)
def temp_db():
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    db.init_db(path)
    yield path
    os.unlink(path)


def test_init_creates_tables(temp_db):
    conn = sqlite3.connect(temp_db)
    tables = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
    conn.close()
    for t in ("jobs", "job_schedules", "job_runs", "ls_primary", "ls_secondary"):
        assert t in tables


def test_init_is_repeatable(temp_db):
    db.upsert_job("r", "j", "produce", "db1", 10)
    db.init_db(temp_db)
    assert db.get_job("r", "j") is not None


def test_job_crud():
    db.upsert_job("r", "j", "produce", "db1", 10, {"a": 1}, "desc", "Log Shipping")
    job = db.get_job("r", "j")
    assert job["kind"] == "produce"
    assert job["parameters"] == {"a": 1}
    assert job["enabled"] is True

    assert db.set_job_enabled("r", "j", False)
    assert db.get_job("r", "j")["enabled"] is False
    assert not db.set_job_enabled("r", "missing", False)

    # Upsert keeps the enabled flag.
    db.upsert_job("r", "j", "produce", "db1", 20)
    job = db.get_job("r", "j")
    assert job["retention_minutes"] == 20
    assert job["enabled"] is False


def test_runs():
    run_id = db.start_run("r", "j")
    assert db.get_run(run_id)["state"] == "Running"
    assert db.last_finished_run("r", "j") is None

    db.finish_run(run_id, "Failed", "boom")
    run = db.get_run(run_id)
    assert run["state"] == "Idle"
    assert run["outcome"] == "Failed"
    assert db.last_finished_run("r", "j")["id"] == run_id

    second = db.start_run("r", "j")
    db.finish_run(second, "Succeeded")
    assert db.last_finished_run("r", "j")["outcome"] == "Succeeded"
    assert len(db.list_runs("r", "j")) == 2


def _entry(**overrides):
    values = dict(
        role="sec01", secondary_database="db1", primary_role="PRIM01", primary_database="db1",
        source_path="\\\\fs\\db1", destination_path="F:\\ship\\db1",
        transport_job_name="LSCopy_PRIM01_db1", apply_job_name="LSRestore_PRIM01_db1",
        retention_minutes=4320, restore_mode="NORECOVERY", restore_delay_minutes=0,
        restore_threshold_minutes=45, disconnect_users=False, history_retention_minutes=14420,
    )
    values.update(overrides)
    return values


def test_secondary_entries_and_markers():
    db.save_secondary_entry(**_entry())
    db.update_secondary_markers("sec01", "db1", last_copied_file="db1_1.trn")
    db.update_secondary_markers("sec01", "db1", last_restored_file="db1_0.trn")

    # Re-registration keeps the markers.
    db.save_secondary_entry(**_entry(retention_minutes=60))
    entry = db.get_secondary_entry("sec01", "db1")
    assert entry["retention_minutes"] == 60
    assert entry["last_copied_file"] == "db1_1.trn"
    assert entry["last_restored_file"] == "db1_0.trn"

    db.save_secondary_entry(**_entry(secondary_database="db0"))
    assert [e["secondary_database"] for e in db.list_secondary_entries("sec01")] == ["db0", "db1"]
    assert db.list_secondary_entries("sec02") == []


def test_primary_links():
    for secondary in ("SEC01", "SEC02"):
        db.save_primary_link("prim01", "db1", secondary, "db1", "E:\\b\\db1", "\\\\fs\\db1",
                             "LSBackup_db1", 4320, 60, 14420, monitor={"server": "MON"})
    db.save_primary_link("prim01", "db1", "SEC01", "db1", "E:\\b\\db1", "\\\\fs\\db1",
                         "LSBackup_db1", 4320, 60, 14420, compress_backup=True)
    links = db.list_primary_links("prim01", "db1")
    assert [l["secondary_role"] for l in links] == ["SEC01", "SEC02"]
    assert links[0]["compress_backup"] is True
    assert links[0]["monitor"] is None
    assert links[1]["monitor"] == {"server": "MON"}


def test_delete_job_takes_its_schedules():
    db.upsert_job("r", "j", "transport", "db1", 10)
    db.upsert_job("r", "k", "apply", "db1", 10)
    db.upsert_schedule("r", "s1", "j", {"frequency_type": 4})
    db.upsert_schedule("r", "s2", "k", {"frequency_type": 4})

    assert db.delete_job("r", "j")
    assert not db.delete_job("r", "j")
    assert db.get_job("r", "j") is None
    assert [s["name"] for s in db.list_schedules("r")] == ["s2"]


def test_primary_database_removal_drops_its_links():
    db.save_primary_database("prim01", "db1", "p-1", "LSBackup_db1")
    for secondary in ("SEC01", "SEC02"):
        db.save_primary_link("prim01", "db1", secondary, "db1", "E:\\b\\db1", "\\\\fs\\db1",
                             "LSBackup_db1", 4320, 60, 14420)
    assert db.get_primary_database("prim01", "db1")["primary_id"] == "p-1"

    db.delete_primary_link("prim01", "db1", "SEC02", "db1")
    assert [l["secondary_role"] for l in db.list_primary_links("prim01", "db1")] == ["SEC01"]

    db.delete_primary_database("prim01", "db1")
    assert db.get_primary_database("prim01", "db1") is None
    assert db.list_primary_links("prim01", "db1") == []


def test_delete_secondary_entry():
    db.save_secondary_entry(**_entry())
    db.delete_secondary_entry("sec01", "db1")
    assert db.get_secondary_entry("sec01", "db1") is None
