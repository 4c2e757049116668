"""Tests for the HTTP API handlers."""

import os
import sys
import tempfile
import pytest

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
TESTS_DIR = os.path.join(PROJECT_ROOT, "tests")
for p in (PROJECT_ROOT, TESTS_DIR, os.path.join(PROJECT_ROOT, "cmd", "logshipd")):
    if p not in sys.path:
        sys.path.insert(0, p)

from main import create_app
from fakes import FakePaths, make_collaborators

from logship.db import database as db
from logship.services.registry import set_collaborators

SHARE = "/mnt/logship"
COPY = "/var/ship"


@pytest.fixture(autouse=True)
def temp_db():
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    db.init_db(path)
    yield path
    os.unlink(path)


@pytest.fixture
def services():
    services = make_collaborators(paths=FakePaths(directories={SHARE, COPY}))
    services.instance.add_database("PRIM01", "db1")
    services.instance.add_database("PRIM01", "db2", recovery_model="BULK_LOGGED")
    set_collaborators(services)
    yield services
    set_collaborators(None)


@pytest.fixture
def client(services):
    app = create_app()
    app.config["TESTING"] = True
    with app.test_client() as c:
        yield c


def _body(**overrides):
    body = {
        "primary": "PRIM01",
        "secondaries": [{"server": "SEC01"}],
        "databases": ["db1", "db2"],
        "sharedBackupPath": SHARE,
        "copyDestinationPath": COPY,
        "initialization": {"generateNew": True},
    }
    body.update(overrides)
    return body


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "ok"


def test_configure_invalid_json(client):
    resp = client.post("/api/logshipping/configure", data="nope", content_type="application/json")
    assert resp.status_code == 400


def test_configure_reports_each_pair(client):
    resp = client.post("/api/logshipping/configure", json=_body())
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["summary"] == {"total": 2, "succeeded": 1, "failed": 1}
    db1, db2 = data["outcomes"]
    assert db1["result"] == "Success"
    assert db2["result"] == "Failed"
    assert "not in required recovery mode" in db2["comment"]


def test_configure_rejects_bad_batch_input(client):
    resp = client.post("/api/logshipping/configure", json=_body(databases=[]))
    assert resp.status_code == 400
    assert resp.get_json()["category"] == "ConfigurationError"

    resp = client.post("/api/logshipping/configure",
                       json=_body(schedules={"produce": {"subdayType": "hours", "subdayInterval": 30}}))
    assert resp.status_code == 400

    resp = client.post("/api/logshipping/configure", json=_body(options={"db1": {"colour": "red"}}))
    assert resp.status_code == 400


def test_configure_with_options_and_monitor(client):
    resp = client.post("/api/logshipping/configure", json=_body(
        databases=["db1"],
        options={"db1": {"secondarySuffix": "_dr", "restoreMode": "standby",
                         "standbyDirectory": COPY}},
        monitors={"SEC01": {"server": "MON01", "thresholdAlertEnabled": True}},
    ))
    outcome = resp.get_json()["outcomes"][0]
    assert outcome["result"] == "Success"
    assert outcome["secondaryDatabase"] == "db1_dr"


def test_recover_and_catalog(client, services):
    client.post("/api/logshipping/configure", json=_body(databases=["db1"]))

    resp = client.get("/api/logshipping/catalog/SEC01")
    assert resp.status_code == 200
    entries = resp.get_json()["databases"]
    assert [e["secondary_database"] for e in entries] == ["db1"]

    resp = client.post("/api/logshipping/recover", json={
        "role": "SEC01", "pollIntervalSeconds": 0.01, "maxWaitSeconds": 1,
    })
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["summary"]["succeeded"] == 1
    assert data["states"] == {"db1": "Promoted"}
    assert services.instance.state_of("SEC01", "db1")["state_desc"] == "ONLINE"


def test_recover_unknown_database(client):
    resp = client.post("/api/logshipping/recover", json={"role": "SEC01", "databases": ["nope"]})
    outcome = resp.get_json()["outcomes"][0]
    assert outcome["error"] == "NotReplicatedError"


def test_recover_requires_role(client):
    resp = client.post("/api/logshipping/recover", json={})
    assert resp.status_code == 400


def test_configure_rejects_wrongly_typed_lists(client):
    resp = client.post("/api/logshipping/configure", json=_body(databases="db1"))
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "'databases' must be a list"

    resp = client.post("/api/logshipping/configure", json=_body(databases=["db1", 7]))
    assert resp.status_code == 400

    resp = client.post("/api/logshipping/configure", json=_body(secondaries="SEC01"))
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "'secondaries' must be a list"

    resp = client.post("/api/logshipping/configure", json=_body(options=["db1"]))
    assert resp.status_code == 400


def test_recover_rejects_bad_wait_settings(client):
    for body in ({"role": "SEC01", "pollIntervalSeconds": "soon"},
                 {"role": "SEC01", "maxWaitSeconds": True},
                 {"role": "SEC01", "maxWaitSeconds": 0},
                 {"role": "SEC01", "databases": "db1"}):
        resp = client.post("/api/logshipping/recover", json=body)
        assert resp.status_code == 400
        assert resp.get_json()["category"] == "ConfigurationError"


def test_recover_accepts_numeric_strings(client):
    client.post("/api/logshipping/configure", json=_body(databases=["db1"]))
    resp = client.post("/api/logshipping/recover", json={
        "role": "SEC01", "pollIntervalSeconds": "0.01", "maxWaitSeconds": "1",
    })
    assert resp.status_code == 200
    assert resp.get_json()["summary"]["succeeded"] == 1


def test_jobs_lists_engine_state(client):
    client.post("/api/logshipping/configure", json=_body(databases=["db1"]))

    resp = client.get("/api/logshipping/jobs/SEC01")
    assert resp.status_code == 200
    data = resp.get_json()
    assert sorted(j["name"] for j in data["jobs"]) == ["LSCopy_PRIM01_db1", "LSRestore_PRIM01_db1"]
    assert len(data["schedules"]) == 2
    assert data["runs"] == []

    primary = client.get("/api/logshipping/jobs/PRIM01").get_json()
    assert [j["name"] for j in primary["jobs"]] == ["LSBackup_db1"]
