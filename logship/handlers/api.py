"""HTTP handlers for the log shipping API.

Endpoints:
  GET  /health                               — Health check
  POST /api/logshipping/configure            — Configure a topology
  POST /api/logshipping/recover              — Recover databases on a secondary role
  GET  /api/logshipping/catalog/<server>     — List log shipped databases on a role
  GET  /api/logshipping/jobs/<server>        — List local engine jobs, schedules and runs on a role
"""

import logging
import re
from dataclasses import asdict, fields

from flask import Blueprint, request, jsonify

from logship.db import database as db
from logship.models.errors import ConfigurationError
from logship.models.types import (
    DatabaseOptions, InitializationRequest, MonitorConfig, ReplicationTopology, RestoreMode, Role,
)
from logship.recovery.orchestrator import RecoveryOrchestrator
from logship.services.registry import get_collaborators
from logship.settings.store import settings_store
from logship.topology.configurator import TopologyConfigurator

logger = logging.getLogger(__name__)

logshipping_bp = Blueprint("logshipping", __name__)

_OPTION_FIELDS = {f.name for f in fields(DatabaseOptions)}


@logshipping_bp.route("/health", methods=["GET"])
def health():
    """Health check endpoint."""
    return jsonify({"status": "ok"}), 200


@logshipping_bp.route("/api/logshipping/configure", methods=["POST"])
def configure():
    """Configure log shipping from one primary to its secondaries.

    Returns one outcome per (secondary × database) pair. Batch-level input
    errors are rejected with 400 before any pair is touched.
    """
    body = request.get_json(silent=True)
    if body is None:
        return jsonify({"error": "Request body must be valid JSON"}), 400

    try:
        topology = ReplicationTopology(
            primary=_role(body.get("primary")),
            secondaries=[_role(s) for s in _list(body, "secondaries")],
            databases=_names(_list(body, "databases"), "databases"),
            shared_backup_path=body.get("sharedBackupPath", ""),
            local_backup_path=body.get("localBackupPath", ""),
            copy_destination_path=body.get("copyDestinationPath", ""),
        )
        init = body.get("initialization") or {}
        initialization = InitializationRequest(
            no_initialization=bool(init.get("noInitialization", False)),
            generate_new=bool(init.get("generateNew", False)),
            existing_backup=init.get("existingBackup"),
            backup_folder=init.get("backupFolder"),
        )
        options = {name: _options(o) for name, o in _mapping(body, "options").items()}
        monitors = {server: _monitor(m) for server, m in _mapping(body, "monitors").items()}

        configurator = TopologyConfigurator(get_collaborators(), settings_store.load())
        outcomes = configurator.configure(
            topology,
            schedules=_mapping(body, "schedules"),
            initialization=initialization,
            monitors=monitors,
            options=options,
            force=bool(body.get("force", False)),
        )
    except ConfigurationError as e:
        return jsonify({"error": str(e), "category": e.category}), 400

    return jsonify(_outcome_payload(outcomes)), 200


@logshipping_bp.route("/api/logshipping/recover", methods=["POST"])
def recover():
    """Drain and promote log shipped databases on a secondary role."""
    body = request.get_json(silent=True)
    if body is None:
        return jsonify({"error": "Request body must be valid JSON"}), 400

    try:
        role = _role(body.get("role"))
        databases = _names(_list(body, "databases"), "databases") or None
        poll_interval = _seconds(body, "pollIntervalSeconds")
        max_wait = _seconds(body, "maxWaitSeconds")
    except ConfigurationError as e:
        return jsonify({"error": str(e), "category": e.category}), 400

    orchestrator = RecoveryOrchestrator(get_collaborators(), settings_store.load())
    outcomes = orchestrator.recover(
        role,
        databases=databases,
        defer_final_promotion=bool(body.get("deferFinalPromotion", False)),
        poll_interval=poll_interval,
        max_wait=max_wait,
    )
    payload = _outcome_payload(outcomes)
    payload["states"] = {
        database: state.value for (_, database), state in orchestrator.states.items()
    }
    return jsonify(payload), 200


@logshipping_bp.route("/api/logshipping/catalog/<server>", methods=["GET"])
def catalog(server):
    role = Role(server)
    catalog = get_collaborators().catalog
    entries = []
    for database in catalog.list_databases(role):
        entry = catalog.lookup(role, database)
        if entry is not None:
            entries.append(asdict(entry))
    return jsonify({"role": server, "databases": entries}), 200


@logshipping_bp.route("/api/logshipping/jobs/<server>", methods=["GET"])
def jobs(server):
    """Jobs, schedules and run history kept by the local job engine."""
    identity = Role(server).identity
    return jsonify({
        "role": server,
        "jobs": db.list_jobs(identity),
        "schedules": db.list_schedules(identity),
        "runs": db.list_runs(identity),
    }), 200


# ── Body parsing ─────────────────────────────────────────────────────────────

def _list(body: dict, key: str) -> list:
    value = body.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigurationError(f"'{key}' must be a list")
    return value


def _mapping(body: dict, key: str) -> dict:
    value = body.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"'{key}' must be an object")
    return value


def _names(values: list, key: str) -> list:
    if not all(isinstance(v, str) and v.strip() for v in values):
        raise ConfigurationError(f"'{key}' must contain non-empty names")
    return [v.strip() for v in values]


def _seconds(body: dict, key: str):
    value = body.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        raise ConfigurationError(f"'{key}' must be a number of seconds")
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"'{key}' must be a number of seconds") from None
    if not seconds > 0:
        raise ConfigurationError(f"'{key}' must be positive")
    return seconds


def _role(value) -> Role:
    if isinstance(value, str) and value.strip():
        return Role(value.strip())
    if isinstance(value, dict) and value.get("server"):
        return Role(value["server"], value.get("credential"))
    raise ConfigurationError("Role must be a server name or an object with 'server'")


def _snake(key: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


def _options(data: dict) -> DatabaseOptions:
    kwargs = {}
    for key, value in (data or {}).items():
        name = _snake(key)
        if name not in _OPTION_FIELDS:
            raise ConfigurationError(f"Unknown database option '{key}'")
        kwargs[name] = value
    if kwargs.get("restore_mode") is not None:
        try:
            kwargs["restore_mode"] = RestoreMode(str(kwargs["restore_mode"]).upper())
        except ValueError:
            raise ConfigurationError(f"Invalid restore mode '{kwargs['restore_mode']}'") from None
    return DatabaseOptions(**kwargs)


def _monitor(data: dict) -> MonitorConfig:
    data = data or {}
    mode = data.get("securityMode", "windows")
    if mode not in ("windows", "sql"):
        raise ConfigurationError(f"Invalid monitor security mode '{mode}'")
    return MonitorConfig(
        server=data.get("server", ""),
        security_mode=mode,
        credential=data.get("credential"),
        threshold_alert_enabled=bool(data.get("thresholdAlertEnabled", False)),
    )


def _outcome_payload(outcomes: list) -> dict:
    succeeded = sum(1 for o in outcomes if o.succeeded)
    return {
        "outcomes": [o.to_dict() for o in outcomes],
        "summary": {
            "total": len(outcomes),
            "succeeded": succeeded,
            "failed": len(outcomes) - succeeded,
        },
    }
