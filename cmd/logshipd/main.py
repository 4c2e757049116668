import logging
import os
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(REPO_ROOT))

from flask import Flask

from logship.db.database import init_db
from logship.handlers.api import logshipping_bp
from logship.settings.store import settings_store

logger = logging.getLogger(__name__)


def create_app() -> Flask:
    app = Flask(__name__)
    app.register_blueprint(logshipping_bp)
    return app


def run() -> None:
    settings = settings_store.load()
    logging.basicConfig(
        level=settings.get("logging", {}).get("level", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    init_db(os.getenv("LOGSHIP_DB_PATH") or settings.get("database", {}).get("path"))

    port = int(os.getenv("PORT", "8080"))
    logger.info("Log shipping orchestrator listening on http://0.0.0.0:%d", port)
    create_app().run(host="0.0.0.0", port=port, threaded=True)


if __name__ == "__main__":
    run()
