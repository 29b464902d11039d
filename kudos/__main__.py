"""
kudos.__main__ — Entry point for ``python -m kudos``
====================================================

Wiring:
1. Load .env (DATABASE_URL, host/port overrides).
2. Load config.yaml (soft settings) so a bad file fails before binding.
3. Create the SQLAlchemy engine and ensure tables exist.
4. Serve the FastAPI app with uvicorn (blocking).

Run with::

    python -m kudos
"""

from __future__ import annotations

import logging
import os

import uvicorn
from dotenv import load_dotenv

from kudos.config import load_config
from kudos.database.engine import create_db_engine, init_db

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("kudos")


def main() -> None:
    """Bootstrap and serve the Kudos API."""

    # 1. Environment variables.
    load_dotenv()

    # 2. Soft configuration.
    cfg = load_config(os.getenv("KUDOS_CONFIG", "config.yaml"))
    logger.info("Config loaded — Community: %s (%s)", cfg.community_name, cfg.timezone)
    if cfg.debug:
        logging.getLogger("kudos").setLevel(logging.DEBUG)

    # 3. Database.
    engine = create_db_engine()
    init_db(engine)
    engine.dispose()

    # 4. Serve (blocks until Ctrl+C or SIGTERM).
    uvicorn.run(
        "kudos.api.main:app",
        host=os.getenv("KUDOS_HOST", "127.0.0.1"),
        port=int(os.getenv("KUDOS_PORT", "8000")),
        log_level="debug" if cfg.debug else "info",
    )


if __name__ == "__main__":
    main()
