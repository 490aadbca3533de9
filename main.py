"""
Main entrypoint: FastAPI index server.

Request-driven; there is no background worker. Settings come from the
environment and the project .env (see backend_zombie.config.settings).

Env: ZOMBIE_DB_URL / DATABASE_URL / ZOMBIE_DB_PATH, SUI_NETWORK, SUI_RPC_URL,
ZOMBIE_PACKAGE_ID, LEDGER_BACKEND, API_HOST, API_PORT, LOG_LEVEL, DEBUG.

Equivalent: uvicorn backend_zombie.api_server.app:app --host 0.0.0.0 --port 8000
"""

import os

# Configure structured JSON logging before other imports that may log
from backend_zombie.zombie_logging import get_logger

logger = get_logger("main")


def main() -> None:
    """Build the app from settings and run it with uvicorn in the main thread."""
    from backend_zombie.api_server.server import create_app
    from backend_zombie.config import get_settings
    import uvicorn

    settings = get_settings()
    app = create_app(settings)
    logger.info("main_server_starting", host=settings.api_host, port=settings.api_port)
    uvicorn.run(app, host=settings.api_host, port=settings.api_port, log_level=os.getenv("LOG_LEVEL", "info").lower())


if __name__ == "__main__":
    main()
