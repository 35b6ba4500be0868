"""Application entry point for the webhook relay server."""

from __future__ import annotations

import copy
import os
from typing import Any

import uvicorn
from uvicorn.config import LOGGING_CONFIG

from webhook_relay.config.settings import AppConfig


def log_config(level: str) -> dict[str, Any]:
    """uvicorn's logging config with the ``webhook_relay`` loggers attached to it."""
    cfg = copy.deepcopy(LOGGING_CONFIG)
    cfg["loggers"]["webhook_relay"] = {
        "handlers": ["default"],
        "level": level.upper(),
        "propagate": False,
    }
    return cfg


def main() -> None:
    """Serve the admin API; the delivery worker runs inside the app lifespan."""
    config = AppConfig()
    reload = os.getenv("WEBHOOKRELAY_RELOAD", "false").lower() in ("1", "true", "yes")
    uvicorn.run(
        "webhook_relay.api.app:create_app",
        factory=True,
        host=config.server.host,
        port=config.server.port,
        reload=reload,
        log_level=config.server.log_level,
        log_config=log_config(config.server.log_level),
    )


if __name__ == "__main__":
    main()
