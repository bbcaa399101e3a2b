"""
Process entrypoint: load configuration once and serve the relay with uvicorn.
"""

from __future__ import annotations

import logging
import sys

import uvicorn

from evalrelay.config import PROVIDER_KEY_MAP, Configuration
from evalrelay.logging_utils import configure_logging
from evalrelay.server import create_app


def run() -> int:
    """Start the relay server."""
    try:
        config = Configuration()
        settings = config.build_settings()
        server_config = config.get_server_config()
    except (OSError, ValueError) as e:
        logging.basicConfig(level=logging.ERROR)
        logging.error(f"Invalid relay configuration: {e}")
        return 1

    log_level = config.get_logging_config().get("level", "INFO")
    configure_logging(log_level)

    missing = [
        PROVIDER_KEY_MAP[p]
        for p, provider_settings in settings.providers.items()
        if not provider_settings.api_key
    ]
    if missing:
        logging.warning(
            f"No credential for: {', '.join(missing)}. "
            "Requests naming these providers will fail with a configuration error."
        )

    app = create_app(settings)
    uvicorn.run(
        app,
        host=server_config["host"],
        port=server_config["port"],
        access_log=server_config.get("access_log", True),
        log_level=log_level.lower(),
    )
    return 0


if __name__ == "__main__":
    sys.exit(run())
