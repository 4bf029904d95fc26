"""Main entry point for the usage bridge."""

import logging
import sys

import uvicorn
from dotenv import load_dotenv

from usage_bridge.config import get_settings


def setup_logging() -> None:
    """Configure application logging."""
    settings = get_settings()

    log_format = (
        '{"time": "%(asctime)s", "level": "%(levelname)s", '
        '"logger": "%(name)s", "message": "%(message)s"}'
        if settings.log_format == "json"
        else "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper()),
        format=log_format,
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def main() -> None:
    """Run the usage bridge and its stats server."""
    load_dotenv()
    setup_logging()

    settings = get_settings()
    logger = logging.getLogger(__name__)

    # Tracing must be set up before the app creates its tracers
    from usage_bridge.telemetry import setup_telemetry, shutdown_telemetry

    setup_telemetry(settings)

    logger.info(
        "Starting %s usage bridge on %s:%d (store=%s, secured=%s)",
        settings.bridge_type,
        settings.bridge_host,
        settings.bridge_port,
        settings.store_backend,
        settings.secured,
    )

    from usage_bridge.api.app import create_app

    app = create_app(settings)

    try:
        uvicorn.run(
            app,
            host=settings.bridge_host,
            port=settings.bridge_port,
            log_level=settings.log_level.lower(),
        )
    finally:
        shutdown_telemetry()


if __name__ == "__main__":
    main()
