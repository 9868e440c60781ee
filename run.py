#!/usr/bin/env python3
"""
Credit Core Entry Point

Starts the FastAPI server with the credit system; the payment scheduler runs
in the background when enabled.
"""

import sys

import uvicorn

from credit_core.config import get_config
from credit_core.logging_config import setup_logging


def run_server(host: str, port: int, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "credit_core.api:create_app",
        factory=True,
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )


if __name__ == "__main__":
    config = get_config()
    logger = setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)
    logger.info(f"Starting Credit Core on {config.api_host}:{config.api_port}")

    try:
        run_server(host=config.api_host, port=config.api_port)
    except KeyboardInterrupt:
        logger.info("Shutting down Credit Core")
    except Exception as e:
        logger.error(f"Error starting server: {e}")
        sys.exit(1)
