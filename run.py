#!/usr/bin/env python3
"""
Debt Ledger Entry Point

Starts the FastAPI server using the LEDGER_* environment configuration.
"""

import sys

from debt_ledger.api import run_server
from debt_ledger.config import get_config
from debt_ledger.logging_config import setup_logging


if __name__ == "__main__":
    config = get_config()
    logger = setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)
    logger.info(f"Starting debt ledger API on {config.api_host}:{config.api_port}")

    try:
        run_server(host=config.api_host, port=config.api_port)
    except KeyboardInterrupt:
        logger.info("Shutting down debt ledger API")
    except Exception as e:
        logger.error(f"Error starting server: {e}")
        sys.exit(1)
