#!/usr/bin/env python3
"""
Gold Lending Entry Point

Upgrades any legacy loan documents, then starts the FastAPI server.
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from gold_lending.config import get_config
from gold_lending.logging_config import setup_logging
from gold_lending.api import run_server
from gold_lending.api.dependencies import get_lending_system


if __name__ == "__main__":
    config = get_config()
    logger = setup_logging(
        level=config.log_level,
        format_type=config.log_format,
        log_file=config.log_file
    )

    result = get_lending_system().migrate_legacy_loans()
    if result["migrated"] or result["failed"]:
        logger.info(
            f"Legacy migration: {result['migrated']} migrated, {len(result['failed'])} failed"
        )

    logger.info(f"Starting Gold Lending API on {config.api_host}:{config.api_port}")
    try:
        run_server(host=config.api_host, port=config.api_port, debug=False)
    except KeyboardInterrupt:
        logger.info("Shutting down Gold Lending API")
    except Exception as e:
        logger.error(f"Error starting server: {e}")
        sys.exit(1)
