#!/usr/bin/env python3
"""Database initialization script."""

import sys

from flowengine.config import load_config, validate_config
from flowengine.core.logging import get_logger, setup_logging
from flowengine.storage.database import create_database_engine, create_tables


def main():
    """Create the flowengine tables in the configured database."""
    config = load_config(sys.argv[1] if len(sys.argv) > 1 else None)

    setup_logging(level=config.log_level.value, structured=config.structured_logging)
    logger = get_logger("flowengine.scripts.init_db")

    try:
        validate_config(config)
        logger.info(f"Initializing database at {config.database_url}...")

        engine = create_database_engine(config.database_url, echo=config.database_echo)
        create_tables(engine)
        engine.dispose()

        logger.info("Database initialization completed")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
