#!/usr/bin/env python
"""Start the salesync API with the port taken from the environment."""
import logging
import os

import uvicorn

from salesync.core.logging_config import configure_logging

logger = logging.getLogger(__name__)

if __name__ == "__main__":
    configure_logging()
    port = int(os.environ.get("PORT", 8000))
    logger.info(f"Starting salesync on port {port}")

    uvicorn.run(
        "salesync.main:app",
        host="0.0.0.0",
        port=port,
        log_level=os.environ.get("LOG_LEVEL", "info").lower(),
    )
