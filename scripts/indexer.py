#!/usr/bin/env python3
"""Standalone indexer script - indexes a workspace and exits."""

import asyncio
import logging
import os
import sys

# Setup logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def run():
    """Main indexer function."""
    try:
        # Import here so logging is configured before any module logger is used
        from codebase_indexer.pipeline import main

        workspace_path = sys.argv[1] if len(sys.argv) > 1 else None
        exit_code = await main(workspace_path)
        sys.exit(exit_code)

    except KeyboardInterrupt:
        logger.info("Indexing interrupted by user")
        sys.exit(130)


if __name__ == "__main__":
    asyncio.run(run())
