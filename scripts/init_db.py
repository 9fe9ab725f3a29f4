#!/usr/bin/env python3
"""
Initialize the message database - creates the agent_messages table.
"""

import asyncio
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

# Load environment variables
from dotenv import load_dotenv
load_dotenv()

from loguru import logger
from infrastructure.log import setup_logging
from infrastructure.db import create_tables, dispose_engine, test_connection


async def _init() -> bool:
    try:
        if not await test_connection():
            return False
        await create_tables()
        return True
    finally:
        await dispose_engine()


def main():
    setup_logging()
    try:
        return 0 if asyncio.run(_init()) else 1
    except Exception as e:
        logger.error("Failed to initialize database: {}", e)
        return 1


if __name__ == '__main__':
    sys.exit(main())
