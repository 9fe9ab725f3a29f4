#!/usr/bin/env python3
"""
Pursue a goal with the configured roster (config/agents.yaml).

Usage:
    python scripts/pursue_goal.py --goal "Write a release note for v2"
    python scripts/pursue_goal.py --goal "..." --max-iterations 8 --transcript out.md
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

# Load environment variables
from dotenv import load_dotenv
load_dotenv()

from loguru import logger
from infrastructure.config import ROUTER_MAX_ITERATIONS, dump, validate
from infrastructure.db import create_tables, dispose_engine
from infrastructure.log import setup_logging
from infrastructure.observability import flush
from agents import build_router


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Route a goal across specialised agents")
    parser.add_argument("--goal", required=True, help="Goal to pursue")
    parser.add_argument(
        "--max-iterations", type=int, default=ROUTER_MAX_ITERATIONS,
        help=f"Cap on agent turns (default: {ROUTER_MAX_ITERATIONS})",
    )
    parser.add_argument("--transcript", type=Path, help="Write the shared conversation as markdown")
    return parser.parse_args(argv)


async def _run(args) -> int:
    await create_tables()
    router = build_router()
    try:
        outcome = await router.pursue_goal(args.goal, max_iterations=args.max_iterations)
    finally:
        if args.transcript:
            args.transcript.write_text(router.history.transcript(), encoding="utf-8")
            logger.info("Transcript written to {}", args.transcript)
        await dispose_engine()

    logger.info("Outcome: {} ({} dispatch(es), session={})",
                outcome.status.value, outcome.dispatches, outcome.session_id)
    return 0 if outcome.completed else 2


def main(argv=None):
    args = parse_args(argv)
    setup_logging()
    try:
        validate()
        dump()
    except ValueError as e:
        logger.error("Configuration error: {}", e)
        return 1
    try:
        return asyncio.run(_run(args))
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return 130
    except Exception as e:
        logger.error("Goal pursuit failed: {}", e)
        return 1
    finally:
        flush()


if __name__ == '__main__':
    sys.exit(main())
