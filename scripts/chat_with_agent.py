#!/usr/bin/env python3
"""
Chat with one roster agent at the console until you type "done".

Usage:
    python scripts/chat_with_agent.py --agent Writer
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
from infrastructure.config import load_agent_roster, validate
from infrastructure.db import create_tables, dispose_engine
from infrastructure.log import setup_logging
from infrastructure.observability import flush
from history import SqlMessageStore
from agents import AgentFactory, ChatWithHuman, ConsoleHumanProxy

END_WORD = "done"


def _is_done(message) -> bool:
    return message.content.strip().lower() == END_WORD


async def _run(agent_name: str) -> int:
    await create_tables()
    store = SqlMessageStore()
    entries = [e for e in load_agent_roster() if e["name"].lower() == agent_name.lower()]
    if not entries:
        logger.error("No agent named '{}' in config/agents.yaml", agent_name)
        return 1

    agent = AgentFactory(store).from_roster(entries)[0]
    chat = ChatWithHuman(ConsoleHumanProxy(store), agent)
    try:
        result = await chat.start_chat(
            f"You are chatting with **{agent.name}**. Type `{END_WORD}` to finish.",
            _is_done,
        )
    finally:
        await dispose_engine()
    logger.info("Chat {} ended after {} exchange(s)", result.session_id, result.exchanges)
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(description="Chat with one agent")
    parser.add_argument("--agent", default="Writer", help="Roster agent name (default: Writer)")
    args = parser.parse_args(argv)

    setup_logging()
    try:
        validate()
        return asyncio.run(_run(args.agent))
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        logger.error("Chat failed: {}", e)
        return 1
    finally:
        flush()


if __name__ == '__main__':
    sys.exit(main())
