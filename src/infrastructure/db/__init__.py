"""
Database client for agent conversation history.

Single-tier storage: one relational table (agent_messages) reached through
async SQLAlchemy. SQLite by default, PostgreSQL when AGENT_DB_URL says so.
"""

from .sql_client import (
    agent_messages_table,
    create_engine_for,
    create_session_factory,
    create_tables,
    dispose_engine,
    get_async_engine,
    get_session_factory,
    metadata,
    test_connection,
)

__all__ = [
    "agent_messages_table",
    "create_engine_for",
    "create_session_factory",
    "create_tables",
    "dispose_engine",
    "get_async_engine",
    "get_session_factory",
    "metadata",
    "test_connection",
]
