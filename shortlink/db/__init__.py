"""
Database module with abstraction layer.

This module provides:
- DatabaseAdapter: engine configuration and dialect-specific statements
  (SQLiteAdapter by default, PostgreSQLAdapter for production)
- LinkStore / EventStore: storage capability interfaces
- SQL and in-memory implementations of both interfaces
- Session management: engine and session factory construction

To add a new database backend:
1. Create a new adapter class inheriting from DatabaseAdapter
2. Implement all abstract methods
3. Update get_database_adapter() in adapters.py to return the new adapter
"""

from shortlink.db.adapters import DatabaseAdapter, get_database_adapter
from shortlink.db.event_store import SQLEventStore
from shortlink.db.interface import EventStore, LinkStore
from shortlink.db.link_store import SQLLinkStore
from shortlink.db.memory import InMemoryEventStore, InMemoryLinkStore
from shortlink.db.session import build_engine, build_session_maker, create_schema

__all__ = [
    "DatabaseAdapter",
    "get_database_adapter",
    "LinkStore",
    "EventStore",
    "SQLLinkStore",
    "SQLEventStore",
    "InMemoryLinkStore",
    "InMemoryEventStore",
    "build_engine",
    "build_session_maker",
    "create_schema",
]
