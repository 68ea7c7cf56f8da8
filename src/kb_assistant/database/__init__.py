"""Database package: ORM models, engine and session management."""

from kb_assistant.database.connection import (
    check_connection,
    close_engine,
    create_engine,
    enable_sqlite_foreign_keys,
    get_engine,
    init_db,
)
from kb_assistant.database.models import Base, ChatMessage, ChatSession, Chunk, Document, Job
from kb_assistant.database.session import SessionFactory, create_session_factory, session_scope

__all__ = [
    "Base",
    "ChatMessage",
    "ChatSession",
    "Chunk",
    "Document",
    "Job",
    "SessionFactory",
    "check_connection",
    "close_engine",
    "create_engine",
    "create_session_factory",
    "enable_sqlite_foreign_keys",
    "get_engine",
    "init_db",
    "session_scope",
]
