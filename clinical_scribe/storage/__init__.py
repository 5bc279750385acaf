"""Persistence for completed analyses, metrics and audit events."""

from .database import Base, create_db_engine, init_db
from .sessions import AuditEvent, AuditSink, SessionStore, SqlSessionStore

__all__ = [
    "Base",
    "create_db_engine",
    "init_db",
    "AuditEvent",
    "AuditSink",
    "SessionStore",
    "SqlSessionStore",
]
