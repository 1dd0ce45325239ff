"""
Storage Package

SQLAlchemy models, engine/session management and the contract repository.
"""

from .base import Base
from .engine import create_tables, get_engine, get_session, init_engine_from_url, reset_engine, session_scope
from .repository import ContractRepository

__all__ = [
    "Base",
    "ContractRepository",
    "create_tables",
    "get_engine",
    "get_session",
    "init_engine_from_url",
    "reset_engine",
    "session_scope",
]
