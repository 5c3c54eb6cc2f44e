"""
Database package for PinDrop.

Provides database connection management and transaction support.
"""

from .connection_manager import (
    DatabaseConnectionManager,
    DatabaseConnectionError,
    SCHEMA_SQL,
    translate_backend_errors
)

__all__ = [
    'DatabaseConnectionManager',
    'DatabaseConnectionError',
    'SCHEMA_SQL',
    'translate_backend_errors'
]
