"""
Database package for dbsandbox.

Provides schema migration through a one-shot Flyway container and live
asyncpg connections to provisioned databases.
"""

from .connection_manager import ConnectionEstablisher, ConnectionHandle
from .migration_runner import MigrationOutcome, MigrationRunner, MigrationStatus
from .users import User, UserMutation, UserQuery

__all__ = [
    'ConnectionEstablisher',
    'ConnectionHandle',
    'MigrationOutcome',
    'MigrationRunner',
    'MigrationStatus',
    'User',
    'UserMutation',
    'UserQuery',
]
