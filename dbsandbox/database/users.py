"""
Row helpers for the users table created by migrations/V1__create_users_table.sql.
"""

from dataclasses import dataclass
from typing import List, Optional

from .connection_manager import ConnectionHandle


@dataclass
class User:
    id: int
    name: str


class UserMutation:
    """Creates users."""

    def __init__(self, connection: ConnectionHandle):
        self.connection = connection

    async def execute(self, name: str) -> User:
        user_id = await self.connection.fetchval(
            "INSERT INTO users (name) VALUES ($1) RETURNING id", name
        )
        return User(id=user_id, name=name)


class UserQuery:
    """Reads users."""

    def __init__(self, connection: ConnectionHandle):
        self.connection = connection

    async def execute(self, user_id: int) -> Optional[User]:
        """Return the user with the given id, or None."""
        row = await self.connection.fetchrow("SELECT id, name FROM users WHERE id = $1", user_id)
        if row is None:
            return None
        return User(id=row["id"], name=row["name"])

    async def list_all(self) -> List[User]:
        rows = await self.connection.fetch("SELECT id, name FROM users ORDER BY id")
        return [User(id=row["id"], name=row["name"]) for row in rows]
