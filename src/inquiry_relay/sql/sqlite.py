# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""SQLite async adapter using aiosqlite."""

from __future__ import annotations

from typing import Any

import aiosqlite

from .base import DbAdapter


class SqliteAdapter(DbAdapter):
    """SQLite async adapter. Opens connection per-operation for thread safety."""

    def __init__(self, db_path: str, busy_timeout: float = 5.0):
        """Initialize SQLite adapter.

        Args:
            db_path: Path to SQLite file, or ":memory:" for in-memory DB.
            busy_timeout: Seconds a connection waits on a locked database
                before giving up.
        """
        self.db_path = db_path or ":memory:"
        self.busy_timeout = busy_timeout

    def _connect(self) -> aiosqlite.Connection:
        return aiosqlite.connect(self.db_path, timeout=self.busy_timeout)

    async def connect(self) -> None:
        """SQLite connections are opened per-operation, this is a no-op."""
        pass

    async def close(self) -> None:
        """SQLite connections are closed per-operation, this is a no-op."""
        pass

    async def execute(self, query: str, params: dict[str, Any] | None = None) -> int:
        """Execute query, return affected row count."""
        async with self._connect() as db:
            cursor = await db.execute(query, params or {})
            await db.commit()
            return cursor.rowcount

    async def execute_returning(
        self, query: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        """Execute a RETURNING statement, commit, return the first row."""
        async with self._connect() as db:
            async with db.execute(query, params or {}) as cursor:
                row = await cursor.fetchone()
                cols = [c[0] for c in cursor.description] if cursor.description else []
            await db.commit()
            if row is None:
                return None
            return dict(zip(cols, row, strict=True))

    async def fetch_one(
        self, query: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        """Execute query, return single row as dict or None."""
        async with self._connect() as db:
            async with db.execute(query, params or {}) as cursor:
                row = await cursor.fetchone()
                if row is None:
                    return None
                cols = [c[0] for c in cursor.description]
                return dict(zip(cols, row, strict=True))

    async def fetch_all(
        self, query: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Execute query, return all rows as list of dicts."""
        async with self._connect() as db:
            async with db.execute(query, params or {}) as cursor:
                rows = await cursor.fetchall()
                cols = [c[0] for c in cursor.description]
                return [dict(zip(cols, row, strict=True)) for row in rows]

    async def execute_script(self, script: str) -> None:
        """Execute multiple statements (for schema creation)."""
        async with self._connect() as db:
            await db.executescript(script)
            await db.commit()

    def pk_column(self, name: str) -> str:
        return f'"{name}" INTEGER PRIMARY KEY AUTOINCREMENT'
