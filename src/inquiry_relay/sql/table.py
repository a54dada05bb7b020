# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Table base class with Columns-based schema (async version)."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from .column import Columns

if TYPE_CHECKING:
    from ..relay_db import RelayDb


class Table:
    """Base class for async table managers.

    Subclasses define columns via configure() hook and implement
    domain-specific operations.

    Attributes:
        name: Table name in database.
        db: RelayDb instance reference.
        columns: Column definitions.
        indexes: Extra ``CREATE INDEX IF NOT EXISTS`` statements.
    """

    name: str
    indexes: tuple[str, ...] = ()

    def __init__(self, db: RelayDb) -> None:
        self.db = db
        if not hasattr(self, "name") or not self.name:
            raise ValueError(f"{type(self).__name__} must define 'name'")

        self.columns = Columns()
        self.configure()

    def configure(self) -> None:
        """Override to define columns. Called during __init__."""
        pass

    # -------------------------------------------------------------------------
    # Schema
    # -------------------------------------------------------------------------

    def create_table_sql(self) -> str:
        """Generate CREATE TABLE IF NOT EXISTS statement."""
        col_defs = []
        for col in self.columns.values():
            if col.primary_key and col.type_ == "INTEGER":
                col_defs.append(self.db.adapter.pk_column(col.name))
            else:
                col_defs.append(col.to_sql())
        return f"CREATE TABLE IF NOT EXISTS {self.name} (\n    " + ",\n    ".join(col_defs) + "\n)"

    async def create_schema(self) -> None:
        """Create table and indexes if they do not exist."""
        await self.db.adapter.execute(self.create_table_sql())
        for statement in self.indexes:
            await self.db.adapter.execute(statement)

    # -------------------------------------------------------------------------
    # JSON Encoding/Decoding
    # -------------------------------------------------------------------------

    def _encode_json_fields(self, data: dict[str, Any]) -> dict[str, Any]:
        """Encode JSON fields for storage."""
        result = dict(data)
        for col_name in self.columns.json_columns():
            if col_name in result and result[col_name] is not None:
                result[col_name] = json.dumps(result[col_name])
        return result

    def _decode_json_fields(self, row: dict[str, Any]) -> dict[str, Any]:
        """Decode JSON fields from storage."""
        result = dict(row)
        for col_name in self.columns.json_columns():
            value = result.get(col_name)
            if isinstance(value, str):
                result[col_name] = json.loads(value)
        return result

    @staticmethod
    def hour_bucket(column: str) -> str:
        """SQL expression truncating a timestamp column to 'YYYY-MM-DD HH'.

        Works on the text form of the timestamp, identical in SQLite and
        PostgreSQL for the first 13 characters.
        """
        return f"SUBSTR(CAST({column} AS TEXT), 1, 13)"

    # -------------------------------------------------------------------------
    # Raw Query
    # -------------------------------------------------------------------------

    async def fetch_one(
        self, query: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        """Execute raw query, return single row."""
        row = await self.db.adapter.fetch_one(query, params)
        return self._decode_json_fields(row) if row else None

    async def fetch_all(
        self, query: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Execute raw query, return all rows."""
        rows = await self.db.adapter.fetch_all(query, params)
        return [self._decode_json_fields(row) for row in rows]

    async def execute(
        self, query: str, params: dict[str, Any] | None = None
    ) -> int:
        """Execute raw query, return affected row count."""
        return await self.db.adapter.execute(query, params)

    async def execute_returning(
        self, query: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        """Execute a writing query with RETURNING, return the first row."""
        row = await self.db.adapter.execute_returning(query, params)
        return self._decode_json_fields(row) if row else None

    async def count(self, where_sql: str = "", params: dict[str, Any] | None = None) -> int:
        """Count rows, optionally restricted by a raw WHERE fragment."""
        query = f"SELECT COUNT(*) AS cnt FROM {self.name}"
        if where_sql:
            query += f" WHERE {where_sql}"
        row = await self.db.adapter.fetch_one(query, params)
        return int(row["cnt"]) if row else 0


__all__ = ["Table"]
