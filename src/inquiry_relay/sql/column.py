# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Column definitions used by table managers to describe their schema."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

String = "TEXT"
Integer = "INTEGER"
BigInteger = "BIGINT"
Timestamp = "TIMESTAMP"
Json = "JSON"


@dataclass
class Column:
    """A single column of a table.

    JSON columns are stored as TEXT and transparently encoded/decoded by
    :class:`~inquiry_relay.sql.table.Table`.
    """

    name: str
    type_: str
    primary_key: bool = False
    nullable: bool = True
    default: Any = None

    @property
    def is_json(self) -> bool:
        return self.type_ == Json

    def to_sql(self) -> str:
        sql_type = "TEXT" if self.is_json else self.type_
        parts = [f'"{self.name}"', sql_type]
        if self.primary_key:
            parts.append("PRIMARY KEY")
        elif not self.nullable:
            parts.append("NOT NULL")
        if self.default is not None:
            parts.append(f"DEFAULT {self.default}")
        return " ".join(parts)


class Columns(dict[str, Column]):
    """Ordered collection of the columns of a table."""

    def column(self, name: str, type_: str, **kwargs: Any) -> Column:
        col = Column(name, type_, **kwargs)
        self[name] = col
        return col

    def json_columns(self) -> list[str]:
        return [name for name, col in self.items() if col.is_json]
