"""OBSERVE query rendering.

The wire syntax is::

    OBSERVE <col-list|*> FROM <table-list|*> [AS SQL|JSON] [INTO <sink>]
        [BEGINNING AT (<offset|NULL>,...)] [WHERE <predicate>]

Nothing here touches the network.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Optional

QUOTE_CHARACTER = "`"


class OutputFormat(str, Enum):
    SQL = "SQL"
    JSON = "JSON"


@dataclass(frozen=True, order=True)
class TableId:
    database: Optional[str]
    table: str

    def __str__(self) -> str:
        if self.database:
            return f"{self.database}.{self.table}"
        return self.table

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {"database": self.database, "table": self.table}

    @classmethod
    def from_dict(cls, data: Dict[str, Optional[str]]) -> "TableId":
        return cls(database=data.get("database"), table=str(data["table"]))


@dataclass(frozen=True, order=True)
class ColumnId:
    table_id: TableId
    column: str


def quote_identifier(name: str, quote: str = QUOTE_CHARACTER) -> str:
    """Quote ``name`` unless it already is; embedded quotes are doubled."""
    if not name:
        return quote + quote
    if len(name) > 1 and name[0] == quote and name[-1] == quote:
        return name
    return quote + name.replace(quote, quote + quote) + quote


def quoted_table(table_id: TableId) -> str:
    if table_id.database:
        return f"{quote_identifier(table_id.database)}.{quote_identifier(table_id.table)}"
    return quote_identifier(table_id.table)


def quoted_column(column_id: ColumnId) -> str:
    return f"{quoted_table(column_id.table_id)}.{quote_identifier(column_id.column)}"


def build_observe_query(
    columns: Optional[Iterable[ColumnId]] = None,
    tables: Optional[Iterable[TableId]] = None,
    *,
    output_format: Optional[OutputFormat] = None,
    output_config: Optional[str] = None,
    offsets: Optional[str] = None,
    record_filter: Optional[str] = None,
) -> str:
    """Render an OBSERVE statement; empty filters are rendered as ``*``."""
    column_list = sorted(set(columns or ()))
    table_list = sorted(set(tables or ()))

    parts = ["OBSERVE"]
    if column_list:
        parts.append(",".join(quoted_column(column) for column in column_list))
    else:
        parts.append("*")
    parts.append("FROM")
    if table_list:
        parts.append(",".join(quoted_table(table) for table in table_list))
    else:
        parts.append("*")
    if output_format is not None:
        parts.extend(["AS", OutputFormat(output_format).value])
    if output_config:
        parts.extend(["INTO", output_config])
    if offsets:
        parts.extend(["BEGINNING AT", offsets])
    if record_filter:
        parts.extend(["WHERE", record_filter])
    return " ".join(parts)


__all__ = [
    "ColumnId",
    "OutputFormat",
    "QUOTE_CHARACTER",
    "TableId",
    "build_observe_query",
    "quote_identifier",
    "quoted_column",
    "quoted_table",
]
