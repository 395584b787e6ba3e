"""Column metadata for the table captured by an OBSERVE stream."""

from __future__ import annotations

from typing import Dict, List, Optional, Protocol, Sequence

from ..db import ObserveConnection
from .query import TableId
from .rows import INTERNAL_ID_COLUMN


class SchemaProvider(Protocol):
    """Resolves captured tables and their ordered logical columns."""

    def table_ids(self) -> Sequence[TableId]: ...

    def columns_for(self, table_id: TableId) -> Sequence[str]: ...


class StaticSchemaProvider:
    """Schema provider backed by a fixed table -> columns mapping."""

    def __init__(self, tables: Dict[TableId, Sequence[str]]) -> None:
        self._tables = {table: list(columns) for table, columns in tables.items()}

    def table_ids(self) -> List[TableId]:
        return list(self._tables)

    def columns_for(self, table_id: TableId) -> List[str]:
        return list(self._tables[table_id])


class InformationSchemaProvider:
    """Reads the column list of a single table from ``information_schema``.

    With ``populate_internal_id`` the logical ``internalId`` column is appended
    so the row identifier produced by the stream is part of the after-image.
    """

    def __init__(
        self,
        connection: ObserveConnection,
        table_id: TableId,
        *,
        populate_internal_id: bool = False,
    ) -> None:
        self._connection = connection
        self._table_id = table_id
        self._populate_internal_id = populate_internal_id
        self._columns: Optional[List[str]] = None

    def table_ids(self) -> List[TableId]:
        return [self._table_id]

    def columns_for(self, table_id: TableId) -> List[str]:
        if table_id != self._table_id:
            raise KeyError(f"table {table_id} is not captured")
        if self._columns is None:
            rows = self._connection.query_all(
                "SELECT column_name FROM information_schema.COLUMNS"
                " WHERE table_schema = %s AND table_name = %s"
                " ORDER BY ordinal_position",
                (table_id.database, table_id.table),
            )
            if not rows:
                raise KeyError(f"table {table_id} has no columns")
            columns = [str(row[0]) for row in rows]
            if self._populate_internal_id and INTERNAL_ID_COLUMN not in columns:
                columns.append(INTERNAL_ID_COLUMN)
            self._columns = columns
        return list(self._columns)


__all__ = ["InformationSchemaProvider", "SchemaProvider", "StaticSchemaProvider"]
