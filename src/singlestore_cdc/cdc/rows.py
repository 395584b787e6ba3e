"""Decoding of OBSERVE result rows.

Every OBSERVE row starts with a fixed set of metadata columns followed by the
projected table columns. Column lookup is by name, so the position map is
built once from the cursor description when the stream opens.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from .offsets import bytes_to_hex

OFFSET_COLUMN = "Offset"
PARTITION_ID_COLUMN = "PartitionId"
TYPE_COLUMN = "Type"
TABLE_COLUMN = "Table"
TX_ID_COLUMN = "TxId"
TX_PARTITIONS_COLUMN = "TxPartitions"
INTERNAL_ID_METADATA_COLUMN = "InternalId"

METADATA_COLUMNS = (
    OFFSET_COLUMN,
    PARTITION_ID_COLUMN,
    TYPE_COLUMN,
    TABLE_COLUMN,
    TX_ID_COLUMN,
    TX_PARTITIONS_COLUMN,
    INTERNAL_ID_METADATA_COLUMN,
)

# Logical column exposed for tables without a primary key.
INTERNAL_ID_COLUMN = "internalId"


class ChangeType(str, Enum):
    INSERT = "Insert"
    UPDATE = "Update"
    DELETE = "Delete"
    BEGIN_SNAPSHOT = "BeginSnapshot"
    COMMIT_SNAPSHOT = "CommitSnapshot"

    @classmethod
    def parse(cls, value: object) -> Optional["ChangeType"]:
        if isinstance(value, bytes):
            value = value.decode("utf-8", "replace")
        try:
            return cls(value)
        except ValueError:
            return None


class Operation(str, Enum):
    CREATE = "c"
    UPDATE = "u"
    DELETE = "d"


_OPERATIONS = {
    ChangeType.INSERT: Operation.CREATE,
    ChangeType.UPDATE: Operation.UPDATE,
    ChangeType.DELETE: Operation.DELETE,
}


def operation_for(change_type: Optional[ChangeType]) -> Optional[Operation]:
    """Return the change operation, or ``None`` for bookkeeping rows."""
    if change_type is None:
        return None
    return _OPERATIONS.get(change_type)


@dataclass(frozen=True)
class StreamRowMetadata:
    offset: Optional[str]
    partition_id: int
    change_type: Optional[ChangeType]
    raw_type: Optional[str]
    table: Optional[str]
    tx_id: Optional[str]
    tx_partitions: Optional[str]
    internal_id: Optional[int]


def column_index(column_names: Sequence[str]) -> Dict[str, int]:
    index: Dict[str, int] = {}
    for position, name in enumerate(column_names):
        index.setdefault(name, position)
    return index


def _text(value: object) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", "replace")
    return str(value)


def decode_metadata(row: Sequence[object], index: Dict[str, int]) -> StreamRowMetadata:
    """Decode the metadata columns of a row; ``PartitionId`` becomes 0-based."""
    raw_partition = row[index[PARTITION_ID_COLUMN]]
    raw_internal_id = (
        row[index[INTERNAL_ID_METADATA_COLUMN]]
        if INTERNAL_ID_METADATA_COLUMN in index
        else None
    )
    raw_type = _text(row[index[TYPE_COLUMN]])
    return StreamRowMetadata(
        offset=bytes_to_hex(row[index[OFFSET_COLUMN]]),
        partition_id=int(raw_partition) - 1,
        change_type=ChangeType.parse(raw_type),
        raw_type=raw_type,
        table=_text(row[index[TABLE_COLUMN]]) if TABLE_COLUMN in index else None,
        tx_id=bytes_to_hex(row[index[TX_ID_COLUMN]]) if TX_ID_COLUMN in index else None,
        tx_partitions=(
            _text(row[index[TX_PARTITIONS_COLUMN]])
            if TX_PARTITIONS_COLUMN in index
            else None
        ),
        internal_id=int(raw_internal_id) if raw_internal_id is not None else None,
    )


def column_positions(
    column_names: Sequence[str],
    table_columns: Sequence[str],
    populate_internal_id: bool,
) -> List[int]:
    """Map each logical table column to its physical position in the row."""
    index = column_index(column_names)
    positions: List[int] = []
    for name in table_columns:
        physical = name
        if populate_internal_id and name == INTERNAL_ID_COLUMN:
            physical = INTERNAL_ID_METADATA_COLUMN
        if physical not in index:
            raise KeyError(f"column {physical!r} is missing from the OBSERVE result")
        positions.append(index[physical])
    return positions


def row_to_array(row: Sequence[object], positions: Sequence[int]) -> Tuple[object, ...]:
    return tuple(row[position] for position in positions)


__all__ = [
    "ChangeType",
    "INTERNAL_ID_COLUMN",
    "METADATA_COLUMNS",
    "Operation",
    "StreamRowMetadata",
    "column_index",
    "column_positions",
    "decode_metadata",
    "operation_for",
    "row_to_array",
]
