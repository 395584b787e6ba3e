"""Per-partition resume positions for OBSERVE streams.

Each database partition has its own change log and its own opaque cursor.
Cursors arrive as fixed-width binary values and are kept as lowercase hex
strings; a partition that has never been observed has no cursor at all and is
rendered as ``NULL`` when the stream is resumed.
"""

from __future__ import annotations

import binascii
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .query import TableId

NULL_OFFSET = "NULL"


def bytes_to_hex(data: Optional[bytes]) -> Optional[str]:
    if data is None:
        return None
    return binascii.hexlify(bytes(data)).decode("ascii")


def hex_to_bytes(value: Optional[str]) -> Optional[bytes]:
    if value is None:
        return None
    return binascii.unhexlify(value)


def render_resume_directive(offsets: Sequence[Optional[str]]) -> str:
    """Render offsets in partition order, e.g. ``(NULL,'a1b2')``."""
    rendered = [NULL_OFFSET if offset is None else f"'{offset}'" for offset in offsets]
    return "(" + ",".join(rendered) + ")"


@dataclass
class OffsetContext:
    """Mutable stream position owned by the consumer loop while it runs."""

    partition_offsets: List[Optional[str]] = field(default_factory=list)
    tx_ids: List[Optional[str]] = field(default_factory=list)
    table: Optional[TableId] = None
    timestamp: Optional[float] = None

    @classmethod
    def initial(cls, partition_count: int) -> "OffsetContext":
        if partition_count < 0:
            raise ValueError("partition_count must not be negative")
        return cls(
            partition_offsets=[None] * partition_count,
            tx_ids=[None] * partition_count,
        )

    @property
    def partition_count(self) -> int:
        return len(self.partition_offsets)

    def offsets(self) -> List[Optional[str]]:
        return list(self.partition_offsets)

    def resume_directive(self) -> Optional[str]:
        if not self.partition_offsets:
            return None
        return render_resume_directive(self.partition_offsets)

    def update(self, partition_id: int, tx_id: Optional[str], offset: Optional[str]) -> None:
        """Advance a single partition; every other partition is left untouched."""
        if partition_id < 0:
            raise ValueError(f"partition id must not be negative, got {partition_id}")
        if partition_id >= len(self.partition_offsets):
            missing = partition_id + 1 - len(self.partition_offsets)
            self.partition_offsets.extend([None] * missing)
        if partition_id >= len(self.tx_ids):
            self.tx_ids.extend([None] * (partition_id + 1 - len(self.tx_ids)))
        self.partition_offsets[partition_id] = offset
        self.tx_ids[partition_id] = tx_id

    def event(self, table: TableId, timestamp: float) -> None:
        self.table = table
        self.timestamp = timestamp

    def to_dict(self) -> Dict[str, object]:
        return {
            "offsets": list(self.partition_offsets),
            "tx_ids": list(self.tx_ids),
            "table": self.table.to_dict() if self.table else None,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "OffsetContext":
        offsets = data.get("offsets") or []
        if not isinstance(offsets, list) or not all(
            item is None or isinstance(item, str) for item in offsets
        ):
            raise ValueError("offsets must be a list of hex strings or nulls")
        tx_ids = data.get("tx_ids") or [None] * len(offsets)
        if not isinstance(tx_ids, list):
            raise ValueError("tx_ids must be a list")
        raw_table = data.get("table")
        table = TableId.from_dict(raw_table) if isinstance(raw_table, dict) else None
        timestamp = data.get("timestamp")
        return cls(
            partition_offsets=list(offsets),
            tx_ids=list(tx_ids),
            table=table,
            timestamp=float(timestamp) if timestamp is not None else None,
        )


__all__ = [
    "NULL_OFFSET",
    "OffsetContext",
    "bytes_to_hex",
    "hex_to_bytes",
    "render_resume_directive",
]
