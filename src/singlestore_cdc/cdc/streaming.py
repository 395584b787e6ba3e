"""Streaming change event source built on a single long-lived OBSERVE query.

``execute`` opens the query at the stored per-partition offsets, turns every
Insert/Update/Delete row into a :class:`ChangeRecord` and advances the offset
context as it goes. The read blocks inside the driver, so a
:class:`CancellationWatcher` kills the query once the running flag clears;
the interrupted-query error that follows is expected and dropped. Any other
failure is classified and reported to the error handler, which stops the
pipeline. There is no retry here: restarting means calling ``execute`` again
with the persisted offsets.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Protocol, Sequence, Tuple

from ..db import ObserveQueryError
from .errors import (
    ErrorClass,
    ErrorHandler,
    StreamingError,
    StreamInterrupted,
    classify,
    describe_failure,
    is_query_interrupted,
)
from .metrics import StreamingMetrics
from .offsets import OffsetContext
from .query import TableId, build_observe_query
from .rows import (
    Operation,
    column_index,
    column_positions,
    decode_metadata,
    operation_for,
    row_to_array,
)
from .schema import SchemaProvider
from .watcher import CancellationWatcher, ChangeEventSourceContext

logger = logging.getLogger(__name__)


class SnapshotMode(str, Enum):
    INITIAL = "initial"
    INITIAL_ONLY = "initial_only"
    WHEN_NEEDED = "when_needed"
    NEVER = "never"
    NO_DATA = "no_data"

    @property
    def should_stream(self) -> bool:
        return self is not SnapshotMode.INITIAL_ONLY


class StreamState(str, Enum):
    IDLE = "idle"
    OPENING = "opening"
    STREAMING = "streaming"
    DRAINING = "draining"
    FAILED = "failed"
    STOPPED = "stopped"


@dataclass(frozen=True)
class ChangeRecord:
    """After-image of one changed row; the stream carries no before-image."""

    table: TableId
    operation: Operation
    after: Tuple[object, ...]
    internal_id: Optional[int]
    partition: int
    offset: Optional[str]
    tx_id: Optional[str] = None
    timestamp: Optional[float] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "table": str(self.table),
            "op": self.operation.value,
            "after": list(self.after),
            "internal_id": self.internal_id,
            "partition": self.partition,
            "offset": self.offset,
            "tx_id": self.tx_id,
            "ts": self.timestamp,
        }


@dataclass(frozen=True)
class StreamingStarted:
    """Connector event dispatched once the OBSERVE query has been accepted."""

    table: TableId


class ObserveResult(Protocol):
    column_names: Sequence[str]

    @property
    def aborted(self) -> bool: ...

    def fetchone(self) -> Optional[Sequence[object]]: ...

    def abort(self) -> None: ...

    def close(self) -> None: ...


class StreamingConnection(Protocol):
    def observe(self, query: str) -> ObserveResult: ...


class EventDispatcher(Protocol):
    """Downstream boundary; ``dispatch_data_change_event`` may raise StreamInterrupted."""

    def dispatch_connector_event(self, partition: str, event: object) -> None: ...

    def dispatch_data_change_event(
        self, partition: str, table: TableId, record: ChangeRecord
    ) -> None: ...


class StreamingChangeEventSource:
    """Consumes an OBSERVE stream for exactly one table."""

    def __init__(
        self,
        connection: StreamingConnection,
        dispatcher: EventDispatcher,
        error_handler: ErrorHandler,
        schema: SchemaProvider,
        *,
        snapshot_mode: SnapshotMode = SnapshotMode.INITIAL,
        populate_internal_id: bool = False,
        poll_interval: float = 1.0,
        clock: Callable[[], float] = time.time,
        metrics: Optional[StreamingMetrics] = None,
    ) -> None:
        self._connection = connection
        self._dispatcher = dispatcher
        self._error_handler = error_handler
        self._schema = schema
        self._snapshot_mode = SnapshotMode(snapshot_mode)
        self._populate_internal_id = populate_internal_id
        self._poll_interval = poll_interval
        self._clock = clock
        self._metrics = metrics or StreamingMetrics()
        self.state = StreamState.IDLE

    def execute(
        self,
        context: ChangeEventSourceContext,
        partition: str,
        offset_context: OffsetContext,
    ) -> None:
        if not self._snapshot_mode.should_stream:
            logger.info(
                "Streaming is disabled for snapshot mode %s", self._snapshot_mode.value
            )
            return

        tables = list(self._schema.table_ids())
        if len(tables) != 1:
            raise ValueError(
                f"an OBSERVE stream captures exactly one table, got {len(tables)}"
            )
        table = tables[0]

        self.state = StreamState.OPENING
        query = build_observe_query(
            tables=[table], offsets=offset_context.resume_directive()
        )
        interrupted: Optional[StreamInterrupted] = None
        try:
            self._metrics.inc_restarts()
            cursor = self._connection.observe(query)
            try:
                interrupted = self._consume(
                    context, partition, offset_context, table, cursor
                )
            finally:
                self._close(cursor)
        except ObserveQueryError as exc:
            self._handle_query_error(context, exc)
        except StreamInterrupted as exc:
            self.state = StreamState.STOPPED
            interrupted = exc
        except Exception as exc:  # noqa: BLE001 - any failure ends the stream
            self._report(
                StreamingError(f"streaming {table} failed: {exc}"), cause=exc
            )
        else:
            self.state = StreamState.STOPPED

        if interrupted is not None:
            raise interrupted

    def _consume(
        self,
        context: ChangeEventSourceContext,
        partition: str,
        offset_context: OffsetContext,
        table: TableId,
        cursor: ObserveResult,
    ) -> Optional[StreamInterrupted]:
        watcher = CancellationWatcher(
            context, cursor.abort, poll_interval=self._poll_interval
        ).start()
        try:
            self.state = StreamState.STREAMING
            self._dispatcher.dispatch_connector_event(partition, StreamingStarted(table))
            names = list(cursor.column_names)
            index = column_index(names)
            positions = column_positions(
                names, self._schema.columns_for(table), self._populate_internal_id
            )
            while True:
                row = cursor.fetchone()
                if row is None:
                    logger.info("OBSERVE stream for %s reached its end", table)
                    return None
                if not context.is_running():
                    self.state = StreamState.DRAINING
                    return None

                metadata = decode_metadata(row, index)
                operation = operation_for(metadata.change_type)
                logger.debug(
                    "Streaming record, type: %s, internalId: %s, partitionId: %s, offset: %s",
                    metadata.raw_type,
                    metadata.internal_id,
                    metadata.partition_id,
                    metadata.offset,
                )
                if operation is None:
                    self._metrics.inc_skipped()
                    continue

                now = self._clock()
                offset_context.event(table, now)
                offset_context.update(metadata.partition_id, metadata.tx_id, metadata.offset)
                record = ChangeRecord(
                    table=table,
                    operation=operation,
                    after=row_to_array(row, positions),
                    internal_id=metadata.internal_id,
                    partition=metadata.partition_id,
                    offset=metadata.offset,
                    tx_id=metadata.tx_id,
                    timestamp=now,
                )
                try:
                    self._dispatcher.dispatch_data_change_event(partition, table, record)
                except StreamInterrupted as exc:
                    logger.info("dispatcher interrupted the OBSERVE stream for %s", table)
                    return exc
                self._metrics.inc_records()
                self._metrics.set_last_event(now)
        finally:
            watcher.stop()
            watcher.join()

    def _close(self, cursor: ObserveResult) -> None:
        try:
            cursor.close()
        except ObserveQueryError as exc:
            # Killing a still-open stream on close surfaces as an interrupt.
            if cursor.aborted and is_query_interrupted(exc.code, exc.sqlstate, exc.message):
                logger.debug("OBSERVE query killed while closing: %s", exc)
                return
            raise

    def _handle_query_error(
        self, context: ChangeEventSourceContext, exc: ObserveQueryError
    ) -> None:
        error_class = classify(context.is_running(), exc.code, exc.sqlstate, exc.message)
        if error_class is ErrorClass.EXPECTED_CANCELLATION:
            logger.info("OBSERVE query cancelled after stop request")
            self.state = StreamState.STOPPED
            return
        message = describe_failure(error_class, exc.code, exc.sqlstate, exc.message)
        self._report(
            StreamingError(
                message,
                code=exc.code,
                sqlstate=exc.sqlstate,
                error_class=error_class,
            ),
            cause=exc,
        )

    def _report(self, error: StreamingError, *, cause: BaseException) -> None:
        error.__cause__ = cause
        logger.error("%s", error)
        self.state = StreamState.FAILED
        self._metrics.inc_errors()
        self._error_handler.report(error)


__all__ = [
    "ChangeRecord",
    "EventDispatcher",
    "ObserveResult",
    "SnapshotMode",
    "StreamState",
    "StreamingChangeEventSource",
    "StreamingConnection",
    "StreamingStarted",
]
