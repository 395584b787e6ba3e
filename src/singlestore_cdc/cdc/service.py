"""Streaming service wiring the OBSERVE source to offset persistence and a record sink."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Protocol

from ..config import Settings
from ..db import ObserveConnection
from .checkpoint import InMemoryCheckpointStore, PersistentCheckpointStore
from .errors import ErrorHandler
from .metrics import StreamingMetrics
from .offsets import OffsetContext
from .query import TableId
from .schema import InformationSchemaProvider, SchemaProvider
from .streaming import (
    ChangeRecord,
    SnapshotMode,
    StreamingChangeEventSource,
    StreamingConnection,
)
from .watcher import RunningFlag

logger = logging.getLogger(__name__)


class CheckpointStore(Protocol):
    """Persistence backend used to store and retrieve offset contexts."""

    def load(self, name: str) -> Optional[OffsetContext]: ...

    def save(self, name: str, context: OffsetContext) -> None: ...

    def reset(
        self,
        name: str,
        *,
        expected: Optional[OffsetContext] = None,
        force: bool = False,
    ) -> None: ...


class ServiceConnection(StreamingConnection, Protocol):
    """Streaming connection owned by the service for the length of a run."""

    def close(self) -> None: ...


class RecordSink(Protocol):
    """Callback invoked for each change record; may raise StreamInterrupted."""

    def __call__(self, record: ChangeRecord) -> None: ...


class SinkDispatcher:
    """Adapts a record callback to the dispatcher boundary of the source.

    ``on_dispatched`` only sees records the sink accepted without raising.
    """

    def __init__(
        self, sink: RecordSink, on_dispatched: Callable[[ChangeRecord], None]
    ) -> None:
        self._sink = sink
        self._on_dispatched = on_dispatched

    def dispatch_connector_event(self, partition: str, event: object) -> None:
        logger.info("connector %s: %s", partition, event)

    def dispatch_data_change_event(
        self, partition: str, table: TableId, record: ChangeRecord
    ) -> None:
        self._sink(record)
        self._on_dispatched(record)


class StreamingService:
    """Runs one OBSERVE stream and keeps its offsets persisted."""

    def __init__(
        self,
        *,
        connector_name: str,
        connection: ServiceConnection,
        schema: SchemaProvider,
        sink: RecordSink,
        checkpoint_store: Optional[CheckpointStore] = None,
        metrics: Optional[StreamingMetrics] = None,
        snapshot_mode: SnapshotMode = SnapshotMode.INITIAL,
        populate_internal_id: bool = False,
        poll_interval: float = 1.0,
        checkpoint_interval: int = 100,
        partition_count: Optional[Callable[[], int]] = None,
        preflight: Optional[Callable[[], object]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._name = connector_name
        self._connection = connection
        self._checkpoint_store = checkpoint_store or InMemoryCheckpointStore()
        self._checkpoint_interval = max(1, checkpoint_interval)
        self._partition_count = partition_count
        self._preflight = preflight
        self._metrics = metrics or StreamingMetrics()
        self._flag = RunningFlag()
        self._error_handler = ErrorHandler(on_failure=self._on_failure)
        self._committed: Optional[OffsetContext] = None
        self._dispatched = 0
        self._source = StreamingChangeEventSource(
            connection,
            SinkDispatcher(sink, self._record_dispatched),
            self._error_handler,
            schema,
            snapshot_mode=snapshot_mode,
            populate_internal_id=populate_internal_id,
            poll_interval=poll_interval,
            clock=clock,
            metrics=self._metrics,
        )

    @property
    def metrics(self) -> StreamingMetrics:
        return self._metrics

    @property
    def source(self) -> StreamingChangeEventSource:
        return self._source

    @property
    def offsets(self) -> Optional[OffsetContext]:
        """Position after the last record the sink accepted."""
        return self._committed

    def is_running(self) -> bool:
        return self._flag.is_running()

    def stop(self) -> None:
        self._flag.stop()

    def load_offsets(self) -> OffsetContext:
        stored = self._checkpoint_store.load(self._name)
        if stored is not None:
            logger.info(
                "resuming %s from stored offsets %s", self._name, stored.resume_directive()
            )
            return stored
        if self._partition_count is None:
            return OffsetContext()
        return OffsetContext.initial(self._partition_count())

    def run(self) -> OffsetContext:
        """Stream until stopped or failed; the recorded failure is raised.

        The source advances its own context before each dispatch, so only the
        separately tracked committed context is persisted. A record the sink
        rejected is streamed again on the next run.
        """
        try:
            if self._preflight is not None:
                self._preflight()
            offsets = self.load_offsets()
            committed = OffsetContext.from_dict(offsets.to_dict())
            self._committed = committed
            try:
                self._source.execute(self._flag, self._name, offsets)
            finally:
                self._persist()
        finally:
            self._connection.close()
        failure = self._error_handler.failure
        if failure is not None:
            raise failure
        return committed

    def reset_offsets(
        self,
        *,
        expected: Optional[OffsetContext] = None,
        force: bool = False,
    ) -> None:
        """Drop the stored offsets, e.g. after a stale-offset failure."""
        self._checkpoint_store.reset(self._name, expected=expected, force=force)
        self._committed = None

    def _record_dispatched(self, record: ChangeRecord) -> None:
        committed = self._committed
        if committed is None:
            return
        committed.update(record.partition, record.tx_id, record.offset)
        if record.timestamp is not None:
            committed.event(record.table, record.timestamp)
        self._dispatched += 1
        if self._dispatched % self._checkpoint_interval == 0:
            self._persist()

    def _persist(self) -> None:
        if self._committed is None:
            return
        self._checkpoint_store.save(self._name, self._committed)

    def _on_failure(self, error: BaseException) -> None:
        logger.error("stopping %s after failure: %s", self._name, error)
        self._flag.stop()


def build_streaming_service(
    settings: Settings,
    *,
    sink: RecordSink,
    connection: Optional[ObserveConnection] = None,
    schema: Optional[SchemaProvider] = None,
    checkpoint_store: Optional[CheckpointStore] = None,
    metrics: Optional[StreamingMetrics] = None,
) -> StreamingService:
    """Construct a streaming service using application settings."""

    if not settings.database or not settings.table:
        raise ValueError("SINGLESTORE_DATABASE and SINGLESTORE_TABLE must be set")

    conn = connection or ObserveConnection.from_settings(settings)
    table_id = TableId(settings.database, settings.table)
    provider = schema or InformationSchemaProvider(
        conn, table_id, populate_internal_id=settings.populate_internal_id
    )

    store = checkpoint_store
    if store is None:
        if settings.checkpoint_backend == "file":
            store = PersistentCheckpointStore(
                settings.offsets_path, fsync=settings.offsets_fsync
            )
        else:
            store = InMemoryCheckpointStore()

    return StreamingService(
        connector_name=settings.connector_name,
        connection=conn,
        schema=provider,
        sink=sink,
        checkpoint_store=store,
        metrics=metrics,
        snapshot_mode=SnapshotMode(settings.snapshot_mode),
        populate_internal_id=settings.populate_internal_id,
        poll_interval=settings.poll_interval_seconds,
        checkpoint_interval=settings.checkpoint_interval,
        partition_count=lambda: conn.partition_count(settings.database),
        preflight=conn.validate_server_version,
    )


__all__ = [
    "CheckpointStore",
    "RecordSink",
    "SinkDispatcher",
    "StreamingService",
    "build_streaming_service",
]
