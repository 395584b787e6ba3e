"""OBSERVE streaming, offset tracking, and failure classification."""

from .checkpoint import InMemoryCheckpointStore, PersistentCheckpointStore
from .errors import (
    ErrorClass,
    ErrorHandler,
    StreamInterrupted,
    StreamingError,
    classify,
    describe_failure,
)
from .metrics import StreamingMetrics
from .offsets import OffsetContext, bytes_to_hex, hex_to_bytes, render_resume_directive
from .query import ColumnId, OutputFormat, TableId, build_observe_query, quote_identifier
from .rows import ChangeType, Operation, StreamRowMetadata
from .schema import InformationSchemaProvider, SchemaProvider, StaticSchemaProvider
from .service import SinkDispatcher, StreamingService, build_streaming_service
from .streaming import (
    ChangeRecord,
    SnapshotMode,
    StreamState,
    StreamingChangeEventSource,
    StreamingStarted,
)
from .watcher import CancellationWatcher, RunningFlag

__all__ = [
    "CancellationWatcher",
    "ChangeRecord",
    "ChangeType",
    "ColumnId",
    "ErrorClass",
    "ErrorHandler",
    "InMemoryCheckpointStore",
    "InformationSchemaProvider",
    "OffsetContext",
    "Operation",
    "OutputFormat",
    "PersistentCheckpointStore",
    "RunningFlag",
    "SchemaProvider",
    "SinkDispatcher",
    "SnapshotMode",
    "StaticSchemaProvider",
    "StreamInterrupted",
    "StreamRowMetadata",
    "StreamState",
    "StreamingChangeEventSource",
    "StreamingError",
    "StreamingMetrics",
    "StreamingService",
    "StreamingStarted",
    "TableId",
    "build_observe_query",
    "build_streaming_service",
    "bytes_to_hex",
    "classify",
    "describe_failure",
    "hex_to_bytes",
    "quote_identifier",
    "render_resume_directive",
]
