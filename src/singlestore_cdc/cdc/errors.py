"""Failure classification and the terminal failure sink for OBSERVE streams.

The server reports failures as (code, SQLSTATE, message) triples. Codes and
states are compared exactly; the message only has to contain the fragment.
"""

from __future__ import annotations

import logging
from enum import Enum
from threading import Lock
from typing import Callable, Optional

logger = logging.getLogger(__name__)

QUERY_INTERRUPTED_CODE = 1317
QUERY_INTERRUPTED_STATE = "70100"
QUERY_INTERRUPTED_MESSAGE = "Query execution was interrupted"

STALE_OFFSET_CODE = 2851
STALE_OFFSET_STATE = "HY000"
STALE_OFFSET_MESSAGE = "requested Offset is too stale"

STALE_OFFSET_GUIDANCE = (
    "Offset that the connector is trying to resume from is considered stale.\n"
    "Because of it, connector cannot resume streaming.\n"
    "You can use either of the following options to recover from the failure:\n"
    " * Delete the failed connector, and create a new connector with the same "
    "configuration but with a different connector name.\n"
    " * Pause the connector and then remove offsets, or change the offset store.\n"
    "To help prevent failures related to stale offsets, you can increase "
    "following SingleStore engine variables:\n"
    " * 'snapshots_to_keep' - Defines the number of snapshots to keep for backup "
    "and replication.\n"
    " * 'snapshot_trigger_size' - Defines the size of transaction logs in bytes, "
    "which, when reached, triggers a snapshot that is written to disk."
)


class ErrorClass(str, Enum):
    EXPECTED_CANCELLATION = "expected_cancellation"
    STALE_OFFSET = "stale_offset"
    FATAL = "fatal"


class StreamingError(RuntimeError):
    """Terminal streaming failure handed to the failure sink."""

    def __init__(
        self,
        message: str,
        *,
        code: Optional[int] = None,
        sqlstate: Optional[str] = None,
        error_class: ErrorClass = ErrorClass.FATAL,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.sqlstate = sqlstate
        self.error_class = error_class


class StreamInterrupted(Exception):
    """Raised by a dispatcher to cancel the stream from the consumer side."""


def is_query_interrupted(code: Optional[int], sqlstate: Optional[str], message: Optional[str]) -> bool:
    return (
        code == QUERY_INTERRUPTED_CODE
        and sqlstate == QUERY_INTERRUPTED_STATE
        and QUERY_INTERRUPTED_MESSAGE in (message or "")
    )


def is_stale_offset(code: Optional[int], sqlstate: Optional[str], message: Optional[str]) -> bool:
    return (
        code == STALE_OFFSET_CODE
        and sqlstate == STALE_OFFSET_STATE
        and STALE_OFFSET_MESSAGE in (message or "")
    )


def classify(
    is_running: bool,
    code: Optional[int],
    sqlstate: Optional[str],
    message: Optional[str],
) -> ErrorClass:
    """Map a failed OBSERVE read onto the action the consumer has to take."""
    if not is_running and is_query_interrupted(code, sqlstate, message):
        return ErrorClass.EXPECTED_CANCELLATION
    if is_stale_offset(code, sqlstate, message):
        return ErrorClass.STALE_OFFSET
    return ErrorClass.FATAL


def describe_failure(
    error_class: ErrorClass,
    code: Optional[int],
    sqlstate: Optional[str],
    message: Optional[str],
) -> str:
    if error_class is ErrorClass.STALE_OFFSET:
        return STALE_OFFSET_GUIDANCE
    return f"{message} Error code: {code}; SQLSTATE: {sqlstate}."


class ErrorHandler:
    """Failure sink that keeps the first terminal error and stops the pipeline."""

    def __init__(self, on_failure: Optional[Callable[[BaseException], None]] = None) -> None:
        self._lock = Lock()
        self._failure: Optional[BaseException] = None
        self._on_failure = on_failure

    @property
    def failure(self) -> Optional[BaseException]:
        with self._lock:
            return self._failure

    @property
    def has_failed(self) -> bool:
        return self.failure is not None

    def report(self, error: BaseException) -> None:
        with self._lock:
            if self._failure is not None:
                logger.debug("ignoring subsequent failure: %s", error)
                return
            self._failure = error
        if self._on_failure is not None:
            self._on_failure(error)

    def clear(self) -> None:
        with self._lock:
            self._failure = None


__all__ = [
    "ErrorClass",
    "ErrorHandler",
    "QUERY_INTERRUPTED_CODE",
    "QUERY_INTERRUPTED_MESSAGE",
    "QUERY_INTERRUPTED_STATE",
    "STALE_OFFSET_CODE",
    "STALE_OFFSET_GUIDANCE",
    "STALE_OFFSET_MESSAGE",
    "STALE_OFFSET_STATE",
    "StreamInterrupted",
    "StreamingError",
    "classify",
    "describe_failure",
    "is_query_interrupted",
    "is_stale_offset",
]
