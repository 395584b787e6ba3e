"""Database utilities and PyMySQL helpers for SingleStore OBSERVE streams."""

from __future__ import annotations

import logging
import re
from threading import Lock
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence, Tuple

import pymysql
from pymysql.cursors import SSCursor

if TYPE_CHECKING:  # pragma: no cover - import-time helper only
    from singlestore_cdc.config import Settings

logger = logging.getLogger(__name__)

MINIMUM_SERVER_VERSION = (8, 5)

# PyMySQL drops the SQLSTATE from server error packets. The server assigns it
# per error number and uses HY000 for every error without a dedicated state.
DEFAULT_SQLSTATE = "HY000"
_SQLSTATE_BY_ERRNO = {
    1040: "08004",
    1045: "28000",
    1146: "42S02",
    1317: "70100",
}


def sqlstate_for(code: Optional[int]) -> Optional[str]:
    if code is None:
        return None
    return _SQLSTATE_BY_ERRNO.get(code, DEFAULT_SQLSTATE)


class ObserveQueryError(Exception):
    """Driver failure with the vendor error code and SQLSTATE attached."""

    def __init__(self, code: Optional[int], sqlstate: Optional[str], message: str) -> None:
        super().__init__(message)
        self.code = code
        self.sqlstate = sqlstate
        self.message = message

    @classmethod
    def from_driver_error(cls, exc: BaseException) -> "ObserveQueryError":
        args = getattr(exc, "args", ())
        if len(args) >= 2 and isinstance(args[0], int):
            return cls(args[0], sqlstate_for(args[0]), str(args[1]))
        return cls(None, None, str(exc))


def connection_kwargs(settings: "Settings") -> Dict[str, Any]:
    """Build ``pymysql.connect`` keyword arguments from service settings."""
    kwargs: Dict[str, Any] = {
        "host": settings.host,
        "port": settings.port,
        "user": settings.user,
        "password": settings.password,
        "connect_timeout": max(1, settings.connect_timeout_ms // 1000),
        "autocommit": True,
        "charset": "utf8mb4",
    }
    if settings.database:
        kwargs["database"] = settings.database
    if settings.ssl_enabled:
        ssl: Dict[str, Any] = {}
        if settings.ssl_ca:
            ssl["ca"] = settings.ssl_ca
        if settings.ssl_cert:
            ssl["cert"] = settings.ssl_cert
        if settings.ssl_key:
            ssl["key"] = settings.ssl_key
        kwargs["ssl"] = ssl
        kwargs["ssl_verify_cert"] = settings.ssl_mode in {"verify_ca", "verify_full"}
        kwargs["ssl_verify_identity"] = settings.ssl_mode == "verify_full"
    for key, value in settings.driver_parameters:
        kwargs[key] = _coerce_driver_value(value)
    return kwargs


def _coerce_driver_value(value: str) -> Any:
    lowered = value.lower()
    if lowered in {"true", "false"}:
        return lowered == "true"
    if re.fullmatch(r"-?\d+", value):
        return int(value)
    return value


def parse_server_version(raw: str) -> Tuple[int, int]:
    match = re.match(r"(\d+)\.(\d+)", raw or "")
    if not match:
        raise ValueError(f"unrecognised server version {raw!r}")
    return int(match.group(1)), int(match.group(2))


class ObserveCursor:
    """Unbuffered OBSERVE result set that another thread may abort.

    ``abort`` is idempotent and safe to call while ``fetchone`` is blocked.
    """

    def __init__(self, cursor: Any, cancel: Callable[[], None]) -> None:
        self._cursor = cursor
        self._cancel = cancel
        self._lock = Lock()
        self._aborted = False
        self._finished = False
        self._closed = False
        description = cursor.description or ()
        self.column_names: List[str] = [column[0] for column in description]

    @property
    def aborted(self) -> bool:
        with self._lock:
            return self._aborted

    @property
    def finished(self) -> bool:
        with self._lock:
            return self._finished

    def fetchone(self) -> Optional[Sequence[object]]:
        try:
            row = self._cursor.fetchone()
        except pymysql.err.MySQLError as exc:
            self._mark_finished()
            raise ObserveQueryError.from_driver_error(exc) from exc
        if row is None:
            self._mark_finished()
        return row

    def _mark_finished(self) -> None:
        with self._lock:
            self._finished = True

    def abort(self) -> None:
        with self._lock:
            if self._aborted or self._finished or self._closed:
                return
            self._aborted = True
        self._cancel()

    def close(self) -> None:
        """Close the cursor; an unfinished stream is killed first."""
        if self._closed:
            return
        # Closing an unbuffered cursor reads the remaining rows, which never
        # ends for a live OBSERVE query.
        self.abort()
        with self._lock:
            self._closed = True
        try:
            self._cursor.close()
        except pymysql.err.MySQLError as exc:
            raise ObserveQueryError.from_driver_error(exc) from exc


class ObserveConnection:
    """Lazily opened PyMySQL connection able to run and cancel OBSERVE queries."""

    def __init__(
        self,
        connect_kwargs: Dict[str, Any],
        *,
        connect: Callable[..., Any] = pymysql.connect,
    ) -> None:
        self._connect_kwargs = dict(connect_kwargs)
        self._connect = connect
        self._conn: Optional[Any] = None

    @classmethod
    def from_settings(cls, settings: "Settings") -> "ObserveConnection":
        return cls(connection_kwargs(settings))

    def _ensure_conn(self) -> Any:
        if self._conn is not None and self._conn.open:
            return self._conn
        try:
            self._conn = self._connect(**self._connect_kwargs)
        except pymysql.err.MySQLError as exc:
            raise ObserveQueryError.from_driver_error(exc) from exc
        return self._conn

    def close(self) -> None:
        if self._conn is not None and self._conn.open:
            self._conn.close()
        self._conn = None

    def query_all(self, query: str, params: Optional[Sequence[object]] = None) -> List[Tuple]:
        conn = self._ensure_conn()
        try:
            with conn.cursor() as cursor:
                cursor.execute(query, params)
                return list(cursor.fetchall())
        except pymysql.err.MySQLError as exc:
            raise ObserveQueryError.from_driver_error(exc) from exc

    def validate_server_version(self) -> Tuple[int, int]:
        rows = self.query_all("SELECT @@memsql_version")
        version = parse_server_version(str(rows[0][0]) if rows else "")
        if version < MINIMUM_SERVER_VERSION:
            raise ObserveQueryError(
                None,
                None,
                "CDC feature is not supported in a version of SingleStore lower than 8.5",
            )
        return version

    def partition_count(self, database: str) -> int:
        rows = self.query_all(
            "SELECT num_partitions FROM information_schema.DISTRIBUTED_DATABASES"
            " WHERE database_name = %s",
            (database,),
        )
        if not rows:
            raise ObserveQueryError(None, None, f"database {database!r} does not exist")
        return int(rows[0][0])

    def observe(self, query: str) -> ObserveCursor:
        """Issue ``query``; returns once the server has started the result set."""
        conn = self._ensure_conn()
        cursor = conn.cursor(SSCursor)
        logger.info("executing %s", query)
        try:
            cursor.execute(query)
        except pymysql.err.MySQLError as exc:
            raise ObserveQueryError.from_driver_error(exc) from exc
        return ObserveCursor(cursor, self.cancel_current_query)

    def cancel_current_query(self) -> None:
        """Kill the statement running on the streaming connection.

        The streaming socket is busy with the result set, so the KILL is sent
        over a short-lived side connection.
        """
        if self._conn is None:
            return
        thread_id = int(self._conn.thread_id())
        try:
            side = self._connect(**self._connect_kwargs)
        except pymysql.err.MySQLError as exc:
            raise ObserveQueryError.from_driver_error(exc) from exc
        try:
            with side.cursor() as cursor:
                cursor.execute(f"KILL QUERY {thread_id}")
        except pymysql.err.MySQLError as exc:
            raise ObserveQueryError.from_driver_error(exc) from exc
        finally:
            side.close()


__all__ = [
    "DEFAULT_SQLSTATE",
    "MINIMUM_SERVER_VERSION",
    "ObserveConnection",
    "ObserveCursor",
    "ObserveQueryError",
    "connection_kwargs",
    "parse_server_version",
    "sqlstate_for",
]
