import pymysql
import pytest
from pymysql.cursors import SSCursor

from singlestore_cdc.db import (
    ObserveConnection,
    ObserveCursor,
    ObserveQueryError,
    connection_kwargs,
    parse_server_version,
    sqlstate_for,
)


class FakeCursor:
    def __init__(self, rows=(), description=(("id",),), error=None):
        self.description = description
        self._rows = list(rows)
        self._error = error
        self.executed = []
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False

    def execute(self, query, params=None):
        self.executed.append((query, params))

    def fetchone(self):
        if self._error is not None:
            raise self._error
        return self._rows.pop(0) if self._rows else None

    def fetchall(self):
        rows, self._rows = self._rows, []
        return rows

    def close(self):
        self.closed = True


class FakeConnection:
    def __init__(self, cursors, thread_id=42):
        self._cursors = list(cursors)
        self._thread_id = thread_id
        self.open = True
        self.cursor_classes = []

    def cursor(self, cursor_class=None):
        self.cursor_classes.append(cursor_class)
        return self._cursors.pop(0)

    def thread_id(self):
        return self._thread_id

    def close(self):
        self.open = False


class FakeConnect:
    def __init__(self, *connections):
        self._connections = list(connections)
        self.calls = []

    def __call__(self, **kwargs):
        self.calls.append(kwargs)
        return self._connections.pop(0)


@pytest.mark.unit
def test_driver_error_keeps_code_and_restores_sqlstate():
    error = ObserveQueryError.from_driver_error(
        pymysql.err.OperationalError(1317, "Query execution was interrupted")
    )

    assert error.code == 1317
    assert error.sqlstate == "70100"
    assert error.message == "Query execution was interrupted"


@pytest.mark.unit
def test_unknown_errno_maps_to_generic_sqlstate():
    assert sqlstate_for(2851) == "HY000"
    assert sqlstate_for(None) is None
    assert ObserveQueryError.from_driver_error(RuntimeError("boom")).code is None


@pytest.mark.unit
def test_connection_kwargs_with_tls_and_driver_parameters(settings_factory):
    settings = settings_factory(
        ssl_mode="verify_ca",
        ssl_ca="/etc/ca.pem",
        connect_timeout_ms=2500,
        driver_parameters=(("read_timeout", "600"), ("local_infile", "false")),
    )

    kwargs = connection_kwargs(settings)

    assert kwargs["host"] == "localhost"
    assert kwargs["database"] == "inventory"
    assert kwargs["connect_timeout"] == 2
    assert kwargs["autocommit"] is True
    assert kwargs["ssl"] == {"ca": "/etc/ca.pem"}
    assert kwargs["ssl_verify_cert"] is True
    assert kwargs["ssl_verify_identity"] is False
    assert kwargs["read_timeout"] == 600
    assert kwargs["local_infile"] is False


@pytest.mark.unit
def test_connection_kwargs_without_tls(settings_factory):
    kwargs = connection_kwargs(settings_factory(connect_timeout_ms=10))

    assert "ssl" not in kwargs
    assert kwargs["connect_timeout"] == 1


@pytest.mark.unit
@pytest.mark.parametrize(
    "raw, expected",
    [("8.5.12", (8, 5)), ("8.9.3-abcdef", (8, 9)), ("9.0", (9, 0))],
)
def test_parse_server_version(raw, expected):
    assert parse_server_version(raw) == expected


@pytest.mark.unit
def test_parse_server_version_rejects_garbage():
    with pytest.raises(ValueError):
        parse_server_version("unknown")


@pytest.mark.unit
def test_cursor_abort_is_idempotent():
    cancels = []
    cursor = ObserveCursor(FakeCursor(rows=[(1,)]), lambda: cancels.append(1))

    cursor.abort()
    cursor.abort()
    cursor.close()

    assert cursor.aborted
    assert cancels == [1]


@pytest.mark.unit
def test_close_after_end_of_stream_does_not_cancel():
    cancels = []
    raw = FakeCursor(rows=[(1,)])
    cursor = ObserveCursor(raw, lambda: cancels.append(1))

    assert cursor.fetchone() == (1,)
    assert cursor.fetchone() is None
    cursor.close()

    assert cursor.finished
    assert not cursor.aborted
    assert cancels == []
    assert raw.closed


@pytest.mark.unit
def test_close_of_open_stream_cancels_first():
    order = []
    raw = FakeCursor(rows=[(1,)])
    raw.close = lambda: order.append("close")
    cursor = ObserveCursor(raw, lambda: order.append("cancel"))

    assert cursor.column_names == ["id"]
    assert cursor.fetchone() == (1,)
    cursor.close()

    assert order == ["cancel", "close"]


@pytest.mark.unit
def test_fetch_error_is_wrapped_and_finishes_stream():
    raw = FakeCursor(
        error=pymysql.err.OperationalError(1317, "Query execution was interrupted")
    )
    cursor = ObserveCursor(raw, lambda: None)

    with pytest.raises(ObserveQueryError) as excinfo:
        cursor.fetchone()

    assert excinfo.value.sqlstate == "70100"
    assert cursor.finished


@pytest.mark.unit
def test_observe_uses_unbuffered_cursor_and_kill_uses_side_connection():
    stream_cursor = FakeCursor(description=(("Offset",), ("id",)))
    kill_cursor = FakeCursor()
    stream = FakeConnection([stream_cursor], thread_id=42)
    side = FakeConnection([kill_cursor])
    connect = FakeConnect(stream, side)
    connection = ObserveConnection({"host": "db"}, connect=connect)

    cursor = connection.observe("OBSERVE * FROM `inventory`.`orders`")
    cursor.abort()

    assert stream.cursor_classes == [SSCursor]
    assert stream_cursor.executed == [("OBSERVE * FROM `inventory`.`orders`", None)]
    assert cursor.column_names == ["Offset", "id"]
    assert kill_cursor.executed == [("KILL QUERY 42", None)]
    assert not side.open
    assert stream.open
    assert connect.calls == [{"host": "db"}, {"host": "db"}]


@pytest.mark.unit
def test_cancel_without_connection_is_a_no_op():
    connect = FakeConnect()
    ObserveConnection({}, connect=connect).cancel_current_query()
    assert connect.calls == []


@pytest.mark.unit
def test_connect_failure_is_wrapped():
    def connect(**_kwargs):
        raise pymysql.err.OperationalError(2003, "Can't connect to server")

    connection = ObserveConnection({}, connect=connect)

    with pytest.raises(ObserveQueryError) as excinfo:
        connection.observe("OBSERVE * FROM t")

    assert excinfo.value.code == 2003
    assert excinfo.value.sqlstate == "HY000"


@pytest.mark.unit
def test_server_version_and_partition_count():
    conn = FakeConnection(
        [FakeCursor(rows=[("8.7.10",)]), FakeCursor(rows=[(16,)])]
    )
    connection = ObserveConnection({}, connect=FakeConnect(conn))

    assert connection.validate_server_version() == (8, 7)
    assert connection.partition_count("inventory") == 16


@pytest.mark.unit
def test_old_server_is_rejected():
    conn = FakeConnection([FakeCursor(rows=[("8.1.30",)])])
    connection = ObserveConnection({}, connect=FakeConnect(conn))

    with pytest.raises(ObserveQueryError, match="lower than 8.5"):
        connection.validate_server_version()


@pytest.mark.unit
def test_missing_database_is_reported():
    conn = FakeConnection([FakeCursor(rows=[])])
    connection = ObserveConnection({}, connect=FakeConnect(conn))

    with pytest.raises(ObserveQueryError, match="does not exist"):
        connection.partition_count("missing")
