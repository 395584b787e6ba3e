import pytest

from singlestore_cdc.cdc.rows import (
    INTERNAL_ID_COLUMN,
    METADATA_COLUMNS,
    ChangeType,
    Operation,
    column_index,
    column_positions,
    decode_metadata,
    operation_for,
    row_to_array,
)

COLUMNS = list(METADATA_COLUMNS) + ["id", "name"]


def _row(change_type="Insert", partition=1, offset=b"\x00\x0a", internal_id=7):
    return (offset, partition, change_type, "orders", b"\xbe\xef", "1", internal_id, 42, "widget")


@pytest.mark.unit
def test_decode_metadata_normalises_partition_and_hex():
    metadata = decode_metadata(_row(partition=3), column_index(COLUMNS))

    assert metadata.partition_id == 2
    assert metadata.offset == "000a"
    assert metadata.tx_id == "beef"
    assert metadata.change_type is ChangeType.INSERT
    assert metadata.table == "orders"
    assert metadata.tx_partitions == "1"
    assert metadata.internal_id == 7


@pytest.mark.unit
def test_decode_metadata_accepts_bytes_type():
    metadata = decode_metadata(_row(change_type=b"CommitSnapshot"), column_index(COLUMNS))

    assert metadata.change_type is ChangeType.COMMIT_SNAPSHOT


@pytest.mark.unit
def test_unknown_type_decodes_to_none():
    metadata = decode_metadata(_row(change_type="Truncate"), column_index(COLUMNS))

    assert metadata.change_type is None
    assert metadata.raw_type == "Truncate"


@pytest.mark.unit
@pytest.mark.parametrize(
    "change_type, expected",
    [
        (ChangeType.INSERT, Operation.CREATE),
        (ChangeType.UPDATE, Operation.UPDATE),
        (ChangeType.DELETE, Operation.DELETE),
        (ChangeType.BEGIN_SNAPSHOT, None),
        (ChangeType.COMMIT_SNAPSHOT, None),
        (None, None),
    ],
)
def test_operation_mapping(change_type, expected):
    assert operation_for(change_type) is expected


@pytest.mark.unit
def test_column_positions_follow_logical_order():
    positions = column_positions(COLUMNS, ["name", "id"], populate_internal_id=False)

    assert positions == [8, 7]
    assert row_to_array(_row(), positions) == ("widget", 42)


@pytest.mark.unit
def test_internal_id_substitutes_metadata_column():
    positions = column_positions(
        COLUMNS, ["id", INTERNAL_ID_COLUMN], populate_internal_id=True
    )

    assert positions == [7, 6]
    assert row_to_array(_row(internal_id=99), positions) == (42, 99)


@pytest.mark.unit
def test_missing_column_is_reported_by_name():
    with pytest.raises(KeyError, match="internalId"):
        column_positions(COLUMNS, ["id", INTERNAL_ID_COLUMN], populate_internal_id=False)
