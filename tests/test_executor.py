"""Tests for INSERT, UPDATE and DELETE statement execution."""

import pytest

from upsert_orm import get_table_metadata
from upsert_orm.errors import QueryError
from upsert_orm.upsert.changes import ChangeType, DBChange
from upsert_orm.upsert.executor import BatchExecutor, run_query

from conftest import TENANT, FakeTransaction, ScriptedStore
from sample_models import Blog, Simple

SIMPLE = get_table_metadata(Simple)
BLOG = get_table_metadata(Blog)


def insert(record: Simple | Blog, **changes: object) -> DBChange:
    return DBChange(changes=dict(changes), record=record, kind=ChangeType.INSERT)


def update(record: Simple | Blog, **changes: object) -> DBChange:
    return DBChange(changes=dict(changes), record=record, kind=ChangeType.UPDATE)


@pytest.fixture
def tx() -> FakeTransaction:
    return FakeTransaction(ScriptedStore())


# ============================================================================
# Test: Inserts
# ============================================================================


class TestInserts:
    """Verify chunked multi-row inserts."""

    def test_multi_row_insert(self, tx: FakeTransaction) -> None:
        """Rows share one statement with sequential placeholders."""
        first, second = Simple(name="a"), Simple(name="b")
        changes = [
            insert(first, organization_id=TENANT, name="a"),
            insert(second, organization_id=TENANT, name="b"),
        ]

        BatchExecutor(TENANT).execute_inserts(tx, changes, SIMPLE)

        (statement,) = tx.statements
        assert statement == (
            "INSERT INTO simple (organization_id, name) VALUES ($1, $2), ($3, $4) RETURNING id",
            [TENANT, "a", TENANT, "b"],
        )

    def test_keys_are_back_filled(self, tx: FakeTransaction) -> None:
        """Returned keys land in both the change and the record."""
        record = Simple(name="a")
        change = insert(record, name="a")

        BatchExecutor(TENANT).execute_inserts(tx, [change], SIMPLE)

        assert change.changes["id"] == "simple-1"
        assert record.id == "simple-1"

    def test_chunking(self, tx: FakeTransaction) -> None:
        """Inserts are split into batch_size rows per statement."""
        changes = [insert(Simple(name=str(i)), name=str(i)) for i in range(5)]

        BatchExecutor(TENANT, batch_size=2).execute_inserts(tx, changes, SIMPLE)

        assert [len(args) for _, args in tx.statements] == [2, 2, 1]
        assert [c.record.id for c in changes] == [f"simple-{i}" for i in range(1, 6)]

    def test_missing_columns_use_default(self, tx: FakeTransaction) -> None:
        """Rows lacking a column another row has send DEFAULT."""
        changes = [
            insert(Simple(name="a"), name="a", type="x"),
            insert(Simple(name="b"), name="b"),
        ]

        BatchExecutor(TENANT).execute_inserts(tx, changes, SIMPLE)

        sql, args = tx.statements[0]
        assert sql == "INSERT INTO simple (name, type) VALUES ($1, $2), ($3, DEFAULT) RETURNING id"
        assert args == ["a", "x", "b"]

    def test_jsonb_placeholder_is_cast(self, tx: FakeTransaction) -> None:
        """JSONB columns bind through a jsonb cast."""
        change = insert(Blog(name="b"), name="b", content='{"a":1}')

        BatchExecutor(TENANT).execute_inserts(tx, [change], BLOG)

        assert tx.statements[0][0] == (
            "INSERT INTO blogs (name, content) VALUES ($1, CAST($2 AS jsonb)) RETURNING id"
        )

    def test_no_columns_uses_default_values(self, tx: FakeTransaction) -> None:
        """A row with nothing to bind takes every default."""
        store = ScriptedStore().on("DEFAULT VALUES", [{"id": "s-1"}])
        tx = FakeTransaction(store)
        change = insert(Simple())

        BatchExecutor(TENANT).execute_inserts(tx, [change], SIMPLE)

        assert tx.statements[0][0] == "INSERT INTO simple DEFAULT VALUES RETURNING id"
        assert change.record.id == "s-1"

    def test_returned_row_count_mismatch(self) -> None:
        """Losing a returned key is a query error."""
        tx = FakeTransaction(ScriptedStore().on("^INSERT", [{"id": "s-1"}]))
        changes = [insert(Simple(name="a"), name="a"), insert(Simple(name="b"), name="b")]

        with pytest.raises(QueryError, match="expected 2 returned keys, got 1"):
            BatchExecutor(TENANT).execute_inserts(tx, changes, SIMPLE)

    def test_empty_batch(self, tx: FakeTransaction) -> None:
        """No changes, no statements."""
        BatchExecutor(TENANT).execute_inserts(tx, [], SIMPLE)
        assert tx.statements == []

    @pytest.mark.parametrize("size", [0, -1])
    def test_batch_size_must_be_positive(self, size: int) -> None:
        """A non-positive batch size is rejected up front."""
        with pytest.raises(ValueError, match="batch_size must be positive"):
            BatchExecutor(TENANT, batch_size=size)


# ============================================================================
# Test: Updates and Deletes
# ============================================================================


class TestUpdates:
    """Verify per-row tenant-scoped updates."""

    def test_update_statement(self, tx: FakeTransaction) -> None:
        """Keys are excluded from SET and scope the WHERE clause."""
        change = update(
            Simple(name="a"), id="s-1", organization_id=TENANT, name="a", type="t"
        )

        affected = BatchExecutor(TENANT).execute_updates(tx, [change], SIMPLE)

        assert affected == 1
        assert tx.statements == [
            (
                "UPDATE simple SET name = $1, type = $2 WHERE organization_id = $3 AND id = $4",
                ["a", "t", TENANT, "s-1"],
            )
        ]

    def test_update_sets_record_key(self, tx: FakeTransaction) -> None:
        """A record updated by lookup learns its stored key."""
        record = Simple(name="a")
        BatchExecutor(TENANT).execute_updates(tx, [update(record, id="s-1", name="a")], SIMPLE)
        assert record.id == "s-1"

    def test_nothing_to_set_is_skipped(self, tx: FakeTransaction) -> None:
        """A change holding only keys issues no statement."""
        change = update(Simple(), id="s-1", organization_id=TENANT)
        assert BatchExecutor(TENANT).execute_updates(tx, [change], SIMPLE) == 0
        assert tx.statements == []

    def test_affected_rows_are_summed(self) -> None:
        """Zero-row updates are counted, not raised."""
        tx = FakeTransaction(ScriptedStore().on("^UPDATE", 0))
        changes = [update(Simple(), id="s-1", name="a"), update(Simple(), id="s-2", name="b")]
        assert BatchExecutor(TENANT).execute_updates(tx, changes, SIMPLE) == 0


class TestDeletes:
    """Verify deletes by primary key."""

    def test_delete_statement(self, tx: FakeTransaction) -> None:
        """All keys go in one tenant-scoped statement."""
        BatchExecutor(TENANT).execute_deletes(tx, ["s-1", "s-2"], SIMPLE)
        assert tx.statements == [
            (
                "DELETE FROM simple WHERE id IN ($1, $2) AND organization_id = $3",
                ["s-1", "s-2", TENANT],
            )
        ]

    def test_no_keys(self, tx: FakeTransaction) -> None:
        """Nothing to delete issues no statement."""
        assert BatchExecutor(TENANT).execute_deletes(tx, [], SIMPLE) == 0
        assert tx.statements == []


class TestErrorWrapping:
    """Verify store failures are wrapped with context."""

    def test_store_error_is_wrapped(self) -> None:
        """Driver exceptions become QueryError with the cause chained."""
        cause = RuntimeError("connection reset")

        def fail(sql: str, args: list) -> None:
            raise cause

        with pytest.raises(QueryError) as excinfo:
            run_query(FakeTransaction(fail), "SELECT 1", [], "simple", "lookup")

        assert excinfo.value.__cause__ is cause
        assert excinfo.value.table == "simple"
        assert excinfo.value.operation == "lookup"
        assert "connection reset" in str(excinfo.value)
