"""Turn planned changes into INSERT, UPDATE and DELETE statements.

The executor only ever runs statements on the transaction it is handed; it
never begins, commits or rolls back.

- Inserts are chunked to ``batch_size`` rows per statement.  Each chunk names
  the union of its rows' columns in declaration order and sends ``DEFAULT``
  where a row has no value, then ``RETURNING`` the primary key so it can be
  written back into the change and the record.
- Updates are one statement per row, scoped by tenant and primary key.
- Deletes remove a set of primary keys in one statement.
"""

import logging
from collections.abc import Sequence
from typing import Any

from upsert_orm.adapters.base import Transaction
from upsert_orm.errors import ORMError, QueryError
from upsert_orm.records import is_zero
from upsert_orm.schema.models import TableMetadata
from upsert_orm.sql import Params, placeholder
from upsert_orm.upsert.changes import DBChange

logger = logging.getLogger(__name__)


def run_query(
    tx: Transaction, sql: str, args: list[Any], table: str, operation: str
) -> list[dict[str, Any]]:
    """Run a row-returning statement, wrapping store errors in ``QueryError``."""
    logger.debug(f"{operation} {table}: {sql} {args!r}")
    try:
        return tx.query(sql, args)
    except ORMError:
        raise
    except Exception as exc:
        raise QueryError(table, operation, sql, exc) from exc


def run_execute(
    tx: Transaction, sql: str, args: list[Any], table: str, operation: str
) -> int:
    """Run a statement and return the affected row count."""
    logger.debug(f"{operation} {table}: {sql} {args!r}")
    try:
        return tx.execute(sql, args)
    except ORMError:
        raise
    except Exception as exc:
        raise QueryError(table, operation, sql, exc) from exc


class BatchExecutor:
    """Executes change sets for one tenant.

    Args:
        multitenancy_value: Tenant every UPDATE and DELETE is scoped to.
        batch_size: Maximum rows per INSERT statement.
    """

    def __init__(self, multitenancy_value: Any, batch_size: int = 100) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.multitenancy_value = multitenancy_value
        self.batch_size = batch_size

    def execute_inserts(
        self, tx: Transaction, changes: Sequence[DBChange], metadata: TableMetadata
    ) -> None:
        """Insert *changes* in chunks and back-fill generated primary keys."""
        for start in range(0, len(changes), self.batch_size):
            chunk = changes[start:start + self.batch_size]
            logger.debug(f"Inserting {len(chunk)} rows into '{metadata.table_name}'")
            self._insert_chunk(tx, chunk, metadata)

    def _insert_chunk(
        self, tx: Transaction, chunk: Sequence[DBChange], metadata: TableMetadata
    ) -> None:
        table = metadata.table_name
        pk = metadata.primary_key
        present = {column for change in chunk for column in change.changes}
        columns = [c for c in metadata.column_names if c in present]
        jsonb = metadata.jsonb_columns
        returning = f" RETURNING {pk.column_name}" if pk is not None else ""

        if not columns:
            # Nothing to bind: every row takes its defaults
            sql = f"INSERT INTO {table} DEFAULT VALUES{returning}"
            for change in chunk:
                rows = self._insert(tx, sql, [], table, returning)
                self._backfill([change], rows, metadata)
            return

        params = Params()
        values = []
        for change in chunk:
            row = [
                placeholder(params, change.changes[c], c in jsonb) if c in change.changes else "DEFAULT"
                for c in columns
            ]
            values.append(f"({', '.join(row)})")

        sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES {', '.join(values)}{returning}"
        rows = self._insert(tx, sql, params.values, table, returning)
        self._backfill(chunk, rows, metadata)

    def _insert(
        self, tx: Transaction, sql: str, args: list[Any], table: str, returning: str
    ) -> list[dict[str, Any]]:
        if returning:
            return run_query(tx, sql, args, table, "insert")
        run_execute(tx, sql, args, table, "insert")
        return []

    def _backfill(
        self, chunk: Sequence[DBChange], rows: list[dict[str, Any]], metadata: TableMetadata
    ) -> None:
        pk = metadata.primary_key
        if pk is None:
            return
        if len(rows) != len(chunk):
            raise QueryError(
                metadata.table_name,
                "insert",
                "",
                RuntimeError(f"expected {len(chunk)} returned keys, got {len(rows)}"),
            )
        for change, row in zip(chunk, rows):
            value = row.get(pk.column_name)
            change.changes[pk.column_name] = value
            setattr(change.record, pk.field_name, value)

    def execute_updates(
        self, tx: Transaction, changes: Sequence[DBChange], metadata: TableMetadata
    ) -> int:
        """Run one UPDATE per change; returns the total rows affected.

        Zero affected rows is not an error here.
        """
        table = metadata.table_name
        pk = metadata.primary_key
        if pk is None:
            raise ValueError(f"'{table}' has no primary key and cannot be updated")
        tenant = metadata.multitenancy_key
        excluded = {pk.column_name} | ({tenant.column_name} if tenant else set())
        jsonb = metadata.jsonb_columns

        affected = 0
        for change in changes:
            columns = [
                c for c in metadata.column_names if c in change.changes and c not in excluded
            ]
            if not columns:
                continue
            params = Params()
            assignments = [
                f"{c} = {placeholder(params, change.changes[c], c in jsonb)}" for c in columns
            ]
            where = []
            if tenant is not None:
                where.append(f"{tenant.column_name} = {params.add(self.multitenancy_value)}")
            where.append(f"{pk.column_name} = {params.add(change.changes[pk.column_name])}")
            sql = f"UPDATE {table} SET {', '.join(assignments)} WHERE {' AND '.join(where)}"
            affected += run_execute(tx, sql, params.values, table, "update")

            if is_zero(getattr(change.record, pk.field_name, None)):
                setattr(change.record, pk.field_name, change.changes[pk.column_name])
        return affected

    def execute_deletes(
        self, tx: Transaction, primary_keys: Sequence[Any], metadata: TableMetadata
    ) -> int:
        """Delete rows by primary key within the tenant; returns rows affected."""
        if not primary_keys:
            return 0
        table = metadata.table_name
        pk = metadata.primary_key
        if pk is None:
            raise ValueError(f"'{table}' has no primary key")

        params = Params()
        markers = ", ".join(params.add(value) for value in primary_keys)
        where = [f"{pk.column_name} IN ({markers})"]
        tenant = metadata.multitenancy_key
        if tenant is not None:
            where.append(f"{tenant.column_name} = {params.add(self.multitenancy_value)}")
        sql = f"DELETE FROM {table} WHERE {' AND '.join(where)}"
        logger.debug(f"Deleting {len(primary_keys)} rows from '{table}'")
        return run_execute(tx, sql, params.values, table, "delete")
