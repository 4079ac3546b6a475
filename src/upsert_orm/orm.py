"""The ORM entry point: deploy, save, create, delete and filter records.

``UpsertORM`` wires the pipeline together for one tenant and actor:

    metadata -> identity resolution -> change planning -> execution -> children

Each public operation runs in one transaction.  Without a caller-managed
transaction the ORM begins one, commits it on success and rolls it back on
any error.  After ``start_transaction()`` operations join the caller's
transaction and never commit it, but still roll it back on error.

Usage:
    from upsert_orm import UpsertORM
    from upsert_orm.adapters.postgres import PostgresExecutor

    orm = UpsertORM(PostgresExecutor(url), "acme", "user-123")
    orm.deploy([Blog(name="Release notes", tags=[Tag(name="news")])])
"""

import logging
from collections.abc import Callable, Iterable, Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from upsert_orm.adapters.base import DatabaseExecutor, Transaction
from upsert_orm.codec.columns import ColumnCodec
from upsert_orm.codec.crypto import Cipher
from upsert_orm.errors import ModelNotFoundError, ORMError
from upsert_orm.filtering import where_from_record
from upsert_orm.records import Record, is_zero
from upsert_orm.schema.extractor import get_table_metadata
from upsert_orm.schema.models import TableMetadata
from upsert_orm.sql import Params
from upsert_orm.upsert.changes import DBChange
from upsert_orm.upsert.children import ChildReconciler
from upsert_orm.upsert.executor import BatchExecutor, run_execute, run_query
from upsert_orm.upsert.planner import ChangePlanner
from upsert_orm.upsert.resolver import IdentityResolver, Resolution

logger = logging.getLogger(__name__)


class UpsertORM:
    """Persists record trees for one tenant on behalf of one actor.

    Args:
        executor: Store the ORM opens transactions on.
        multitenancy_value: Tenant stamped on and scoping every statement.
        performed_by: Actor id stamped on ``*_by`` audit columns.
        cipher: Encryption capability for encrypted columns.
        batch_size: Maximum rows per INSERT statement.
        clock: Source of ``*_at`` audit timestamps (UTC now by default).
    """

    def __init__(
        self,
        executor: DatabaseExecutor,
        multitenancy_value: Any,
        performed_by: Any,
        *,
        cipher: Cipher | None = None,
        batch_size: int = 100,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.executor = executor
        self.multitenancy_value = multitenancy_value
        self.performed_by = performed_by
        self.codec = ColumnCodec(cipher)
        self.resolver = IdentityResolver(multitenancy_value)
        self.planner = ChangePlanner(multitenancy_value, performed_by, self.codec, clock)
        self.batch_executor = BatchExecutor(multitenancy_value, batch_size)
        self.reconciler = ChildReconciler(multitenancy_value, self.batch_executor, self._upsert)
        self._tx: Transaction | None = None

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def start_transaction(self) -> Transaction:
        """Begin a caller-managed transaction that later operations join."""
        if self._tx is not None:
            raise ORMError("A transaction is already in progress")
        self._tx = self.executor.begin()
        return self._tx

    def commit(self) -> None:
        tx, self._tx = self._tx, None
        if tx is None:
            raise ORMError("No transaction in progress")
        tx.commit()

    def rollback(self) -> None:
        tx, self._tx = self._tx, None
        if tx is None:
            raise ORMError("No transaction in progress")
        tx.rollback()

    @contextmanager
    def _transaction(self) -> Iterator[Transaction]:
        if self._tx is not None:
            try:
                yield self._tx
            except Exception:
                logger.warning("Operation failed; rolling back caller transaction")
                self.rollback()
                raise
            return

        tx = self.executor.begin()
        try:
            yield tx
        except Exception:
            logger.warning("Operation failed; rolling back")
            tx.rollback()
            raise
        tx.commit()

    # ------------------------------------------------------------------
    # Upserts
    # ------------------------------------------------------------------

    def deploy(self, records: Sequence[Record], record_type: type[Record] | None = None) -> None:
        """Upsert a homogeneous batch and its child trees in one transaction."""
        self.deploy_multiple([records] if record_type is None else [(records, record_type)])

    def deploy_multiple(self, batches: Iterable[Any]) -> None:
        """Upsert several batches, in order, in one transaction.

        Each entry is either a sequence of records or a ``(records,
        record_type)`` pair.

        Raises:
            ValueError: If a batch mixes record types.
        """
        prepared = [self._prepare_batch(batch) for batch in batches]
        with self._transaction() as tx:
            for records, metadata in prepared:
                if not records:
                    continue
                changes = self._upsert(tx, records, metadata)
                logger.info(f"Deployed {len(changes)} '{metadata.table_name}' records")

    def save_model(self, record: Record) -> None:
        """Insert or update a single record, then reconcile its children.

        A record with a primary key must already exist.

        Raises:
            ModelNotFoundError: If the primary key does not resolve.
        """
        metadata = get_table_metadata(type(record))
        pk = metadata.primary_key
        primary_key = getattr(record, pk.field_name, None) if pk is not None else None

        with self._transaction() as tx:
            if is_zero(primary_key):
                self._upsert(tx, [record], metadata)
                return
            resolution = self.resolver.resolve_primary_key(tx, metadata, primary_key)
            if resolution.match(record) is None:
                raise ModelNotFoundError(metadata.table_name, primary_key)
            self._persist(tx, [record], metadata, resolution)

    def create_model(self, record: Record) -> None:
        """Insert a single record (honouring a supplied primary key) and its children."""
        metadata = get_table_metadata(type(record))
        with self._transaction() as tx:
            self._persist(tx, [record], metadata, Resolution())

    def _upsert(
        self, tx: Transaction, records: list[Any], metadata: TableMetadata
    ) -> list[DBChange]:
        resolution = self.resolver.resolve(tx, records, metadata)
        return self._persist(tx, records, metadata, resolution)

    def _persist(
        self,
        tx: Transaction,
        records: list[Any],
        metadata: TableMetadata,
        resolution: Resolution,
    ) -> list[DBChange]:
        foreign_keys = {
            fk.field_name: self.resolver.resolve(tx, records, fk.metadata, foreign_key=fk)
            for fk in metadata.foreign_keys
        }
        change_set = self.planner.plan(records, metadata, resolution, foreign_keys)
        logger.debug(
            f"'{metadata.table_name}': {len(change_set.inserts)} inserts, "
            f"{len(change_set.updates)} updates"
        )
        # Updates first so a renamed row frees its old key for a new insert
        self.batch_executor.execute_updates(tx, change_set.updates, metadata)
        self.batch_executor.execute_inserts(tx, change_set.inserts, metadata)
        self.reconciler.reconcile(tx, change_set.changes, metadata)
        return change_set.changes

    def _prepare_batch(self, batch: Any) -> tuple[list[Any], TableMetadata | None]:
        if isinstance(batch, tuple) and len(batch) == 2 and isinstance(batch[1], type):
            records, record_type = list(batch[0]), batch[1]
        else:
            records = list(batch)
            record_type = type(records[0]) if records else None
        for record in records:
            if type(record) is not record_type:
                raise ValueError(
                    f"Deploy batches must be homogeneous: expected {record_type.__name__}, "
                    f"got {type(record).__name__}"
                )
        metadata = get_table_metadata(record_type) if record_type is not None else None
        return records, metadata

    # ------------------------------------------------------------------
    # Deletes and reads
    # ------------------------------------------------------------------

    def delete_model(self, filter_record: Record) -> int:
        """Delete every row matching the filter's non-zero fields; returns rows affected."""
        metadata = get_table_metadata(type(filter_record))
        table = metadata.table_name
        params = Params()
        where = where_from_record(filter_record, metadata, self.multitenancy_value, params)
        tenant_conditions = 1 if metadata.multitenancy_key is not None else 0
        if len(where) <= tenant_conditions:
            raise ValueError(f"Refusing to delete from '{table}' without any filter")
        sql = f"DELETE FROM {table} WHERE {' AND '.join(where)}"
        with self._transaction() as tx:
            affected = run_execute(tx, sql, params.values, table, "delete")
        logger.info(f"Deleted {affected} rows from '{table}'")
        return affected

    def filter_model(self, filter_record: Record) -> list[Record]:
        """Read the rows matching the filter's non-zero fields as records."""
        record_type = type(filter_record)
        metadata = get_table_metadata(record_type)
        table = metadata.table_name
        params = Params()
        where = where_from_record(filter_record, metadata, self.multitenancy_value, params)
        columns = ", ".join(f"{table}.{c}" for c in metadata.column_names)
        sql = f"SELECT {columns} FROM {table}"
        if where:
            sql += f" WHERE {' AND '.join(where)}"

        with self._transaction() as tx:
            rows = run_query(tx, sql, params.values, table, "select")

        results = []
        for row in rows:
            data = {
                field.field_name: self.codec.decode(row.get(field.column_name), field, table)
                for field in metadata.fields
            }
            results.append(record_type.model_validate(data))
        return results
