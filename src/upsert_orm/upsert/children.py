"""Child reconciliation: push parent keys down and recurse.

Runs after a parent batch has been written, so every parent change already
holds its stored primary key.  For each child relation the reconciler:

1. Copies the parent key into each child (``foreign_key`` or
   ``grouping_criteria``), plus the dict key (``key_mapping``) and any
   ``value_mappings`` from the parent.
2. Upserts all children of all parents as one batch through the callback it
   was given, which runs the full pipeline again for the child type.
3. With ``delete_orphans``, deletes existing children of updated parents
   whose primary key is not among the children just written.

Orphan deletion only considers parents that were updates and whose child
field is not None.  An empty collection removes every existing child.
"""

import logging
from collections.abc import Callable, Sequence
from typing import Any

from upsert_orm.adapters.base import Transaction
from upsert_orm.records import get_path, set_path
from upsert_orm.schema.models import ChildRelation, TableMetadata
from upsert_orm.sql import Params
from upsert_orm.upsert.changes import ChangeType, DBChange
from upsert_orm.upsert.executor import BatchExecutor, run_query

logger = logging.getLogger(__name__)

UpsertCallback = Callable[[Transaction, list[Any], TableMetadata], list[DBChange]]


class ChildReconciler:
    """Reconciles child collections of a persisted parent batch.

    Args:
        multitenancy_value: Tenant used when looking up existing children.
        executor: Executor used for orphan deletes.
        upsert: Runs the whole upsert pipeline for a child batch and returns
            the changes it wrote.
    """

    def __init__(
        self, multitenancy_value: Any, executor: BatchExecutor, upsert: UpsertCallback
    ) -> None:
        self.multitenancy_value = multitenancy_value
        self.executor = executor
        self.upsert = upsert

    def reconcile(
        self, tx: Transaction, changes: Sequence[DBChange], metadata: TableMetadata
    ) -> None:
        """Reconcile every child relation of *metadata* for *changes*."""
        for relation in metadata.children:
            self._reconcile_relation(tx, changes, metadata, relation)

    def _reconcile_relation(
        self,
        tx: Transaction,
        changes: Sequence[DBChange],
        metadata: TableMetadata,
        relation: ChildRelation,
    ) -> None:
        pk = metadata.primary_key
        children: list[Any] = []
        # parent primary key -> children written for that parent
        owned: dict[Any, list[Any]] = {}

        for change in changes:
            parent = change.record
            collection = getattr(parent, relation.field_name, None)
            if collection is None:
                continue
            parent_key = change.changes.get(pk.column_name) if pk is not None else None

            if relation.is_mapping:
                items = list(collection.items())
            else:
                items = [(None, child) for child in collection]

            batch = []
            for map_key, child in items:
                if relation.foreign_key:
                    set_path(child, relation.foreign_key, parent_key)
                for parent_path, child_path in relation.grouping_criteria:
                    if pk is not None and parent_path == pk.field_name:
                        set_path(child, child_path, parent_key)
                    else:
                        set_path(child, child_path, get_path(parent, parent_path))
                if relation.key_mapping and map_key is not None:
                    set_path(child, relation.key_mapping, map_key)
                for parent_path, child_path in relation.value_mappings:
                    set_path(child, child_path, get_path(parent, parent_path))
                batch.append(child)

            children.extend(batch)
            if relation.delete_orphans and change.kind is ChangeType.UPDATE:
                owned[parent_key] = batch

        child_metadata = relation.metadata
        written: dict[int, Any] = {}
        if children:
            logger.debug(
                f"Reconciling {len(children)} '{child_metadata.table_name}' children "
                f"of '{metadata.table_name}'"
            )
            child_pk = child_metadata.primary_key
            for child_change in self.upsert(tx, children, child_metadata):
                if child_pk is not None:
                    written[id(child_change.record)] = child_change.changes.get(child_pk.column_name)

        if owned:
            self._delete_orphans(tx, relation, child_metadata, owned, written)

    def _delete_orphans(
        self,
        tx: Transaction,
        relation: ChildRelation,
        child_metadata: TableMetadata,
        owned: dict[Any, list[Any]],
        written: dict[int, Any],
    ) -> None:
        child_pk = child_metadata.primary_key
        if child_pk is None:
            return
        table = child_metadata.table_name
        fk_column = relation.foreign_key_column

        params = Params()
        where = [f"{fk_column}::varchar = ANY({params.add([str(k) for k in owned])})"]
        tenant = child_metadata.multitenancy_key
        if tenant is not None:
            where.append(f"{tenant.column_name} = {params.add(self.multitenancy_value)}")
        sql = f"SELECT {child_pk.column_name}, {fk_column} FROM {table} WHERE {' AND '.join(where)}"
        rows = run_query(tx, sql, params.values, table, "orphan lookup")

        keep = {
            str(parent_key): {str(written.get(id(child))) for child in batch}
            for parent_key, batch in owned.items()
        }
        orphans = [
            row[child_pk.column_name]
            for row in rows
            if str(row[child_pk.column_name]) not in keep.get(str(row[fk_column]), set())
        ]
        if orphans:
            logger.info(f"Deleting {len(orphans)} orphaned rows from '{table}'")
            self.executor.execute_deletes(tx, orphans, child_metadata)
