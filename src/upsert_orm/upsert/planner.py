"""Classify records as inserts or updates and build their column values.

For each record the planner:

1. Looks the record up in the identity resolution (match means update).
2. Collects the defined fields, skipping columns an UPDATE never rewrites
   (primary key, tenant, ``created_*`` audit columns) and stamping audit
   columns with the actor and the clock.
3. Stamps the tenant and, for updates, the existing primary key.
4. Encodes JSONB and encrypted columns.
5. Fills empty foreign keys from their related-record resolution.
6. Checks required fields.

Required-field failures are collected across the whole batch and raised
together as one ``RecordValidationError``.  Foreign-key and codec errors
are raised as soon as they happen.
"""

from collections.abc import Callable, Mapping, Sequence
from datetime import datetime, timezone
from typing import Any

from upsert_orm.codec.columns import ColumnCodec
from upsert_orm.errors import ForeignKeyError, RecordValidationError
from upsert_orm.records import is_zero
from upsert_orm.schema.models import TableMetadata
from upsert_orm.upsert.changes import ChangeSet, ChangeType, DBChange
from upsert_orm.upsert.resolver import Resolution


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ChangePlanner:
    """Builds ``ChangeSet``s for one tenant and actor.

    Args:
        multitenancy_value: Tenant stamped on every change.
        performed_by: Actor id stamped on ``*_by`` audit columns.
        codec: Column codec for JSONB and encrypted columns.
        clock: Returns the timestamp stamped on ``*_at`` audit columns.
    """

    def __init__(
        self,
        multitenancy_value: Any,
        performed_by: Any,
        codec: ColumnCodec | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.multitenancy_value = multitenancy_value
        self.performed_by = performed_by
        self.codec = codec or ColumnCodec()
        self.clock = clock or utc_now

    def plan(
        self,
        records: Sequence[Any],
        metadata: TableMetadata,
        resolution: Resolution,
        foreign_keys: Mapping[str, Resolution] | None = None,
    ) -> ChangeSet:
        """Plan a batch of records of the type described by *metadata*.

        Args:
            records: Batch to plan.
            metadata: Table metadata of the batch's record type.
            resolution: Existing rows for the batch; an empty ``Resolution``
                plans every record as an insert.
            foreign_keys: Resolution of each foreign key's related records,
                keyed by foreign-key field name.

        Raises:
            RecordValidationError: If any record misses a required field.
            ForeignKeyError: If a required foreign key cannot be resolved.
            CodecError: If a column value cannot be encoded.
        """
        foreign_keys = foreign_keys or {}
        change_set = ChangeSet()
        errors: list[str] = []
        now = self.clock()

        for record in records:
            existing = resolution.match(record)
            change = self._build_change(record, existing, metadata, foreign_keys, now)
            problems = self._validate(change, metadata)
            if problems:
                errors.extend(problems)
                continue
            change.key = resolution.key_for(record)
            if change.kind is ChangeType.UPDATE:
                change_set.updates.append(change)
            else:
                change_set.inserts.append(change)

        if errors:
            raise RecordValidationError(errors)
        return change_set

    def _build_change(
        self,
        record: Any,
        existing: dict[str, Any] | None,
        metadata: TableMetadata,
        foreign_keys: Mapping[str, Resolution],
        now: datetime,
    ) -> DBChange:
        is_update = existing is not None
        table = metadata.table_name
        changes: dict[str, Any] = {}

        for field in metadata.fields:
            if is_update and not field.include_in_update:
                continue
            if field.audit in ("created_by", "updated_by"):
                value = self.performed_by
            elif field.audit in ("created_at", "updated_at"):
                value = now
            else:
                if not record.is_field_defined(field.field_name):
                    continue
                value = getattr(record, field.field_name)
                if field.primary_key and is_zero(value):
                    continue
            changes[field.column_name] = value

        pk = metadata.primary_key
        if is_update and pk is not None:
            changes[pk.column_name] = existing[pk.column_name]
        tenant = metadata.multitenancy_key
        if tenant is not None:
            changes[tenant.column_name] = self.multitenancy_value

        for field in metadata.fields:
            if (field.encrypted or field.jsonb) and field.column_name in changes:
                changes[field.column_name] = self.codec.encode(
                    changes[field.column_name], field, table
                )

        for fk in metadata.foreign_keys:
            value = changes.get(fk.column_name)
            if not is_zero(value) and not fk.key_map:
                continue
            related = getattr(record, fk.related_field, None)
            if related is None and fk.column_name not in changes:
                continue
            resolution = foreign_keys.get(fk.field_name)
            found = resolution.primary_key_for(related) if resolution is not None else None
            if found is not None:
                changes[fk.column_name] = found
            elif not is_zero(value):
                continue
            elif fk.required:
                key = resolution.key_for(related) if resolution is not None else None
                raise ForeignKeyError(
                    "Missing Required Foreign Key Lookup",
                    table,
                    key or "",
                    fk.column_name,
                    fk.related_field,
                )
            else:
                # Leave it out so the column default applies
                changes.pop(fk.column_name, None)

        return DBChange(
            changes=changes,
            record=record,
            kind=ChangeType.UPDATE if is_update else ChangeType.INSERT,
        )

    def _validate(self, change: DBChange, metadata: TableMetadata) -> list[str]:
        problems = []
        is_update = change.kind is ChangeType.UPDATE
        for field in metadata.fields:
            if not field.required or field.foreign_key:
                continue
            if field.primary_key or field.multitenancy_key or field.audit:
                continue
            if is_update and field.column_name not in change.changes:
                continue
            if is_zero(change.changes.get(field.column_name)):
                problems.append(
                    f"{metadata.table_name}: required field '{field.field_name}' is empty"
                )
        return problems
