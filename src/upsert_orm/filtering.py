"""WHERE clauses built from a filter record's non-zero fields."""

from typing import Any

from upsert_orm.records import is_zero
from upsert_orm.schema.models import TableMetadata
from upsert_orm.sql import Params


def where_from_record(
    record: Any, metadata: TableMetadata, multitenancy_value: Any, params: Params
) -> list[str]:
    """Return AND-able conditions matching *record*'s non-zero mapped fields.

    Encrypted and JSONB columns are never filtered on (their stored form is
    not comparable).  The tenant condition always comes from
    *multitenancy_value*, whatever the record holds.
    """
    table = metadata.table_name
    conditions = []
    for field in metadata.fields:
        if field.multitenancy_key or field.encrypted or field.jsonb:
            continue
        value = getattr(record, field.field_name, None)
        if is_zero(value):
            continue
        conditions.append(f"{table}.{field.column_name} = {params.add(value)}")

    tenant = metadata.multitenancy_key
    if tenant is not None:
        conditions.append(f"{table}.{tenant.column_name} = {params.add(multitenancy_value)}")
    return conditions
