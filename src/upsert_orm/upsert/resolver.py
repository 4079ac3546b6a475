"""Identity resolution: which records in a batch already exist?

A record is identified by its composite lookup key, the escaped values of its
lookup fields joined with ``|``.  The resolver computes the key for every
record in the batch and matches all of them with a single SELECT:

    SELECT blogs.id, blogs.name::varchar AS blogs_name
    FROM blogs
    WHERE <escaped name> = ANY($1) AND blogs.tenant_id = $2

Rules for choosing the key columns:

- If any record in the batch carries a primary key, the batch is matched by
  primary key instead of by its lookup fields.
- A foreign key marked ``lookup=True`` contributes its own column when a
  record already holds the FK value, otherwise the related table's lookup
  columns through a JOIN (recursively, aliased ``t1``, ``t2``, ...).
- A record whose key components are all empty is never matched.

Usage:
    resolver = IdentityResolver("acme")
    resolution = resolver.resolve(tx, blogs, get_table_metadata(Blog))
    existing = resolution.match(blogs[0])   # row dict or None
"""

import logging
import math
from collections.abc import Sequence
from datetime import datetime, time, timezone
from enum import Enum
from typing import Any

from upsert_orm.adapters.base import Transaction
from upsert_orm.records import get_path, is_zero, set_path
from upsert_orm.schema.models import ForeignKeyRef, Join, Lookup, TableMetadata
from upsert_orm.sql import Params
from upsert_orm.upsert.executor import run_query

logger = logging.getLogger(__name__)

SEPARATOR = "|"


# ------------------------------------------------------------------
# Key encoding
# ------------------------------------------------------------------


def stringify(value: Any) -> str:
    """Render one key component the way ``col::varchar`` renders it.

    Timestamps follow PostgreSQL's ISO output with the session timezone
    pinned to UTC (see ``create_engine_pooled``).
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return stringify(value.value)
    if isinstance(value, datetime):
        return _render_datetime(value)
    if isinstance(value, time):
        return _render_clock(value)
    if isinstance(value, float):
        return _render_float(value)
    return str(value)


def _render_clock(value: datetime | time) -> str:
    text = value.strftime("%H:%M:%S")
    if value.microsecond:
        text += f".{value.microsecond:06d}".rstrip("0")
    return text


def _render_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        return f"{value.date().isoformat()} {_render_clock(value)}"
    value = value.astimezone(timezone.utc)
    return f"{value.date().isoformat()} {_render_clock(value)}+00"


def _render_float(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    # float8 output drops the ".0" of integral values below 1e15
    if value.is_integer() and abs(value) < 1e15:
        return str(int(value))
    return repr(value)


def escape(part: str) -> str:
    return part.replace("\\", "\\\\").replace(SEPARATOR, "\\" + SEPARATOR)


def encode_key(values: Sequence[Any]) -> str | None:
    """Join key components into a lookup key, or None if all are empty."""
    parts = [stringify(v) for v in values]
    if not any(parts):
        return None
    return SEPARATOR.join(escape(p) for p in parts)


def key_expression(lookups: Sequence[Lookup]) -> str:
    """SQL expression that builds the same key as :func:`encode_key`."""
    parts = [
        f"replace(replace(COALESCE({lookup.qualified}::varchar, ''), '\\', '\\\\'), '|', '\\|')"
        for lookup in lookups
    ]
    return f" || '{SEPARATOR}' || ".join(parts)


# ------------------------------------------------------------------
# Resolution result
# ------------------------------------------------------------------


class Resolution:
    """Existing rows of one batch, keyed by lookup key.

    Rows carry the table's primary key column plus one ``<alias>_<column>``
    entry per lookup component.
    """

    def __init__(
        self,
        lookups: Sequence[Lookup] = (),
        rows: dict[str, dict[str, Any]] | None = None,
        primary_key_column: str | None = None,
    ) -> None:
        self.lookups = list(lookups)
        self.rows = rows or {}
        self.primary_key_column = primary_key_column

    def key_for(self, record: Any) -> str | None:
        if record is None or not self.lookups:
            return None
        return encode_key([get_path(record, lookup.path) for lookup in self.lookups])

    def match(self, record: Any) -> dict[str, Any] | None:
        """Return the existing row for *record*, or None if it is new."""
        key = self.key_for(record)
        if key is None:
            return None
        return self.rows.get(key)

    def primary_key_for(self, record: Any) -> Any:
        row = self.match(record)
        if row is None or self.primary_key_column is None:
            return None
        return row.get(self.primary_key_column)

    @property
    def existing_keys(self) -> set[str]:
        return set(self.rows)

    def __len__(self) -> int:
        return len(self.rows)


# ------------------------------------------------------------------
# Resolver
# ------------------------------------------------------------------


class IdentityResolver:
    """Matches batches of records against existing rows of one tenant."""

    def __init__(self, multitenancy_value: Any) -> None:
        self.multitenancy_value = multitenancy_value

    def resolve(
        self,
        tx: Transaction,
        records: Sequence[Any],
        metadata: TableMetadata,
        foreign_key: ForeignKeyRef | None = None,
    ) -> Resolution:
        """Resolve the existing rows for *records* with one query.

        Args:
            tx: Transaction to query through.
            records: Records of the type described by *metadata*.  When
                *foreign_key* is given these are the referencing records and
                their related records are resolved instead.
            metadata: Metadata of the table being matched.
            foreign_key: Resolve the related records held by this foreign key.

        Returns:
            ``Resolution`` mapping lookup keys to existing rows.  Issues no
            query when no record has a usable key.
        """
        if foreign_key is not None:
            items = _related_items(records, foreign_key)
        else:
            items = [r for r in records if r is not None]

        pk = metadata.primary_key
        if pk is None or not items:
            return Resolution(primary_key_column=pk.column_name if pk else None)

        lookups, joins = _plan_lookups(items, metadata)
        resolution = Resolution(lookups, primary_key_column=pk.column_name)
        keys = list(dict.fromkeys(k for k in (resolution.key_for(i) for i in items) if k))
        if not lookups or not keys:
            return resolution

        params = Params()
        table = metadata.table_name
        columns = [f"{table}.{pk.column_name}"]
        # Key components come back as text so both sides render them the same way
        columns += [f"{lookup.qualified}::varchar AS {lookup.label}" for lookup in lookups]
        where = [f"{key_expression(lookups)} = ANY({params.add(keys)})"]
        tenant = metadata.multitenancy_key
        if tenant is not None:
            where.append(f"{table}.{tenant.column_name} = {params.add(self.multitenancy_value)}")

        sql = f"SELECT {', '.join(columns)} FROM {table}"
        for join in joins:
            sql += f" {join.to_sql()}"
        sql += f" WHERE {' AND '.join(where)}"

        logger.debug(f"Resolving {len(keys)} lookup keys against '{table}'")
        rows = run_query(tx, sql, params.values, table, "lookup")

        for row in rows:
            key = encode_key([row.get(lookup.label) for lookup in lookups])
            if key is not None:
                resolution.rows[key] = row
        return resolution

    def resolve_primary_key(
        self, tx: Transaction, metadata: TableMetadata, primary_key: Any
    ) -> Resolution:
        """Fetch a single row by primary key (tenant scoped).

        The returned resolution matches any record whose primary key field
        holds *primary_key*; it is empty when no such row exists.
        """
        pk = metadata.primary_key
        if pk is None:
            return Resolution()

        table = metadata.table_name
        params = Params()
        where = [f"{table}.{pk.column_name} = {params.add(primary_key)}"]
        tenant = metadata.multitenancy_key
        if tenant is not None:
            where.append(f"{table}.{tenant.column_name} = {params.add(self.multitenancy_value)}")
        columns = ", ".join(f"{table}.{c}" for c in metadata.column_names)
        sql = f"SELECT {columns} FROM {table} WHERE {' AND '.join(where)}"

        rows = run_query(tx, sql, params.values, table, "lookup")
        lookup = Lookup(alias=table, column=pk.column_name, path=pk.field_name)
        resolution = Resolution([lookup], primary_key_column=pk.column_name)
        if rows:
            key = encode_key([rows[0].get(pk.column_name)])
            if key is not None:
                resolution.rows[key] = rows[0]
        return resolution


def _related_items(records: Sequence[Any], foreign_key: ForeignKeyRef) -> list[Any]:
    """Collect the related records that still need their key looked up."""
    items = []
    for record in records:
        related = getattr(record, foreign_key.related_field, None)
        if related is None:
            continue
        fk_value = getattr(record, foreign_key.field_name, None)
        if foreign_key.key_map:
            set_path(related, foreign_key.key_map, fk_value)
        elif not is_zero(fk_value):
            continue
        items.append(related)
    return items


def _plan_lookups(
    items: Sequence[Any], metadata: TableMetadata
) -> tuple[list[Lookup], list[Join]]:
    table = metadata.table_name
    pk = metadata.primary_key

    has_primary_key = pk is not None and any(
        not is_zero(getattr(item, pk.field_name, None)) for item in items
    )

    # Lookup foreign keys whose value is already present use their own column
    known: list[Lookup] = []
    pending: list[ForeignKeyRef] = []
    for fk in metadata.foreign_keys:
        if not fk.lookup:
            continue
        if any(not is_zero(getattr(item, fk.field_name, None)) for item in items):
            known.append(Lookup(alias=table, column=fk.column_name, path=fk.field_name))
        else:
            pending.append(fk)

    if has_primary_key:
        lookups = [Lookup(alias=table, column=pk.column_name, path=pk.field_name), *known]
    else:
        own = [Lookup(alias=table, column=f.column_name, path=f.field_name) for f in metadata.lookup_fields]
        lookups = [*own, *known]

    joins: list[Join] = []
    aliases: dict[str, str] = {}
    lookups += _join_lookups(pending, table, "", "", aliases, joins)
    return lookups, joins


def _join_lookups(
    foreign_keys: Sequence[ForeignKeyRef],
    base_alias: str,
    base_join_key: str,
    base_path: str,
    aliases: dict[str, str],
    joins: list[Join],
) -> list[Lookup]:
    """Lookups that reach through foreign keys into related tables."""
    lookups: list[Lookup] = []
    for fk in foreign_keys:
        if not fk.lookup:
            continue
        related = fk.metadata
        related_pk = related.primary_key
        if related_pk is None:
            continue
        join_key = f"{base_join_key}.{fk.column_name}" if base_join_key else fk.column_name
        alias_key = f"{related.table_name}_{join_key}"
        if alias_key not in aliases:
            aliases[alias_key] = f"t{len(aliases) + 1}"
            joins.append(
                Join(
                    table=related.table_name,
                    alias=aliases[alias_key],
                    primary_key_column=related_pk.column_name,
                    parent_alias=base_alias,
                    parent_column=fk.column_name,
                )
            )
        alias = aliases[alias_key]
        path = f"{base_path}.{fk.related_field}" if base_path else fk.related_field
        for field in related.lookup_fields:
            lookups.append(Lookup(alias=alias, column=field.column_name, path=f"{path}.{field.field_name}"))
        lookups += _join_lookups(related.foreign_keys, alias, alias, path, aliases, joins)
    return lookups
