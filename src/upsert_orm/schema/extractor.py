"""Build ``TableMetadata`` from a record type's annotated fields.

Extraction is a pure function of the class, so results are memoized per type
with ``functools.lru_cache``.  Related and child types are not extracted
eagerly; ``ForeignKeyRef.metadata`` and ``ChildRelation.metadata`` go back
through the same cache on first use.

Usage:
    from upsert_orm.schema import get_table_metadata

    meta = get_table_metadata(Blog)
    print(meta.table_name, [f.column_name for f in meta.fields])
"""

import types
import typing
from collections.abc import Mapping, Sequence
from functools import lru_cache
from typing import Any

from pydantic import BaseModel

from upsert_orm.errors import ConfigurationError
from upsert_orm.records import Record
from upsert_orm.schema.markers import Child, Column
from upsert_orm.schema.models import (
    ChildRelation,
    FieldMetadata,
    ForeignKeyRef,
    TableMetadata,
)


@lru_cache(maxsize=None)
def get_table_metadata(record_type: type) -> TableMetadata:
    """Extract and cache the table mapping for *record_type*.

    Args:
        record_type: A ``Record`` subclass with a ``__tablename__``.

    Returns:
        Frozen ``TableMetadata`` describing columns, foreign keys and child
        relations in declaration order.

    Raises:
        ConfigurationError: If the type is not a record, has no table name, or
            declares an invalid column or child relation.
    """
    if not (isinstance(record_type, type) and issubclass(record_type, Record)):
        raise ConfigurationError(f"{record_type!r} is not a Record subclass")

    table_name = getattr(record_type, "__tablename__", None)
    if not isinstance(table_name, str) or not table_name:
        raise ConfigurationError(f"{record_type.__name__} has no __tablename__")

    _ensure_complete(record_type)

    fields: list[FieldMetadata] = []
    foreign_keys: list[ForeignKeyRef] = []
    children: list[ChildRelation] = []

    for name, info in record_type.model_fields.items():
        column = _find_marker(info.metadata, Column)
        child = _find_marker(info.metadata, Child)

        if column is not None and child is not None:
            raise ConfigurationError(
                f"{record_type.__name__}.{name} cannot be both a column and a child relation"
            )

        if child is not None:
            children.append(_child_relation(record_type, name, info.annotation, child))
        elif column is not None:
            fields.append(_field_metadata(record_type, name, column))
            if column.foreign_key and column.related:
                foreign_keys.append(_foreign_key(record_type, name, column))

    if sum(1 for f in fields if f.primary_key) > 1:
        raise ConfigurationError(f"{record_type.__name__} declares more than one primary key")
    if sum(1 for f in fields if f.multitenancy_key) > 1:
        raise ConfigurationError(
            f"{record_type.__name__} declares more than one multitenancy key"
        )

    return TableMetadata(
        record_type=record_type,
        table_name=table_name,
        fields=tuple(fields),
        foreign_keys=tuple(foreign_keys),
        children=tuple(children),
    )


def _ensure_complete(record_type: type[BaseModel]) -> None:
    """Resolve pending forward references on *record_type*."""
    if getattr(record_type, "__pydantic_complete__", True):
        return
    try:
        record_type.model_rebuild()
    except Exception as exc:
        raise ConfigurationError(
            f"Cannot resolve annotations of {record_type.__name__}: {exc}"
        ) from exc


def _find_marker(metadata: list[Any], marker_type: type) -> Any:
    return next((m for m in metadata if isinstance(m, marker_type)), None)


def _field_metadata(record_type: type, name: str, column: Column) -> FieldMetadata:
    owner = f"{record_type.__name__}.{name}"
    if not column.name:
        raise ConfigurationError(f"{owner} has an empty column name")
    if column.key_map and not column.foreign_key:
        raise ConfigurationError(f"{owner}: key_map requires foreign_key=True")
    if column.related and not column.foreign_key:
        raise ConfigurationError(f"{owner}: related requires foreign_key=True")
    if column.primary_key and column.multitenancy_key:
        raise ConfigurationError(f"{owner} cannot be both primary and multitenancy key")

    return FieldMetadata(
        field_name=name,
        column_name=column.name,
        primary_key=column.primary_key,
        multitenancy_key=column.multitenancy_key,
        lookup=column.lookup,
        required=column.required,
        encrypted=column.encrypted,
        jsonb=column.jsonb,
        audit=column.audit,
        foreign_key=column.foreign_key,
    )


def _foreign_key(record_type: type, name: str, column: Column) -> ForeignKeyRef:
    related_info = record_type.model_fields.get(column.related)
    if related_info is None:
        raise ConfigurationError(
            f"{record_type.__name__}.{name}: related field '{column.related}' does not exist"
        )
    related_type = _strip_optional(related_info.annotation)
    if not _is_record_type(related_type):
        raise ConfigurationError(
            f"{record_type.__name__}.{column.related} must be a Record, got {related_type!r}"
        )
    return ForeignKeyRef(
        field_name=name,
        column_name=column.name,
        related_field=column.related,
        related_type=related_type,
        required=column.required,
        lookup=column.lookup,
        key_map=column.key_map,
    )


def _child_relation(
    record_type: type, name: str, annotation: Any, child: Child
) -> ChildRelation:
    owner = f"{record_type.__name__}.{name}"
    collection = _strip_optional(annotation)
    origin = typing.get_origin(collection)
    args = typing.get_args(collection)

    element_type: Any = None
    is_mapping = False
    if isinstance(origin, type) and issubclass(origin, Mapping) and len(args) == 2:
        element_type = args[1]
        is_mapping = True
    elif (
        isinstance(origin, type)
        and issubclass(origin, Sequence)
        and not issubclass(origin, (str, bytes))
        and len(args) == 1
    ):
        element_type = args[0]

    if not _is_record_type(element_type):
        raise ConfigurationError(
            f"{owner}: child relations must be a list or dict of records, got {annotation!r}"
        )
    if child.delete_orphans and not child.foreign_key:
        raise ConfigurationError(f"{owner}: delete_orphans requires foreign_key")

    return ChildRelation(
        field_name=name,
        element_type=element_type,
        is_mapping=is_mapping,
        foreign_key=child.foreign_key,
        key_mapping=child.key_mapping,
        value_mappings=tuple(child.value_mappings.items()),
        grouping_criteria=tuple(child.grouping_criteria.items()),
        delete_orphans=child.delete_orphans,
    )


def _strip_optional(annotation: Any) -> Any:
    """Return ``X`` for ``X | None`` / ``Optional[X]``; otherwise *annotation*."""
    origin = typing.get_origin(annotation)
    if origin is typing.Union or origin is types.UnionType:
        args = [a for a in typing.get_args(annotation) if a is not type(None)]
        if len(args) == 1:
            return args[0]
    return annotation


def _is_record_type(candidate: Any) -> bool:
    return isinstance(candidate, type) and issubclass(candidate, Record)
