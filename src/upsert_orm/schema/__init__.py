"""Record-type metadata: annotation markers, metadata models and extraction."""

from upsert_orm.schema.extractor import get_table_metadata
from upsert_orm.schema.markers import Child, Column
from upsert_orm.schema.models import (
    ChildRelation,
    FieldMetadata,
    ForeignKeyRef,
    Join,
    Lookup,
    TableMetadata,
)

__all__ = [
    "Child",
    "ChildRelation",
    "Column",
    "FieldMetadata",
    "ForeignKeyRef",
    "Join",
    "Lookup",
    "TableMetadata",
    "get_table_metadata",
]
