"""Pydantic models describing how a record type maps onto a table.

This module contains the immutable metadata produced by the extractor:
- Column-level models: FieldMetadata, ForeignKeyRef
- Relation models: ChildRelation
- Table model: TableMetadata
- Lookup query parts: Lookup, Join

All models are frozen; the extractor builds one ``TableMetadata`` per record
type and caches it.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict

from upsert_orm.errors import ConfigurationError


# ============================================================================
# Column Models
# ============================================================================


class ForeignKeyRef(BaseModel):
    """A belongs-to relation from a foreign-key column to a related record.

    The related type's metadata is resolved on first access through the
    extractor cache, so types that reference each other never recurse during
    extraction.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    field_name: str
    column_name: str
    related_field: str
    related_type: Any
    required: bool = False
    lookup: bool = False
    key_map: str | None = None

    @property
    def metadata(self) -> "TableMetadata":
        """Metadata of the related record type."""
        from upsert_orm.schema.extractor import get_table_metadata

        return get_table_metadata(self.related_type)


class FieldMetadata(BaseModel):
    """One mapped column of a record type."""

    model_config = ConfigDict(frozen=True)

    field_name: str
    column_name: str
    primary_key: bool = False
    multitenancy_key: bool = False
    lookup: bool = False
    required: bool = False
    encrypted: bool = False
    jsonb: bool = False
    audit: str | None = None
    foreign_key: bool = False

    @property
    def include_in_update(self) -> bool:
        """False for columns that are never rewritten by an UPDATE."""
        if self.primary_key or self.multitenancy_key:
            return False
        return self.audit not in ("created_by", "created_at")


# ============================================================================
# Relation Models
# ============================================================================


class ChildRelation(BaseModel):
    """A has-many relation held in a list or dict field of child records."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    field_name: str
    element_type: Any
    is_mapping: bool = False
    foreign_key: str | None = None
    key_mapping: str | None = None
    value_mappings: tuple[tuple[str, str], ...] = ()
    grouping_criteria: tuple[tuple[str, str], ...] = ()
    delete_orphans: bool = False

    @property
    def metadata(self) -> "TableMetadata":
        """Metadata of the child record type."""
        from upsert_orm.schema.extractor import get_table_metadata

        return get_table_metadata(self.element_type)

    @property
    def foreign_key_column(self) -> str:
        """Column on the child table that holds the parent's primary key.

        Raises:
            ConfigurationError: If the relation has no foreign key or the
                child type does not map the named field.
        """
        if not self.foreign_key:
            raise ConfigurationError(
                f"Child relation '{self.field_name}' has no foreign_key"
            )
        field = self.metadata.get_field(self.foreign_key)
        if field is None:
            raise ConfigurationError(
                f"Child relation '{self.field_name}': "
                f"'{self.element_type.__name__}' has no mapped field '{self.foreign_key}'"
            )
        return field.column_name


# ============================================================================
# Table Model
# ============================================================================


class TableMetadata(BaseModel):
    """Everything the upsert pipeline needs to know about one record type.

    ``fields`` keeps declaration order, which fixes the column order of every
    generated statement.

    Example:
        >>> meta = get_table_metadata(Simple)
        >>> meta.table_name
        'simple'
        >>> [f.column_name for f in meta.lookup_fields]
        ['name']
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    record_type: Any
    table_name: str
    fields: tuple[FieldMetadata, ...] = ()
    foreign_keys: tuple[ForeignKeyRef, ...] = ()
    children: tuple[ChildRelation, ...] = ()

    @property
    def primary_key(self) -> FieldMetadata | None:
        return next((f for f in self.fields if f.primary_key), None)

    @property
    def multitenancy_key(self) -> FieldMetadata | None:
        return next((f for f in self.fields if f.multitenancy_key), None)

    @property
    def lookup_fields(self) -> list[FieldMetadata]:
        """Lookup columns matched on their own value.

        Foreign keys with a related record are excluded; the resolver decides
        per batch whether they match on their own column or through a JOIN.
        """
        related = {fk.field_name for fk in self.foreign_keys}
        return [f for f in self.fields if f.lookup and f.field_name not in related]

    @property
    def column_names(self) -> list[str]:
        return [f.column_name for f in self.fields]

    @property
    def jsonb_columns(self) -> frozenset[str]:
        return frozenset(f.column_name for f in self.fields if f.jsonb)

    def get_field(self, field_name: str) -> FieldMetadata | None:
        """Return the mapped field named *field_name*, if any."""
        return next((f for f in self.fields if f.field_name == field_name), None)

    def get_column(self, column_name: str) -> FieldMetadata | None:
        """Return the mapped field stored in *column_name*, if any."""
        return next((f for f in self.fields if f.column_name == column_name), None)


# ============================================================================
# Lookup Query Parts
# ============================================================================


class Join(BaseModel):
    """A JOIN onto a related table used while matching lookup keys."""

    model_config = ConfigDict(frozen=True)

    table: str
    alias: str
    primary_key_column: str
    parent_alias: str
    parent_column: str

    def to_sql(self) -> str:
        return (
            f"JOIN {self.table} AS {self.alias} "
            f"ON {self.alias}.{self.primary_key_column} = {self.parent_alias}.{self.parent_column}"
        )


class Lookup(BaseModel):
    """One component of a composite lookup key.

    ``path`` is the dotted attribute path that reads the component from the
    record being resolved; ``alias``/``column`` locate it in the store.
    """

    model_config = ConfigDict(frozen=True)

    alias: str
    column: str
    path: str

    @property
    def qualified(self) -> str:
        return f"{self.alias}.{self.column}"

    @property
    def label(self) -> str:
        """Result column name used for this component in the lookup query."""
        return f"{self.alias}_{self.column}"
