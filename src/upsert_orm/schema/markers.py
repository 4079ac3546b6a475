"""Annotation markers that declare how record fields map to columns.

Markers are attached with ``typing.Annotated`` and read once by the metadata
extractor.  They are plain frozen dataclasses so pydantic keeps them in
``FieldInfo.metadata`` without trying to build a schema from them.

Usage:
    class Blog(Record):
        __tablename__: ClassVar[str] = "blogs"

        id: Annotated[str | None, Column("id", primary_key=True)] = None
        name: Annotated[str, Column("name", lookup=True, required=True)] = ""
        user_id: Annotated[
            str | None,
            Column("user_id", foreign_key=True, related="user", required=True),
        ] = None
        user: User | None = None
        tags: Annotated[list[Tag] | None, Child(foreign_key="blog_id")] = None
"""

from dataclasses import dataclass, field
from typing import Literal

AuditRole = Literal["created_by", "updated_by", "created_at", "updated_at"]


@dataclass(frozen=True, eq=False)
class Column:
    """Maps a record field to a table column."""

    name: str
    primary_key: bool = False
    multitenancy_key: bool = False
    lookup: bool = False
    required: bool = False
    encrypted: bool = False
    jsonb: bool = False
    audit: AuditRole | None = None
    foreign_key: bool = False
    related: str | None = None      # sibling field holding the related record
    key_map: str | None = None      # related record field that receives our FK value


@dataclass(frozen=True, eq=False)
class Child:
    """Marks a list or dict field holding child records."""

    foreign_key: str | None = None                                     # child field set to our primary key
    key_mapping: str | None = None                                     # child field set to the dict key
    value_mappings: dict[str, str] = field(default_factory=dict)       # parent path -> child path
    grouping_criteria: dict[str, str] = field(default_factory=dict)    # parent path -> child path
    delete_orphans: bool = False
