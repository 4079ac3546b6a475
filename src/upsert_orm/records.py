"""Base class for mapped records plus field access helpers.

Records are plain pydantic models.  pydantic already tracks which fields
were explicitly provided (``model_fields_set``), which is what partial
updates need.  A record only honours that set once it is switched into
partial mode; until then every mapped field is written.

Usage:
    from typing import Annotated, ClassVar
    from upsert_orm import Column, Record

    class Simple(Record):
        __tablename__: ClassVar[str] = "simple"

        id: Annotated[str | None, Column("id", primary_key=True)] = None
        name: Annotated[str, Column("name")] = ""
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, PrivateAttr


class Record(BaseModel):
    """Base class for every record type the ORM can persist."""

    model_config = ConfigDict(arbitrary_types_allowed=True, populate_by_name=True)

    _partial: bool = PrivateAttr(default=False)

    @property
    def is_partial(self) -> bool:
        """Whether only explicitly provided fields are written."""
        return self._partial

    def mark_partial(self, partial: bool = True) -> "Record":
        """Switch between partial and full-replace mode.

        Returns the record so it can be chained after construction.
        """
        self._partial = partial
        return self

    def is_field_defined(self, field_name: str) -> bool:
        """Return True when *field_name* should be written for this record.

        Full-replace records define every field.  Partial records define the
        fields pydantic saw on input, plus any field holding a non-zero value
        (values set programmatically after decoding still count).
        """
        if not self._partial:
            return True
        if field_name in self.model_fields_set:
            return True
        return not is_zero(getattr(self, field_name, None))


def is_zero(value: Any) -> bool:
    """Return True for None, empty strings/collections, 0 and False."""
    if value is None:
        return True
    if isinstance(value, Enum):
        return False
    if isinstance(value, (str, bytes, list, tuple, dict, set, frozenset)):
        return len(value) == 0
    if isinstance(value, (bool, int, float)):
        return not value
    return False


def get_path(obj: Any, path: str) -> Any:
    """Read a dotted attribute path, returning None if any hop is None."""
    current = obj
    for part in path.split("."):
        if current is None:
            return None
        current = getattr(current, part, None)
    return current


def set_path(obj: Any, path: str, value: Any) -> None:
    """Assign *value* at a dotted attribute path.

    Raises:
        ValueError: If an intermediate hop is None.
    """
    parts = path.split(".")
    current = obj
    for part in parts[:-1]:
        current = getattr(current, part)
        if current is None:
            raise ValueError(f"Cannot set '{path}': '{part}' is empty")
    setattr(current, parts[-1], value)
