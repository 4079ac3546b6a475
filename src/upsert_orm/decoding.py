"""Decode JSON payloads into records in partial mode.

Records decoded here only write the fields present in the payload (or set
to a non-zero value afterwards), which is what makes PATCH-style updates
possible:

    blog = decode(b'{"id": "b-1", "name": "Renamed"}', Blog)
    orm.save_model(blog)   # UPDATE blogs SET name = ..., updated_* ...

Lists of records, child collections and related records are switched to
partial mode too.
"""

from typing import Any, TypeVar

from pydantic import TypeAdapter

from upsert_orm.records import Record

R = TypeVar("R", bound=Record)


def decode(body: str | bytes, record_type: type[R]) -> R | list[R]:
    """Validate a JSON object (or array) into *record_type* in partial mode.

    Raises:
        pydantic.ValidationError: If the payload does not match the type.
    """
    stripped = body.lstrip() if isinstance(body, (str, bytes)) else body
    if stripped[:1] in ("[", b"["):
        records = TypeAdapter(list[record_type]).validate_json(body)
        for record in records:
            mark_partial_tree(record)
        return records

    record = record_type.model_validate_json(body)
    mark_partial_tree(record)
    return record


def mark_partial_tree(value: Any) -> None:
    """Mark *value* and every record nested inside it as partial."""
    if isinstance(value, Record):
        value.mark_partial()
        for name in type(value).model_fields:
            mark_partial_tree(getattr(value, name, None))
    elif isinstance(value, (list, tuple)):
        for item in value:
            mark_partial_tree(item)
    elif isinstance(value, dict):
        for item in value.values():
            mark_partial_tree(item)
