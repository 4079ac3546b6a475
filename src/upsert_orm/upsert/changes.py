"""Column-level change records produced by the change planner."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ChangeType(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class DBChange:
    """One record's resolved column values and the record they came from.

    ``changes`` maps column name to the already-encoded value.  The executor
    writes the stored primary key back into ``changes`` and ``record``.
    """

    changes: dict[str, Any]
    record: Any
    kind: ChangeType
    key: str | None = None


@dataclass
class ChangeSet:
    """Planned inserts and updates for one batch of a single record type."""

    inserts: list[DBChange] = field(default_factory=list)
    updates: list[DBChange] = field(default_factory=list)

    @property
    def changes(self) -> list[DBChange]:
        """Updates followed by inserts, the order children are reconciled in."""
        return [*self.updates, *self.inserts]

    def __len__(self) -> int:
        return len(self.inserts) + len(self.updates)
