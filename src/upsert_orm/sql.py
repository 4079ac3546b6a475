"""Small helpers for building ``$N``-placeholder SQL."""

from typing import Any


class Params:
    """Accumulates positional parameters and hands out their placeholders.

    Example:
        >>> params = Params()
        >>> params.add("acme"), params.add(3)
        ('$1', '$2')
        >>> params.values
        ['acme', 3]
    """

    def __init__(self) -> None:
        self.values: list[Any] = []

    def add(self, value: Any) -> str:
        self.values.append(value)
        return f"${len(self.values)}"

    def __len__(self) -> int:
        return len(self.values)


def placeholder(params: Params, value: Any, jsonb: bool = False) -> str:
    """Bind *value* and return its placeholder, cast to jsonb when needed."""
    marker = params.add(value)
    return f"CAST({marker} AS jsonb)" if jsonb else marker
