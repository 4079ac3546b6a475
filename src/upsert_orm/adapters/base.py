"""Store protocol definitions.

Defines the ``DatabaseExecutor`` and ``Transaction`` Protocols the ORM runs
against.  Every call is synchronous and blocks on the store round-trip.  SQL
uses ``$N`` positional placeholders and ``args`` is the matching list.

Usage:
    from upsert_orm.adapters.base import DatabaseExecutor

    def count_users(executor: DatabaseExecutor) -> int:
        tx = executor.begin()
        try:
            rows = tx.query("SELECT count(*) AS n FROM users WHERE tenant_id = $1", ["acme"])
            tx.commit()
        except Exception:
            tx.rollback()
            raise
        return rows[0]["n"]
"""

from typing import Any, Protocol


class Transaction(Protocol):
    """One open transaction on the store.

    The ORM never commits a transaction it did not begin.
    """

    def query(self, sql: str, args: list[Any]) -> list[dict[str, Any]]:
        """Run a row-returning statement.

        Args:
            sql: SQL with ``$1``, ``$2``, ... placeholders.
            args: Positional parameter values.

        Returns:
            List of dicts, one per row, keyed by result column name.

        Example:
            rows = tx.query("SELECT id FROM blogs WHERE name = ANY($1)", [["a", "b"]])
        """
        ...

    def execute(self, sql: str, args: list[Any]) -> int:
        """Run a statement and return the number of rows it affected."""
        ...

    def commit(self) -> None:
        ...

    def rollback(self) -> None:
        ...


class DatabaseExecutor(Protocol):
    """Source of transactions that all store adapters implement."""

    def begin(self) -> Transaction:
        """Open a new transaction."""
        ...

    def close(self) -> None:
        """Release connections and clean up resources.

        Call this when done with the executor, especially in long-running
        processes.
        """
        ...
