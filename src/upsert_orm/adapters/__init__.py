"""Store adapters implementing the ``DatabaseExecutor`` protocol."""

from upsert_orm.adapters.base import DatabaseExecutor, Transaction
from upsert_orm.adapters.postgres import PostgresExecutor, PostgresTransaction

__all__ = [
    "DatabaseExecutor",
    "PostgresExecutor",
    "PostgresTransaction",
    "Transaction",
]
