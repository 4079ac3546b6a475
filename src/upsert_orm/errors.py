"""Error types raised by the upsert ORM.

Every error derives from ``ORMError`` so callers can catch the whole family
at once.  Store failures are wrapped in ``QueryError`` with the original
driver exception chained as ``__cause__``.

Usage:
    from upsert_orm.errors import ModelNotFoundError, RecordValidationError

    try:
        orm.save_model(user)
    except ModelNotFoundError:
        ...
"""

from typing import Any


class ORMError(Exception):
    """Base class for all upsert ORM errors."""

    pass


class ConfigurationError(ORMError):
    """Raised when a record type declaration is invalid.

    Bad or missing table names, child fields that are not collections of
    records, and dangling ``related`` references all land here.  These are
    programming errors and are never retried.
    """

    pass


class ModelNotFoundError(ORMError):
    """Raised when an update targets a primary key that no longer exists."""

    def __init__(self, table: str = "", primary_key: Any = None) -> None:
        self.table = table
        self.primary_key = primary_key
        if table:
            message = f"Model Not Found: {table} '{primary_key}'"
        else:
            message = "Model Not Found"
        super().__init__(message)


class RecordValidationError(ORMError):
    """Aggregated required-field failures for a whole batch.

    Messages are de-duplicated and sorted so the same batch always produces
    the same error text.
    """

    def __init__(self, messages: list[str]) -> None:
        self.messages: list[str] = sorted(set(messages))
        super().__init__("; ".join(self.messages))


class ForeignKeyError(ORMError):
    """Raised when a required foreign key cannot be resolved by lookup."""

    def __init__(
        self,
        message: str,
        table: str,
        key: str,
        key_column: str,
        related_field: str,
    ) -> None:
        self.table = table
        self.key = key
        self.key_column = key_column
        self.related_field = related_field
        super().__init__(
            f"{message}: table '{table}', column '{key_column}', "
            f"related field '{related_field}', key '{key}'"
        )


class CodecError(ORMError):
    """Raised when a column value cannot be encoded or decoded."""

    def __init__(self, message: str, table: str = "", column: str = "") -> None:
        self.table = table
        self.column = column
        location = f"{table}.{column}" if table and column else (column or table)
        super().__init__(f"{message} ({location})" if location else message)


class EncryptionKeyError(CodecError):
    """Raised for a missing or wrongly sized encryption key."""

    pass


class DecryptionError(CodecError):
    """Raised when a stored ciphertext cannot be decrypted."""

    pass


class QueryError(ORMError):
    """A store error wrapped with the table and operation being attempted."""

    def __init__(self, table: str, operation: str, sql: str, cause: BaseException) -> None:
        self.table = table
        self.operation = operation
        self.sql = sql
        self.cause = cause
        super().__init__(f"{operation} on '{table}' failed: {cause}\nQuery: {sql}")
