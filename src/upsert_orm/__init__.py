"""upsert-orm: batch upserts of annotated record trees into PostgreSQL.

Maps pydantic record types onto tables, resolves which records already exist
by their lookup keys with one query per batch, writes inserts and updates,
propagates parent keys into child collections and removes orphans, all
scoped to a tenant.

Usage:
    from upsert_orm import UpsertORM, Record, Column, Child
    from upsert_orm import PostgresExecutor, create_orm, load_db_config
    from upsert_orm import ModelNotFoundError, RecordValidationError
"""

__version__ = "0.1.0"

# Records and schema
from upsert_orm.records import Record
from upsert_orm.schema import Child, Column, TableMetadata, get_table_metadata

# ORM
from upsert_orm.decoding import decode
from upsert_orm.orm import UpsertORM

# Adapters
from upsert_orm.adapters.base import DatabaseExecutor, Transaction
from upsert_orm.adapters.postgres import PostgresExecutor

# Encryption
from upsert_orm.codec.crypto import AesGcmCipher, Cipher, generate_key

# Config
from upsert_orm.config.loader import load_db_config
from upsert_orm.config.models import DatabaseConfig, DatabaseProfile, OrmSettings

# Factory
from upsert_orm.factory import (
    ProfileNotFoundError,
    create_orm,
    get_executor,
    resolve_url,
)

# Errors
from upsert_orm.errors import (
    CodecError,
    ConfigurationError,
    DecryptionError,
    EncryptionKeyError,
    ForeignKeyError,
    ModelNotFoundError,
    ORMError,
    QueryError,
    RecordValidationError,
)

__all__ = [
    # Records and schema
    "Record",
    "Column",
    "Child",
    "TableMetadata",
    "get_table_metadata",
    # ORM
    "UpsertORM",
    "decode",
    # Adapters
    "DatabaseExecutor",
    "Transaction",
    "PostgresExecutor",
    # Encryption
    "Cipher",
    "AesGcmCipher",
    "generate_key",
    # Config
    "load_db_config",
    "DatabaseProfile",
    "DatabaseConfig",
    "OrmSettings",
    # Factory
    "create_orm",
    "get_executor",
    "ProfileNotFoundError",
    "resolve_url",
    # Errors
    "ORMError",
    "ConfigurationError",
    "ModelNotFoundError",
    "RecordValidationError",
    "ForeignKeyError",
    "CodecError",
    "EncryptionKeyError",
    "DecryptionError",
    "QueryError",
]
