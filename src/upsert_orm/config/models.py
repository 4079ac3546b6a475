"""Pydantic models for database and ORM configuration."""

import base64
import binascii

from pydantic import BaseModel, Field, field_validator


# ============================================================================
# Configuration Models
# ============================================================================


class DatabaseProfile(BaseModel):
    """Database connection profile from db.toml."""

    url: str
    description: str = ""
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution
    provider: str = "postgres"  # Defaults to postgres


class OrmSettings(BaseModel):
    """ORM settings from the ``[orm]`` table of db.toml.

    Example:
        >>> OrmSettings(batch_size=50).batch_size
        50
    """

    batch_size: int = Field(default=100, gt=0)
    encryption_key: str | None = None  # base64 of a 32-byte AES key

    @field_validator("encryption_key")
    @classmethod
    def _check_encryption_key(cls, value: str | None) -> str | None:
        if value is None:
            return value
        try:
            raw = base64.b64decode(value, validate=True)
        except binascii.Error as exc:
            raise ValueError("encryption_key must be base64") from exc
        if len(raw) != 32:
            raise ValueError("encryption_key must decode to 32 bytes")
        return value

    @property
    def encryption_key_bytes(self) -> bytes | None:
        """Decoded encryption key, or None when not configured."""
        if self.encryption_key is None:
            return None
        return base64.b64decode(self.encryption_key)


class DatabaseConfig(BaseModel):
    """Complete database configuration from db.toml."""

    profiles: dict[str, DatabaseProfile]
    orm: OrmSettings = Field(default_factory=OrmSettings)
