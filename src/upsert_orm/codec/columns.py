"""Per-column value conversion between records and the store.

``ColumnCodec.encode`` turns a record field value into what gets bound as a
statement parameter; ``ColumnCodec.decode`` reverses it for values read
back.  Only JSONB and encrypted columns are transformed; every other value
passes through unchanged.

A column that is both JSONB and encrypted is serialized first and the JSON
text is encrypted.  On read only the encrypted path yields JSON text; plain
jsonb values arrive already parsed by the driver.
"""

import base64
import binascii
import json
from typing import Any

from pydantic_core import PydanticSerializationError, to_json

from upsert_orm.codec.crypto import Cipher
from upsert_orm.errors import CodecError, DecryptionError, EncryptionKeyError
from upsert_orm.schema.models import FieldMetadata


class ColumnCodec:
    """Encode and decode JSONB and encrypted column values.

    Args:
        cipher: Encryption capability for encrypted columns.  Only needed when
            a record type actually declares one.
    """

    def __init__(self, cipher: Cipher | None = None) -> None:
        self._cipher = cipher

    def encode(self, value: Any, field: FieldMetadata, table: str = "") -> Any:
        """Convert a record field value into its column representation."""
        if field.jsonb:
            value = self._encode_jsonb(value, field, table)
        if field.encrypted:
            value = self._encrypt(value, field, table)
        return value

    def decode(self, value: Any, field: FieldMetadata, table: str = "") -> Any:
        """Convert a stored column value back into a record field value."""
        if value is None:
            return None
        if not field.encrypted:
            # psycopg already parses jsonb columns, string scalars included
            return value
        value = self._decrypt(value, field, table)
        if field.jsonb:
            return self._decode_jsonb(value, field, table) if value else None
        return value

    # ------------------------------------------------------------------
    # JSONB
    # ------------------------------------------------------------------

    def _encode_jsonb(self, value: Any, field: FieldMetadata, table: str) -> str | None:
        # Empty values are stored as NULL, never as "null" or "[]"
        if value is None or value == "" or (isinstance(value, (list, tuple)) and not value):
            return None
        try:
            return to_json(value).decode("utf-8")
        except PydanticSerializationError as exc:
            raise CodecError(
                f"cannot serialize value for JSONB column: {exc}", table, field.column_name
            ) from exc

    def _decode_jsonb(self, value: str, field: FieldMetadata, table: str) -> Any:
        try:
            return json.loads(value)
        except json.JSONDecodeError as exc:
            raise CodecError(
                f"malformed JSON in column: {exc.msg}", table, field.column_name
            ) from exc

    # ------------------------------------------------------------------
    # Encryption
    # ------------------------------------------------------------------

    def _require_cipher(self, field: FieldMetadata, table: str) -> Cipher:
        if self._cipher is None:
            raise EncryptionKeyError("no encryption key configured", table, field.column_name)
        return self._cipher

    def _encrypt(self, value: Any, field: FieldMetadata, table: str) -> Any:
        if value is None or value == "":
            return value
        if isinstance(value, str):
            plaintext = value.encode("utf-8")
        elif isinstance(value, (bytes, bytearray)):
            plaintext = bytes(value)
        else:
            raise CodecError(
                "can only encrypt values that can be converted to bytes",
                table,
                field.column_name,
            )
        cipher = self._require_cipher(field, table)
        try:
            sealed = cipher.encrypt(plaintext)
        except EncryptionKeyError as exc:
            raise EncryptionKeyError(str(exc), table, field.column_name) from exc
        return base64.b64encode(sealed).decode("ascii")

    def _decrypt(self, value: Any, field: FieldMetadata, table: str) -> str:
        if value == "":
            return value
        if not isinstance(value, str):
            raise DecryptionError(
                f"encrypted columns must be stored as strings, got {type(value).__name__}",
                table,
                field.column_name,
            )
        cipher = self._require_cipher(field, table)
        try:
            sealed = base64.b64decode(value, validate=True)
        except binascii.Error as exc:
            raise DecryptionError("stored value is not valid base64", table, field.column_name) from exc
        try:
            plaintext = cipher.decrypt(sealed)
        except (DecryptionError, EncryptionKeyError) as exc:
            raise type(exc)(str(exc), table, field.column_name) from exc
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecryptionError(
                "decrypted value is not valid UTF-8", table, field.column_name
            ) from exc
