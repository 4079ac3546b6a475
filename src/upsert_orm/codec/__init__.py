"""Column value codecs: JSONB serialization and AES-GCM encryption."""

from upsert_orm.codec.columns import ColumnCodec
from upsert_orm.codec.crypto import AesGcmCipher, Cipher, decrypt, encrypt, generate_key

__all__ = [
    "AesGcmCipher",
    "Cipher",
    "ColumnCodec",
    "decrypt",
    "encrypt",
    "generate_key",
]
