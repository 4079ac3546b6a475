"""AES-256-GCM encryption for encrypted columns.

Ciphertexts carry their random 12-byte nonce as a prefix, so a stored value
is ``nonce || ciphertext || tag``.  The ORM never holds a process-wide key:
each ``UpsertORM`` receives its own ``Cipher``.

Usage:
    from upsert_orm.codec.crypto import AesGcmCipher, generate_key

    cipher = AesGcmCipher(generate_key())
    token = cipher.encrypt(b"secret")
    assert cipher.decrypt(token) == b"secret"
"""

import os
from typing import Protocol

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from upsert_orm.errors import DecryptionError, EncryptionKeyError

KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16


class Cipher(Protocol):
    """Authenticated encryption capability injected into the column codec."""

    def encrypt(self, plaintext: bytes) -> bytes:
        ...

    def decrypt(self, ciphertext: bytes) -> bytes:
        ...


def generate_key() -> bytes:
    """Return a new random 32-byte key."""
    return os.urandom(KEY_SIZE)


def _check_key(key: bytes) -> None:
    if len(key) != KEY_SIZE:
        raise EncryptionKeyError(f"encryption keys must be {KEY_SIZE} bytes")


def encrypt(plaintext: bytes, key: bytes) -> bytes:
    """Encrypt *plaintext* with *key*, prefixing the random nonce.

    Raises:
        EncryptionKeyError: If *key* is not 32 bytes.
    """
    _check_key(key)
    nonce = os.urandom(NONCE_SIZE)
    return nonce + AESGCM(key).encrypt(nonce, plaintext, None)


def decrypt(ciphertext: bytes, key: bytes) -> bytes:
    """Reverse :func:`encrypt`.

    Raises:
        EncryptionKeyError: If *key* is not 32 bytes.
        DecryptionError: If the ciphertext is truncated or fails authentication.
    """
    _check_key(key)
    if len(ciphertext) < NONCE_SIZE + TAG_SIZE:
        raise DecryptionError("ciphertext too short")
    nonce, sealed = ciphertext[:NONCE_SIZE], ciphertext[NONCE_SIZE:]
    try:
        return AESGCM(key).decrypt(nonce, sealed, None)
    except InvalidTag as exc:
        raise DecryptionError("ciphertext failed authentication") from exc


class AesGcmCipher:
    """``Cipher`` bound to a single 32-byte key."""

    def __init__(self, key: bytes) -> None:
        _check_key(key)
        self._key = key

    def encrypt(self, plaintext: bytes) -> bytes:
        return encrypt(plaintext, self._key)

    def decrypt(self, ciphertext: bytes) -> bytes:
        return decrypt(ciphertext, self._key)
