"""
Credential encryption — AES-256-GCM.

Stored form: `iv_hex:auth_tag_hex:ciphertext_hex`.

Key derivation from the configured raw key:
- 64 hex characters → the decoded 32 bytes
- at least 32 characters → the first 32 UTF-8 bytes
- anything shorter → SHA-256 of the UTF-8 bytes
"""

from __future__ import annotations

import hashlib
import os
import string

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

IV_BYTES = 16
TAG_BYTES = 16


class DecryptionError(Exception):
    """Stored secret could not be decrypted (wrong key or corrupted value)."""


def derive_key(raw: str) -> bytes:
    if not raw:
        raise ValueError("encryption key is not configured")
    if len(raw) == 64 and all(c in string.hexdigits for c in raw):
        return bytes.fromhex(raw)
    encoded = raw.encode("utf-8")
    if len(raw) >= 32:
        return encoded[:32]
    return hashlib.sha256(encoded).digest()


def encrypt(plaintext: str, key: bytes) -> str:
    iv = os.urandom(IV_BYTES)
    sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
    cipher, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
    return f"{iv.hex()}:{tag.hex()}:{cipher.hex()}"


def decrypt(stored: str, key: bytes) -> str:
    parts = stored.split(":")
    if len(parts) != 3:
        raise DecryptionError("malformed encrypted value")
    try:
        iv, tag, cipher = (bytes.fromhex(p) for p in parts)
        plain = AESGCM(key).decrypt(iv, cipher + tag, None)
    except (ValueError, InvalidTag) as e:
        raise DecryptionError("could not decrypt value") from e
    return plain.decode("utf-8")


__all__ = ("DecryptionError", "derive_key", "encrypt", "decrypt")
