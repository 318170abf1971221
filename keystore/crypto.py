"""Password key derivation and authenticated encryption helpers."""

import os
from typing import Optional

import bcrypt
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from common.constants import KEYSTORE_NONCE_LEN

KEY_LEN = 32


def derive_key(password: str, salt: bytes, rounds: int) -> bytes:
    """
    Derive a symmetric key from a password with bcrypt-pbkdf.

    Args:
        password: Master password
        salt: Random salt stored next to the ciphertext
        rounds: bcrypt-pbkdf work factor

    Returns:
        32-byte key
    """
    if rounds < 1:
        raise ValueError("rounds must be positive")
    password_bytes = password.encode('utf-8')
    return bcrypt.kdf(
        password=password_bytes,
        salt=salt,
        desired_key_bytes=KEY_LEN,
        rounds=rounds,
        ignore_few_rounds=True
    )


def generate_key() -> bytes:
    return AESGCM.generate_key(bit_length=KEY_LEN * 8)


def encrypt(key: bytes, plaintext: bytes, aad: Optional[bytes] = None) -> bytes:
    """
    Encrypt with AES-256-GCM.

    Returns:
        12-byte nonce followed by ciphertext and tag
    """
    nonce = os.urandom(KEYSTORE_NONCE_LEN)
    return nonce + AESGCM(key).encrypt(nonce, plaintext, aad)


def decrypt(key: bytes, blob: bytes, aad: Optional[bytes] = None) -> bytes:
    """
    Decrypt a blob produced by encrypt().

    Raises:
        InvalidTag: If the key is wrong or the blob was tampered with
    """
    if len(blob) < KEYSTORE_NONCE_LEN:
        raise InvalidTag()
    nonce, ciphertext = blob[:KEYSTORE_NONCE_LEN], blob[KEYSTORE_NONCE_LEN:]
    return AESGCM(key).decrypt(nonce, ciphertext, aad)
