"""
Keystore publishing and recovery.

Encrypted keystore layout (little-endian):

    b"BKPK" | u8 version | u32 rounds | 16-byte salt | 12-byte nonce | ciphertext

The header up to the salt is authenticated as associated data, so the
stored rounds and salt cannot be swapped without failing decryption.
"""

import os
import struct

from cryptography.exceptions import InvalidTag

from common.constants import (
    KDF_ROUNDS,
    KEYSTORE_FORMAT_VERSION,
    KEYSTORE_MAGIC,
    KEYSTORE_NONCE_LEN,
    KEYSTORE_SALT_LEN,
    MAX_KDF_ROUNDS,
)
from common.exceptions import RemoteCorrupt, WrongPassword
from common.logging_config import get_logger
from keystore.crypto import decrypt, derive_key, encrypt
from remote.base import Remote

logger = get_logger(__name__)

_HEADER = struct.Struct(f"<4sBI{KEYSTORE_SALT_LEN}s")


class KeystoreManager:
    """
    Encrypts the keystore under a password-derived key and moves the
    encrypted copy to and from remotes.
    """

    def __init__(self, rounds: int = KDF_ROUNDS):
        if not 1 <= rounds <= MAX_KDF_ROUNDS:
            raise ValueError(f"kdf rounds out of range: {rounds}")
        self.rounds = rounds

    def seal(self, plaintext: bytes, password: str) -> bytes:
        """
        Encrypt a serialized keystore.

        Returns:
            Encrypted keystore blob
        """
        salt = os.urandom(KEYSTORE_SALT_LEN)
        header = _HEADER.pack(KEYSTORE_MAGIC, KEYSTORE_FORMAT_VERSION, self.rounds, salt)
        key = derive_key(password, salt, self.rounds)
        return header + encrypt(key, plaintext, aad=header)

    def open(self, blob: bytes, password: str, source: str = "keystore") -> bytes:
        """
        Decrypt a keystore blob.

        Raises:
            RemoteCorrupt: If the header cannot be parsed or asks for more
                than MAX_KDF_ROUNDS kdf rounds
            WrongPassword: If authentication fails
        """
        if len(blob) < _HEADER.size + KEYSTORE_NONCE_LEN:
            raise RemoteCorrupt(f"{source}: keystore blob truncated ({len(blob)} bytes)", remote=source)

        header = blob[:_HEADER.size]
        magic, version, rounds, salt = _HEADER.unpack(header)
        if magic != KEYSTORE_MAGIC:
            raise RemoteCorrupt(f"{source}: bad keystore magic {magic!r}", remote=source)
        if version != KEYSTORE_FORMAT_VERSION:
            raise RemoteCorrupt(f"{source}: unsupported keystore version {version}", remote=source)
        if not 1 <= rounds <= MAX_KDF_ROUNDS:
            raise RemoteCorrupt(f"{source}: invalid kdf rounds {rounds}", remote=source)

        key = derive_key(password, salt, rounds)
        try:
            return decrypt(key, blob[_HEADER.size:], aad=header)
        except InvalidTag:
            logger.warning(f"Keystore authentication failed for {source}")
            raise WrongPassword(f"wrong password for keystore from {source}")

    async def publish(self, remote: Remote, plaintext: bytes, password: str) -> bytes:
        """
        Encrypt and store the keystore on a remote. Given a RemoteGroup,
        every member receives a copy.

        Returns:
            The encrypted blob that was stored
        """
        blob = self.seal(plaintext, password)
        await remote.put_keystore(blob)
        logger.info(f"Published keystore to {remote.name}")
        return blob

    async def recover(self, remote: Remote, password: str) -> bytes:
        """
        Fetch and decrypt the keystore copy held by one remote.

        Raises:
            NotFound: If the remote never received a publish
            WrongPassword: On authentication failure
            RemoteCorrupt: On checksum mismatch or an unparseable blob
        """
        blob = await remote.get_keystore()
        plaintext = self.open(blob, password, source=remote.name)
        logger.info(f"Recovered keystore from {remote.name}")
        return plaintext
