"""SHA-256 helpers for object IDs and packfile handles."""

import hashlib

from common.types import ObjectID


def compute_object_id(data: bytes) -> ObjectID:
    """
    Compute the content address of a blob.

    Args:
        data: Encoded object or raw chunk bytes

    Returns:
        32-byte SHA-256 digest
    """
    return hashlib.sha256(data).digest()


def compute_checksum(data: bytes) -> str:
    """
    Compute SHA-256 checksum for given data.

    Args:
        data: Bytes to compute checksum for

    Returns:
        Hexadecimal string representation of SHA-256 hash
    """
    return hashlib.sha256(data).hexdigest()


def verify_checksum(data: bytes, expected: str) -> bool:
    """
    Verify that data matches expected checksum.

    Args:
        data: Bytes to verify
        expected: Expected SHA-256 checksum (hex string)

    Returns:
        True if checksum matches, False otherwise
    """
    return compute_checksum(data) == expected
