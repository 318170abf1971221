"""Custom exception classes shared by the store, remotes and keystore."""

from typing import Dict, Optional


class BkpException(Exception):
    """
    Base exception class for all bkp errors.
    """
    pass


class MalformedObject(BkpException):
    """
    Raised when encoded object bytes cannot be decoded.
    """
    pass


class CorruptPackfile(BkpException):
    """
    Raised when a packfile fails structural validation.
    """
    pass


class NotFound(BkpException):
    """
    Raised when an object, packfile or keystore does not exist at the source
    that was asked. Callers may fall back to another source.
    """
    pass


class HashCollision(BkpException):
    """
    Raised when two different byte strings produce the same identifier.
    """
    pass


class RemoteError(BkpException):
    """
    Base class for errors reported by a remote backend.
    """

    def __init__(self, message: str, remote: Optional[str] = None):
        super().__init__(message)
        self.remote = remote


class RemoteUnavailable(RemoteError):
    """
    Raised when a remote cannot be reached or timed out. Transient.
    """
    pass


class RemoteCorrupt(RemoteError):
    """
    Raised when bytes read from a remote fail their integrity check.
    """
    pass


class WrongPassword(BkpException):
    """
    Raised when the master password does not decrypt the keystore.
    """
    pass


class ConfigError(BkpException):
    """
    Raised when the configuration is invalid.
    """
    pass


class RestoreError(BkpException):
    """
    Raised when one or more items could not be fetched from any source.

    Attributes:
        failures: Mapping of item identifier to the last error seen for it
    """

    def __init__(self, message: str, failures: Optional[Dict[str, Exception]] = None):
        super().__init__(message)
        self.failures = dict(failures or {})
