"""Shared RPC message definitions for the remote service.

Packfile and keystore bodies travel as raw bytes; only the small control
messages below are JSON-encoded.
"""

from dataclasses import dataclass, field
from typing import List, Optional
import json


@dataclass
class PutPackfileResponse:
    """Response message for PutPackfile RPC."""
    handle: str

    def to_json(self) -> bytes:
        """Serialize to JSON bytes."""
        return json.dumps({'handle': self.handle}).encode('utf-8')

    @classmethod
    def from_json(cls, data: bytes) -> 'PutPackfileResponse':
        """Deserialize from JSON bytes."""
        obj = json.loads(data)
        return cls(handle=obj['handle'])


@dataclass
class GetPackfileRequest:
    """Request message for GetPackfile RPC."""
    handle: str

    def to_json(self) -> bytes:
        """Serialize to JSON bytes."""
        return json.dumps({'handle': self.handle}).encode('utf-8')

    @classmethod
    def from_json(cls, data: bytes) -> 'GetPackfileRequest':
        """Deserialize from JSON bytes."""
        obj = json.loads(data)
        return cls(handle=obj['handle'])


@dataclass
class ListPackfilesResponse:
    """Response message for ListPackfiles RPC."""
    handles: List[str] = field(default_factory=list)

    def to_json(self) -> bytes:
        return json.dumps({'handles': self.handles}).encode('utf-8')

    @classmethod
    def from_json(cls, data: bytes) -> 'ListPackfilesResponse':
        obj = json.loads(data)
        return cls(handles=list(obj.get('handles', [])))


@dataclass
class PutKeystoreResponse:
    """Response message for PutKeystore RPC."""
    success: bool
    checksum: Optional[str] = None
    error_message: Optional[str] = None

    def to_json(self) -> bytes:
        return json.dumps({
            'success': self.success,
            'checksum': self.checksum,
            'error_message': self.error_message
        }).encode('utf-8')

    @classmethod
    def from_json(cls, data: bytes) -> 'PutKeystoreResponse':
        obj = json.loads(data)
        return cls(
            success=obj['success'],
            checksum=obj.get('checksum'),
            error_message=obj.get('error_message')
        )


@dataclass
class PingResponse:
    """Response message for Ping RPC."""
    status: str
    name: str
    packfile_count: int = 0

    def to_json(self) -> bytes:
        return json.dumps(self.__dict__).encode('utf-8')

    @classmethod
    def from_json(cls, data: bytes) -> 'PingResponse':
        return cls(**json.loads(data))
