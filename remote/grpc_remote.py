"""
gRPC client remote: talks to a bkp remote server (remoteserver/).

Packfile and keystore bodies are sent as raw bytes; control messages are
JSON (see common/protocol.py).
"""

import logging
from typing import List, Optional

import grpc

from common.constants import (
    GRPC_KEEPALIVE_TIME_MS,
    GRPC_KEEPALIVE_TIMEOUT_MS,
    GRPC_MAX_MESSAGE_BYTES,
    REMOTE_SERVICE_NAME,
)
from common.exceptions import NotFound, RemoteCorrupt, RemoteError, RemoteUnavailable
from common.protocol import (
    GetPackfileRequest,
    ListPackfilesResponse,
    PingResponse,
    PutKeystoreResponse,
    PutPackfileResponse,
)
from objectstore.checksum import compute_checksum, verify_checksum
from remote.base import Remote

logger = logging.getLogger(__name__)

CHANNEL_OPTIONS = [
    ('grpc.keepalive_time_ms', GRPC_KEEPALIVE_TIME_MS),
    ('grpc.keepalive_timeout_ms', GRPC_KEEPALIVE_TIMEOUT_MS),
    ('grpc.keepalive_permit_without_calls', 1),
    ('grpc.max_send_message_length', GRPC_MAX_MESSAGE_BYTES),
    ('grpc.max_receive_message_length', GRPC_MAX_MESSAGE_BYTES),
]


class GrpcRemote(Remote):
    """
    Remote reached over gRPC at "host:port".
    """

    def __init__(
        self,
        name: str,
        address: str,
        upload_cost: int = 1,
        download_cost: int = 1,
        reliable: bool = False,
        timeout: Optional[float] = None
    ):
        super().__init__(name, upload_cost=upload_cost, download_cost=download_cost, reliable=reliable)
        self.address = address
        self.timeout = timeout
        self._channel: Optional[grpc.aio.Channel] = None

    def _get_channel(self) -> grpc.aio.Channel:
        """Get or lazily create the channel to the server."""
        if self._channel is None:
            self._channel = grpc.aio.insecure_channel(self.address, options=CHANNEL_OPTIONS)
            logger.info(f"Established gRPC channel to {self.name} at {self.address}")
        return self._channel

    async def _invoke(self, method: str, request: bytes) -> bytes:
        multi_callable = self._get_channel().unary_unary(
            f'/{REMOTE_SERVICE_NAME}/{method}',
            request_serializer=lambda x: x,
            response_deserializer=lambda x: x,
        )
        try:
            return await multi_callable(request, timeout=self.timeout)
        except grpc.RpcError as e:
            raise self._translate(method, e)

    def _translate(self, method: str, error: grpc.RpcError) -> RemoteError:
        code = error.code()
        details = error.details()
        if code == grpc.StatusCode.NOT_FOUND:
            return NotFound(f"{method} on {self.name}: {details}")
        if code == grpc.StatusCode.DATA_LOSS:
            return RemoteCorrupt(f"{method} on {self.name}: {details}", remote=self.name)
        if code in (grpc.StatusCode.UNAVAILABLE, grpc.StatusCode.DEADLINE_EXCEEDED):
            return RemoteUnavailable(f"{self.name} unavailable during {method}: {details}", remote=self.name)
        logger.error(f"gRPC error on {self.name} during {method}: {code} {details}")
        return RemoteError(f"{method} on {self.name} failed: {code.name}: {details}", remote=self.name)

    async def put_packfile(self, data: bytes) -> str:
        response = PutPackfileResponse.from_json(await self._invoke('PutPackfile', data))
        expected = compute_checksum(data)
        if response.handle != expected:
            raise RemoteCorrupt(
                f"{self.name} acknowledged packfile as {response.handle}, expected {expected}",
                remote=self.name
            )
        return response.handle

    async def get_packfile(self, handle: str) -> bytes:
        data = await self._invoke('GetPackfile', GetPackfileRequest(handle=handle).to_json())
        if not verify_checksum(data, handle):
            raise RemoteCorrupt(f"packfile {handle} from {self.name} failed checksum", remote=self.name)
        return data

    async def list(self) -> List[str]:
        response = ListPackfilesResponse.from_json(await self._invoke('ListPackfiles', b'{}'))
        return response.handles

    async def put_keystore(self, data: bytes) -> None:
        response = PutKeystoreResponse.from_json(await self._invoke('PutKeystore', data))
        if not response.success:
            raise RemoteUnavailable(f"{self.name} rejected keystore: {response.error_message}", remote=self.name)
        if response.checksum != compute_checksum(data):
            raise RemoteCorrupt(f"{self.name} stored a different keystore than sent", remote=self.name)

    async def get_keystore(self) -> bytes:
        return await self._invoke('GetKeystore', b'{}')

    async def ping(self) -> PingResponse:
        return PingResponse.from_json(await self._invoke('Ping', b'{}'))

    async def close(self) -> None:
        if self._channel:
            await self._channel.close()
            self._channel = None
