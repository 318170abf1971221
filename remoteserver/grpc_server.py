"""gRPC server exposing a LocalRemote directory as a bkp remote."""

import grpc
from grpc import aio
import logging

from common.constants import GRPC_MAX_MESSAGE_BYTES, REMOTE_SERVICE_NAME
from common.exceptions import BkpException, NotFound, RemoteCorrupt
from common.protocol import (
    GetPackfileRequest,
    ListPackfilesResponse,
    PingResponse,
    PutKeystoreResponse,
    PutPackfileResponse,
)
from objectstore.checksum import compute_checksum
from remote.local_remote import LocalRemote

logger = logging.getLogger(__name__)


class RemoteServicer:
    """
    gRPC service implementation for remote storage operations.
    """

    def __init__(self, storage: LocalRemote):
        """
        Initialize servicer with the directory it serves.

        Args:
            storage: LocalRemote holding packfiles and the keystore
        """
        self.storage = storage

    async def PutPackfile(
        self,
        request_bytes: bytes,
        context: grpc.aio.ServicerContext
    ) -> bytes:
        """
        Handle PutPackfile RPC (unary). The request is the raw packfile.

        Returns:
            Serialized PutPackfileResponse
        """
        try:
            handle = await self.storage.put_packfile(request_bytes)
        except BkpException as e:
            logger.error(f"Failed to store packfile: {e}")
            await self._abort(context, e)
            return b''

        logger.info(f"Stored packfile {handle[:12]} ({len(request_bytes)} bytes)")
        return PutPackfileResponse(handle=handle).to_json()

    async def GetPackfile(
        self,
        request_bytes: bytes,
        context: grpc.aio.ServicerContext
    ) -> bytes:
        """
        Handle GetPackfile RPC (unary).

        Args:
            request_bytes: Serialized GetPackfileRequest
            context: gRPC context

        Returns:
            Raw packfile bytes
        """
        try:
            request = GetPackfileRequest.from_json(request_bytes)
        except (ValueError, KeyError) as e:
            await context.abort(grpc.StatusCode.INVALID_ARGUMENT, f"Bad GetPackfile request: {e}")
            return b''

        try:
            data = await self.storage.get_packfile(request.handle)
        except BkpException as e:
            await self._abort(context, e)
            return b''

        logger.debug(f"Served packfile {request.handle[:12]}")
        return data

    async def ListPackfiles(
        self,
        request_bytes: bytes,
        context: grpc.aio.ServicerContext
    ) -> bytes:
        try:
            handles = await self.storage.list()
        except BkpException as e:
            logger.error(f"Failed to list packfiles: {e}")
            await self._abort(context, e)
            return b''
        return ListPackfilesResponse(handles=handles).to_json()

    async def PutKeystore(
        self,
        request_bytes: bytes,
        context: grpc.aio.ServicerContext
    ) -> bytes:
        try:
            await self.storage.put_keystore(request_bytes)
        except BkpException as e:
            error_msg = f"Error storing keystore: {e}"
            logger.error(error_msg)
            return PutKeystoreResponse(success=False, error_message=error_msg).to_json()

        return PutKeystoreResponse(success=True, checksum=compute_checksum(request_bytes)).to_json()

    async def GetKeystore(
        self,
        request_bytes: bytes,
        context: grpc.aio.ServicerContext
    ) -> bytes:
        try:
            return await self.storage.get_keystore()
        except BkpException as e:
            await self._abort(context, e)
            return b''

    async def Ping(
        self,
        request_bytes: bytes,
        context: grpc.aio.ServicerContext
    ) -> bytes:
        """
        Handle Ping RPC (unary).
        Simple health check endpoint.
        """
        count = len(self.storage.list_packfiles())
        return PingResponse(status="ok", name=self.storage.name, packfile_count=count).to_json()

    async def _abort(self, context: grpc.aio.ServicerContext, error: BkpException) -> None:
        if isinstance(error, NotFound):
            await context.abort(grpc.StatusCode.NOT_FOUND, str(error))
        elif isinstance(error, RemoteCorrupt):
            logger.error(f"Integrity error: {error}")
            await context.abort(grpc.StatusCode.DATA_LOSS, str(error))
        else:
            await context.abort(grpc.StatusCode.UNAVAILABLE, str(error))


def create_server(storage: LocalRemote) -> aio.Server:
    """
    Create and configure gRPC server.

    Args:
        storage: LocalRemote to serve

    Returns:
        Configured gRPC server
    """
    server = aio.server(options=[
        ('grpc.max_send_message_length', GRPC_MAX_MESSAGE_BYTES),
        ('grpc.max_receive_message_length', GRPC_MAX_MESSAGE_BYTES),
    ])
    servicer = RemoteServicer(storage)

    methods = {
        'PutPackfile': servicer.PutPackfile,
        'GetPackfile': servicer.GetPackfile,
        'ListPackfiles': servicer.ListPackfiles,
        'PutKeystore': servicer.PutKeystore,
        'GetKeystore': servicer.GetKeystore,
        'Ping': servicer.Ping,
    }

    server.add_generic_rpc_handlers((
        grpc.method_handlers_generic_handler(
            REMOTE_SERVICE_NAME,
            {
                name: grpc.unary_unary_rpc_method_handler(
                    handler,
                    request_deserializer=lambda x: x,
                    response_serializer=lambda x: x,
                )
                for name, handler in methods.items()
            }
        ),
    ))

    return server
