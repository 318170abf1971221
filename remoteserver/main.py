"""Entry point for the bkp remote server.
Serves one storage directory to bkp clients over gRPC.
"""

import argparse
import asyncio
import os
import signal
import sys
from pathlib import Path

from common.constants import DEFAULT_REMOTE_ROOT, REMOTE_SERVER_PORT
from common.logging_config import setup_logging
from remote.local_remote import LocalRemote
from remoteserver.grpc_server import create_server

logger = setup_logging('remoteserver')


async def serve(storage: LocalRemote, port: int) -> None:
    """
    Start and run gRPC server until a shutdown signal arrives.

    Args:
        storage: Directory remote to expose
        port: TCP port to listen on
    """
    server = create_server(storage)
    listen_addr = f'[::]:{port}'
    server.add_insecure_port(listen_addr)

    logger.info(f"Starting remote server '{storage.name}' on {listen_addr} (root={storage.root})")
    await server.start()

    async def shutdown(sig=None):
        if sig:
            logger.info(f"Received signal {sig}, shutting down...")
        else:
            logger.info("Shutting down...")
        await server.stop(5)
        logger.info("Remote server stopped")

    if sys.platform != 'win32':
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda s=sig: asyncio.create_task(shutdown(s)))

    try:
        await server.wait_for_termination()
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
        await shutdown()


def main() -> None:
    """Bootstrap the remote server."""
    parser = argparse.ArgumentParser(description="bkp remote storage server")
    parser.add_argument('--root', default=os.getenv('BKP_REMOTE_ROOT', DEFAULT_REMOTE_ROOT),
                        help='Directory holding packfiles and the keystore')
    parser.add_argument('--port', type=int, default=int(os.getenv('BKP_REMOTE_PORT', REMOTE_SERVER_PORT)))
    parser.add_argument('--name', default=os.getenv('BKP_REMOTE_NAME', 'remote'))
    args = parser.parse_args()

    root = Path(args.root)
    root.mkdir(parents=True, exist_ok=True)
    storage = LocalRemote(args.name, root)
    logger.info(f"Serving {len(storage.list_packfiles())} packfiles from {root}")

    try:
        asyncio.run(serve(storage, args.port))
    except KeyboardInterrupt:
        logger.info("Remote server shutdown complete")
    except Exception as e:
        logger.error(f"Server error: {e}", exc_info=True)
        raise


if __name__ == "__main__":
    main()
