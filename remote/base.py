"""Generic interface for all remote storage backends."""

from typing import List

from common.protocol import PingResponse


class Remote:
    """
    A single storage endpoint holding packfiles and one encrypted keystore.

    Packfile handles are the hex SHA-256 of the stored bytes, so storing the
    same bytes twice is a no-op and every read can be integrity-checked.

    All operations may raise RemoteUnavailable (transient) or RemoteCorrupt
    (stored bytes failed their integrity check). Reads of missing items
    raise NotFound.

    A reliable remote is trusted to keep its data; packfiles held only by
    unreliable remotes are repaired first.
    """

    def __init__(self, name: str, upload_cost: int = 1, download_cost: int = 1, reliable: bool = False):
        self.name = name
        self.upload_cost = upload_cost
        self.download_cost = download_cost
        self.reliable = reliable

    async def put_packfile(self, data: bytes) -> str:
        """Store a packfile and return its handle."""
        raise NotImplementedError

    async def get_packfile(self, handle: str) -> bytes:
        """Read a packfile by handle."""
        raise NotImplementedError

    async def list(self) -> List[str]:
        """List every packfile handle held by this remote."""
        raise NotImplementedError

    async def put_keystore(self, data: bytes) -> None:
        """Replace this remote's encrypted keystore copy."""
        raise NotImplementedError

    async def get_keystore(self) -> bytes:
        """Read this remote's encrypted keystore copy."""
        raise NotImplementedError

    async def ping(self) -> PingResponse:
        """Check connectivity by listing the remote."""
        handles = await self.list()
        return PingResponse(status="ok", name=self.name, packfile_count=len(handles))

    async def close(self) -> None:
        """Release connections held by the backend."""
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"
