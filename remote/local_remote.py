"""Remote backed by a local (or mounted) directory: packfiles and keystore on disk."""

import asyncio
import logging
import os
from pathlib import Path
from typing import List

from common.exceptions import NotFound, RemoteCorrupt, RemoteUnavailable
from objectstore.checksum import compute_checksum, verify_checksum
from remote.base import Remote

logger = logging.getLogger(__name__)

PACKS_DIR_NAME = "packs"
PACK_SUFFIX = ".pack"
KEYSTORE_FILE_NAME = "keystore.enc"
KEYSTORE_CHECKSUM_FILE_NAME = "keystore.sha256"


class LocalRemote(Remote):
    """
    Directory layout:

        <root>/packs/<hh>/<handle>.pack
        <root>/keystore.enc
        <root>/keystore.sha256

    Blocking file I/O runs in worker threads so a group can drive several
    local remotes concurrently.
    """

    def __init__(
        self,
        name: str,
        root: Path,
        upload_cost: int = 1,
        download_cost: int = 1,
        reliable: bool = False
    ):
        super().__init__(name, upload_cost=upload_cost, download_cost=download_cost, reliable=reliable)
        self.root = Path(root)

    def get_packfile_path(self, handle: str) -> Path:
        """
        Get file path for a packfile.

        Args:
            handle: Hex SHA-256 of the packfile bytes

        Returns:
            Path object for packfile
        """
        if len(handle) != 64 or any(c not in "0123456789abcdef" for c in handle):
            raise NotFound(f"invalid packfile handle: {handle!r}")
        return self.root / PACKS_DIR_NAME / handle[:2] / f"{handle}{PACK_SUFFIX}"

    async def put_packfile(self, data: bytes) -> str:
        return await self._run(self.write_packfile, data)

    async def get_packfile(self, handle: str) -> bytes:
        return await self._run(self.read_packfile, handle)

    async def list(self) -> List[str]:
        return await self._run(self.list_packfiles)

    async def put_keystore(self, data: bytes) -> None:
        await self._run(self.write_keystore, data)

    async def get_keystore(self) -> bytes:
        return await self._run(self.read_keystore)

    def write_packfile(self, data: bytes) -> str:
        """
        Write packfile data to disk. Re-sending existing bytes is a no-op.

        Returns:
            Packfile handle

        Raises:
            OSError: If write operation fails
        """
        handle = compute_checksum(data)
        path = self.get_packfile_path(handle)
        if path.exists():
            logger.debug(f"[{self.name}] Packfile {handle[:12]} already stored")
            return handle
        _atomic_write(path, data)
        logger.debug(f"[{self.name}] Stored packfile {handle[:12]} ({len(data)} bytes)")
        return handle

    def read_packfile(self, handle: str) -> bytes:
        """
        Read a packfile and verify it against its handle.

        Raises:
            NotFound: If packfile does not exist
            RemoteCorrupt: If the bytes no longer hash to the handle
        """
        path = self.get_packfile_path(handle)
        try:
            data = path.read_bytes()
        except FileNotFoundError:
            raise NotFound(f"packfile {handle} not on remote {self.name}")

        if not verify_checksum(data, handle):
            raise RemoteCorrupt(f"packfile {handle} on remote {self.name} failed checksum", remote=self.name)
        return data

    def list_packfiles(self) -> List[str]:
        """
        List all packfile handles in storage directory.

        Returns:
            List of handles (without .pack extension)
        """
        packs_dir = self.root / PACKS_DIR_NAME
        if not packs_dir.exists():
            return []
        return sorted(path.stem for path in packs_dir.glob(f"??/*{PACK_SUFFIX}"))

    def write_keystore(self, data: bytes) -> None:
        _atomic_write(self.root / KEYSTORE_FILE_NAME, data)
        _atomic_write(self.root / KEYSTORE_CHECKSUM_FILE_NAME, compute_checksum(data).encode('ascii'))
        logger.info(f"[{self.name}] Stored keystore copy ({len(data)} bytes)")

    def read_keystore(self) -> bytes:
        """
        Raises:
            NotFound: If no keystore was ever published to this remote
            RemoteCorrupt: If the keystore does not match its checksum file
        """
        try:
            data = (self.root / KEYSTORE_FILE_NAME).read_bytes()
        except FileNotFoundError:
            raise NotFound(f"no keystore on remote {self.name}")

        checksum_path = self.root / KEYSTORE_CHECKSUM_FILE_NAME
        try:
            expected = checksum_path.read_text(encoding='ascii').strip()
        except (FileNotFoundError, UnicodeDecodeError):
            raise RemoteCorrupt(f"keystore checksum missing on remote {self.name}", remote=self.name)

        if not verify_checksum(data, expected):
            raise RemoteCorrupt(f"keystore on remote {self.name} failed checksum", remote=self.name)
        return data

    async def _run(self, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except PermissionError as e:
            raise RemoteUnavailable(f"remote {self.name} not accessible: {e}", remote=self.name)
        except OSError as e:
            if isinstance(e, FileNotFoundError):
                raise NotFound(str(e))
            raise RemoteUnavailable(f"I/O error on remote {self.name}: {e}", remote=self.name)


def _atomic_write(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + '.tmp')
    try:
        with open(tmp_path, 'wb') as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        tmp_path.replace(path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
