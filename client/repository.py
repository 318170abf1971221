"""
Repository: the local object store bound to a remote group.

Objects are written to the content store, packed by ID prefix, encrypted
with the keystore's data key and uploaded through the remote group. Reads
go through the pack index and fetch whole packfiles on demand.
"""

import asyncio
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from cryptography.exceptions import InvalidTag

from common.constants import PACK_BUCKET_PREFIX_LEN, PACK_TARGET_SIZE_BYTES
from common.exceptions import CorruptPackfile, NotFound
from common.logging_config import get_logger
from common.types import MetaObject, ObjectID
from keystore.crypto import decrypt, encrypt
from objectstore import object_codec
from objectstore.cas import ContentStore
from objectstore.pack_index import PackIndex
from objectstore.packfile import Packfile, pack
from remote.group import RemoteGroup

logger = get_logger(__name__)

PACKFILE_AAD = b"bkp-packfile"


class Repository:
    """
    Content store + pack index + encryption, backed by a RemoteGroup.
    """

    def __init__(
        self,
        group: RemoteGroup,
        data_key: bytes,
        index_path: Optional[Path] = None,
        objects_dir: Optional[Path] = None,
        pack_target_size: int = PACK_TARGET_SIZE_BYTES
    ):
        """
        Args:
            group: Remote group packfiles are replicated to
            data_key: 32-byte key packfiles are encrypted with
            index_path: JSON file persisting the pack index
            objects_dir: Directory for loose objects (in-memory when None)
            pack_target_size: Soft upper bound on packfile body bytes
        """
        self.group = group
        self.data_key = data_key
        self.pack_target_size = pack_target_size
        self.index = PackIndex(index_path)
        if index_path is not None:
            self.index.load_from_disk()
        self.store = ContentStore(self.index, objects_dir)
        self._loading: Dict[str, asyncio.Task] = {}

    def put_object(self, obj: MetaObject) -> ObjectID:
        return self.store.put(object_codec.encode(obj))

    def put_chunk(self, data: bytes) -> ObjectID:
        return self.store.put(data)

    def contains(self, object_id: ObjectID) -> bool:
        return self.store.contains(object_id)

    async def flush(self) -> List[str]:
        """
        Pack, encrypt and upload every queued object. Packfiles are not kept
        in memory afterwards; reads download them again on demand.

        Small backlogs go out as a single packfile. Larger ones are split by
        the first ID byte and then by size.

        Returns:
            Handles of the uploaded packfiles
        """
        if self.store.pending_count() == 0:
            return []

        everything = self.store.pending_batches(prefix_length=0).get(b"", [])
        total = sum(len(data) for _, data in everything)
        prefix_length = 0 if total <= self.pack_target_size else PACK_BUCKET_PREFIX_LEN

        handles = []
        for prefix, batch in sorted(self.store.pending_batches(prefix_length).items()):
            for entries in _split_by_size(batch, self.pack_target_size):
                packed = pack(entries, prefix_length=prefix_length)
                blob = encrypt(self.data_key, packed, aad=PACKFILE_AAD)
                handle = await self.group.put_packfile(blob)
                self.store.mark_packed(handle, entries)
                handles.append(handle)
                logger.info(
                    f"Uploaded packfile {handle[:12]} with {len(entries)} objects "
                    f"(prefix {prefix.hex() or '-'}, {len(blob)} bytes)"
                )

        self.save()
        return handles

    async def fetch(self, object_id: ObjectID) -> bytes:
        """
        Get an object's bytes, downloading its packfile if needed.

        Raises:
            NotFound: If the object is neither local nor indexed
        """
        try:
            return self.store.get(object_id)
        except NotFound:
            handle = self.index.get_handle(object_id)
            if handle is None:
                raise
        await self.load_packfile(handle)
        return self.store.get(object_id)

    async def fetch_object(self, object_id: ObjectID) -> MetaObject:
        return object_codec.decode(await self.fetch(object_id))

    async def load_packfile(self, handle: str) -> None:
        """Download one packfile unless it is loaded or already in flight."""
        if self.store.has_packfile_loaded(handle):
            return
        task = self._loading.get(handle)
        if task is None:
            task = asyncio.create_task(self._download(handle))
            self._loading[handle] = task
            task.add_done_callback(lambda _t, h=handle: self._loading.pop(h, None))
        await task

    async def prefetch(self, object_ids: Iterable[ObjectID]) -> int:
        """
        Download every packfile needed for object_ids in one bounded,
        concurrent fan-out.

        Returns:
            Number of packfiles downloaded

        Raises:
            NotFound: If an object is in no known packfile
            RestoreError: If some packfiles could not be fetched
        """
        handles: List[str] = []
        seen = set()
        for object_id in object_ids:
            if self.store.contains(object_id) and self.index.get_handle(object_id) is None:
                continue
            handle = self.index.get_handle(object_id)
            if handle is None:
                raise NotFound(f"object {object_id.hex()} is not in any known packfile")
            if handle not in seen and not self.store.has_packfile_loaded(handle):
                seen.add(handle)
                handles.append(handle)

        if not handles:
            return 0

        blobs = await self.group.get_many(handles)
        for handle, blob in zip(handles, blobs):
            self.store.load_packfile(handle, self._open_packfile(handle, blob))
        logger.info(f"Prefetched {len(handles)} packfiles")
        return len(handles)

    async def sync_index(self) -> int:
        """
        Rebuild the pack index from the packfiles the group holds.

        Returns:
            Number of packfiles newly indexed
        """
        handles = [h for h in await self.group.list() if not self.index.has_packfile(h)]
        if not handles:
            logger.info("Pack index already up to date")
            return 0

        blobs = await self.group.get_many(handles)
        for handle, blob in zip(handles, blobs):
            packfile = self._open_packfile(handle, blob)
            added = self.index.add_packfile(handle, packfile.entries())
            logger.debug(f"Indexed packfile {handle[:12]}: {added} new objects")

        self.save()
        logger.info(f"Indexed {len(handles)} packfiles, {self.index.count()} objects total")
        return len(handles)

    def save(self) -> None:
        self.index.save_to_disk()

    async def _download(self, handle: str) -> None:
        blob = await self.group.get_packfile(handle)
        self.store.load_packfile(handle, self._open_packfile(handle, blob))
        logger.debug(f"Loaded packfile {handle[:12]}")

    def _open_packfile(self, handle: str, blob: bytes) -> Packfile:
        try:
            packed = decrypt(self.data_key, blob, aad=PACKFILE_AAD)
        except InvalidTag:
            logger.error(f"Packfile {handle} failed authentication")
            raise CorruptPackfile(f"packfile {handle} failed authentication (wrong key or tampered)")
        return Packfile.parse(packed)


def _split_by_size(batch: List[Tuple[ObjectID, bytes]], target: int) -> List[List[Tuple[ObjectID, bytes]]]:
    parts: List[List[Tuple[ObjectID, bytes]]] = []
    current: List[Tuple[ObjectID, bytes]] = []
    size = 0
    for entry in batch:
        if current and size + len(entry[1]) > target:
            parts.append(current)
            current, size = [], 0
        current.append(entry)
        size += len(entry[1])
    if current:
        parts.append(current)
    return parts
