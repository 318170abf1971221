"""
Content-addressable store: blob bytes -> SHA-256 object ID.

New blobs are kept loose (in memory, or on disk sharded by the first hex
byte) and queued for packing. Packed blobs are found through the PackIndex
and served from packfiles loaded into the store.
"""

import logging
import os
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

from common.constants import PACK_BUCKET_PREFIX_LEN
from common.exceptions import HashCollision, NotFound
from common.types import ObjectID
from objectstore.checksum import compute_object_id
from objectstore.pack_index import PackIndex
from objectstore.packfile import Packfile

logger = logging.getLogger(__name__)


class ContentStore:
    """
    Deduplicating hash -> bytes mapping.

    The store never interprets what it holds; encoded metadata objects and
    raw file chunks are both just blobs here.
    """

    def __init__(self, index: Optional[PackIndex] = None, objects_dir: Optional[Path] = None):
        """
        Args:
            index: Pack index used to recognise already-packed objects
            objects_dir: Directory for loose objects. In-memory when None.
        """
        self.index = index if index is not None else PackIndex()
        self.objects_dir = objects_dir
        self._loose: Dict[ObjectID, bytes] = {}
        self._pending: Set[ObjectID] = set()
        self._packs: Dict[str, Packfile] = {}

        if self.objects_dir is not None:
            self.objects_dir.mkdir(parents=True, exist_ok=True)
            self._recover_pending()

    def put(self, data: bytes) -> ObjectID:
        """
        Store a blob if it is not already known.

        Args:
            data: Blob bytes

        Returns:
            The blob's object ID. Calling put twice with the same bytes
            returns the same ID and stores one copy.

        Raises:
            HashCollision: If a different blob is already stored under the ID
        """
        data = bytes(data)
        object_id = compute_object_id(data)

        if self.index.contains(object_id):
            return object_id

        existing = self._read_loose(object_id)
        if existing is not None:
            if existing != data:
                raise HashCollision(f"different content stored for object {object_id.hex()}")
            return object_id

        self._write_loose(object_id, data)
        self._pending.add(object_id)
        return object_id

    def get(self, object_id: ObjectID) -> bytes:
        """
        Retrieve a blob.

        Raises:
            NotFound: If the blob is neither loose nor in a loaded packfile
        """
        data = self._read_loose(object_id)
        if data is not None:
            return data

        handle = self.index.get_handle(object_id)
        if handle is not None and handle in self._packs:
            return self._packs[handle].lookup(object_id)

        raise NotFound(f"object {object_id.hex()} not in local store")

    def contains(self, object_id: ObjectID) -> bool:
        return self.index.contains(object_id) or self._read_loose(object_id) is not None

    def load_packfile(self, handle: str, packfile: Packfile) -> None:
        """Make a fetched packfile's entries readable through get()."""
        self._packs[handle] = packfile

    def has_packfile_loaded(self, handle: str) -> bool:
        return handle in self._packs

    def pending_count(self) -> int:
        return len(self._pending)

    def pending_batches(self, prefix_length: int = PACK_BUCKET_PREFIX_LEN) -> Dict[bytes, List[Tuple[ObjectID, bytes]]]:
        """
        Group queued blobs by the first prefix_length bytes of their IDs.

        Returns:
            Mapping of prefix to (object_id, data) pairs sorted by ID
        """
        batches: Dict[bytes, List[Tuple[ObjectID, bytes]]] = {}
        for object_id in sorted(self._pending):
            data = self._read_loose(object_id)
            if data is None:
                logger.warning(f"Pending object {object_id.hex()} vanished from loose store")
                continue
            batches.setdefault(object_id[:prefix_length], []).append((object_id, data))
        return batches

    def mark_packed(self, handle: str, entries: List[Tuple[ObjectID, bytes]]) -> None:
        """
        Record that entries were uploaded inside a packfile and drop their
        loose copies.

        Args:
            handle: Packfile handle returned by the remote
            entries: (object_id, data) pairs stored in that packfile
        """
        for object_id, data in entries:
            self.index.add(object_id, handle, len(data))
            self._pending.discard(object_id)
            self._delete_loose(object_id)

    def _object_path(self, object_id: ObjectID) -> Path:
        hex_id = object_id.hex()
        return self.objects_dir / hex_id[:2] / hex_id[2:]

    def _read_loose(self, object_id: ObjectID) -> Optional[bytes]:
        if self.objects_dir is None:
            return self._loose.get(object_id)
        path = self._object_path(object_id)
        if not path.exists():
            return None
        return path.read_bytes()

    def _write_loose(self, object_id: ObjectID, data: bytes) -> None:
        if self.objects_dir is None:
            self._loose[object_id] = data
            return

        path = self._object_path(object_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix('.tmp')
        try:
            with open(tmp_path, 'wb') as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            tmp_path.replace(path)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise

    def _delete_loose(self, object_id: ObjectID) -> None:
        if self.objects_dir is None:
            self._loose.pop(object_id, None)
        else:
            self._object_path(object_id).unlink(missing_ok=True)

    def _recover_pending(self) -> None:
        """Re-queue loose objects left over from an interrupted run."""
        for path in self.objects_dir.glob('??/*'):
            if path.suffix == '.tmp':
                continue
            try:
                object_id = bytes.fromhex(path.parent.name + path.name)
            except ValueError:
                continue
            if not self.index.contains(object_id):
                self._pending.add(object_id)

        if self._pending:
            logger.info(f"Recovered {len(self._pending)} unpacked loose objects")
