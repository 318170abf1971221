"""In-memory index: object_id -> packfile handle, persisted as JSON."""

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from common.types import ObjectID

logger = logging.getLogger(__name__)


@dataclass
class PackIndexEntry:
    """
    Location of one object inside a packfile.
    """
    object_id: str
    handle: str
    size: int


class PackIndex:
    """
    In-memory index mapping object IDs to the packfile that holds them.
    Supports persistence to/from a JSON file and rebuilding from remote
    packfile listings.
    """

    def __init__(self, path: Optional[Path] = None):
        """
        Initialize empty pack index.

        Args:
            path: JSON file used by load_from_disk/save_to_disk when no
                explicit path is given
        """
        self.path = path
        self._index: Dict[str, PackIndexEntry] = {}
        self._handles: Dict[str, List[str]] = {}

    def add(self, object_id: ObjectID, handle: str, size: int) -> None:
        """
        Record that an object lives in a packfile. The first recorded
        location wins; an object is never moved between packfiles.

        Args:
            object_id: 32-byte object ID
            handle: Packfile handle returned by a remote
            size: Object body size in bytes
        """
        key = object_id.hex()
        if key in self._index:
            return
        self._index[key] = PackIndexEntry(object_id=key, handle=handle, size=size)
        self._handles.setdefault(handle, []).append(key)

    def add_packfile(self, handle: str, entries: Iterable[tuple]) -> int:
        """
        Index every (object_id, body) entry of a packfile.

        Returns:
            Number of entries newly indexed
        """
        before = len(self._index)
        for object_id, body in entries:
            self.add(object_id, handle, len(body))
        return len(self._index) - before

    def get_handle(self, object_id: ObjectID) -> Optional[str]:
        """
        Find the packfile holding an object.

        Args:
            object_id: 32-byte object ID

        Returns:
            Packfile handle, or None if the object is not indexed
        """
        entry = self._index.get(object_id.hex())
        return entry.handle if entry else None

    def contains(self, object_id: ObjectID) -> bool:
        return object_id.hex() in self._index

    def has_packfile(self, handle: str) -> bool:
        return handle in self._handles

    def get_all_handles(self) -> List[str]:
        return list(self._handles.keys())

    def get_entries(self) -> List[PackIndexEntry]:
        return list(self._index.values())

    def count(self) -> int:
        """
        Get number of indexed objects.

        Returns:
            Count of objects
        """
        return len(self._index)

    def clear(self) -> None:
        self._index.clear()
        self._handles.clear()

    def load_from_disk(self, path: Optional[Path] = None) -> bool:
        """
        Load index from JSON file.

        Args:
            path: Path to JSON file (default: the path given at construction)

        Returns:
            True if loaded successfully, False if file doesn't exist

        Raises:
            json.JSONDecodeError: If file is corrupted
        """
        path = path or self.path
        if path is None or not path.exists():
            logger.debug(f"Pack index file not found at {path}")
            return False

        try:
            with open(path, 'r') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse pack index file {path}: {e}")
            raise

        self.clear()
        for entry_dict in data.get('objects', {}).values():
            entry = PackIndexEntry(**entry_dict)
            self._index[entry.object_id] = entry
            self._handles.setdefault(entry.handle, []).append(entry.object_id)

        logger.info(f"Loaded {len(self._index)} objects in {len(self._handles)} packfiles from pack index")
        return True

    def save_to_disk(self, path: Optional[Path] = None) -> None:
        """
        Persist index to JSON file.

        Raises:
            OSError: If write operation fails
        """
        path = path or self.path
        if path is None:
            return

        path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            'objects': {
                object_id: asdict(entry)
                for object_id, entry in self._index.items()
            }
        }
        tmp_path = path.with_suffix('.tmp')
        with open(tmp_path, 'w') as f:
            json.dump(data, f, indent=2)
        tmp_path.replace(path)

        logger.debug(f"Saved {len(self._index)} objects to pack index {path}")
