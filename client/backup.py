"""Snapshot a directory tree into the repository."""

import time
from pathlib import Path
from typing import Optional

from client.chunking import chunk_file
from client.scanner import KIND_DIR, KIND_FILE, ScanEntry, scan
from common.constants import CHUNK_SIZE_BYTES
from common.logging_config import get_logger
from common.types import FileObject, ObjectID, SymlinkObject, TreeObject, VersionObject

logger = get_logger(__name__)


class SnapshotBuilder:
    """
    Turns a scanned tree into stored objects. Every snapshot records the
    full tree; unchanged files and chunks deduplicate in the content store.
    """

    def __init__(self, repo, chunk_size: int = CHUNK_SIZE_BYTES, create_time: Optional[int] = None):
        self.repo = repo
        self.chunk_size = chunk_size
        self.create_time = int(time.time()) if create_time is None else create_time
        self.files = 0
        self.bytes_read = 0

    def store_entry(self, entry: ScanEntry) -> ObjectID:
        """
        Store an entry and everything below it.

        Returns:
            Object ID of the stored tree, file or symlink
        """
        if entry.kind == KIND_DIR:
            children = tuple(self.store_entry(child) for child in entry.children)
            obj = TreeObject(self.create_time, entry.name, entry.meta, children)
        elif entry.kind == KIND_FILE:
            chunks = []
            for block in chunk_file(entry.path, self.chunk_size):
                chunks.append(self.repo.put_chunk(block))
                self.bytes_read += len(block)
            self.files += 1
            obj = FileObject(self.create_time, entry.name, entry.meta, tuple(chunks))
        else:
            obj = SymlinkObject(self.create_time, entry.name, entry.meta, entry.target)
        return self.repo.put_object(obj)


async def backup(
    repo,
    root_path: Path,
    parent: Optional[ObjectID] = None,
    chunk_size: int = CHUNK_SIZE_BYTES
) -> ObjectID:
    """
    Snapshot root_path and upload everything new.

    Args:
        repo: Repository to store into
        root_path: Directory to back up
        parent: Previous head version, if any
        chunk_size: Fixed chunk size for file contents

    Returns:
        ID of the new Version object
    """
    builder = SnapshotBuilder(repo, chunk_size=chunk_size)
    root_entry = scan(Path(root_path))
    root_id = builder.store_entry(root_entry)

    version = VersionObject(create_time=builder.create_time, root=root_id, parent=parent)
    version_id = repo.put_object(version)

    handles = await repo.flush()
    logger.info(
        f"Snapshot {version_id.hex()} of {root_path}: {builder.files} files, "
        f"{builder.bytes_read} bytes read, {len(handles)} new packfiles"
    )
    return version_id
