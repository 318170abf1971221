"""Restore a version's tree onto the local filesystem."""

import os
from pathlib import Path
from typing import List, Tuple

from common.exceptions import MalformedObject
from common.logging_config import get_logger
from common.types import FileObject, MetaObject, ObjectID, SymlinkObject, TreeObject, VersionObject

logger = get_logger(__name__)


def _safe_name(name: bytes) -> str:
    if not name or name in (b".", b"..") or b"/" in name or b"\x00" in name:
        raise MalformedObject(f"refusing to restore entry named {name!r}")
    return os.fsdecode(name)


async def _collect(repo, root_id: ObjectID, target: Path) -> List[Tuple[Path, MetaObject]]:
    """
    Resolve the whole tree breadth-first, prefetching each level's
    packfiles concurrently.

    Returns:
        (destination path, object) pairs, parents before children
    """
    root = await repo.fetch_object(root_id)
    if not isinstance(root, TreeObject):
        raise MalformedObject(f"version root {root_id.hex()} is not a tree")

    plan: List[Tuple[Path, MetaObject]] = [(target, root)]
    level: List[Tuple[Path, TreeObject]] = [(target, root)]

    while level:
        await repo.prefetch(child for _, tree in level for child in tree.children)
        next_level: List[Tuple[Path, TreeObject]] = []
        for path, tree in level:
            for child_id in tree.children:
                child = await repo.fetch_object(child_id)
                if isinstance(child, VersionObject):
                    raise MalformedObject(f"tree {path} lists version {child_id.hex()} as a child")
                child_path = path / _safe_name(child.name)
                plan.append((child_path, child))
                if isinstance(child, TreeObject):
                    next_level.append((child_path, child))
        level = next_level

    return plan


async def restore(
    repo,
    version_id: ObjectID,
    target_path: Path,
    restore_perms: bool = True,
    restore_attrs: bool = True
) -> int:
    """
    Recreate a snapshot under target_path.

    The target must not exist or be an empty directory. File contents are
    fetched with a bounded concurrent fan-out and written in chunk order.
    restore_perms applies saved modes, restore_attrs saved timestamps.

    Returns:
        Number of files restored

    Raises:
        MalformedObject: If the version or its tree is not well formed
        RestoreError: If some packfiles could not be fetched from any remote
        FileExistsError: If target_path is a non-empty directory
    """
    target = Path(target_path)
    if target.exists() and (not target.is_dir() or any(target.iterdir())):
        raise FileExistsError(f"restore target {target} exists and is not an empty directory")

    version = await repo.fetch_object(version_id)
    if not isinstance(version, VersionObject):
        raise MalformedObject(f"object {version_id.hex()} is not a version")

    plan = await _collect(repo, version.root, target)
    await repo.prefetch(c for _, obj in plan if isinstance(obj, FileObject) for c in obj.chunks)

    files = 0
    for path, obj in plan:
        if isinstance(obj, TreeObject):
            path.mkdir(parents=True, exist_ok=True)
        elif isinstance(obj, FileObject):
            with open(path, 'wb') as f:
                for chunk_id in obj.chunks:
                    f.write(await repo.fetch(chunk_id))
            files += 1
        elif isinstance(obj, SymlinkObject):
            os.symlink(os.fsdecode(obj.target), path)

    # children first, so writing a file does not bump its directory's mtime afterwards
    for path, obj in reversed(plan):
        _apply_metadata(path, obj, restore_perms, restore_attrs)

    logger.info(f"Restored version {version_id.hex()} to {target}: {files} files")
    return files


def _apply_metadata(path: Path, obj: MetaObject, restore_perms: bool, restore_attrs: bool) -> None:
    if isinstance(obj, SymlinkObject):
        if restore_attrs and os.utime in os.supports_follow_symlinks:
            os.utime(path, (obj.meta.atime, obj.meta.mtime), follow_symlinks=False)
        return
    if restore_perms:
        os.chmod(path, obj.meta.mode)
    if restore_attrs:
        os.utime(path, (obj.meta.atime, obj.meta.mtime))
