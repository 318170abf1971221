"""Filesystem walker producing the tree that a snapshot records."""

import logging
import os
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from common.constants import MODE_MASK
from common.types import FSMetadata

logger = logging.getLogger(__name__)

KIND_DIR = "dir"
KIND_FILE = "file"
KIND_SYMLINK = "symlink"


@dataclass
class ScanEntry:
    """
    One filesystem node found by the scanner.
    """
    kind: str
    name: bytes
    path: Path
    meta: FSMetadata
    target: Optional[bytes] = None
    children: List['ScanEntry'] = field(default_factory=list)


def metadata_from_stat(st: os.stat_result) -> FSMetadata:
    return FSMetadata(
        mtime=max(0, int(st.st_mtime)),
        atime=max(0, int(st.st_atime)),
        ctime=max(0, int(st.st_ctime)),
        mode=stat.S_IMODE(st.st_mode) & MODE_MASK,
    )


def scan(root: Path) -> ScanEntry:
    """
    Walk a directory tree without following symlinks.

    Children are sorted by name so equal trees produce equal objects. The
    root entry is unnamed, so the directory's own name is not part of the
    snapshot.
    Sockets, devices and FIFOs are skipped.

    Raises:
        NotADirectoryError: If root is not a directory
    """
    root = Path(root)
    st = os.lstat(root)
    if not stat.S_ISDIR(st.st_mode):
        raise NotADirectoryError(f"backup root {root} is not a directory")
    return _scan_dir(root, b"", st)


def _scan_dir(path: Path, name: bytes, st: os.stat_result) -> ScanEntry:
    entry = ScanEntry(kind=KIND_DIR, name=name, path=path, meta=metadata_from_stat(st))

    with os.scandir(path) as it:
        dir_entries = sorted(it, key=lambda e: os.fsencode(e.name))

    for dir_entry in dir_entries:
        child_path = Path(dir_entry.path)
        child_name = os.fsencode(dir_entry.name)
        try:
            child_st = dir_entry.stat(follow_symlinks=False)
        except FileNotFoundError:
            logger.warning(f"{child_path} vanished during scan, skipping")
            continue

        if stat.S_ISLNK(child_st.st_mode):
            entry.children.append(ScanEntry(
                kind=KIND_SYMLINK,
                name=child_name,
                path=child_path,
                meta=metadata_from_stat(child_st),
                target=os.fsencode(os.readlink(child_path)),
            ))
        elif stat.S_ISDIR(child_st.st_mode):
            entry.children.append(_scan_dir(child_path, child_name, child_st))
        elif stat.S_ISREG(child_st.st_mode):
            entry.children.append(ScanEntry(
                kind=KIND_FILE,
                name=child_name,
                path=child_path,
                meta=metadata_from_stat(child_st),
            ))
        else:
            logger.info(f"Skipping special file {child_path}")

    return entry
