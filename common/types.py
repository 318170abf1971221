"""Shared data type definitions (FSMetadata and the four metadata object kinds)."""

from dataclasses import dataclass, field
from typing import Optional, Tuple, Union

ObjectID = bytes


@dataclass(frozen=True)
class FSMetadata:
    """
    Filesystem metadata attached to trees, symlinks and files.
    """
    mtime: int
    atime: int
    ctime: int
    mode: int


@dataclass(frozen=True)
class VersionObject:
    """
    A single logical snapshot of a coherent filesystem state.
    """
    create_time: int
    root: ObjectID
    parent: Optional[ObjectID] = None


@dataclass(frozen=True)
class TreeObject:
    """
    A directory: name, metadata and ordered child object IDs.
    """
    create_time: int
    name: bytes
    meta: FSMetadata
    children: Tuple[ObjectID, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class SymlinkObject:
    """
    A symbolic link and its target path.
    """
    create_time: int
    name: bytes
    meta: FSMetadata
    target: bytes


@dataclass(frozen=True)
class FileObject:
    """
    A regular file as an ordered list of content chunk IDs.
    """
    create_time: int
    name: bytes
    meta: FSMetadata
    chunks: Tuple[ObjectID, ...] = field(default_factory=tuple)


MetaObject = Union[VersionObject, TreeObject, SymlinkObject, FileObject]


def id_to_hex(object_id: ObjectID) -> str:
    """Render an object ID as lowercase hex."""
    return object_id.hex()


def id_from_hex(value: str) -> ObjectID:
    """
    Parse a hex object ID.

    Raises:
        ValueError: If the value is not 64 hex characters
    """
    if len(value) != 64:
        raise ValueError(f"object id must be 64 hex characters, got {len(value)}")
    return bytes.fromhex(value)
