"""
Binary encoding of metadata objects (version, tree, symlink, file).

Every object starts with a u64 creation time and a one-byte type tag. All
integers are little-endian. The encoding is canonical: equal objects always
produce equal bytes, which is what lets content addressing deduplicate them.
"""

import hashlib
import struct
from typing import Callable, Dict, Tuple

from common.constants import (
    EMPTY_OBJECT_ID,
    MAX_NAME_LEN,
    MAX_U32,
    MAX_U64,
    MODE_MASK,
    OBJECT_ID_LEN,
    TAG_FILE,
    TAG_SYMLINK,
    TAG_TREE,
    TAG_VERSION,
)
from common.exceptions import MalformedObject
from common.types import (
    FileObject,
    FSMetadata,
    MetaObject,
    ObjectID,
    SymlinkObject,
    TreeObject,
    VersionObject,
)

_HEADER = struct.Struct("<QB")
_FS_METADATA = struct.Struct("<QQQH")
_U16 = struct.Struct("<H")
_U32 = struct.Struct("<I")


def encode(obj: MetaObject) -> bytes:
    """
    Encode a metadata object to its canonical byte layout.

    Args:
        obj: VersionObject, TreeObject, SymlinkObject or FileObject

    Returns:
        Encoded bytes

    Raises:
        ValueError: If a field cannot be represented in the layout
        TypeError: If obj is not a metadata object
    """
    try:
        tag, body_encoder = _ENCODERS[type(obj)]
    except KeyError:
        raise TypeError(f"not a metadata object: {type(obj).__name__}")

    _check_u64(obj.create_time, "create_time")
    return _HEADER.pack(obj.create_time, tag) + body_encoder(obj)


def decode(data: bytes) -> MetaObject:
    """
    Decode bytes produced by encode().

    The input must contain exactly one object; trailing bytes are an error.

    Raises:
        MalformedObject: On truncation, unknown tag or trailing bytes
    """
    reader = _Reader(data)
    create_time, tag = reader.unpack(_HEADER)
    decoder = _DECODERS.get(tag)
    if decoder is None:
        raise MalformedObject(f"unknown object type tag: {tag}")

    obj = decoder(reader, create_time)
    if reader.remaining:
        raise MalformedObject(f"{reader.remaining} trailing bytes after object")
    return obj


def object_id(obj: MetaObject) -> ObjectID:
    """Return the content address (SHA-256 of the encoding) of an object."""
    return hashlib.sha256(encode(obj)).digest()


class _Reader:
    """Bounds-checked cursor over an input buffer."""

    def __init__(self, data: bytes):
        self.data = memoryview(data)
        self.pos = 0

    @property
    def remaining(self) -> int:
        return len(self.data) - self.pos

    def take(self, size: int) -> bytes:
        if size > self.remaining:
            raise MalformedObject(
                f"field of {size} bytes at offset {self.pos} runs past end of input ({len(self.data)} bytes)"
            )
        chunk = bytes(self.data[self.pos:self.pos + size])
        self.pos += size
        return chunk

    def unpack(self, layout: struct.Struct) -> Tuple:
        return layout.unpack(self.take(layout.size))

    def ids(self) -> Tuple[ObjectID, ...]:
        (count,) = self.unpack(_U32)
        if count * OBJECT_ID_LEN > self.remaining:
            raise MalformedObject(f"id list of {count} entries runs past end of input")
        return tuple(self.take(OBJECT_ID_LEN) for _ in range(count))


def _check_u64(value: int, label: str) -> None:
    if not isinstance(value, int) or not 0 <= value <= MAX_U64:
        raise ValueError(f"{label} must be an integer in [0, 2**64), got {value!r}")


def _check_id(value: bytes, label: str) -> None:
    if not isinstance(value, (bytes, bytearray)) or len(value) != OBJECT_ID_LEN:
        raise ValueError(f"{label} must be {OBJECT_ID_LEN} bytes")


def _encode_ids(ids: Tuple[ObjectID, ...], label: str) -> bytes:
    if len(ids) > MAX_U32:
        raise ValueError(f"too many {label}: {len(ids)}")
    for value in ids:
        _check_id(value, label)
    return _U32.pack(len(ids)) + b"".join(bytes(value) for value in ids)


def _encode_named(name: bytes, meta: FSMetadata) -> bytes:
    if len(name) > MAX_NAME_LEN:
        raise ValueError(f"name is {len(name)} bytes, limit is {MAX_NAME_LEN}")
    for label in ("mtime", "atime", "ctime"):
        _check_u64(getattr(meta, label), label)
    if not 0 <= meta.mode <= MODE_MASK:
        raise ValueError(f"mode {meta.mode:o} has bits outside {MODE_MASK:o}")
    return _U16.pack(len(name)) + bytes(name) + _FS_METADATA.pack(meta.mtime, meta.atime, meta.ctime, meta.mode)


def _decode_named(reader: _Reader) -> Tuple[bytes, FSMetadata]:
    (name_len,) = reader.unpack(_U16)
    name = reader.take(name_len)
    mtime, atime, ctime, mode = reader.unpack(_FS_METADATA)
    if mode & ~MODE_MASK:
        raise MalformedObject(f"mode {mode:o} has bits outside {MODE_MASK:o}")
    return name, FSMetadata(mtime=mtime, atime=atime, ctime=ctime, mode=mode)


def _encode_version(obj: VersionObject) -> bytes:
    _check_id(obj.root, "root")
    if obj.parent is None:
        return bytes(obj.root) + EMPTY_OBJECT_ID
    _check_id(obj.parent, "parent")
    if obj.parent == EMPTY_OBJECT_ID:
        raise ValueError("parent must not be the all-zero sentinel; use None for no parent")
    return bytes(obj.root) + bytes(obj.parent)


def _decode_version(reader: _Reader, create_time: int) -> VersionObject:
    root = reader.take(OBJECT_ID_LEN)
    parent = reader.take(OBJECT_ID_LEN)
    return VersionObject(
        create_time=create_time,
        root=root,
        parent=None if parent == EMPTY_OBJECT_ID else parent,
    )


def _encode_tree(obj: TreeObject) -> bytes:
    return _encode_named(obj.name, obj.meta) + _encode_ids(tuple(obj.children), "children")


def _decode_tree(reader: _Reader, create_time: int) -> TreeObject:
    name, meta = _decode_named(reader)
    return TreeObject(create_time=create_time, name=name, meta=meta, children=reader.ids())


def _encode_symlink(obj: SymlinkObject) -> bytes:
    if len(obj.target) > MAX_U32:
        raise ValueError("symlink target too long")
    return _encode_named(obj.name, obj.meta) + _U32.pack(len(obj.target)) + bytes(obj.target)


def _decode_symlink(reader: _Reader, create_time: int) -> SymlinkObject:
    name, meta = _decode_named(reader)
    (target_len,) = reader.unpack(_U32)
    return SymlinkObject(create_time=create_time, name=name, meta=meta, target=reader.take(target_len))


def _encode_file(obj: FileObject) -> bytes:
    return _encode_named(obj.name, obj.meta) + _encode_ids(tuple(obj.chunks), "chunks")


def _decode_file(reader: _Reader, create_time: int) -> FileObject:
    name, meta = _decode_named(reader)
    return FileObject(create_time=create_time, name=name, meta=meta, chunks=reader.ids())


_ENCODERS: Dict[type, Tuple[int, Callable]] = {
    VersionObject: (TAG_VERSION, _encode_version),
    TreeObject: (TAG_TREE, _encode_tree),
    SymlinkObject: (TAG_SYMLINK, _encode_symlink),
    FileObject: (TAG_FILE, _encode_file),
}

_DECODERS: Dict[int, Callable[[_Reader, int], MetaObject]] = {
    TAG_VERSION: _decode_version,
    TAG_TREE: _decode_tree,
    TAG_SYMLINK: _decode_symlink,
    TAG_FILE: _decode_file,
}
