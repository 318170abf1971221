"""
Packfile container format.

A packfile bundles objects whose IDs share a common prefix. Layout before
compression (little-endian):

    b"PACK" | u32 entry count | u8 prefix length p | prefix (p bytes)
    entry*  = suffix (32 - p bytes) | u32 body length | body

Entries are sorted by suffix so lookups can binary-search. The assembled
stream is gzip-compressed before it goes to the encryption layer.
"""

import bisect
import gzip
import struct
import zlib
from typing import Dict, Iterable, List, Optional, Tuple, Union

from common.constants import GZIP_COMPRESS_LEVEL, OBJECT_ID_LEN, PACK_MAGIC
from common.exceptions import CorruptPackfile, HashCollision, NotFound
from common.types import ObjectID

_HEADER = struct.Struct("<4sIB")
_U32 = struct.Struct("<I")


def common_prefix_length(ids: Iterable[ObjectID]) -> int:
    """Length of the longest prefix shared by every ID."""
    ids = sorted(ids)
    if not ids:
        return 0
    first, last = ids[0], ids[-1]
    length = 0
    while length < OBJECT_ID_LEN and first[length] == last[length]:
        length += 1
    return length


def pack(entries: Iterable[Tuple[ObjectID, bytes]], prefix_length: Optional[int] = None) -> bytes:
    """
    Build a compressed packfile.

    Args:
        entries: (object ID, body) pairs
        prefix_length: Number of leading ID bytes shared by every entry.
            Defaults to the longest common prefix.

    Returns:
        gzip-compressed packfile bytes

    Raises:
        ValueError: If entries is empty, an ID is malformed, or IDs do not
            share the requested prefix
        HashCollision: If one ID is given with two different bodies
    """
    bodies: Dict[ObjectID, bytes] = {}
    for object_id, body in entries:
        object_id = bytes(object_id)
        if len(object_id) != OBJECT_ID_LEN:
            raise ValueError(f"object id must be {OBJECT_ID_LEN} bytes")
        existing = bodies.get(object_id)
        if existing is not None and existing != body:
            raise HashCollision(f"two different bodies for object {object_id.hex()}")
        bodies[object_id] = bytes(body)

    if not bodies:
        raise ValueError("cannot pack an empty entry set")

    shared = common_prefix_length(bodies)
    if prefix_length is None:
        prefix_length = shared
    elif not 0 <= prefix_length <= OBJECT_ID_LEN:
        raise ValueError(f"prefix length must be in [0, {OBJECT_ID_LEN}]")
    elif prefix_length > shared:
        raise ValueError(f"entries share only {shared} prefix bytes, {prefix_length} requested")

    ordered = sorted(bodies)
    prefix = ordered[0][:prefix_length]

    parts = [_HEADER.pack(PACK_MAGIC, len(ordered), prefix_length), prefix]
    for object_id in ordered:
        body = bodies[object_id]
        parts.append(object_id[prefix_length:])
        parts.append(_U32.pack(len(body)))
        parts.append(body)

    return gzip.compress(b"".join(parts), compresslevel=GZIP_COMPRESS_LEVEL, mtime=0)


class Packfile:
    """
    A parsed packfile supporting binary-search lookup by object ID.
    """

    def __init__(self, prefix: bytes, suffixes: List[bytes], bodies: List[bytes]):
        self.prefix = prefix
        self.suffixes = suffixes
        self.bodies = bodies

    @classmethod
    def parse(cls, data: bytes) -> "Packfile":
        """
        Decompress and validate a packfile.

        Raises:
            CorruptPackfile: On a bad stream, magic mismatch, count mismatch
                or entries out of order
        """
        try:
            raw = gzip.decompress(data)
        except (OSError, EOFError, zlib.error) as e:
            raise CorruptPackfile(f"packfile is not a valid gzip stream: {e}")

        if len(raw) < _HEADER.size:
            raise CorruptPackfile("packfile header truncated")
        magic, count, prefix_length = _HEADER.unpack_from(raw, 0)
        if magic != PACK_MAGIC:
            raise CorruptPackfile(f"bad packfile magic: {magic!r}")
        if prefix_length > OBJECT_ID_LEN:
            raise CorruptPackfile(f"prefix length {prefix_length} exceeds id length")

        pos = _HEADER.size
        prefix = raw[pos:pos + prefix_length]
        if len(prefix) != prefix_length:
            raise CorruptPackfile("packfile prefix truncated")
        pos += prefix_length

        suffix_length = OBJECT_ID_LEN - prefix_length
        suffixes: List[bytes] = []
        bodies: List[bytes] = []
        for index in range(count):
            if pos + suffix_length + _U32.size > len(raw):
                raise CorruptPackfile(f"entry {index} of {count} truncated")
            suffix = raw[pos:pos + suffix_length]
            pos += suffix_length
            (body_length,) = _U32.unpack_from(raw, pos)
            pos += _U32.size
            if pos + body_length > len(raw):
                raise CorruptPackfile(f"entry {index} body runs past end of packfile")
            if suffixes and suffix <= suffixes[-1]:
                raise CorruptPackfile(f"entry {index} is out of sorted order")
            suffixes.append(suffix)
            bodies.append(raw[pos:pos + body_length])
            pos += body_length

        if pos != len(raw):
            raise CorruptPackfile(
                f"declared {count} entries but {len(raw) - pos} bytes remain after them"
            )
        return cls(prefix, suffixes, bodies)

    def __len__(self) -> int:
        return len(self.suffixes)

    def ids(self) -> List[ObjectID]:
        return [self.prefix + suffix for suffix in self.suffixes]

    def entries(self) -> List[Tuple[ObjectID, bytes]]:
        return [(self.prefix + suffix, body) for suffix, body in zip(self.suffixes, self.bodies)]

    def lookup(self, object_id: ObjectID) -> bytes:
        """
        Find an entry body by binary search on the sorted suffixes.

        Raises:
            NotFound: If the ID is not in this packfile
        """
        if not object_id.startswith(self.prefix):
            raise NotFound(f"object {object_id.hex()} not in packfile")
        suffix = object_id[len(self.prefix):]
        index = bisect.bisect_left(self.suffixes, suffix)
        if index == len(self.suffixes) or self.suffixes[index] != suffix:
            raise NotFound(f"object {object_id.hex()} not in packfile")
        return self.bodies[index]


def unpack(data: bytes) -> List[Tuple[ObjectID, bytes]]:
    """Decode a packfile into (ID, body) pairs in increasing ID order."""
    return Packfile.parse(data).entries()


def lookup(packfile: Union[Packfile, bytes], object_id: ObjectID) -> bytes:
    """Look up one object in a parsed or raw packfile."""
    if not isinstance(packfile, Packfile):
        packfile = Packfile.parse(packfile)
    return packfile.lookup(object_id)
