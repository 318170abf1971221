"""Tests for the packfile container format."""

import gzip
import struct

import pytest

from common.exceptions import CorruptPackfile, HashCollision, NotFound
from objectstore.checksum import compute_object_id
from objectstore.packfile import Packfile, common_prefix_length, lookup, pack, unpack


def _id(first: int, second: int, fill: int = 0) -> bytes:
    return bytes([first, second]) + bytes([fill]) * 30


def _raw(entries, prefix_length, count=None):
    """Uncompressed packfile body, for crafting corrupt inputs."""
    entries = sorted(entries)
    prefix = entries[0][0][:prefix_length] if entries else b""
    parts = [struct.pack("<4sIB", b"PACK", len(entries) if count is None else count, prefix_length), prefix]
    for object_id, body in entries:
        parts += [object_id[prefix_length:], struct.pack("<I", len(body)), body]
    return b"".join(parts)


class TestPackUnpack:

    def test_two_entries_sharing_prefix(self):
        """0x00AA... and 0x00BB... share prefix 0x00 and come back sorted."""
        id_aa, id_bb = _id(0x00, 0xAA), _id(0x00, 0xBB)

        data = pack([(id_bb, b"second"), (id_aa, b"first")], prefix_length=1)
        entries = unpack(data)

        assert entries == [(id_aa, b"first"), (id_bb, b"second")]
        assert Packfile.parse(data).prefix == b"\x00"

    def test_entries_strictly_increasing(self):
        bodies = [bytes([i]) * i for i in range(1, 40)]
        entries = [(compute_object_id(b), b) for b in bodies]

        decoded = unpack(pack(entries))

        ids = [object_id for object_id, _ in decoded]
        assert ids == sorted(ids)
        assert len(set(ids)) == len(ids)
        assert set(decoded) == set(entries)

    def test_default_prefix_is_longest_common(self):
        a = bytes([1, 2, 3]) + bytes(29)
        b = bytes([1, 2, 4]) + bytes(29)
        packfile = Packfile.parse(pack([(a, b"a"), (b, b"b")]))
        assert packfile.prefix == bytes([1, 2])

    def test_single_entry_uses_full_id_as_prefix(self):
        object_id = compute_object_id(b"solo")
        packfile = Packfile.parse(pack([(object_id, b"solo")]))
        assert packfile.prefix == object_id
        assert packfile.lookup(object_id) == b"solo"

    def test_duplicate_identical_entries_collapse(self):
        object_id = compute_object_id(b"x")
        assert unpack(pack([(object_id, b"x"), (object_id, b"x")])) == [(object_id, b"x")]

    def test_duplicate_differing_entries_collide(self):
        object_id = compute_object_id(b"x")
        with pytest.raises(HashCollision):
            pack([(object_id, b"x"), (object_id, b"y")])

    def test_empty_entry_set_rejected(self):
        with pytest.raises(ValueError):
            pack([])

    def test_prefix_not_shared_rejected(self):
        with pytest.raises(ValueError):
            pack([(_id(0x00, 1), b"a"), (_id(0x01, 1), b"b")], prefix_length=1)

    def test_output_is_deterministic(self):
        entries = [(_id(0, 1), b"a"), (_id(0, 2), b"b")]
        assert pack(entries) == pack(list(reversed(entries)))

    def test_common_prefix_length(self):
        assert common_prefix_length([_id(5, 1), _id(5, 2)]) == 1
        assert common_prefix_length([_id(5, 1)]) == 32
        assert common_prefix_length([]) == 0


class TestLookup:

    def test_binary_search_finds_every_entry(self):
        entries = [(compute_object_id(str(i).encode()), str(i).encode()) for i in range(200)]
        packfile = Packfile.parse(pack(entries))

        assert len(packfile) == 200
        for object_id, body in entries:
            assert packfile.lookup(object_id) == body

    def test_missing_id(self):
        data = pack([(_id(0, 1), b"a"), (_id(0, 3), b"c")])
        with pytest.raises(NotFound):
            lookup(data, _id(0, 2))

    def test_id_outside_prefix(self):
        data = pack([(_id(0, 1), b"a"), (_id(0, 3), b"c")], prefix_length=1)
        with pytest.raises(NotFound):
            lookup(data, _id(9, 1))


class TestCorruption:

    def test_not_gzip(self):
        with pytest.raises(CorruptPackfile, match="gzip"):
            Packfile.parse(b"definitely not gzip")

    def test_bad_magic(self):
        raw = _raw([(_id(0, 1), b"a")], 1).replace(b"PACK", b"KCAP", 1)
        with pytest.raises(CorruptPackfile, match="magic"):
            Packfile.parse(gzip.compress(raw))

    def test_prefix_length_over_32(self):
        raw = struct.pack("<4sIB", b"PACK", 0, 33)
        with pytest.raises(CorruptPackfile, match="prefix length"):
            Packfile.parse(gzip.compress(raw))

    def test_truncated_body(self):
        raw = _raw([(_id(0, 1), b"abcdef")], 1)
        with pytest.raises(CorruptPackfile):
            Packfile.parse(gzip.compress(raw[:-2]))

    def test_count_larger_than_entries(self):
        raw = _raw([(_id(0, 1), b"a")], 1, count=2)
        with pytest.raises(CorruptPackfile, match="truncated"):
            Packfile.parse(gzip.compress(raw))

    def test_trailing_bytes(self):
        raw = _raw([(_id(0, 1), b"a"), (_id(0, 2), b"b")], 1, count=1)
        with pytest.raises(CorruptPackfile, match="remain"):
            Packfile.parse(gzip.compress(raw))

    def test_out_of_order_entries(self):
        first, second = (_id(0, 2), b"b"), (_id(0, 1), b"a")
        raw = struct.pack("<4sIB", b"PACK", 2, 1) + b"\x00"
        for object_id, body in (first, second):
            raw += object_id[1:] + struct.pack("<I", len(body)) + body
        with pytest.raises(CorruptPackfile, match="order"):
            Packfile.parse(gzip.compress(raw))

    def test_duplicate_suffix(self):
        entry = (_id(0, 1), b"a")
        raw = struct.pack("<4sIB", b"PACK", 2, 1) + b"\x00"
        for object_id, body in (entry, entry):
            raw += object_id[1:] + struct.pack("<I", len(body)) + body
        with pytest.raises(CorruptPackfile):
            Packfile.parse(gzip.compress(raw))
