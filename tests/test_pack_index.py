"""Tests for PackIndex persistence and lookup."""

import json

import pytest

from objectstore.pack_index import PackIndex


ID_1 = bytes([1]) * 32
ID_2 = bytes([2]) * 32


class TestPackIndex:

    def test_add_and_lookup(self):
        index = PackIndex()
        index.add(ID_1, "h1", 10)

        assert index.contains(ID_1)
        assert index.get_handle(ID_1) == "h1"
        assert index.get_handle(ID_2) is None
        assert index.count() == 1

    def test_first_location_wins(self):
        index = PackIndex()
        index.add(ID_1, "h1", 10)
        index.add(ID_1, "h2", 10)

        assert index.get_handle(ID_1) == "h1"
        assert not index.has_packfile("h2")

    def test_add_packfile(self):
        index = PackIndex()
        added = index.add_packfile("h", [(ID_1, b"abc"), (ID_2, b"de")])
        again = index.add_packfile("h", [(ID_1, b"abc")])

        assert added == 2
        assert again == 0
        assert index.get_all_handles() == ["h"]
        assert sorted(e.size for e in index.get_entries()) == [2, 3]

    def test_save_and_load(self, tmp_path):
        path = tmp_path / 'index.json'
        index = PackIndex(path)
        index.add(ID_1, "h1", 10)
        index.add(ID_2, "h2", 20)
        index.save_to_disk()

        loaded = PackIndex(path)
        assert loaded.load_from_disk() is True
        assert loaded.get_handle(ID_2) == "h2"
        assert loaded.has_packfile("h1")
        assert loaded.count() == 2

    def test_load_missing_file(self, tmp_path):
        assert PackIndex(tmp_path / 'missing.json').load_from_disk() is False

    def test_load_corrupted_file(self, tmp_path):
        path = tmp_path / 'index.json'
        path.write_text("{not json")
        with pytest.raises(json.JSONDecodeError):
            PackIndex(path).load_from_disk()

    def test_save_without_path_is_noop(self, tmp_path):
        PackIndex().save_to_disk()
        assert list(tmp_path.iterdir()) == []
