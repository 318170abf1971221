"""Tests for packing, uploading and fetching through a Repository."""

import asyncio

import pytest

from common.exceptions import CorruptPackfile, NotFound
from common.types import FSMetadata, TreeObject
from client.repository import Repository
from remote.group import RemoteGroup

KEY = bytes(range(32))


@pytest.fixture
def group(local_remotes, fast_retry):
    return RemoteGroup('g', local_remotes, retry=fast_retry)


class TestFlush:

    @pytest.mark.asyncio
    async def test_small_backlog_is_one_packfile(self, group):
        repo = Repository(group, KEY)
        ids = [repo.put_chunk(bytes([i]) * 100) for i in range(20)]

        handles = await repo.flush()

        assert len(handles) == 1
        assert repo.store.pending_count() == 0
        for object_id in ids:
            assert repo.index.get_handle(object_id) == handles[0]

    @pytest.mark.asyncio
    async def test_large_backlog_split_by_prefix(self, group):
        repo = Repository(group, KEY, pack_target_size=500)
        ids = [repo.put_chunk(bytes([i]) * 100) for i in range(40)]

        handles = await repo.flush()

        assert len(handles) > 1
        for handle in handles:
            prefixes = {e.object_id[:2] for e in repo.index.get_entries() if e.handle == handle}
            assert len(prefixes) == 1
        assert {repo.index.get_handle(i) for i in ids} == set(handles)

    @pytest.mark.asyncio
    async def test_nothing_pending(self, group):
        assert await Repository(group, KEY).flush() == []

    @pytest.mark.asyncio
    async def test_uploaded_packfiles_are_encrypted(self, group, local_remotes):
        repo = Repository(group, KEY)
        repo.put_chunk(b"plaintext marker " * 10)
        (handle,) = await repo.flush()
        await group.drain()

        stored = local_remotes[0].get_packfile_path(handle).read_bytes()
        assert b"plaintext marker" not in stored

    @pytest.mark.asyncio
    async def test_flush_does_not_keep_packfiles_in_memory(self, group):
        repo = Repository(group, KEY)
        ids = [repo.put_chunk(bytes([i]) * 50) for i in range(3)]
        (handle,) = await repo.flush()

        assert not repo.store.has_packfile_loaded(handle)
        assert await repo.fetch(ids[1]) == bytes([1]) * 50
        assert repo.store.has_packfile_loaded(handle)


class TestFetch:

    @pytest.mark.asyncio
    async def test_fetch_downloads_packfile(self, group, tmp_path):
        writer = Repository(group, KEY, index_path=tmp_path / 'index.json')
        tree = TreeObject(1, b"t", FSMetadata(1, 1, 1, 0o755))
        object_id = writer.put_object(tree)
        await writer.flush()

        reader = Repository(group, KEY, index_path=tmp_path / 'index.json')
        assert await reader.fetch_object(object_id) == tree

    @pytest.mark.asyncio
    async def test_fetch_unknown(self, group):
        with pytest.raises(NotFound):
            await Repository(group, KEY).fetch(bytes(32))

    @pytest.mark.asyncio
    async def test_wrong_key(self, group):
        writer = Repository(group, KEY)
        writer.put_chunk(b"secret")
        await writer.flush()

        reader = Repository(group, bytes(32))
        with pytest.raises(CorruptPackfile):
            await reader.sync_index()

    @pytest.mark.asyncio
    async def test_sync_index_only_indexes(self, group):
        writer = Repository(group, KEY)
        object_id = writer.put_chunk(b"indexed")
        (handle,) = await writer.flush()

        reader = Repository(group, KEY)
        assert await reader.sync_index() == 1
        assert reader.index.get_handle(object_id) == handle
        assert not reader.store.has_packfile_loaded(handle)
        assert await reader.fetch(object_id) == b"indexed"

    @pytest.mark.asyncio
    async def test_prefetch_unknown_object(self, group):
        with pytest.raises(NotFound):
            await Repository(group, KEY).prefetch([bytes([9]) * 32])

    @pytest.mark.asyncio
    async def test_concurrent_loads_share_one_download(self, group, local_remotes, flaky, fast_retry, tmp_path):
        counted = flaky(local_remotes[0])
        writer = Repository(RemoteGroup('w', [counted], retry=fast_retry), KEY, index_path=tmp_path / 'i.json')
        ids = [writer.put_chunk(bytes([i]) * 10) for i in range(5)]
        await writer.flush()

        reader = Repository(RemoteGroup('r', [counted], retry=fast_retry), KEY, index_path=tmp_path / 'i.json')
        await asyncio.gather(*(reader.fetch(i) for i in ids))

        assert counted.get_calls == 1
