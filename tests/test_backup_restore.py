"""End-to-end backup and restore through the Bkp client API."""

import os
import shutil
from unittest.mock import patch

import pytest

from client.bkp import Bkp
from client.config import Config
from client.repository import Repository
from client import restore as restore_ops
from common.constants import DATA_KEY_NAME
from common.exceptions import ConfigError, MalformedObject, NotFound
from common.types import TreeObject, VersionObject
from keystore.keystore import Keystore
from remote.group import RemoteGroup
from remote.local_remote import LocalRemote

PASSWORD = "correct horse battery staple"


async def _backup_once(config, source):
    bkp = Bkp(config)
    try:
        await bkp.init_keystore(PASSWORD)
        version_id = await bkp.backup(source)
    finally:
        await bkp.close()
    return version_id


class TestBackupRestore:

    @pytest.mark.asyncio
    async def test_restore_matches_original(self, configured, sample_tree, tmp_path, tree_snapshot):
        version_id = await _backup_once(configured, sample_tree)

        bkp = Bkp(configured)
        try:
            files = await bkp.restore(version_id, tmp_path / 'restored')
        finally:
            await bkp.close()

        assert files == 4
        assert tree_snapshot(tmp_path / 'restored') == tree_snapshot(sample_tree)

    @pytest.mark.asyncio
    async def test_restore_from_hex_id(self, configured, sample_tree, tmp_path, tree_snapshot):
        version_id = await _backup_once(configured, sample_tree)

        bkp = Bkp(configured)
        try:
            await bkp.restore(version_id.hex(), tmp_path / 'restored')
        finally:
            await bkp.close()

        assert (tmp_path / 'restored' / 'readme.txt').read_bytes() == b'hello backup\n'
        assert os.readlink(tmp_path / 'restored' / 'link') == 'readme.txt'

    @pytest.mark.asyncio
    @pytest.mark.parametrize("member", ['A', 'B', 'C'])
    async def test_any_single_remote_restores_identically(
        self, configured, sample_tree, tmp_path, tree_snapshot, member, fast_retry
    ):
        """Restoring through one member alone yields the same tree as through the group."""
        version_id = await _backup_once(configured, sample_tree)
        data_key = Keystore.load_local(configured.home / 'keystore.json').data_key

        remote = LocalRemote(member, tmp_path / 'remotes' / member)
        repo = Repository(RemoteGroup(member, [remote], retry=fast_retry), data_key)
        await repo.sync_index()
        await restore_ops.restore(repo, version_id, tmp_path / f'only-{member}')

        bkp = Bkp(configured)
        try:
            await bkp.restore(version_id, tmp_path / 'full')
        finally:
            await bkp.close()

        assert tree_snapshot(tmp_path / f'only-{member}') == tree_snapshot(tmp_path / 'full')

    @pytest.mark.asyncio
    async def test_restore_with_two_members_offline(self, configured, sample_tree, tmp_path, tree_snapshot, flaky):
        version_id = await _backup_once(configured, sample_tree)
        data_key = Keystore.load_local(configured.home / 'keystore.json').data_key
        a, b, c = (LocalRemote(n, tmp_path / 'remotes' / n) for n in ('A', 'B', 'C'))

        group = RemoteGroup('g', [a, flaky(b, offline=True), flaky(c, offline=True)])
        group.retry.max_retries = 1
        repo = Repository(group, data_key)
        await repo.sync_index()
        await restore_ops.restore(repo, version_id, tmp_path / 'restored')

        assert tree_snapshot(tmp_path / 'restored') == tree_snapshot(sample_tree)

    @pytest.mark.asyncio
    async def test_target_must_be_empty(self, configured, sample_tree, tmp_path):
        version_id = await _backup_once(configured, sample_tree)
        target = tmp_path / 'busy'
        target.mkdir()
        (target / 'existing').write_text('x')

        bkp = Bkp(configured)
        try:
            with pytest.raises(FileExistsError):
                await bkp.restore(version_id, target)
        finally:
            await bkp.close()

    @pytest.mark.asyncio
    async def test_restore_rejects_non_version(self, configured, sample_tree, tmp_path):
        await _backup_once(configured, sample_tree)
        bkp = Bkp(configured)
        try:
            history = await bkp.history()
            root_id = history[0][1].root
            with pytest.raises(MalformedObject):
                await bkp.restore(root_id, tmp_path / 'restored')
        finally:
            await bkp.close()

    @pytest.mark.asyncio
    async def test_backup_without_keystore(self, configured, sample_tree):
        bkp = Bkp(configured)
        try:
            with pytest.raises(ConfigError):
                await bkp.backup(sample_tree)
        finally:
            await bkp.close()

    @pytest.mark.asyncio
    async def test_init_keystore_twice(self, configured):
        bkp = Bkp(configured)
        try:
            await bkp.init_keystore(PASSWORD)
            with pytest.raises(ConfigError):
                await bkp.init_keystore(PASSWORD)
        finally:
            await bkp.close()


class TestHistory:

    @pytest.mark.asyncio
    async def test_versions_chain_to_parent(self, configured, sample_tree):
        first = await _backup_once(configured, sample_tree)
        (sample_tree / 'readme.txt').write_bytes(b'changed\n')

        bkp = Bkp(configured)
        try:
            second = await bkp.backup(sample_tree)
            history = await bkp.history()
        finally:
            await bkp.close()

        assert [vid for vid, _ in history] == [second, first]
        assert isinstance(history[0][1], VersionObject)
        assert history[0][1].parent == first
        assert history[1][1].parent is None
        assert configured.get_head() == second.hex()

    @pytest.mark.asyncio
    async def test_unchanged_chunks_not_uploaded_again(self, configured, sample_tree):
        await _backup_once(configured, sample_tree)

        bkp = Bkp(configured)
        try:
            repo = bkp._get_repository()
            chunk_count = repo.index.count()
            await bkp.backup(sample_tree)
            new_objects = repo.index.count() - chunk_count
        finally:
            await bkp.close()

        # a new version and new tree/file/symlink objects, but no new chunks
        assert 0 < new_objects <= 1 + 3 + 4 + 1

    @pytest.mark.asyncio
    async def test_old_version_still_restorable(self, configured, sample_tree, tmp_path):
        first = await _backup_once(configured, sample_tree)
        (sample_tree / 'readme.txt').write_bytes(b'changed\n')

        bkp = Bkp(configured)
        try:
            await bkp.backup(sample_tree)
            await bkp.restore(first, tmp_path / 'old')
        finally:
            await bkp.close()

        assert (tmp_path / 'old' / 'readme.txt').read_bytes() == b'hello backup\n'


class TestRecovery:

    @pytest.mark.asyncio
    async def test_fresh_machine_recovers_and_restores(self, configured, sample_tree, tmp_path, tree_snapshot):
        """A new home with only the password recovers keys, index and head from one remote."""
        version_id = await _backup_once(configured, sample_tree)

        fresh = Config(tmp_path / 'fresh' / 'config.json')
        for name in ('A', 'B', 'C'):
            fresh.add_remote(name, f"file://{tmp_path / 'remotes' / name}")
        fresh.add_group('all', ['A', 'B', 'C'])
        fresh.data['kdf_rounds'] = 1
        fresh.data['retry_base_delay'] = 0.0
        fresh.save()

        bkp = Bkp(fresh)
        try:
            keystore = await bkp.recover_keystore('B', PASSWORD)
            indexed = await bkp.sync_index()
            files = await bkp.restore(fresh.get_head(), tmp_path / 'recovered')
        finally:
            await bkp.close()

        assert DATA_KEY_NAME in keystore.list_keys()
        assert indexed >= 1
        assert fresh.get_head() == version_id.hex()
        assert files == 4
        assert tree_snapshot(tmp_path / 'recovered') == tree_snapshot(sample_tree)

    @pytest.mark.asyncio
    async def test_sync_index_keeps_existing_head(self, configured, sample_tree):
        version_id = await _backup_once(configured, sample_tree)
        bkp = Bkp(configured)
        try:
            assert await bkp.sync_index() == 0
        finally:
            await bkp.close()
        assert configured.get_head() == version_id.hex()


class TestRestoreOptions:

    @pytest.mark.asyncio
    async def test_restore_latest_without_version(self, configured, sample_tree, tmp_path, tree_snapshot):
        await _backup_once(configured, sample_tree)

        bkp = Bkp(configured)
        try:
            files = await bkp.restore(None, tmp_path / 'latest')
        finally:
            await bkp.close()

        assert files == 4
        assert tree_snapshot(tmp_path / 'latest') == tree_snapshot(sample_tree)

    @pytest.mark.asyncio
    async def test_restore_as_of_time(self, configured, sample_tree, tmp_path):
        with patch('client.backup.time') as clock:
            clock.time.return_value = 1_000_000
            await _backup_once(configured, sample_tree)
            (sample_tree / 'readme.txt').write_bytes(b'changed\n')
            clock.time.return_value = 2_000_000

            bkp = Bkp(configured)
            try:
                await bkp.backup(sample_tree)
                await bkp.restore(None, tmp_path / 'then', before=1_500_000)
                await bkp.restore(None, tmp_path / 'now', before=2_000_000)
                with pytest.raises(NotFound):
                    await bkp.restore(None, tmp_path / 'never', before=999_999)
            finally:
                await bkp.close()

        assert (tmp_path / 'then' / 'readme.txt').read_bytes() == b'hello backup\n'
        assert (tmp_path / 'now' / 'readme.txt').read_bytes() == b'changed\n'
        assert not (tmp_path / 'never').exists()

    @pytest.mark.asyncio
    async def test_restore_from_other_node(self, configured, sample_tree, tmp_path):
        first = await _backup_once(configured, sample_tree)
        configured.set_head(first.hex(), node_name='laptop')
        (sample_tree / 'readme.txt').write_bytes(b'changed\n')

        bkp = Bkp(configured)
        try:
            await bkp.backup(sample_tree)
            await bkp.restore(None, tmp_path / 'laptop', node='laptop')
            with pytest.raises(ConfigError, match='desktop'):
                await bkp.restore(None, tmp_path / 'desktop', node='desktop')
        finally:
            await bkp.close()

        assert (tmp_path / 'laptop' / 'readme.txt').read_bytes() == b'hello backup\n'

    @pytest.mark.asyncio
    async def test_restore_without_perms_and_attrs(self, configured, sample_tree, tmp_path):
        version_id = await _backup_once(configured, sample_tree)
        umask = os.umask(0)
        os.umask(umask)

        bkp = Bkp(configured)
        try:
            await bkp.restore(version_id, tmp_path / 'plain', restore_perms=False, restore_attrs=False)
        finally:
            await bkp.close()

        big = (tmp_path / 'plain' / 'sub' / 'big.bin').stat()
        assert big.st_mode & 0o7777 == 0o666 & ~umask
        assert int(big.st_mtime) != 1_500_000_000

    @pytest.mark.asyncio
    async def test_root_tree_is_unnamed(self, configured, sample_tree):
        await _backup_once(configured, sample_tree)

        bkp = Bkp(configured)
        try:
            (_, version), = await bkp.history()
            root = await bkp._get_repository().fetch_object(version.root)
        finally:
            await bkp.close()

        assert isinstance(root, TreeObject)
        assert root.name == b""


class TestMaintenance:

    @pytest.mark.asyncio
    async def test_repair_copies_to_lagging_member(self, configured, sample_tree, tmp_path):
        await _backup_once(configured, sample_tree)
        a = LocalRemote('A', tmp_path / 'remotes' / 'A')
        b = LocalRemote('B', tmp_path / 'remotes' / 'B')
        handles = await a.list()
        shutil.rmtree(b.root / 'packs')

        bkp = Bkp(configured)
        try:
            repaired = await bkp.repair()
            again = await bkp.repair()
        finally:
            await bkp.close()

        assert repaired == len(handles)
        assert again == 0
        assert await b.list() == handles

    @pytest.mark.asyncio
    async def test_stat(self, configured, sample_tree, tmp_path):
        await _backup_once(configured, sample_tree)
        handles = await LocalRemote('A', tmp_path / 'remotes' / 'A').list()

        bkp = Bkp(configured)
        try:
            stats = await bkp.stat()
            objects = bkp._get_repository().index.count()
        finally:
            await bkp.close()

        assert stats.group == 'all'
        assert stats.versions == 1
        assert stats.objects == objects > 0
        assert stats.packfiles == len(handles)
        assert stats.replicas == {'A': len(handles), 'B': len(handles), 'C': len(handles)}
        assert stats.under_replicated == 0
        assert stats.without_reliable_copy == len(handles)

    @pytest.mark.asyncio
    async def test_stat_with_reliable_member(self, configured, sample_tree):
        configured.data['remotes']['C']['reliable'] = True
        configured.save()
        await _backup_once(configured, sample_tree)

        bkp = Bkp(configured)
        try:
            stats = await bkp.stat()
        finally:
            await bkp.close()

        assert stats.without_reliable_copy == 0

    @pytest.mark.asyncio
    async def test_show_keys(self, configured, tmp_path):
        bkp = Bkp(configured)
        try:
            await bkp.init_keystore(PASSWORD)
            await bkp.open_group().drain()
            (tmp_path / 'remotes' / 'B' / 'keystore.enc').unlink()
            (tmp_path / 'remotes' / 'C' / 'keystore.enc').write_bytes(b'damaged')

            names, statuses = await bkp.show_keys()
        finally:
            await bkp.close()

        assert DATA_KEY_NAME in names
        assert statuses == {'A': 'present', 'B': 'missing', 'C': 'corrupt'}

    @pytest.mark.asyncio
    async def test_show_keys_without_keystore(self, configured):
        bkp = Bkp(configured)
        try:
            with pytest.raises(ConfigError):
                await bkp.show_keys()
        finally:
            await bkp.close()

    @pytest.mark.asyncio
    async def test_test_remote(self, configured, sample_tree, tmp_path):
        await _backup_once(configured, sample_tree)
        handles = await LocalRemote('B', tmp_path / 'remotes' / 'B').list()

        bkp = Bkp(configured)
        try:
            response = await bkp.test_remote('B')
            with pytest.raises(ConfigError):
                await bkp.test_remote('Z')
        finally:
            await bkp.close()

        assert response.status == 'ok'
        assert response.name == 'B'
        assert response.packfile_count == len(handles)

    @pytest.mark.asyncio
    async def test_check_all_nodes(self, configured, sample_tree, tmp_path):
        first = await _backup_once(configured, sample_tree)
        configured.data['heads'] = {'laptop': first.hex()}
        configured.save()
        other = tmp_path / 'other'
        other.mkdir()
        (other / 'note.txt').write_bytes(b'separate history\n')

        bkp = Bkp(configured)
        try:
            await bkp.backup(other)
            own = await bkp.check()
            every = await bkp.check(all_nodes=True)
        finally:
            await bkp.close()

        assert own.ok and own.versions == 1
        assert every.ok and every.versions == 2
