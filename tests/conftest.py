"""Shared pytest fixtures for all tests."""

import asyncio
import os
from pathlib import Path
from typing import List

import pytest

from client.config import Config
from common.exceptions import RemoteUnavailable
from remote.base import Remote
from remote.group import RetryPolicy
from remote.local_remote import LocalRemote


class FlakyRemote(Remote):
    """
    Test double wrapping a real remote to inject failures.

    Attributes:
        offline: Every call raises RemoteUnavailable
        fail_puts: Number of upcoming put_packfile calls that fail
        corrupt_reads: get_packfile returns flipped bytes
        put_delay: Seconds to sleep before each put_packfile
    """

    def __init__(self, inner: Remote, offline: bool = False, fail_puts: int = 0, put_delay: float = 0.0):
        super().__init__(
            inner.name,
            upload_cost=inner.upload_cost,
            download_cost=inner.download_cost,
            reliable=inner.reliable,
        )
        self.inner = inner
        self.offline = offline
        self.fail_puts = fail_puts
        self.corrupt_reads = False
        self.put_delay = put_delay
        self.put_calls = 0
        self.get_calls = 0

    def _check(self) -> None:
        if self.offline:
            raise RemoteUnavailable(f"{self.name} is offline", remote=self.name)

    async def put_packfile(self, data: bytes) -> str:
        self.put_calls += 1
        if self.put_delay:
            await asyncio.sleep(self.put_delay)
        self._check()
        if self.fail_puts > 0:
            self.fail_puts -= 1
            raise RemoteUnavailable(f"{self.name} dropped the upload", remote=self.name)
        return await self.inner.put_packfile(data)

    async def get_packfile(self, handle: str) -> bytes:
        self.get_calls += 1
        self._check()
        data = await self.inner.get_packfile(handle)
        if self.corrupt_reads:
            return bytes([data[0] ^ 0xFF]) + data[1:]
        return data

    async def list(self) -> List[str]:
        self._check()
        return await self.inner.list()

    async def put_keystore(self, data: bytes) -> None:
        self._check()
        await self.inner.put_keystore(data)

    async def get_keystore(self) -> bytes:
        self._check()
        return await self.inner.get_keystore()


@pytest.fixture
def fast_retry():
    """Retry policy without real sleeping."""
    return RetryPolicy(max_retries=2, base_delay=0.0, multiplier=2, timeout=5.0)


@pytest.fixture
def local_remotes(tmp_path):
    """
    Three directory remotes A, B and C.

    Returns:
        List of LocalRemote instances
    """
    return [LocalRemote(name, tmp_path / 'remotes' / name) for name in ('A', 'B', 'C')]


@pytest.fixture
def temp_config_dir(tmp_path):
    """
    Create temporary config directory.

    Returns:
        Path to temporary .bkp directory
    """
    config_dir = tmp_path / '.bkp'
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def temp_config(temp_config_dir):
    """
    Create temporary config instance.

    Returns:
        Config instance with temp config file
    """
    return Config(temp_config_dir / 'config.json')


@pytest.fixture
def configured(temp_config, tmp_path):
    """
    Config with three file:// remotes in a default group 'all'.
    """
    for name in ('A', 'B', 'C'):
        temp_config.add_remote(name, f"file://{tmp_path / 'remotes' / name}")
    temp_config.add_group('all', ['A', 'B', 'C'])
    temp_config.data['kdf_rounds'] = 1
    temp_config.data['retry_base_delay'] = 0.0
    temp_config.data['max_retries'] = 2
    temp_config.data['chunk_size'] = 4096
    temp_config.save()
    return temp_config


@pytest.fixture
def sample_tree(tmp_path):
    """
    Small directory tree with nested directories, a multi-chunk file,
    an empty file, a duplicate file and a symlink.

    Returns:
        Path to the tree root ("docs")
    """
    root = tmp_path / 'source' / 'docs'
    (root / 'sub' / 'deeper').mkdir(parents=True)
    (root / 'readme.txt').write_bytes(b'hello backup\n')
    (root / 'empty.txt').write_bytes(b'')
    (root / 'sub' / 'big.bin').write_bytes(bytes(range(256)) * 40)
    (root / 'sub' / 'deeper' / 'copy.txt').write_bytes(b'hello backup\n')
    os.symlink('readme.txt', root / 'link')

    os.chmod(root / 'readme.txt', 0o644)
    os.chmod(root / 'sub' / 'big.bin', 0o600)
    for path in (root / 'readme.txt', root / 'sub' / 'big.bin', root / 'empty.txt'):
        os.utime(path, (1_600_000_000, 1_500_000_000))
    return root


def snapshot_tree(root: Path) -> dict:
    """
    Describe a tree as {relative path: (kind, mode, mtime, content)} for
    comparing originals with restores.
    """
    result = {}
    for path in sorted(root.rglob('*')):
        rel = path.relative_to(root).as_posix()
        st = path.lstat()
        if path.is_symlink():
            result[rel] = ('symlink', None, None, os.readlink(path))
        elif path.is_dir():
            result[rel] = ('dir', st.st_mode & 0o7777, None, None)
        else:
            result[rel] = ('file', st.st_mode & 0o7777, int(st.st_mtime), path.read_bytes())
    return result


@pytest.fixture
def flaky():
    """Factory wrapping a remote in a FlakyRemote."""
    return FlakyRemote


@pytest.fixture
def tree_snapshot():
    return snapshot_tree
