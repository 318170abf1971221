"""
Client API: configure remotes, manage keys, back up, restore and check.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from client import backup as backup_ops
from client import restore as restore_ops
from client.config import Config
from client.history import CheckMode, CheckReport, HistoryChecker, find_heads, walk_history
from client.repository import Repository
from common.exceptions import ConfigError, NotFound, RemoteCorrupt, RemoteError
from common.logging_config import get_logger
from common.protocol import PingResponse
from common.types import ObjectID, VersionObject, id_from_hex, id_to_hex
from keystore.keystore import Keystore
from keystore.manager import KeystoreManager
from remote.factory import open_remote
from remote.group import RemoteGroup, RetryPolicy
from remote.replication_ledger import ReplicationLedger

logger = get_logger(__name__)

KEYSTORE_FILE_NAME = "keystore.json"
INDEX_FILE_NAME = "index.json"
OBJECTS_DIR_NAME = "objects"
LEDGER_FILE_NAME = "replication.db"


@dataclass
class BackupStats:
    """
    Repository and replication figures for the default group.
    """
    group: str
    versions: int = 0
    objects: int = 0
    packfiles: int = 0
    replicas: Dict[str, int] = field(default_factory=dict)
    under_replicated: int = 0
    without_reliable_copy: int = 0


class Bkp:
    """
    Entry point for every client operation. Local state (config, plaintext
    keystore, pack index, loose objects, replication ledger) lives next to
    the config file.
    """

    def __init__(self, config: Optional[Config] = None):
        self.config = config or Config()
        self.home = self.config.home
        self._ledger: Optional[ReplicationLedger] = None
        self._groups: Dict[str, RemoteGroup] = {}
        self._repo: Optional[Repository] = None

    @property
    def keystore_path(self) -> Path:
        return self.home / KEYSTORE_FILE_NAME

    def add_remote(
        self,
        name: str,
        url: str,
        *,
        upload_cost: int = 1,
        download_cost: int = 1,
        reliable: bool = False
    ) -> None:
        self.config.add_remote(name, url, upload_cost=upload_cost, download_cost=download_cost, reliable=reliable)
        logger.info(f"Added remote '{name}' -> {url}")

    def remove_remote(self, name: str) -> None:
        self.config.remove_remote(name)
        logger.info(f"Removed remote '{name}'")

    def add_remote_group(self, name: str, members: List[str]) -> None:
        self.config.add_group(name, members)
        logger.info(f"Added remote group '{name}' with members {members}")

    def list_remotes(self) -> Dict[str, dict]:
        return self.config.get_remotes()

    async def test_remote(self, name: str) -> PingResponse:
        """
        Check that one configured remote answers.

        Raises:
            ConfigError: If the remote is not configured
            RemoteError: If it cannot be reached
        """
        entry = self.config.get_remote(name)
        remote = open_remote(name, entry["url"], timeout=self.config.get_timeout())
        try:
            response = await remote.ping()
        finally:
            await remote.close()
        logger.info(f"Remote '{name}' answered with {response.packfile_count} packfiles")
        return response

    def open_group(self, name: Optional[str] = None) -> RemoteGroup:
        """
        Build (once) the RemoteGroup for a configured group.

        Raises:
            ConfigError: If the group or one of its members is not configured
        """
        name = name or self.config.get_default_group()
        if name is None:
            raise ConfigError("no remote group configured; run 'bkp group add' first")
        if name in self._groups:
            return self._groups[name]

        retry_config = self.config.get_retry_config()
        timeout = self.config.get_timeout()
        members = []
        for member_name in self.config.get_group(name):
            entry = self.config.get_remote(member_name)
            members.append(open_remote(
                member_name,
                entry["url"],
                upload_cost=entry.get("upload_cost", 1),
                download_cost=entry.get("download_cost", 1),
                reliable=entry.get("reliable", False),
                timeout=timeout,
            ))

        group = RemoteGroup(
            name,
            members,
            ledger=self._get_ledger(),
            retry=RetryPolicy(
                max_retries=retry_config['max_retries'],
                base_delay=retry_config['retry_base_delay'],
                multiplier=retry_config['retry_backoff_multiplier'],
                timeout=timeout,
            ),
            concurrency=self.config.data["concurrency"],
        )
        self._groups[name] = group
        return group

    async def init_keystore(self, password: str) -> Keystore:
        """
        Create a keystore with a fresh data key, save it locally and publish
        an encrypted copy to every member of the default group.

        Raises:
            ConfigError: If a local keystore already exists
        """
        if self.keystore_path.exists():
            raise ConfigError(f"a keystore already exists at {self.keystore_path}")

        keystore = Keystore.create()
        group = self.open_group()
        manager = KeystoreManager(self.config.data["kdf_rounds"])
        await manager.publish(group, keystore.to_bytes(), password)
        keystore.save_local(self.keystore_path)
        logger.info(f"Initialized keystore with keys {keystore.list_keys()}")
        return keystore

    async def recover_keystore(self, remote_name: str, password: str) -> Keystore:
        """
        Recover the keystore from one remote and save it locally.

        Raises:
            NotFound: If that remote never received a keystore
            WrongPassword: If the password does not decrypt it
        """
        entry = self.config.get_remote(remote_name)
        remote = open_remote(remote_name, entry["url"], timeout=self.config.get_timeout())
        try:
            plaintext = await KeystoreManager(self.config.data["kdf_rounds"]).recover(remote, password)
        finally:
            await remote.close()

        keystore = Keystore.from_bytes(plaintext)
        keystore.save_local(self.keystore_path)
        self._repo = None
        return keystore

    async def show_keys(self) -> Tuple[List[str], Dict[str, str]]:
        """
        Names of the local keys, and whether each member of the default
        group holds a readable encrypted keystore.

        Returns:
            (key names, member name -> 'present', 'missing', 'corrupt' or
            'unreachable')

        Raises:
            ConfigError: If there is no local keystore
        """
        try:
            keystore = Keystore.load_local(self.keystore_path)
        except NotFound:
            raise ConfigError("no keystore found; run 'bkp keys init' or 'bkp keys recover' first")

        statuses: Dict[str, str] = {}
        for member in self.open_group().members:
            try:
                await member.get_keystore()
            except NotFound:
                statuses[member.name] = "missing"
            except RemoteCorrupt as e:
                logger.warning(f"Keystore copy on {member.name} is corrupt: {e}")
                statuses[member.name] = "corrupt"
            except RemoteError as e:
                logger.debug(f"Keystore status of {member.name} unknown: {e}")
                statuses[member.name] = "unreachable"
            else:
                statuses[member.name] = "present"
        return keystore.list_keys(), statuses

    async def backup(self, root_path: Path) -> ObjectID:
        """
        Snapshot a directory and make it the new head.

        Returns:
            ID of the new Version object
        """
        repo = self._get_repository()
        version_id = await backup_ops.backup(
            repo,
            Path(root_path),
            parent=self._get_head(),
            chunk_size=self.config.data["chunk_size"],
        )
        self.config.set_head(id_to_hex(version_id))
        return version_id

    async def restore(
        self,
        version_id: Optional[ObjectID],
        target_path: Path,
        *,
        before: Optional[int] = None,
        node: Optional[str] = None,
        restore_perms: bool = True,
        restore_attrs: bool = True
    ) -> int:
        """
        Restore a version into an empty directory. Without an explicit
        version, the head of node (this machine by default) is used, or the
        newest version created at or before the before timestamp.

        Returns:
            Number of files restored
        """
        version_id = await self.resolve_version(version_id, before=before, node=node)
        return await restore_ops.restore(
            self._get_repository(),
            version_id,
            Path(target_path),
            restore_perms=restore_perms,
            restore_attrs=restore_attrs,
        )

    async def resolve_version(
        self,
        version_id=None,
        before: Optional[int] = None,
        node: Optional[str] = None
    ) -> ObjectID:
        """
        Pick the version a restore should use.

        Raises:
            ConfigError: If the node has no recorded head
            NotFound: If no version is old enough for before
        """
        if version_id is not None:
            return id_from_hex(version_id) if isinstance(version_id, str) else version_id

        head_hex = self.config.get_head(node)
        if head_hex is None:
            raise ConfigError(f"no head recorded for node {node or self.config.data['node_name']!r}")
        head = id_from_hex(head_hex)
        if before is None:
            return head

        for candidate, version in await walk_history(self._get_repository(), head):
            if version.create_time <= before:
                return candidate
        raise NotFound(f"no version created at or before {before}")

    async def sync_index(self) -> int:
        """
        Rebuild the pack index from the remotes. When this node has no
        head yet, the newest head found in the index is adopted.

        Returns:
            Number of packfiles newly indexed
        """
        repo = self._get_repository()
        added = await repo.sync_index()
        if self._get_head() is None:
            heads = await find_heads(repo)
            if heads:
                head_id, _ = heads[0]
                self.config.set_head(id_to_hex(head_id))
                logger.info(f"Adopted head {head_id.hex()} from remote history")
        return added

    async def check(self, mode: CheckMode = CheckMode.NORMAL, all_nodes: bool = False) -> CheckReport:
        """
        Verify history from this node's head, or with all_nodes from every
        recorded head plus every head found in the pack index.
        """
        repo = self._get_repository()
        checker = HistoryChecker(repo, CheckMode(mode))
        if not all_nodes:
            return await checker.check(self._get_head())

        heads = {id_from_hex(value) for value in self.config.data["heads"].values()}
        heads.update(head_id for head_id, _ in await find_heads(repo))
        return await checker.check_heads(sorted(heads))

    async def history(self) -> List[Tuple[ObjectID, VersionObject]]:
        """Version chain from the current head, newest first."""
        return await walk_history(self._get_repository(), self._get_head())

    async def stat(self) -> BackupStats:
        """
        Count versions, objects and packfiles, and how many packfiles each
        member of the default group is known to hold.
        """
        repo = self._get_repository()
        group = self.open_group()
        await group.drain()
        ledger = self._get_ledger()

        handles = repo.index.get_all_handles()
        member_names = [member.name for member in group.members]
        reliable = {member.name for member in group.members if member.reliable}
        counts = ledger.replica_counts()

        stats = BackupStats(
            group=group.name,
            versions=len(await self.history()),
            objects=repo.index.count(),
            packfiles=len(handles),
            replicas={name: counts.get(name, 0) for name in member_names},
            under_replicated=len(ledger.get_under_replicated(member_names)),
        )
        stats.without_reliable_copy = sum(1 for handle in handles if not ledger.members_for(handle) & reliable)
        return stats

    async def repair(self) -> int:
        """Run one anti-entropy round on the default group."""
        group = self.open_group()
        await group.drain()
        return await group.reconcile()

    async def close(self) -> None:
        """Wait for background replication, then release resources."""
        for group in self._groups.values():
            await group.close()
        self._groups.clear()
        if self._repo is not None:
            self._repo.save()
            self._repo = None
        if self._ledger is not None:
            self._ledger.close()
            self._ledger = None

    def _get_head(self) -> Optional[ObjectID]:
        head = self.config.get_head()
        return id_from_hex(head) if head else None

    def _get_ledger(self) -> ReplicationLedger:
        if self._ledger is None:
            self._ledger = ReplicationLedger(self.home / LEDGER_FILE_NAME)
        return self._ledger

    def _get_repository(self) -> Repository:
        if self._repo is None:
            try:
                keystore = Keystore.load_local(self.keystore_path)
            except NotFound:
                raise ConfigError("no keystore found; run 'bkp keys init' or 'bkp keys recover' first")
            self._repo = Repository(
                self.open_group(),
                keystore.data_key,
                index_path=self.home / INDEX_FILE_NAME,
                objects_dir=self.home / OBJECTS_DIR_NAME,
            )
        return self._repo
