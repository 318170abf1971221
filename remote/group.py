"""Remote group: replicate writes to every member, fan reads out across them."""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Set

from common.constants import (
    REMOTE_MAX_RETRIES,
    REMOTE_TIMEOUT_SECONDS,
    RESTORE_CONCURRENCY,
    RETRY_BACKOFF_MULTIPLIER,
    RETRY_BASE_DELAY_SECONDS,
)
from common.exceptions import (
    BkpException,
    NotFound,
    RemoteCorrupt,
    RemoteError,
    RemoteUnavailable,
    RestoreError,
)
from common.logging_config import get_logger
from objectstore.checksum import compute_checksum, verify_checksum
from remote.base import Remote
from remote.replication_ledger import ReplicationLedger

logger = get_logger(__name__)

KEYSTORE_ITEM_PREFIX = "keystore:"


@dataclass
class RetryPolicy:
    """
    Per-request timeout and exponential backoff settings.
    """
    max_retries: int = REMOTE_MAX_RETRIES
    base_delay: float = RETRY_BASE_DELAY_SECONDS
    multiplier: float = RETRY_BACKOFF_MULTIPLIER
    timeout: float = REMOTE_TIMEOUT_SECONDS

    def delay(self, attempt: int) -> float:
        return self.base_delay * self.multiplier ** attempt


class RemoteGroup(Remote):
    """
    A named set of member remotes with no storage of its own.

    Writes go to every member concurrently and return on the first
    confirmation; the other members keep replicating in background tasks.
    Reads pick a member per request and fall back to the others.
    """

    def __init__(
        self,
        name: str,
        members: List[Remote],
        ledger: Optional[ReplicationLedger] = None,
        retry: Optional[RetryPolicy] = None,
        concurrency: int = RESTORE_CONCURRENCY
    ):
        if not members:
            raise ValueError(f"remote group {name!r} needs at least one member")
        names = [member.name for member in members]
        if len(set(names)) != len(names):
            raise ValueError(f"remote group {name!r} has duplicate members: {names}")
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        super().__init__(
            name,
            upload_cost=min(m.upload_cost for m in members),
            download_cost=min(m.download_cost for m in members),
            reliable=any(m.reliable for m in members),
        )
        self.members = list(members)
        self.ledger = ledger if ledger is not None else ReplicationLedger()
        self.retry = retry or RetryPolicy()
        self.concurrency = concurrency
        self._background: Set[asyncio.Task] = set()
        self._keystore_blob: Optional[bytes] = None

    def get_member(self, name: str) -> Remote:
        for member in self.members:
            if member.name == name:
                return member
        raise NotFound(f"remote {name!r} is not a member of group {self.name!r}")

    async def put_packfile(self, data: bytes) -> str:
        """
        Store a packfile on every member.

        Returns:
            Packfile handle, once at least one member confirmed it

        Raises:
            RemoteUnavailable: If every member failed after all retries
        """
        handle = compute_checksum(data)
        self.ledger.record_item(handle, len(data), kind="packfile")
        await self._replicate(handle, lambda member: self._put_packfile_to(member, handle, data))
        return handle

    async def put_keystore(self, data: bytes) -> None:
        """
        Store the encrypted keystore on every member, with the same
        first-success semantics as put_packfile.
        """
        item = KEYSTORE_ITEM_PREFIX + compute_checksum(data)
        self._keystore_blob = data
        self.ledger.record_item(item, len(data), kind="keystore")
        await self._replicate(item, lambda member: self._call(member, "put_keystore", member.put_keystore, data))

    async def get_packfile(self, handle: str) -> bytes:
        """
        Read a packfile, trying members in read order until one returns
        bytes that match the handle.

        Raises:
            NotFound: If no member has the packfile
            RemoteUnavailable: If no member could serve it
        """
        errors: Dict[str, Exception] = {}

        for member in self._read_order(handle):
            try:
                data = await self._call(member, "get_packfile", member.get_packfile, handle)
                if not verify_checksum(data, handle):
                    raise RemoteCorrupt(f"packfile {handle} from {member.name} failed checksum", remote=member.name)
                return data
            except NotFound as e:
                errors[member.name] = e
                logger.debug(f"Packfile {handle[:12]} not on {member.name}, trying next member")
            except RemoteCorrupt as e:
                errors[member.name] = e
                self.ledger.revoke(handle, member.name)
                logger.warning(f"Integrity warning: {e}. Falling back to next member")
            except RemoteError as e:
                errors[member.name] = e
                logger.warning(f"Member {member.name} unavailable for packfile {handle[:12]}: {e}")

        if all(isinstance(e, NotFound) for e in errors.values()):
            raise NotFound(f"packfile {handle} not found on any member of {self.name}")
        raise RemoteUnavailable(
            f"packfile {handle} unreadable from group {self.name}: {_describe(errors)}",
            remote=self.name
        )

    async def get_many(self, handles: List[str]) -> List[bytes]:
        """
        Fetch several packfiles concurrently.

        At most `concurrency` requests are in flight. A failing handle does
        not cancel the others.

        Returns:
            Packfile bytes in the same order as handles

        Raises:
            RestoreError: Listing every handle no member could serve
        """
        semaphore = asyncio.Semaphore(self.concurrency)

        async def fetch(handle: str) -> bytes:
            async with semaphore:
                return await self.get_packfile(handle)

        results = await asyncio.gather(*(fetch(h) for h in handles), return_exceptions=True)

        failures: Dict[str, Exception] = {}
        for handle, result in zip(handles, results):
            if isinstance(result, BkpException):
                failures[handle] = result
            elif isinstance(result, BaseException):
                raise result

        if failures:
            logger.error(f"Failed to fetch {len(failures)}/{len(handles)} packfiles from {self.name}")
            raise RestoreError(
                f"{len(failures)} packfile(s) could not be fetched from group {self.name}",
                failures
            )
        return list(results)

    async def list(self) -> List[str]:
        """
        Union of every member's packfile listing.

        Raises:
            RemoteUnavailable: If no member answered
        """
        listings = await self._list_members()
        if not listings:
            raise RemoteUnavailable(f"no member of group {self.name} could be listed", remote=self.name)

        handles: Set[str] = set()
        for listing in listings.values():
            handles.update(listing)
        return sorted(handles)

    async def get_keystore(self) -> bytes:
        """
        Read the keystore from the cheapest member that has one.
        """
        errors: Dict[str, Exception] = {}
        for member in sorted(self.members, key=lambda m: m.download_cost):
            try:
                return await self._call(member, "get_keystore", member.get_keystore)
            except RemoteCorrupt as e:
                errors[member.name] = e
                logger.warning(f"Integrity warning: {e}. Falling back to next member")
            except (NotFound, RemoteError) as e:
                errors[member.name] = e

        if all(isinstance(e, NotFound) for e in errors.values()):
            raise NotFound(f"no keystore on any member of {self.name}")
        raise RemoteUnavailable(f"keystore unreadable from group {self.name}: {_describe(errors)}", remote=self.name)

    async def reconcile(self) -> int:
        """
        Run one anti-entropy round.

        Live listings are checked against the ledger first: confirmations a
        member can no longer back up are revoked, and packfiles it lists are
        confirmed. Every packfile the ledger then shows as missing from a
        reachable member is copied over, starting with packfiles that have
        no copy on a reliable member. Members that cannot be listed are
        skipped this round. The keystore is backfilled the same way.

        Returns:
            Number of (item, member) repairs performed
        """
        listings = await self._list_members()
        repaired = 0
        if listings:
            repaired += await self._reconcile_packfiles(listings)
        else:
            logger.warning(f"Reconcile on {self.name}: no member could be listed, skipping packfiles")

        repaired += await self._reconcile_keystore()

        if repaired:
            logger.info(f"Reconcile on {self.name}: repaired {repaired} replica(s)")
        return repaired

    async def drain(self) -> None:
        """Wait for every background replication task to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        for member in self.members:
            await member.close()

    async def _replicate(self, item: str, upload: Callable[[Remote], Awaitable]) -> None:
        targets = [m for m in sorted(self.members, key=lambda m: m.upload_cost)
                   if not self.ledger.is_confirmed(item, m.name)]
        if not targets:
            logger.debug(f"{item[:21]} already confirmed on every member of {self.name}")
            return

        tasks: Dict[asyncio.Task, Remote] = {}
        for member in targets:
            task = asyncio.create_task(self._upload_and_confirm(item, member, upload))
            tasks[task] = member
            self._background.add(task)
            task.add_done_callback(self._on_background_done)

        pending = set(tasks)
        while pending:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if not task.cancelled() and task.exception() is None:
                    logger.info(
                        f"{item[:21]} confirmed on {tasks[task].name}, "
                        f"{len(pending)} member(s) still replicating in background"
                    )
                    return

        failures = {tasks[task].name: task.exception() for task in tasks if not task.cancelled()}
        raise RemoteUnavailable(
            f"all members of group {self.name} failed to store {item[:21]}: {_describe(failures)}",
            remote=self.name
        )

    async def _upload_and_confirm(self, item: str, member: Remote, upload: Callable[[Remote], Awaitable]) -> None:
        await upload(member)
        self.ledger.confirm(item, member.name)

    async def _put_packfile_to(self, member: Remote, handle: str, data: bytes) -> None:
        stored = await self._call(member, "put_packfile", member.put_packfile, data)
        if stored != handle:
            raise RemoteCorrupt(f"{member.name} stored packfile as {stored}, expected {handle}", remote=member.name)

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Background replication on group {self.name} failed: {error}")

    async def _call(self, member: Remote, operation: str, func: Callable[..., Awaitable], *args):
        """
        Run one remote operation with a timeout and exponential-backoff
        retries. Only transient failures are retried.

        Raises:
            RemoteUnavailable: After max_retries failed attempts
            NotFound, RemoteCorrupt: Immediately, without retrying
        """
        attempts = max(1, self.retry.max_retries)
        last_error: Optional[Exception] = None

        for attempt in range(attempts):
            try:
                return await asyncio.wait_for(func(*args), timeout=self.retry.timeout)
            except asyncio.TimeoutError:
                last_error = RemoteUnavailable(
                    f"{operation} on {member.name} timed out after {self.retry.timeout}s",
                    remote=member.name
                )
            except RemoteUnavailable as e:
                last_error = e

            if attempt < attempts - 1:
                wait_time = self.retry.delay(attempt)
                logger.warning(
                    f"{operation} on {member.name} failed (attempt {attempt + 1}/{attempts}): "
                    f"{last_error}. Retrying in {wait_time}s..."
                )
                await asyncio.sleep(wait_time)

        raise last_error

    def _read_order(self, handle: str) -> List[Remote]:
        """
        Members that the ledger says hold the handle come first, then lower
        download cost, then reliable members. Otherwise equal members are
        rotated by the handle's leading bytes so different packfiles spread
        across members.
        """
        holders = self.ledger.members_for(handle)
        try:
            shard = int(handle[:8], 16)
        except ValueError:
            shard = 0
        count = len(self.members)

        def key(indexed):
            index, member = indexed
            return (member.name not in holders, member.download_cost, not member.reliable, (index - shard) % count)

        return [member for _, member in sorted(enumerate(self.members), key=key)]

    async def _list_members(self) -> Dict[str, List[str]]:
        results = await asyncio.gather(
            *(self._call(member, "list", member.list) for member in self.members),
            return_exceptions=True
        )

        listings: Dict[str, List[str]] = {}
        for member, result in zip(self.members, results):
            if isinstance(result, BkpException):
                logger.warning(f"Could not list member {member.name}: {result}")
            elif isinstance(result, BaseException):
                raise result
            else:
                listings[member.name] = result
        return listings

    async def _reconcile_packfiles(self, listings: Dict[str, List[str]]) -> int:
        for member_name, listing in listings.items():
            held = set(listing)
            for handle in self.ledger.get_confirmed(member_name) - held:
                logger.warning(f"Packfile {handle[:12]} confirmed on {member_name} but no longer listed there")
                self.ledger.revoke(handle, member_name)
            for handle in held:
                self.ledger.record_item(handle, kind="packfile")
                self.ledger.confirm(handle, member_name)

        missing = self.ledger.get_under_replicated(listings.keys())
        if not missing:
            return 0

        order = sorted(missing, key=lambda handle: (self._has_reliable_copy(handle), handle))
        semaphore = asyncio.Semaphore(self.concurrency)
        results = await asyncio.gather(*(
            self._repair_packfile(semaphore, handle, [m for m in self.members if m.name in missing[handle]])
            for handle in order
        ))
        return sum(results)

    def _has_reliable_copy(self, handle: str) -> bool:
        holders = self.ledger.members_for(handle)
        return any(m.reliable and m.name in holders for m in self.members)

    async def _repair_packfile(self, semaphore: asyncio.Semaphore, handle: str, targets: List[Remote]) -> int:
        target_names = {t.name for t in targets}
        sources = [m for m in self._read_order(handle) if m.name not in target_names]

        async with semaphore:
            data = None
            for source in sources:
                try:
                    data = await self._call(source, "get_packfile", source.get_packfile, handle)
                    if not verify_checksum(data, handle):
                        raise RemoteCorrupt(f"packfile {handle} on {source.name} failed checksum", remote=source.name)
                    break
                except RemoteCorrupt as e:
                    data = None
                    self.ledger.revoke(handle, source.name)
                    logger.error(f"Integrity error during repair: {e}")
                except (NotFound, RemoteError) as e:
                    data = None
                    logger.debug(f"Repair source {source.name} cannot serve {handle[:12]}: {e}")

            if data is None:
                logger.warning(f"No readable copy of packfile {handle[:12]} left to repair {sorted(target_names)} from")
                return 0

            repaired = 0
            for target in targets:
                try:
                    await self._put_packfile_to(target, handle, data)
                except (NotFound, RemoteError) as e:
                    logger.warning(f"Repair of {handle[:12]} on {target.name} failed: {e}")
                    continue
                self.ledger.record_item(handle, len(data), kind="packfile")
                self.ledger.confirm(handle, target.name)
                logger.info(f"Repaired packfile {handle[:12]} on {target.name}")
                repaired += 1
            return repaired

    async def _reconcile_keystore(self) -> int:
        """
        Copy the keystore onto members that have none (or a damaged one).

        The blob comes from this process's last publish when there was one,
        otherwise from the cheapest member still holding a copy.
        """
        results = await asyncio.gather(
            *(self._call(member, "get_keystore", member.get_keystore) for member in self.members),
            return_exceptions=True
        )

        copies: Dict[str, bytes] = {}
        lacking: List[Remote] = []
        for member, result in zip(self.members, results):
            if isinstance(result, bytes):
                copies[member.name] = result
            elif isinstance(result, NotFound):
                lacking.append(member)
            elif isinstance(result, RemoteCorrupt):
                logger.warning(f"Integrity warning: {result}. Keystore on {member.name} will be replaced")
                lacking.append(member)
            elif isinstance(result, BkpException):
                logger.debug(f"Keystore on {member.name} not checked: {result}")
            else:
                raise result

        blob = self._keystore_blob
        if blob is None and copies:
            source = min((m for m in self.members if m.name in copies), key=lambda m: m.download_cost)
            blob = copies[source.name]
        if blob is None:
            return 0
        if len(set(copies.values())) > 1:
            logger.warning(f"Members of {self.name} hold different keystore copies")

        item = KEYSTORE_ITEM_PREFIX + compute_checksum(blob)
        self.ledger.record_item(item, len(blob), kind="keystore")
        for member_name, data in copies.items():
            if data == blob:
                self.ledger.confirm(item, member_name)

        repaired = 0
        for member in lacking:
            try:
                await self._call(member, "put_keystore", member.put_keystore, blob)
            except RemoteError as e:
                logger.warning(f"Keystore repair on {member.name} failed: {e}")
                continue
            self.ledger.confirm(item, member.name)
            logger.info(f"Repaired keystore on {member.name}")
            repaired += 1
        return repaired


def _describe(errors: Dict[str, Exception]) -> str:
    return "; ".join(f"{name}: {type(e).__name__}: {e}" for name, e in errors.items())
