"""Version history traversal and integrity checking."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Set, Tuple

from common.constants import OBJECT_ID_LEN
from common.exceptions import BkpException, MalformedObject, NotFound
from common.logging_config import get_logger
from common.types import FileObject, ObjectID, SymlinkObject, TreeObject, VersionObject
from objectstore import object_codec
from objectstore.checksum import compute_object_id

logger = get_logger(__name__)

# u64 create_time + u8 tag + root + parent
VERSION_ENCODED_SIZE = 8 + 1 + 2 * OBJECT_ID_LEN


class CheckMode(str, Enum):
    """How thoroughly check() verifies the history."""
    QUICK = "quick"
    NORMAL = "normal"
    SLOW = "slow"
    EXHAUSTIVE = "exhaustive"

    @property
    def walks_trees(self) -> bool:
        return self != CheckMode.QUICK

    @property
    def fetches_chunks(self) -> bool:
        return self in (CheckMode.SLOW, CheckMode.EXHAUSTIVE)

    @property
    def checks_hashes(self) -> bool:
        return self == CheckMode.EXHAUSTIVE


@dataclass
class CheckReport:
    """
    Outcome of an integrity check.
    """
    mode: CheckMode
    versions: int = 0
    trees: int = 0
    files: int = 0
    symlinks: int = 0
    chunks: int = 0
    problems: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.problems

    def summary(self) -> str:
        status = "OK" if self.ok else f"{len(self.problems)} problem(s)"
        return (
            f"{self.mode.value} check: {status} - {self.versions} versions, {self.trees} trees, "
            f"{self.files} files, {self.symlinks} symlinks, {self.chunks} chunks"
        )


async def walk_history(repo, head: Optional[ObjectID]) -> List[Tuple[ObjectID, VersionObject]]:
    """
    Follow parent links from head back to the first version.

    Returns:
        (version ID, Version) pairs, newest first

    Raises:
        MalformedObject: If a link does not point at a version or the
            chain loops
    """
    chain: List[Tuple[ObjectID, VersionObject]] = []
    seen: Set[ObjectID] = set()
    current = head

    while current is not None:
        if current in seen:
            raise MalformedObject(f"version chain loops at {current.hex()}")
        seen.add(current)

        version = await repo.fetch_object(current)
        if not isinstance(version, VersionObject):
            raise MalformedObject(f"object {current.hex()} is a {type(version).__name__}, not a version")
        chain.append((current, version))
        current = version.parent

    return chain


async def find_heads(repo) -> List[Tuple[ObjectID, VersionObject]]:
    """
    Locate versions no other version names as parent, using only the pack
    index. Used after recovering onto a machine with no local head.

    Returns:
        Head versions, newest first
    """
    versions = {}
    for entry in repo.index.get_entries():
        if entry.size != VERSION_ENCODED_SIZE:
            continue
        object_id = bytes.fromhex(entry.object_id)
        try:
            obj = object_codec.decode(await repo.fetch(object_id))
        except MalformedObject:
            continue
        if isinstance(obj, VersionObject) and repo.contains(obj.root):
            versions[object_id] = obj

    parents = {v.parent for v in versions.values() if v.parent is not None}
    heads = [(vid, v) for vid, v in versions.items() if vid not in parents]
    heads.sort(key=lambda item: item[1].create_time, reverse=True)
    return heads


class HistoryChecker:
    """
    Walks every version reachable from a head and verifies the objects it
    references, to the depth the mode asks for.
    """

    def __init__(self, repo, mode: CheckMode = CheckMode.NORMAL):
        self.repo = repo
        self.mode = CheckMode(mode)
        self.report = CheckReport(mode=self.mode)
        self._checked: Set[ObjectID] = set()
        self._versions: Set[ObjectID] = set()

    async def check(self, head: Optional[ObjectID]) -> CheckReport:
        return await self.check_heads([head] if head is not None else [])

    async def check_heads(self, heads: Iterable[ObjectID]) -> CheckReport:
        """
        Check the history behind each head. Versions shared between heads
        are verified once.
        """
        for head in heads:
            await self._check_chain(head)

        logger.info(self.report.summary())
        for problem in self.report.problems:
            logger.error(f"Integrity problem: {problem}")
        return self.report

    async def _check_chain(self, head: ObjectID) -> None:
        current = head
        visited: Set[ObjectID] = set()

        while current is not None:
            if current in visited:
                self._problem(f"version chain loops at {current.hex()}")
                break
            if current in self._versions:
                break
            visited.add(current)
            self._versions.add(current)

            version = await self._load(current, VersionObject, "version")
            if version is None:
                break
            self.report.versions += 1

            if self.mode.walks_trees:
                await self._check_tree(version.root)
            else:
                if await self._load(version.root, TreeObject, "root tree") is not None:
                    self.report.trees += 1

            current = version.parent

    async def _check_tree(self, tree_id: ObjectID) -> None:
        if tree_id in self._checked:
            return
        self._checked.add(tree_id)

        tree = await self._load(tree_id, TreeObject, "tree")
        if tree is None:
            return
        self.report.trees += 1

        for child_id in tree.children:
            if child_id in self._checked:
                continue
            child = await self._load(child_id, (TreeObject, FileObject, SymlinkObject), "tree child")
            if child is None:
                self._checked.add(child_id)
                continue
            if isinstance(child, TreeObject):
                await self._check_tree(child_id)
                continue

            self._checked.add(child_id)
            if isinstance(child, SymlinkObject):
                self.report.symlinks += 1
            else:
                self.report.files += 1
                for chunk_id in child.chunks:
                    await self._check_chunk(chunk_id)

    async def _check_chunk(self, chunk_id: ObjectID) -> None:
        if chunk_id in self._checked:
            return
        self._checked.add(chunk_id)
        self.report.chunks += 1

        if not self.mode.fetches_chunks:
            if not self.repo.contains(chunk_id):
                self._problem(f"chunk {chunk_id.hex()} is not in the pack index")
            return

        try:
            data = await self.repo.fetch(chunk_id)
        except BkpException as e:
            self._problem(f"chunk {chunk_id.hex()} unreadable: {e}")
            return
        if self.mode.checks_hashes and compute_object_id(data) != chunk_id:
            self._problem(f"chunk {chunk_id.hex()} content does not match its id")

    async def _load(self, object_id: ObjectID, expected, label: str):
        try:
            data = await self.repo.fetch(object_id)
        except NotFound:
            self._problem(f"{label} {object_id.hex()} is missing")
            return None
        except BkpException as e:
            self._problem(f"{label} {object_id.hex()} unreadable: {e}")
            return None

        if self.mode.checks_hashes and compute_object_id(data) != object_id:
            self._problem(f"{label} {object_id.hex()} content does not match its id")

        try:
            obj = object_codec.decode(data)
        except MalformedObject as e:
            self._problem(f"{label} {object_id.hex()} is malformed: {e}")
            return None

        if not isinstance(obj, expected):
            self._problem(f"{label} {object_id.hex()} has unexpected kind {type(obj).__name__}")
            return None
        return obj

    def _problem(self, message: str) -> None:
        self.report.problems.append(message)
