"""
Replication ledger SQLite interface.

Tracks which group members have confirmed each replicated item (packfile
handle or keystore checksum). Each (handle, member) confirmation is a single
INSERT OR IGNORE committed on its own, so concurrent replication tasks never
lose or double-count an update.
"""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Generator, Iterable, List, Optional, Set, Union

logger = logging.getLogger(__name__)

IN_MEMORY = ":memory:"


class ReplicationLedger:
    """
    Durable map of item handle -> set of members that hold it.
    """

    def __init__(self, db_path: Union[str, Path] = IN_MEMORY):
        """
        Args:
            db_path: SQLite database file, or ":memory:" for a throwaway ledger
        """
        self.db_path = str(db_path)
        if self.db_path != IN_MEMORY:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self) -> None:
        with self._cursor() as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS items (
                    handle TEXT PRIMARY KEY,
                    kind TEXT NOT NULL,
                    size INTEGER,
                    created_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS replicas (
                    handle TEXT NOT NULL,
                    member TEXT NOT NULL,
                    confirmed_at TEXT NOT NULL,
                    PRIMARY KEY(handle, member)
                )
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_replicas_member ON replicas(member)
            """)

    @contextmanager
    def _cursor(self) -> Generator[sqlite3.Cursor, None, None]:
        """
        Context manager yielding a cursor inside one committed transaction.
        """
        cursor = self._conn.cursor()
        try:
            yield cursor
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise
        finally:
            cursor.close()

    def record_item(self, handle: str, size: Optional[int] = None, kind: str = "packfile") -> None:
        """
        Register an item that every member should eventually hold.

        Args:
            handle: Packfile handle or keystore checksum
            size: Item size in bytes, when known
            kind: 'packfile' or 'keystore'
        """
        with self._cursor() as cursor:
            cursor.execute(
                "INSERT OR IGNORE INTO items (handle, kind, size, created_at) VALUES (?, ?, ?, ?)",
                (handle, kind, size, _now()),
            )
            if size is not None:
                cursor.execute("UPDATE items SET size = ? WHERE handle = ? AND size IS NULL", (size, handle))

    def confirm(self, handle: str, member: str) -> None:
        """
        Record that a member durably holds an item.
        """
        with self._cursor() as cursor:
            cursor.execute(
                "INSERT OR IGNORE INTO replicas (handle, member, confirmed_at) VALUES (?, ?, ?)",
                (handle, member, _now()),
            )
        logger.debug(f"Ledger: {handle[:12]} confirmed on {member}")

    def revoke(self, handle: str, member: str) -> None:
        """
        Drop a confirmation, e.g. after the member served corrupt bytes.
        """
        with self._cursor() as cursor:
            cursor.execute(
                "DELETE FROM replicas WHERE handle = ? AND member = ?",
                (handle, member),
            )
        logger.info(f"Ledger: revoked {handle[:12]} on {member}")

    def members_for(self, handle: str) -> Set[str]:
        with self._cursor() as cursor:
            cursor.execute("SELECT member FROM replicas WHERE handle = ?", (handle,))
            return {row["member"] for row in cursor.fetchall()}

    def is_confirmed(self, handle: str, member: str) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT 1 FROM replicas WHERE handle = ? AND member = ?",
                (handle, member),
            )
            return cursor.fetchone() is not None

    def get_confirmed(self, member: str, kind: str = "packfile") -> Set[str]:
        """Handles of the given kind that a member has confirmed."""
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT r.handle FROM replicas r JOIN items i ON i.handle = r.handle "
                "WHERE r.member = ? AND i.kind = ?",
                (member, kind),
            )
            return {row["handle"] for row in cursor.fetchall()}

    def replica_counts(self, kind: str = "packfile") -> Dict[str, int]:
        """
        Count confirmed items per member.

        Returns:
            Mapping of member name to number of items it holds
        """
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT r.member AS member, COUNT(*) AS held FROM replicas r "
                "JOIN items i ON i.handle = r.handle WHERE i.kind = ? GROUP BY r.member",
                (kind,),
            )
            return {row["member"]: row["held"] for row in cursor.fetchall()}

    def get_items(self, kind: Optional[str] = None) -> List[str]:
        with self._cursor() as cursor:
            if kind is None:
                cursor.execute("SELECT handle FROM items ORDER BY created_at, handle")
            else:
                cursor.execute(
                    "SELECT handle FROM items WHERE kind = ? ORDER BY created_at, handle",
                    (kind,),
                )
            return [row["handle"] for row in cursor.fetchall()]

    def get_under_replicated(self, members: Iterable[str], kind: str = "packfile") -> Dict[str, Set[str]]:
        """
        Find items some member has not confirmed.

        Args:
            members: Names of every member of the group
            kind: Item kind to consider

        Returns:
            Mapping of handle to the set of members missing it
        """
        members = set(members)
        missing: Dict[str, Set[str]] = {}
        for handle in self.get_items(kind):
            lacking = members - self.members_for(handle)
            if lacking:
                missing[handle] = lacking
        return missing

    def close(self) -> None:
        self._conn.close()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()
