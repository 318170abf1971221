"""Command request data types for CLI."""

from dataclasses import dataclass
from typing import Literal, Optional


@dataclass(frozen=True)
class DestAddCommand:
    """Register a remote destination."""

    name: str
    url: str
    upload_cost: int = 1
    download_cost: int = 1
    reliable: bool = False
    command: Literal["dest add"] = "dest add"


@dataclass(frozen=True)
class DestListCommand:
    """List configured remotes and groups."""

    command: Literal["dest list"] = "dest list"


@dataclass(frozen=True)
class DestRemoveCommand:
    """Forget a remote destination."""

    name: str
    command: Literal["dest remove"] = "dest remove"


@dataclass(frozen=True)
class DestTestCommand:
    """Check that a remote answers."""

    name: str
    command: Literal["dest test"] = "dest test"


@dataclass(frozen=True)
class GroupAddCommand:
    """Create a remote group from configured remotes."""

    name: str
    members: tuple[str, ...]
    command: Literal["group add"] = "group add"


@dataclass(frozen=True)
class KeysInitCommand:
    """Create the keystore and publish it to every group member."""

    command: Literal["keys init"] = "keys init"


@dataclass(frozen=True)
class KeysRecoverCommand:
    """Recover the keystore from one remote."""

    remote: str
    command: Literal["keys recover"] = "keys recover"


@dataclass(frozen=True)
class KeysShowCommand:
    """List local keys and which remotes hold the keystore."""

    command: Literal["keys show"] = "keys show"


@dataclass(frozen=True)
class SnapCommand:
    """Back up a directory."""

    path: str
    command: Literal["snap"] = "snap"


@dataclass(frozen=True)
class RestoreCommand:
    """Restore a version into an empty directory."""

    target: str
    version: Optional[str] = None
    before: Optional[int] = None
    node: Optional[str] = None
    no_perms: bool = False
    no_attrs: bool = False
    command: Literal["restore"] = "restore"


@dataclass(frozen=True)
class TestCommand:
    """Check history integrity."""

    mode: str = "normal"
    all_nodes: bool = False
    command: Literal["test"] = "test"

    # keep pytest from collecting this as a test class
    __test__ = False


@dataclass(frozen=True)
class LogCommand:
    """Show the version chain from the current head."""

    command: Literal["log"] = "log"


@dataclass(frozen=True)
class SyncCommand:
    """Rebuild the pack index from the remotes."""

    command: Literal["sync"] = "sync"


@dataclass(frozen=True)
class StatCommand:
    """Show repository and replication statistics."""

    command: Literal["stat"] = "stat"


@dataclass(frozen=True)
class RepairCommand:
    """Copy packfiles to group members that are missing them."""

    command: Literal["repair"] = "repair"


CommandRequest = (
    DestAddCommand
    | DestListCommand
    | DestRemoveCommand
    | DestTestCommand
    | GroupAddCommand
    | KeysInitCommand
    | KeysRecoverCommand
    | KeysShowCommand
    | SnapCommand
    | RestoreCommand
    | TestCommand
    | LogCommand
    | SyncCommand
    | StatCommand
    | RepairCommand
)
