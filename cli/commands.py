"""Command handler functions for CLI operations."""

from pathlib import Path
from typing import Optional

from client.bkp import Bkp
from client.config import Config
from client.history import CheckMode
from common.exceptions import BkpException, RestoreError, WrongPassword
from common.logging_config import get_logger
from common.types import id_to_hex
from cli.constants import GREEN, RED, RESET
from cli.models import (
    CommandRequest,
    DestAddCommand,
    DestListCommand,
    DestRemoveCommand,
    DestTestCommand,
    GroupAddCommand,
    KeysInitCommand,
    KeysRecoverCommand,
    KeysShowCommand,
    LogCommand,
    RepairCommand,
    RestoreCommand,
    SnapCommand,
    StatCommand,
    SyncCommand,
    TestCommand,
)
from cli.utils import format_timestamp, read_password

logger = get_logger(__name__)


def handle_dest_add(cmd: DestAddCommand, bkp: Bkp) -> str:
    bkp.add_remote(
        cmd.name,
        cmd.url,
        upload_cost=cmd.upload_cost,
        download_cost=cmd.download_cost,
        reliable=cmd.reliable,
    )
    return f"Added remote '{cmd.name}' ({cmd.url})"


def handle_dest_list(cmd: DestListCommand, bkp: Bkp) -> str:
    """
    Handle 'dest list' command.

    Returns:
        One line per remote followed by one line per group
    """
    remotes = bkp.list_remotes()
    groups = bkp.config.data["groups"]
    if not remotes:
        return "No remotes configured"

    lines = []
    for name, entry in sorted(remotes.items()):
        flags = " reliable" if entry.get("reliable") else ""
        lines.append(
            f"{name:<16} {entry['url']}  up={entry.get('upload_cost', 1)} "
            f"down={entry.get('download_cost', 1)}{flags}"
        )
    default = bkp.config.get_default_group()
    for name, members in sorted(groups.items()):
        marker = " (default)" if name == default else ""
        lines.append(f"group {name}{marker}: {', '.join(members)}")
    return "\n".join(lines)


def handle_dest_remove(cmd: DestRemoveCommand, bkp: Bkp) -> str:
    bkp.remove_remote(cmd.name)
    return f"Removed remote '{cmd.name}'"


async def handle_dest_test(cmd: DestTestCommand, bkp: Bkp) -> str:
    response = await bkp.test_remote(cmd.name)
    return f"{GREEN}Remote '{cmd.name}' is {response.status}{RESET} ({response.packfile_count} packfile(s))"


def handle_group_add(cmd: GroupAddCommand, bkp: Bkp) -> str:
    bkp.add_remote_group(cmd.name, list(cmd.members))
    return f"Added group '{cmd.name}' with {len(cmd.members)} member(s)"


async def handle_keys_init(cmd: KeysInitCommand, bkp: Bkp, password: Optional[str] = None) -> str:
    """
    Handle 'keys init' command.

    Args:
        cmd: KeysInitCommand
        bkp: Client API instance
        password: Master password (prompted for when None)

    Returns:
        Success message
    """
    if password is None:
        password = read_password("New keystore password: ", confirm=True)
    keystore = await bkp.init_keystore(password)
    return f"Keystore created with keys: {', '.join(keystore.list_keys())}"


async def handle_keys_recover(cmd: KeysRecoverCommand, bkp: Bkp, password: Optional[str] = None) -> str:
    if password is None:
        password = read_password()
    keystore = await bkp.recover_keystore(cmd.remote, password)
    return f"Recovered keystore from '{cmd.remote}' ({len(keystore.list_keys())} keys)"


async def handle_keys_show(cmd: KeysShowCommand, bkp: Bkp) -> str:
    names, statuses = await bkp.show_keys()
    lines = [f"keys: {', '.join(names)}"]
    for member, status in statuses.items():
        color = GREEN if status == "present" else RED
        lines.append(f"  {member:<16} {color}{status}{RESET}")
    return "\n".join(lines)


async def handle_snap(cmd: SnapCommand, bkp: Bkp) -> str:
    version_id = await bkp.backup(Path(cmd.path).expanduser())
    return f"Snapshot {id_to_hex(version_id)}"


async def handle_restore(cmd: RestoreCommand, bkp: Bkp) -> str:
    """
    Handle 'restore' command.

    Returns:
        Success message, or the list of packfiles that could not be fetched
    """
    try:
        files = await bkp.restore(
            cmd.version,
            Path(cmd.target).expanduser(),
            before=cmd.before,
            node=cmd.node,
            restore_perms=not cmd.no_perms,
            restore_attrs=not cmd.no_attrs,
        )
    except RestoreError as e:
        lines = [f"{RED}Restore failed:{RESET} {e}"]
        for handle, error in e.failures.items():
            lines.append(f"  {handle}: {error}")
        return "\n".join(lines)
    return f"Restored {files} file(s) to {cmd.target}"


async def handle_test(cmd: TestCommand, bkp: Bkp) -> str:
    report = await bkp.check(CheckMode(cmd.mode), all_nodes=cmd.all_nodes)
    color = GREEN if report.ok else RED
    lines = [f"{color}{report.summary()}{RESET}"]
    lines.extend(f"  {problem}" for problem in report.problems)
    return "\n".join(lines)


async def handle_log(cmd: LogCommand, bkp: Bkp) -> str:
    chain = await bkp.history()
    if not chain:
        return "No versions yet"
    return "\n".join(
        f"{id_to_hex(version_id)}  {format_timestamp(version.create_time)}"
        for version_id, version in chain
    )


async def handle_sync(cmd: SyncCommand, bkp: Bkp) -> str:
    added = await bkp.sync_index()
    return f"Indexed {added} new packfile(s)"


async def handle_stat(cmd: StatCommand, bkp: Bkp) -> str:
    """
    Handle 'stat' command.

    Returns:
        Repository counts followed by one line per group member
    """
    stats = await bkp.stat()
    lines = [
        f"versions:  {stats.versions}",
        f"objects:   {stats.objects}",
        f"packfiles: {stats.packfiles}",
        f"group {stats.group}:",
    ]
    for name, held in stats.replicas.items():
        lines.append(f"  {name:<16} {held} packfile(s)")
    color = GREEN if stats.under_replicated == 0 else RED
    lines.append(f"{color}under-replicated: {stats.under_replicated}{RESET}")
    lines.append(f"without a reliable copy: {stats.without_reliable_copy}")
    return "\n".join(lines)


async def handle_repair(cmd: RepairCommand, bkp: Bkp) -> str:
    repaired = await bkp.repair()
    return f"Repaired {repaired} replica(s)"


async def dispatch_command(cmd_obj: CommandRequest, bkp: Bkp) -> str:
    """Dispatch parsed command to appropriate handler."""
    if isinstance(cmd_obj, DestAddCommand):
        return handle_dest_add(cmd_obj, bkp)
    elif isinstance(cmd_obj, DestListCommand):
        return handle_dest_list(cmd_obj, bkp)
    elif isinstance(cmd_obj, DestRemoveCommand):
        return handle_dest_remove(cmd_obj, bkp)
    elif isinstance(cmd_obj, DestTestCommand):
        return await handle_dest_test(cmd_obj, bkp)
    elif isinstance(cmd_obj, GroupAddCommand):
        return handle_group_add(cmd_obj, bkp)
    elif isinstance(cmd_obj, KeysInitCommand):
        return await handle_keys_init(cmd_obj, bkp)
    elif isinstance(cmd_obj, KeysRecoverCommand):
        return await handle_keys_recover(cmd_obj, bkp)
    elif isinstance(cmd_obj, KeysShowCommand):
        return await handle_keys_show(cmd_obj, bkp)
    elif isinstance(cmd_obj, SnapCommand):
        return await handle_snap(cmd_obj, bkp)
    elif isinstance(cmd_obj, RestoreCommand):
        return await handle_restore(cmd_obj, bkp)
    elif isinstance(cmd_obj, TestCommand):
        return await handle_test(cmd_obj, bkp)
    elif isinstance(cmd_obj, LogCommand):
        return await handle_log(cmd_obj, bkp)
    elif isinstance(cmd_obj, SyncCommand):
        return await handle_sync(cmd_obj, bkp)
    elif isinstance(cmd_obj, StatCommand):
        return await handle_stat(cmd_obj, bkp)
    elif isinstance(cmd_obj, RepairCommand):
        return await handle_repair(cmd_obj, bkp)
    else:
        return f"Unknown command type: {type(cmd_obj)}"


async def run_command(cmd_obj: CommandRequest, config: Config) -> str:
    """
    Run one command with a fresh client and release it afterwards.

    Returns:
        Text to print. Errors are reported as text, not raised.
    """
    bkp = Bkp(config)
    try:
        return await dispatch_command(cmd_obj, bkp)
    except WrongPassword:
        return f"{RED}Error:{RESET} wrong password"
    except (BkpException, OSError) as e:
        logger.debug(f"Command {cmd_obj.command} failed", exc_info=True)
        return f"{RED}Error:{RESET} {e}"
    finally:
        await bkp.close()
