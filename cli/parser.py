"""Command parser for CLI input."""

import shlex
from datetime import datetime, timezone
from typing import List, Union

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

CHECK_MODES = ("quick", "normal", "slow", "exhaustive")


class ParseError(Exception):
    """Raised when command parsing fails."""

    pass


def parse_command(input_line: Union[str, List[str]]) -> CommandRequest:
    """Parse user input into a CommandRequest object.

    Args:
        input_line: Raw REPL line, or an already split argv list

    Returns:
        CommandRequest object

    Raises:
        ParseError: If command syntax is invalid
    """
    if isinstance(input_line, str):
        if not input_line.strip():
            raise ParseError("Empty command")
        try:
            tokens = shlex.split(input_line)
        except ValueError as e:
            raise ParseError(f"Invalid syntax: {e}")
    else:
        tokens = list(input_line)

    if not tokens:
        raise ParseError("Empty command")

    command_name = tokens[0]

    if command_name == "dest":
        return _parse_dest(tokens[1:])
    elif command_name == "group":
        return _parse_group(tokens[1:])
    elif command_name == "keys":
        return _parse_keys(tokens[1:])
    elif command_name == "snap":
        return _parse_snap(tokens[1:])
    elif command_name == "restore":
        return _parse_restore(tokens[1:])
    elif command_name == "test":
        return _parse_test(tokens[1:])
    elif command_name == "log":
        _expect_no_args("log", tokens[1:])
        return LogCommand()
    elif command_name == "sync":
        _expect_no_args("sync", tokens[1:])
        return SyncCommand()
    elif command_name == "stat":
        _expect_no_args("stat", tokens[1:])
        return StatCommand()
    elif command_name == "repair":
        _expect_no_args("repair", tokens[1:])
        return RepairCommand()
    else:
        raise ParseError(f"Unknown command: {command_name}")


def _parse_dest(args: list[str]) -> CommandRequest:
    """Parse 'dest add|list|remove|test ...' commands."""
    if not args:
        raise ParseError("dest requires a subcommand: add, list, remove or test")

    sub, rest = args[0], args[1:]
    if sub == "list":
        _expect_no_args("dest list", rest)
        return DestListCommand()
    if sub == "remove":
        if len(rest) != 1:
            raise ParseError("dest remove requires exactly one remote name")
        return DestRemoveCommand(name=rest[0])
    if sub == "test":
        if len(rest) != 1:
            raise ParseError("dest test requires exactly one remote name")
        return DestTestCommand(name=rest[0])
    if sub == "add":
        return _parse_dest_add(rest)
    raise ParseError(f"Unknown dest subcommand: {sub}")


def _parse_dest_add(args: list[str]) -> DestAddCommand:
    """Parse 'dest add NAME URL [--upload-cost N] [--download-cost N] [--reliable]'."""
    positional = []
    options = {"upload_cost": 1, "download_cost": 1, "reliable": False}

    i = 0
    while i < len(args):
        arg = args[i]
        if arg == "--reliable":
            options["reliable"] = True
        elif arg in ("--upload-cost", "--download-cost"):
            if i + 1 >= len(args):
                raise ParseError(f"{arg} requires a value")
            try:
                value = int(args[i + 1])
            except ValueError:
                raise ParseError(f"{arg} must be an integer, got {args[i + 1]!r}")
            if value < 0:
                raise ParseError(f"{arg} must not be negative")
            options[arg[2:].replace("-", "_")] = value
            i += 1
        elif arg.startswith("--"):
            raise ParseError(f"Unknown option for dest add: {arg}")
        else:
            positional.append(arg)
        i += 1

    if len(positional) != 2:
        raise ParseError("dest add requires NAME and URL")
    return DestAddCommand(name=positional[0], url=positional[1], **options)


def _parse_group(args: list[str]) -> GroupAddCommand:
    """Parse 'group add NAME MEMBER...' command."""
    if not args or args[0] != "add":
        raise ParseError("group requires the subcommand: add")
    if len(args) < 3:
        raise ParseError("group add requires a name and at least one member")
    return GroupAddCommand(name=args[1], members=tuple(args[2:]))


def _parse_keys(args: list[str]) -> CommandRequest:
    """Parse 'keys init', 'keys recover REMOTE' and 'keys show'."""
    if not args:
        raise ParseError("keys requires a subcommand: init, recover or show")
    if args[0] == "init":
        _expect_no_args("keys init", args[1:])
        return KeysInitCommand()
    if args[0] == "recover":
        if len(args) != 2:
            raise ParseError("keys recover requires exactly one remote name")
        return KeysRecoverCommand(remote=args[1])
    if args[0] == "show":
        _expect_no_args("keys show", args[1:])
        return KeysShowCommand()
    raise ParseError(f"Unknown keys subcommand: {args[0]}")


def _parse_snap(args: list[str]) -> SnapCommand:
    if len(args) != 1:
        raise ParseError("snap requires exactly one directory")
    return SnapCommand(path=args[0])


def _parse_restore(args: list[str]) -> RestoreCommand:
    """Parse 'restore [VERSION] TARGET [--time T] [--from NODE] [--no-perms] [--no-attrs]'."""
    positional = []
    options = {"before": None, "node": None, "no_perms": False, "no_attrs": False}

    i = 0
    while i < len(args):
        arg = args[i]
        if arg in ("-p", "--no-perms"):
            options["no_perms"] = True
        elif arg in ("-a", "--no-attrs"):
            options["no_attrs"] = True
        elif arg in ("-t", "--time", "-f", "--from"):
            if i + 1 >= len(args):
                raise ParseError(f"{arg} requires a value")
            if arg in ("-t", "--time"):
                options["before"] = parse_time(args[i + 1])
            else:
                options["node"] = args[i + 1]
            i += 1
        elif arg.startswith("-"):
            raise ParseError(f"Unknown option for restore: {arg}")
        else:
            positional.append(arg)
        i += 1

    if len(positional) == 1:
        return RestoreCommand(target=positional[0], **options)
    if len(positional) != 2:
        raise ParseError("restore requires [VERSION] TARGET")
    if options["before"] is not None:
        raise ParseError("restore takes either a VERSION or --time, not both")

    version = positional[0].lower()
    if len(version) != 64 or any(c not in "0123456789abcdef" for c in version):
        raise ParseError(f"version must be 64 hex characters, got {positional[0]!r}")
    return RestoreCommand(target=positional[1], version=version, **options)


def parse_time(value: str) -> int:
    """
    Parse a --time value: Unix seconds or an ISO 8601 date or date-time.
    Values without a timezone are taken as UTC.

    Raises:
        ParseError: If the value is neither
    """
    if value.isdigit():
        return int(value)
    try:
        moment = datetime.fromisoformat(value)
    except ValueError:
        raise ParseError(f"--time must be Unix seconds or an ISO date, got {value!r}")
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp())


def _parse_test(args: list[str]) -> TestCommand:
    """Parse 'test [MODE] [--all]'."""
    all_nodes = "--all" in args
    rest = [arg for arg in args if arg != "--all"]
    if len(rest) > 1:
        raise ParseError("test takes at most one mode")
    mode = rest[0] if rest else "normal"
    if mode not in CHECK_MODES:
        raise ParseError(f"Unknown test mode {mode!r}; expected one of {', '.join(CHECK_MODES)}")
    return TestCommand(mode=mode, all_nodes=all_nodes)


def _expect_no_args(command: str, args: list[str]) -> None:
    if args:
        raise ParseError(f"{command} takes no arguments")
