"""CLI constants and configuration."""

from prompt_toolkit.styles import Style

COMMANDS = ["dest", "group", "keys", "snap", "restore", "test", "log", "sync", "stat", "repair", "clear", "exit", "help"]

SUBCOMMANDS = {
    "dest": ["add", "list", "remove", "test"],
    "group": ["add"],
    "keys": ["init", "recover", "show"],
    "test": ["quick", "normal", "slow", "exhaustive"],
}

STYLE = Style.from_dict(
    {
        "prompt": "#2E9CCA bold",
        "command": "#0088ff bold",
    }
)

GREEN = "\033[32m"
RED = "\033[31m"
RESET = "\033[0m"

WELCOME_TITLE = "bkp - deduplicating encrypted backups"
WELCOME_HELP = "Type 'help' for commands or 'exit' to quit.\n"

PROMPT_TEXT = "bkp> "

HELP_TEXT = """Available commands:
  dest add NAME URL [--upload-cost N] [--download-cost N] [--reliable]
                                      Register a remote (file:///dir or grpc://host:port)
  dest list                           List remotes and groups
  dest remove NAME                    Forget a remote
  dest test NAME                      Check that a remote answers
  group add NAME MEMBER...            Create a remote group (first group is the default)
  keys init                           Create keys and publish them to every group member
  keys recover REMOTE                 Recover keys from one remote
  keys show                           List keys and which remotes hold the keystore
  snap PATH                           Back up a directory
  restore [VERSION] TARGET [--time T] [--from NODE] [--no-perms] [--no-attrs]
                                      Restore a version (default: latest) into an empty directory
  test [quick|normal|slow|exhaustive] [--all]
                                      Check history integrity (default: normal, this node)
  log                                 Show versions from the current head
  sync                                Rebuild the local index from the remotes
  stat                                Show counts and per-remote replication
  repair                              Copy packfiles to members missing them
  clear                               Clear screen and redisplay welcome message
  help                                Show this help
  exit                                Exit REPL

Examples:
  dest add usb file:///mnt/usb/bkp --download-cost 1
  dest add nas grpc://nas.local:50061 --upload-cost 5
  group add all usb nas
  keys init
  snap ~/documents
  restore ~/restored --time 2024-06-01"""
