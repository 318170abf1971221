"""CLI entry point.

    bkp [--config PATH] [--debug] [COMMAND ...]

With no command an interactive REPL starts.
"""

import asyncio
import os
import sys
from pathlib import Path
from typing import List, Optional

from client.config import Config
from common.logging_config import setup_logging
from cli.commands import run_command
from cli.parser import ParseError, parse_command
from cli.repl import repl_loop


def _split_global_options(argv: List[str]):
    """Pull --config/--debug out of argv; the rest is the command."""
    config_path: Optional[Path] = None
    debug = False
    rest = []
    i = 0
    while i < len(argv):
        arg = argv[i]
        if arg == '--debug':
            debug = True
        elif arg == '--config':
            if i + 1 >= len(argv):
                raise ParseError("--config requires a path")
            config_path = Path(argv[i + 1]).expanduser()
            i += 1
        elif arg.startswith('--config='):
            config_path = Path(arg.split('=', 1)[1]).expanduser()
        else:
            rest.append(arg)
        i += 1
    return config_path, debug, rest


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for CLI."""
    argv = sys.argv[1:] if argv is None else argv
    try:
        config_path, debug, command_args = _split_global_options(argv)
    except ParseError as e:
        print(f"Error: {e}")
        return 2

    log_level = 'DEBUG' if debug else os.getenv('LOG_LEVEL', 'WARNING')
    logger = setup_logging('cli', log_level=log_level)
    if debug:
        logger.info("Debug logging enabled")

    config = Config(config_path)

    try:
        if not command_args:
            repl_loop(config)
            return 0

        cmd_obj = parse_command(command_args)
        print(asyncio.run(run_command(cmd_obj, config)))
        return 0
    except ParseError as e:
        print(f"Error: {e}")
        return 2
    except Exception as e:
        logger.error(f"CLI error: {e}", exc_info=True)
        raise


if __name__ == "__main__":
    sys.exit(main())
