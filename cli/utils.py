"""Utility functions for CLI operations."""

from datetime import datetime, timezone

from prompt_toolkit import prompt

from cli.parser import ParseError


def read_password(message: str = "Keystore password: ", confirm: bool = False) -> str:
    """
    Prompt for a password without echoing it.

    Args:
        message: Prompt text
        confirm: Ask twice and require both entries to match

    Raises:
        ParseError: If the password is empty or the confirmation differs
    """
    password = prompt(message, is_password=True)
    if not password:
        raise ParseError("Password must not be empty")
    if confirm and prompt("Confirm password: ", is_password=True) != password:
        raise ParseError("Passwords do not match")
    return password


def format_timestamp(seconds: int) -> str:
    """Render Unix seconds as 'YYYY-MM-DD HH:MM:SS UTC'."""
    return datetime.fromtimestamp(seconds, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
