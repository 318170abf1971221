"""Build concrete remotes from configured URLs."""

from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from common.exceptions import ConfigError
from remote.base import Remote
from remote.grpc_remote import GrpcRemote
from remote.local_remote import LocalRemote

SUPPORTED_SCHEMES = ("file", "grpc")


def validate_url(url: str) -> None:
    """
    Check that a remote URL is usable.

    Raises:
        ConfigError: On unknown scheme or missing path / address
    """
    parsed = urlparse(url)
    if parsed.scheme not in SUPPORTED_SCHEMES:
        raise ConfigError(f"unsupported remote URL {url!r}; expected file:// or grpc://host:port")
    if parsed.scheme == "file" and not (parsed.netloc or parsed.path):
        raise ConfigError(f"file remote URL {url!r} has no path")
    if parsed.scheme == "grpc":
        try:
            port = parsed.port
        except ValueError:
            port = None
        if not parsed.hostname or port is None:
            raise ConfigError(f"grpc remote URL {url!r} must be grpc://host:port")


def open_remote(
    name: str,
    url: str,
    upload_cost: int = 1,
    download_cost: int = 1,
    reliable: bool = False,
    timeout: Optional[float] = None
) -> Remote:
    """
    Create the remote backend named by a URL.

    Args:
        name: Remote name
        url: file:///path/to/dir or grpc://host:port
        upload_cost: Relative cost of writing to this remote
        download_cost: Relative cost of reading from this remote
        reliable: Whether the remote is trusted to keep its data
        timeout: Per-RPC deadline for network remotes

    Returns:
        LocalRemote or GrpcRemote
    """
    validate_url(url)
    parsed = urlparse(url)

    if parsed.scheme == "file":
        # file://relative/dir puts the first segment in netloc
        path = Path(parsed.netloc + parsed.path).expanduser()
        return LocalRemote(name, path, upload_cost=upload_cost, download_cost=download_cost, reliable=reliable)

    return GrpcRemote(
        name,
        f"{parsed.hostname}:{parsed.port}",
        upload_cost=upload_cost,
        download_cost=download_cost,
        reliable=reliable,
        timeout=timeout
    )
