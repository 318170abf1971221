"""Configuration management for the bkp client."""

import json
import logging
import os
import shutil
import socket
from pathlib import Path
from typing import Dict, List, Optional

from common.constants import (
    CHUNK_SIZE_BYTES,
    KDF_ROUNDS,
    REMOTE_MAX_RETRIES,
    REMOTE_TIMEOUT_SECONDS,
    RESTORE_CONCURRENCY,
    RETRY_BACKOFF_MULTIPLIER,
    RETRY_BASE_DELAY_SECONDS,
)
from common.exceptions import ConfigError
from remote.factory import validate_url

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "config.json"


def default_home() -> Path:
    """Client state directory: $BKP_HOME or ~/.bkp."""
    return Path(os.environ.get("BKP_HOME", Path.home() / ".bkp")).expanduser()


class Config:
    """Manages client configuration stored in a JSON file."""

    DEFAULT_CONFIG = {
        "node_name": socket.gethostname(),
        "remotes": {},
        "groups": {},
        "default_group": None,
        "timeout": REMOTE_TIMEOUT_SECONDS,
        "max_retries": REMOTE_MAX_RETRIES,
        "retry_backoff_multiplier": RETRY_BACKOFF_MULTIPLIER,
        "retry_base_delay": RETRY_BASE_DELAY_SECONDS,
        "concurrency": RESTORE_CONCURRENCY,
        "chunk_size": CHUNK_SIZE_BYTES,
        "kdf_rounds": KDF_ROUNDS,
        "heads": {},
    }

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize configuration manager.

        Args:
            config_path: Path to config JSON file (default: ~/.bkp/config.json)
        """
        self.config_path = Path(config_path) if config_path else default_home() / CONFIG_FILE_NAME
        self.data = self._load()

    @property
    def home(self) -> Path:
        """Directory holding the config file and local client state."""
        return self.config_path.parent

    def _defaults(self) -> dict:
        return json.loads(json.dumps(self.DEFAULT_CONFIG))

    def _load(self) -> dict:
        """
        Load configuration from file, creating defaults if necessary.

        Returns:
            Configuration dictionary
        """
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        if not self.config_path.exists():
            config = self._defaults()
            self._write(config)
            return config

        try:
            with open(self.config_path, 'r') as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("config root must be an object")
        except (json.JSONDecodeError, ValueError, OSError) as e:
            backup_path = self.config_path.with_suffix('.json.bak')
            logger.warning(f"Config file {self.config_path} is corrupt ({e}); saved copy to {backup_path}")
            try:
                shutil.copy(self.config_path, backup_path)
            except OSError as copy_error:
                logger.error(f"Could not back up corrupt config: {copy_error}")
            return self._defaults()

        config = self._defaults()
        config.update(data)
        return config

    def _write(self, data: dict) -> None:
        tmp_path = self.config_path.with_suffix('.tmp')
        with open(tmp_path, 'w') as f:
            json.dump(data, f, indent=2, sort_keys=True)
        tmp_path.replace(self.config_path)

    def save(self) -> None:
        """Save current configuration to file."""
        self._write(self.data)

    def add_remote(
        self,
        name: str,
        url: str,
        upload_cost: int = 1,
        download_cost: int = 1,
        reliable: bool = False
    ) -> None:
        """
        Register a remote and save.

        Raises:
            ConfigError: On duplicate name, bad URL or negative costs
        """
        if not name:
            raise ConfigError("remote name must not be empty")
        if name in self.data["remotes"] or name in self.data["groups"]:
            raise ConfigError(f"name {name!r} is already in use")
        if upload_cost < 0 or download_cost < 0:
            raise ConfigError("remote costs must be non-negative")
        validate_url(url)

        self.data["remotes"][name] = {
            "url": url,
            "upload_cost": upload_cost,
            "download_cost": download_cost,
            "reliable": reliable,
        }
        self.save()

    def remove_remote(self, name: str) -> None:
        """
        Raises:
            ConfigError: If the remote is unknown or still a group member
        """
        if name not in self.data["remotes"]:
            raise ConfigError(f"unknown remote {name!r}")
        users = [group for group, members in self.data["groups"].items() if name in members]
        if users:
            raise ConfigError(f"remote {name!r} is still a member of group(s): {', '.join(users)}")
        del self.data["remotes"][name]
        self.save()

    def get_remote(self, name: str) -> dict:
        try:
            return self.data["remotes"][name]
        except KeyError:
            raise ConfigError(f"unknown remote {name!r}")

    def get_remotes(self) -> Dict[str, dict]:
        return dict(self.data["remotes"])

    def add_group(self, name: str, members: List[str]) -> None:
        """
        Register a remote group. The first group added becomes the default.

        Raises:
            ConfigError: On duplicate name, empty or unknown members
        """
        if not name:
            raise ConfigError("group name must not be empty")
        if name in self.data["groups"] or name in self.data["remotes"]:
            raise ConfigError(f"name {name!r} is already in use")
        if not members:
            raise ConfigError(f"group {name!r} needs at least one member")
        if len(set(members)) != len(members):
            raise ConfigError(f"group {name!r} lists a member twice")
        unknown = [m for m in members if m not in self.data["remotes"]]
        if unknown:
            raise ConfigError(f"group {name!r} has unknown members: {', '.join(unknown)}")

        self.data["groups"][name] = list(members)
        if self.data.get("default_group") is None:
            self.data["default_group"] = name
        self.save()

    def get_group(self, name: Optional[str] = None) -> List[str]:
        """
        Member names of a group (default group when name is None).

        Raises:
            ConfigError: If no such group is configured
        """
        name = name or self.data.get("default_group")
        if name is None:
            raise ConfigError("no remote group configured; run 'bkp group add' first")
        try:
            return list(self.data["groups"][name])
        except KeyError:
            raise ConfigError(f"unknown group {name!r}")

    def get_default_group(self) -> Optional[str]:
        return self.data.get("default_group")

    def get_head(self, node_name: Optional[str] = None) -> Optional[str]:
        return self.data["heads"].get(node_name or self.data["node_name"])

    def set_head(self, version_hex: str, node_name: Optional[str] = None) -> None:
        self.data["heads"][node_name or self.data["node_name"]] = version_hex
        self.save()

    def get_timeout(self) -> float:
        """
        Get per-request timeout in seconds.

        Returns:
            Timeout value in seconds
        """
        return self.data.get('timeout', REMOTE_TIMEOUT_SECONDS)

    def get_retry_config(self) -> dict:
        """
        Get retry configuration.

        Returns:
            Dictionary with 'max_retries', 'retry_backoff_multiplier'
            and 'retry_base_delay'
        """
        return {
            'max_retries': self.data.get('max_retries', REMOTE_MAX_RETRIES),
            'retry_backoff_multiplier': self.data.get('retry_backoff_multiplier', RETRY_BACKOFF_MULTIPLIER),
            'retry_base_delay': self.data.get('retry_base_delay', RETRY_BASE_DELAY_SECONDS),
        }
