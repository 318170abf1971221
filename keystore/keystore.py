"""Named symmetric keys, serialized as JSON."""

import base64
import json
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

from common.constants import DATA_KEY_NAME, KEYSTORE_FORMAT_VERSION
from common.exceptions import NotFound
from keystore.crypto import KEY_LEN, generate_key

logger = logging.getLogger(__name__)


class Keystore:
    """
    Mapping of key name -> 32-byte symmetric key. The "data" key encrypts
    packfiles.
    """

    def __init__(self, keys: Optional[Dict[str, bytes]] = None):
        self._keys: Dict[str, bytes] = dict(keys or {})

    @classmethod
    def create(cls) -> 'Keystore':
        """New keystore holding a fresh data key."""
        keystore = cls()
        keystore.new_key(DATA_KEY_NAME)
        return keystore

    def new_key(self, name: str) -> bytes:
        """
        Generate and store a new key.

        Raises:
            ValueError: If the name is empty or already taken
        """
        if not name:
            raise ValueError("key name must not be empty")
        if name in self._keys:
            raise ValueError(f"key {name!r} already exists")
        key = generate_key()
        self._keys[name] = key
        logger.info(f"Created key '{name}'")
        return key

    def get(self, name: str) -> bytes:
        try:
            return self._keys[name]
        except KeyError:
            raise NotFound(f"no key named {name!r} in keystore")

    @property
    def data_key(self) -> bytes:
        return self.get(DATA_KEY_NAME)

    def list_keys(self) -> List[str]:
        return sorted(self._keys)

    def to_bytes(self) -> bytes:
        return json.dumps({
            'version': KEYSTORE_FORMAT_VERSION,
            'keys': {
                name: base64.b64encode(key).decode('ascii')
                for name, key in sorted(self._keys.items())
            }
        }, sort_keys=True).encode('utf-8')

    @classmethod
    def from_bytes(cls, data: bytes) -> 'Keystore':
        """
        Raises:
            ValueError: If data is not a serialized keystore
        """
        try:
            obj = json.loads(data)
            keys = {name: base64.b64decode(value, validate=True) for name, value in obj['keys'].items()}
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise ValueError(f"invalid keystore contents: {e}")

        if obj.get('version') != KEYSTORE_FORMAT_VERSION:
            raise ValueError(f"unsupported keystore version {obj.get('version')!r}")
        bad = [name for name, key in keys.items() if len(key) != KEY_LEN]
        if bad:
            raise ValueError(f"keys with wrong length: {bad}")
        return cls(keys)

    def save_local(self, path: Path) -> None:
        """
        Write the plaintext keystore readable by the owner only (0600).
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix('.tmp')
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, 'wb') as f:
            f.write(self.to_bytes())
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_path, 0o600)
        tmp_path.replace(path)
        logger.debug(f"Saved keystore with {len(self._keys)} keys to {path}")

    @classmethod
    def load_local(cls, path: Path) -> 'Keystore':
        """
        Raises:
            NotFound: If no local keystore exists
        """
        try:
            data = path.read_bytes()
        except FileNotFoundError:
            raise NotFound(f"no local keystore at {path}")
        return cls.from_bytes(data)
