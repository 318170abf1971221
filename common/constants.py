"""Project-wide constants (object layout, packfile format, retry defaults)."""

OBJECT_ID_LEN: int = 32
EMPTY_OBJECT_ID: bytes = b"\x00" * OBJECT_ID_LEN  # "no parent" sentinel

TAG_VERSION: int = 0
TAG_TREE: int = 1
TAG_SYMLINK: int = 2
TAG_FILE: int = 3

FS_METADATA_SIZE: int = 26
MODE_MASK: int = 0o7777  # permission bits + setuid/setgid/sticky
MAX_NAME_LEN: int = 0xFFFF
MAX_U32: int = 0xFFFFFFFF
MAX_U64: int = 0xFFFFFFFFFFFFFFFF

PACK_MAGIC: bytes = b"PACK"
PACK_BUCKET_PREFIX_LEN: int = 1
PACK_TARGET_SIZE_BYTES: int = 8 * 1024 * 1024
GZIP_COMPRESS_LEVEL: int = 6

CHUNK_SIZE_BYTES: int = 1024 * 1024  # fixed-size chunker default

KEYSTORE_MAGIC: bytes = b"BKPK"
KEYSTORE_FORMAT_VERSION: int = 1
KEYSTORE_SALT_LEN: int = 16
KEYSTORE_NONCE_LEN: int = 12
KDF_ROUNDS: int = 100
MAX_KDF_ROUNDS: int = 1 << 16  # rejects headers that would stall the kdf
DATA_KEY_NAME: str = "data"

REMOTE_TIMEOUT_SECONDS: int = 30
REMOTE_MAX_RETRIES: int = 3
RETRY_BASE_DELAY_SECONDS: float = 1.0
RETRY_BACKOFF_MULTIPLIER: int = 2
RESTORE_CONCURRENCY: int = 8

REMOTE_SERVER_PORT: int = 50061
DEFAULT_REMOTE_ROOT: str = "/data/bkp-remote"
REMOTE_SERVICE_NAME: str = "bkp.RemoteService"
GRPC_MAX_MESSAGE_BYTES: int = 64 * 1024 * 1024
GRPC_KEEPALIVE_TIME_MS: int = 30000
GRPC_KEEPALIVE_TIMEOUT_MS: int = 10000
