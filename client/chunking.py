"""Fixed-size chunker for file contents."""

from pathlib import Path
from typing import BinaryIO, Iterator

from common.constants import CHUNK_SIZE_BYTES


def chunk_stream(stream: BinaryIO, chunk_size: int = CHUNK_SIZE_BYTES) -> Iterator[bytes]:
    """
    Split a stream into consecutive blocks of chunk_size; the last one may
    be shorter. Empty input yields nothing.
    """
    if chunk_size < 1:
        raise ValueError("chunk_size must be positive")
    while True:
        block = stream.read(chunk_size)
        if not block:
            return
        yield block


def chunk_file(path: Path, chunk_size: int = CHUNK_SIZE_BYTES) -> Iterator[bytes]:
    """Read a file in chunk_size blocks."""
    with open(path, 'rb') as f:
        yield from chunk_stream(f, chunk_size)
