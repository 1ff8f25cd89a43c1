"""
File probes: binary detection, content hashing and size lookups

The on-disk helpers are blocking and meant to run through run_in_executor.
The stream helpers consume an asyncio.StreamReader handed out by
run_bytes_async.
"""

import asyncio
import hashlib
import logging
import os
from typing import Optional, Tuple, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]

# 4 MiB sampled from the start of a file
BINARY_CHECK_BYTES = 4 * 1024 * 1024
HASH_CHUNK_SIZE = 1024 * 1024


def is_binary_file(
    path: PathLike, limit: int = BINARY_CHECK_BYTES
) -> Tuple[bool, Optional[str]]:
    """
    Classify a file as binary if a NUL byte appears in its first `limit` bytes

    Returns (is_binary, error). A file that cannot be opened or read is
    reported as binary together with the error message.
    """
    try:
        with open(path, "rb") as f:
            sample = f.read(limit)
    except OSError as e:
        logger.warning("Treating unreadable file as binary: %s (%s)", path, e)
        return True, str(e)
    return b"\x00" in sample, None


def file_hash(path: PathLike, chunk_size: int = HASH_CHUNK_SIZE) -> str:
    """Hex encoded SHA-512 digest of the file content, read in chunks"""
    digest = hashlib.sha512()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


def file_length(path: PathLike) -> int:
    """Size in bytes from file metadata"""
    return os.stat(path).st_size


def is_empty_directory(path: PathLike) -> Tuple[bool, Optional[str]]:
    """
    Check whether a directory has no entries

    Returns (is_empty, error). Lookup failures report the directory as empty
    together with the error message.
    """
    try:
        with os.scandir(path) as entries:
            return next(entries, None) is None, None
    except OSError as e:
        logger.warning("Treating unreadable directory as empty: %s (%s)", path, e)
        return True, str(e)


async def hash_stream(
    stream: asyncio.StreamReader, chunk_size: int = HASH_CHUNK_SIZE
) -> str:
    """Hex encoded SHA-512 digest of everything left in the stream"""
    digest = hashlib.sha512()
    while True:
        chunk = await stream.read(chunk_size)
        if not chunk:
            return digest.hexdigest()
        digest.update(chunk)


async def stream_length(
    stream: asyncio.StreamReader, chunk_size: int = HASH_CHUNK_SIZE
) -> int:
    """Count the bytes left in the stream"""
    total = 0
    while True:
        chunk = await stream.read(chunk_size)
        if not chunk:
            return total
        total += len(chunk)


async def read_stream_range(
    stream: asyncio.StreamReader, start: int, end: int
) -> bytes:
    """Bytes [start, end) of the stream; shorter if the stream ends first"""
    if start < 0 or end < start:
        raise ValueError(f"Invalid byte range {start}..{end}")

    skipped = 0
    while skipped < start:
        chunk = await stream.read(min(HASH_CHUNK_SIZE, start - skipped))
        if not chunk:
            return b""
        skipped += len(chunk)

    wanted = end - start
    parts = []
    while wanted > 0:
        chunk = await stream.read(min(HASH_CHUNK_SIZE, wanted))
        if not chunk:
            break
        parts.append(chunk)
        wanted -= len(chunk)
    return b"".join(parts)
